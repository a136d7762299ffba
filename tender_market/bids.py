"""
Bid Lifecycle Manager.

pending → selected | rejected | withdrawn, all three terminal.
Selection flips the tender to in-progress and resolves every pending bid
in one transaction (see TenderMarketDB.select_bid).
"""

import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from database import utcnow
from tender_market.collaborators import ProfileDirectory, RatingAggregates
from tender_market.database import TenderMarketDB
from tender_market.errors import AuthorizationError, ConflictError, NotFoundError, UpstreamError
from tender_market.geo import distance_km, try_parse_coordinates
from tender_market.models import (
    Actor,
    BidSortBy,
    BidStatus,
    SortDirection,
    TenderStatus,
    can_transition_bid,
    can_transition_tender,
)
from tender_market.schemas import BidListQuery, CreateBidRequest, parse_request

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r'(\d+)\s*([^\W\d_]*)')

# Longest prefixes first; unknown or missing unit counts as days
_DURATION_UNITS: Tuple[Tuple[str, float], ...] = (
    ('semaine', 7), ('minute', 1 / 1440), ('month', 30), ('heure', 1 / 24),
    ('hour', 1 / 24), ('année', 365), ('annee', 365), ('week', 7), ('year', 365),
    ('jour', 1), ('mois', 30), ('sem', 7), ('min', 1 / 1440), ('day', 1),
    ('an', 365), ('hr', 1 / 24), ('h', 1 / 24), ('j', 1), ('d', 1), ('w', 7), ('y', 365),
)


def duration_in_days(text: Optional[str]) -> float:
    """
    Comparable duration from free text, e.g. "3 jours" → 3, "2 semaines" → 14.

    Uses the first integer and the unit word right after it. Text without
    digits ("Aujourd'hui") is the largest possible duration.
    """
    match = _DURATION_RE.search(text or '')
    if not match:
        return math.inf

    amount = int(match.group(1))
    unit = match.group(2).lower()
    for prefix, days in _DURATION_UNITS:
        if unit.startswith(prefix):
            return amount * days
    return float(amount)


def _sort_key(sort_by: BidSortBy):
    if sort_by == BidSortBy.price:
        return lambda bid: bid.get('price') or 0
    if sort_by == BidSortBy.rating:
        # natural order: higher rating first, unrated last
        return lambda bid: (
            -bid['professional_rating'] if bid.get('professional_rating') is not None else math.inf
        )
    if sort_by == BidSortBy.distance:
        return lambda bid: (
            bid['professional_distance'] if bid.get('professional_distance') is not None else math.inf
        )
    return lambda bid: duration_in_days(bid.get('estimated_duration'))


def sort_bids(bids: List[Dict[str, Any]], sort_by='price', direction='asc') -> List[Dict[str, Any]]:
    """
    Stable sort for client review.

    ``asc`` keeps each field's natural "best first" order (cheapest, closest,
    soonest, best rated); ``desc`` inverts it.
    """
    sort_by = BidSortBy(sort_by)
    direction = SortDirection(direction)
    return sorted(bids, key=_sort_key(sort_by), reverse=direction == SortDirection.desc)


class BidLifecycleManager:
    """Bid admission, listing, selection and withdrawal."""

    def __init__(self, db: TenderMarketDB, profiles: ProfileDirectory, ratings: RatingAggregates):
        self.db = db
        self.profiles = profiles
        self.ratings = ratings

    async def submit_bid(self, actor: Actor, tender_id: str, request) -> Dict[str, Any]:
        """
        Submit a pending bid with rating/distance frozen at submission time.

        Raises:
            ValidationError, AuthorizationError, NotFoundError,
            ConflictError (tender not open, duplicate bid), UpstreamError
        """
        req = parse_request(CreateBidRequest, request)

        if not actor.is_professional:
            raise AuthorizationError("Only professionals can submit bids")
        if req.professional_id != actor.id:
            raise AuthorizationError("Bids can only be submitted for yourself")

        tender = await self.db.get_tender(tender_id)
        if not tender:
            raise NotFoundError(f"Tender {tender_id} not found")
        if tender['status'] != TenderStatus.open.value:
            raise ConflictError("Tender is not open for bidding")

        if await self.db.get_active_bid(tender_id, req.professional_id):
            raise ConflictError("You have already submitted a bid for this tender")

        rating, distance = await self._snapshot(tender, req.professional_id)

        now = utcnow()
        data = req.model_dump()
        data.update(
            tender_id=tender_id,
            professional_rating=rating,
            professional_distance=distance,
            status=BidStatus.pending.value,
            created_at=now,
            updated_at=now,
        )
        bid = await self.db.create_bid(data)
        logger.info(f"✅ Bid {bid['id']} submitted on tender {tender_id} by {req.professional_id}")
        return bid

    async def _snapshot(self, tender: Dict[str, Any], professional_id: str) -> Tuple[Optional[float], Optional[float]]:
        """(avg rating, distance km) of the professional right now."""
        try:
            aggregate = await self.ratings.get_aggregate_rating(professional_id)
            profile = await self.profiles.get_profile(professional_id)
        except Exception as e:
            raise UpstreamError(f"Could not load professional {professional_id}: {e}")

        rating = aggregate.avg_score if aggregate else None

        distance = None
        tender_coords = try_parse_coordinates(tender.get('gps_coordinates'))
        profile_coords = try_parse_coordinates(profile.gps_coordinates) if profile else None
        if tender_coords and profile_coords:
            distance = round(distance_km(tender_coords, profile_coords), 2)

        return rating, distance

    async def list_bids(self, tender_id: str, sort_by='price', direction='asc') -> List[Dict[str, Any]]:
        query = parse_request(BidListQuery, {'sort_by': sort_by, 'direction': direction})

        if not await self.db.get_tender(tender_id):
            raise NotFoundError(f"Tender {tender_id} not found")

        bids = await self.db.list_bids(tender_id)
        return sort_bids(bids, query.sort_by, query.direction)

    async def select_bid(self, actor: Actor, tender_id: str, bid_id: str) -> Dict[str, Any]:
        """
        Pick the winning bid; every other pending bid is rejected.

        Raises:
            NotFoundError, AuthorizationError (not the owning client),
            ConflictError (tender not open / bid not pending, including
            losing a concurrent selection)
        """
        tender = await self.db.get_tender(tender_id)
        if not tender:
            raise NotFoundError(f"Tender {tender_id} not found")
        if tender['client_id'] != actor.id:
            raise AuthorizationError("Only the tender owner can select a bid")
        if not can_transition_tender(tender['status'], TenderStatus.in_progress.value):
            raise ConflictError("Tender is not open")

        bid = await self.db.get_bid(bid_id)
        if not bid or bid['tender_id'] != tender_id:
            raise NotFoundError(f"Bid {bid_id} not found")
        if not can_transition_bid(bid['status'], BidStatus.selected.value):
            raise ConflictError("Bid is not pending")

        result = await self.db.select_bid(tender_id, bid_id)
        logger.info(
            f"🏆 Tender {tender_id}: bid {bid_id} selected, "
            f"{result['rejected_count']} other bid(s) rejected"
        )
        return result

    async def withdraw_bid(self, actor: Actor, bid_id: str) -> Dict[str, Any]:
        bid = await self.db.get_bid(bid_id)
        if not bid:
            raise NotFoundError(f"Bid {bid_id} not found")
        if bid['professional_id'] != actor.id:
            raise AuthorizationError("Only the bidding professional can withdraw this bid")
        if not can_transition_bid(bid['status'], BidStatus.withdrawn.value):
            raise ConflictError("Only pending bids can be withdrawn")

        if not await self.db.withdraw_bid(bid_id, actor.id):
            raise ConflictError("Only pending bids can be withdrawn")

        logger.info(f"↩️ Bid {bid_id} withdrawn")
        return await self.db.get_bid(bid_id)
