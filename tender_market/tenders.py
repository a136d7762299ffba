"""
Tender Lifecycle Manager.

open → in-progress → completed, open/in-progress → cancelled.
Completed and cancelled are terminal. Creating a tender hands matching and
notification off to a background task: the insert commits first and the
caller never waits for, nor fails because of, the dispatch run.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from database import utcnow
from tender_market.collaborators import ProfileDirectory
from tender_market.config import ListingSettings, MatchingSettings
from tender_market.database import TenderMarketDB
from tender_market.errors import AuthorizationError, ConflictError, NotFoundError
from tender_market.geo import try_parse_coordinates
from tender_market.matching import CandidateFinder, MatchingCriteria, MatchScorer
from tender_market.models import (
    Actor,
    NotificationResult,
    TenderStatus,
    TenderUrgency,
    can_transition_tender,
    compute_expires_at,
    tender_sources_for,
)
from tender_market.notifications import NotificationDispatcher
from tender_market.schemas import CreateTenderRequest, PageQuery, TenderSearchFilters, parse_request

logger = logging.getLogger(__name__)


class TenderLifecycleManager:
    """Owns tender creation, listing and status transitions."""

    def __init__(
        self,
        db: TenderMarketDB,
        finder: CandidateFinder,
        scorer: MatchScorer,
        dispatcher: NotificationDispatcher,
        profiles: ProfileDirectory,
        matching: Optional[MatchingSettings] = None,
        listing: Optional[ListingSettings] = None,
    ):
        self.db = db
        self.finder = finder
        self.scorer = scorer
        self.dispatcher = dispatcher
        self.profiles = profiles
        self.matching = matching or MatchingSettings()
        self.listing = listing or ListingSettings()
        self._background: Set[asyncio.Task] = set()

    # ============================================
    # CREATE
    # ============================================

    async def create_tender(self, actor: Actor, request) -> Dict[str, Any]:
        """
        Validate, persist (status=open) and schedule matching.

        Raises:
            ValidationError: malformed request
            AuthorizationError: client_id is not the caller (admins excepted)
        """
        req = parse_request(CreateTenderRequest, request)

        if req.client_id != actor.id and not actor.is_admin:
            raise AuthorizationError("Tenders can only be created for yourself")

        now = utcnow()
        data = req.model_dump()
        data.update(
            urgency=req.urgency.value,
            status=TenderStatus.open.value,
            created_at=now,
            updated_at=now,
            expires_at=compute_expires_at(req.urgency.value, now),
        )

        tender = await self.db.create_tender(data)
        logger.info(f"✅ Tender {tender['id']} created ({tender['category']}, urgency={tender['urgency']})")

        self._schedule_matching(tender)
        return tender

    def _schedule_matching(self, tender: Dict[str, Any]) -> None:
        task = asyncio.create_task(self.match_and_notify(tender), name=f"match-{tender['id']}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def match_and_notify(self, tender: Dict[str, Any]) -> List[NotificationResult]:
        """
        Candidate Finder → Match Scorer → Notification Dispatcher for one tender.

        Best effort: every failure is logged and yields an empty result.
        """
        try:
            criteria = MatchingCriteria(
                category=tender['category'],
                center=try_parse_coordinates(tender.get('gps_coordinates')),
                radius_km=self.matching.radius_km,
                min_rating=self.matching.min_rating,
                require_availability=tender['urgency'] == TenderUrgency.today.value,
            )
            candidates = await self.finder.find(criteria)
            ranked = self.scorer.rank(candidates, criteria.radius_km, limit=self.matching.max_candidates)
            results = await self.dispatcher.dispatch(tender, ranked)
            logger.info(f"📱 Sent {sum(r.success for r in results)}/{len(results)} notifications for tender {tender['id']}")
            return results
        except Exception as e:
            logger.error(f"❌ Matching failed for tender {tender['id']}: {e}", exc_info=True)
            return []

    async def drain(self) -> None:
        """Wait for in-flight matching runs (shutdown, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ============================================
    # READ
    # ============================================

    async def get_tender(self, tender_id: str) -> Dict[str, Any]:
        tender = await self.db.get_tender(tender_id)
        if not tender:
            raise NotFoundError(f"Tender {tender_id} not found")

        tender['bids_count'] = await self.db.count_bids(tender_id)
        tender['client_name'] = await self._client_name(tender['client_id'])
        return tender

    async def _client_name(self, client_id: str) -> Optional[str]:
        try:
            profile = await self.profiles.get_profile(client_id)
        except Exception as e:
            logger.warning(f"⚠️ Profile lookup failed for client {client_id}: {e}")
            return None
        return profile.name if profile else None

    async def list_tenders(
        self,
        filters=None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Tenders newest first; only open ones unless a status filter is given.

        Args:
            filters: TenderSearchFilters or dict
            page: 1-based page number
            limit: page size, capped by listing.max_limit
        """
        search = parse_request(TenderSearchFilters, filters or {})
        offset, limit = parse_request(PageQuery, {'page': page, 'limit': limit}).window(
            self.listing.default_limit, self.listing.max_limit
        )

        return await self.db.list_tenders(search.to_conditions(), offset=offset, limit=limit)

    # ============================================
    # TRANSITIONS
    # ============================================

    async def cancel_tender(self, actor: Actor, tender_id: str) -> Dict[str, Any]:
        """
        Cancel an open or in-progress tender. Bids are left untouched.

        Raises:
            NotFoundError, AuthorizationError, ConflictError (terminal status)
        """
        tender = await self.db.get_tender(tender_id)
        if not tender:
            raise NotFoundError(f"Tender {tender_id} not found")

        if tender['client_id'] != actor.id and not actor.is_admin:
            raise AuthorizationError("Only the owner or an administrator can cancel this tender")

        return await self._transition(tender, TenderStatus.cancelled, "Tender cannot be cancelled")

    async def complete_tender(self, tender_id: str) -> Dict[str, Any]:
        """Fulfillment hook: in-progress → completed."""
        tender = await self.db.get_tender(tender_id)
        if not tender:
            raise NotFoundError(f"Tender {tender_id} not found")

        return await self._transition(tender, TenderStatus.completed, "Tender cannot be completed")

    async def _transition(self, tender: Dict[str, Any], target: TenderStatus, conflict_message: str) -> Dict[str, Any]:
        tender_id = tender['id']
        if not can_transition_tender(tender['status'], target.value):
            raise ConflictError(conflict_message)

        # Условный UPDATE: проигравший в гонке получает ConflictError
        moved = await self.db.transition_tender(tender_id, tender_sources_for(target), target.value)
        if not moved:
            raise ConflictError(conflict_message)

        logger.info(f"🔄 Tender {tender_id} → {target.value}")
        return await self.db.get_tender(tender_id)
