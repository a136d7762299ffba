"""
Candidate Finder: nearby, qualified professionals for a tender.

The directory query narrows by category and status; the bounding box is a
pre-filter and the haversine distance decides membership.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from tender_market.collaborators import (
    AggregateRating,
    ProfessionalProfile,
    ProfileDirectory,
    RatingAggregates,
)
from tender_market.config import MatchingSettings
from tender_market.errors import UpstreamError
from tender_market.geo import Coordinates, bounding_box, distance_km, try_parse_coordinates
from tender_market.models import MatchCandidate
from tender_market.retry import TRANSIENT_EXCEPTIONS, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchingCriteria:
    category: str
    center: Optional[Coordinates]
    radius_km: float = 15.0
    min_rating: Optional[float] = None
    require_availability: bool = False


class CandidateFinder:
    """Queries the professional directory and attaches distance and rating snapshots."""

    def __init__(
        self,
        directory: ProfileDirectory,
        ratings: RatingAggregates,
        settings: Optional[MatchingSettings] = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ):
        self.directory = directory
        self.ratings = ratings
        self.settings = settings or MatchingSettings()
        self.retry_policy = RetryPolicy(
            max_attempts=retry_attempts,
            initial_delay=retry_delay,
            exceptions=TRANSIENT_EXCEPTIONS,
        )

    async def find(self, criteria: MatchingCriteria) -> List[MatchCandidate]:
        """
        Candidates within ``radius_km`` of ``center``, unscored.

        Returns an empty list (and logs) when the tender has no coordinates.

        Raises:
            UpstreamError: directory or rating collaborator kept failing
        """
        if criteria.center is None:
            logger.warning(f"⚠️ No GPS coordinates for '{criteria.category}' tender, matching skipped")
            return []

        status_in = self.settings.reachable_statuses if criteria.require_availability else None
        profiles = await self._call(
            lambda: self.directory.find_professionals(criteria.category, status_in, True),
            'find_professionals',
        )

        box = bounding_box(criteria.center, criteria.radius_km * 1000)
        nearby = []
        for profile in profiles:
            if not self._is_eligible(profile, criteria.category, status_in):
                continue
            coords = try_parse_coordinates(profile.gps_coordinates)
            if coords is None or not box.contains(coords):
                continue
            dist = round(distance_km(criteria.center, coords), 2)
            if dist >= criteria.radius_km:
                continue
            nearby.append((profile, dist))

        if not nearby:
            logger.info(f"🔍 No professionals within {criteria.radius_km} km for '{criteria.category}'")
            return []

        ratings = await asyncio.gather(*(
            self._call(
                lambda pid=profile.id: self.ratings.get_aggregate_rating(pid),
                'get_aggregate_rating',
            )
            for profile, _ in nearby
        ))

        candidates = []
        for (profile, dist), rating in zip(nearby, ratings):
            if not self._passes_rating(rating, criteria.min_rating):
                continue
            candidates.append(MatchCandidate(
                professional_id=profile.id,
                professional_name=profile.name,
                category=profile.category or criteria.category,
                status=profile.status,
                distance_km=dist,
                total_ratings=rating.total_ratings if rating else 0,
                avg_score=rating.avg_score if rating else None,
            ))

        logger.info(
            f"🎯 Found {len(candidates)} candidates for '{criteria.category}' "
            f"(radius {criteria.radius_km} km, {len(profiles)} in directory)"
        )
        return candidates

    @staticmethod
    def _is_eligible(profile: ProfessionalProfile, category: str, status_in) -> bool:
        if not profile.is_professional:
            return False
        if profile.category != category:
            return False
        if status_in is not None and profile.status not in status_in:
            return False
        return True

    def _passes_rating(self, rating: Optional[AggregateRating], min_rating: Optional[float]) -> bool:
        if min_rating is None:
            return True
        if rating is None or rating.avg_score is None or rating.total_ratings == 0:
            return self.settings.include_unrated
        return rating.avg_score >= min_rating

    async def _call(self, func, name: str):
        try:
            return await self.retry_policy.run(func, name=name)
        except Exception as e:
            raise UpstreamError(f"{name} failed: {e}")
