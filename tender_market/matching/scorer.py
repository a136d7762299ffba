"""
Match scoring for professionals found around a tender.

Score (0-100) = proximity (50) + reputation (30) + rating volume (20).
The weights are fixed; only the search radius varies per tender.
"""

import math
import logging
from typing import Iterable, List, Optional, Sequence

from tender_market.models import MatchCandidate

logger = logging.getLogger(__name__)

PROXIMITY_WEIGHT = 50
REPUTATION_WEIGHT = 30
VOLUME_WEIGHT = 20
VOLUME_SATURATION = 10  # ratings needed for the full volume bonus


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_matching_score(
    distance_km: float,
    radius_km: float,
    avg_score: Optional[float],
    total_ratings: int,
) -> int:
    """
    Matching score in [0, 100].

    Non-increasing in distance, non-decreasing in avg_score and total_ratings.
    """
    if radius_km <= 0:
        raise ValueError(f"radius_km must be positive, got {radius_km}")

    proximity = _clamp(1 - distance_km / radius_km, 0.0, 1.0) * PROXIMITY_WEIGHT

    reputation = 0.0
    if avg_score is not None:
        reputation = _clamp(avg_score, 0.0, 100.0) / 100 * REPUTATION_WEIGHT

    volume = min(max(total_ratings, 0) / VOLUME_SATURATION, 1.0) * VOLUME_WEIGHT

    # round half up; all terms are non-negative
    score = int(math.floor(proximity + reputation + volume + 0.5))
    return int(_clamp(score, 0, 100))


def build_match_reasons(
    candidate: MatchCandidate,
    reachable_statuses: Sequence[str] = ('available', 'online'),
) -> List[str]:
    """Short labels in fixed order: category, distance, rating, count, availability."""
    reasons = [f"Category: {candidate.category}"]

    if candidate.distance_km is not None:
        reasons.append(f"Distance: {round(candidate.distance_km, 2)} km")

    if candidate.avg_score is not None:
        reasons.append(f"Rating: {candidate.avg_score:.1f}/100")

    if candidate.total_ratings > 0:
        reasons.append(f"{candidate.total_ratings} rating(s)")

    if candidate.status in reachable_statuses:
        reasons.append("Available")

    return reasons


class MatchScorer:
    """
    Ranks candidates for a tender.

    Особенности:
    - fixed-weight scoring (see compute_matching_score)
    - reasons generated per candidate
    - top-N cut applied after scoring only
    """

    def __init__(self, reachable_statuses: Sequence[str] = ('available', 'online')):
        self.reachable_statuses = tuple(reachable_statuses)
        self.stats = {
            'total_scored': 0,
            'high_score_matches': 0,  # score >= 70
            'medium_score_matches': 0,  # 50 <= score < 70
            'low_score_matches': 0,  # score < 50
        }

    def score(self, candidate: MatchCandidate, radius_km: float) -> MatchCandidate:
        candidate.matching_score = compute_matching_score(
            candidate.distance_km,
            radius_km,
            candidate.avg_score,
            candidate.total_ratings,
        )
        candidate.match_reasons = build_match_reasons(candidate, self.reachable_statuses)
        self._update_stats(candidate.matching_score)
        return candidate

    def rank(
        self,
        candidates: Iterable[MatchCandidate],
        radius_km: float,
        limit: Optional[int] = None,
    ) -> List[MatchCandidate]:
        """Score, then order by score desc and distance asc; keep top ``limit``."""
        scored = [self.score(candidate, radius_km) for candidate in candidates]
        scored.sort(key=lambda c: (-c.matching_score, c.distance_km))

        if limit is not None and len(scored) > limit:
            logger.info(f"✂️ Keeping top {limit} of {len(scored)} candidates by matching score")
            scored = scored[:limit]

        return scored

    def _update_stats(self, score: int) -> None:
        self.stats['total_scored'] += 1
        if score >= 70:
            self.stats['high_score_matches'] += 1
        elif score >= 50:
            self.stats['medium_score_matches'] += 1
        else:
            self.stats['low_score_matches'] += 1

    def get_stats(self) -> dict:
        return self.stats.copy()
