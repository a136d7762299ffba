"""
Interfaces of the external collaborators consumed by the engine.

Profiles, rating aggregates and the outbound transport live outside this
package; anything satisfying these protocols can be plugged in.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class ProfessionalProfile:
    """Directory entry of a user, as far as matching is concerned."""

    id: str
    name: Optional[str] = None
    is_professional: bool = False
    category: Optional[str] = None
    status: str = 'offline'
    gps_coordinates: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None


@dataclass(frozen=True)
class AggregateRating:
    avg_score: Optional[float]
    total_ratings: int = 0


class ProfileDirectory(Protocol):
    async def find_professionals(
        self,
        category: str,
        status_in: Optional[Sequence[str]],
        has_coordinates: bool,
    ) -> List[ProfessionalProfile]:
        """Professionals of ``category``; ``status_in=None`` means any status."""
        ...

    async def get_profile(self, user_id: str) -> Optional[ProfessionalProfile]:
        ...


class RatingAggregates(Protocol):
    async def get_aggregate_rating(self, professional_id: str) -> Optional[AggregateRating]:
        ...


class NotificationTransport(Protocol):
    async def send(self, channel: str, professional_id: str, payload: Dict[str, Any]) -> bool:
        """Fire-and-forget delivery; True when the provider accepted the message."""
        ...
