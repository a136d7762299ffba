"""
Domain types and state machines for tenders, bids and notifications.
"""

import enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional


class TenderUrgency(str, enum.Enum):
    today = 'today'
    this_week = 'this-week'
    flexible = 'flexible'


class TenderStatus(str, enum.Enum):
    open = 'open'
    in_progress = 'in-progress'
    completed = 'completed'
    cancelled = 'cancelled'


class BidStatus(str, enum.Enum):
    pending = 'pending'
    selected = 'selected'
    rejected = 'rejected'
    withdrawn = 'withdrawn'


class NotificationChannel(str, enum.Enum):
    push = 'push'
    sms = 'sms'
    email = 'email'


class NotificationStatus(str, enum.Enum):
    sent = 'sent'
    delivered = 'delivered'
    read = 'read'
    failed = 'failed'


class BidSortBy(str, enum.Enum):
    price = 'price'
    rating = 'rating'
    distance = 'distance'
    duration = 'duration'


class SortDirection(str, enum.Enum):
    asc = 'asc'
    desc = 'desc'


# ============================================
# STATE MACHINES
# ============================================

TENDER_TRANSITIONS: Dict[TenderStatus, FrozenSet[TenderStatus]] = {
    TenderStatus.open: frozenset({TenderStatus.in_progress, TenderStatus.cancelled}),
    TenderStatus.in_progress: frozenset({TenderStatus.completed, TenderStatus.cancelled}),
    TenderStatus.completed: frozenset(),
    TenderStatus.cancelled: frozenset(),
}

BID_TRANSITIONS: Dict[BidStatus, FrozenSet[BidStatus]] = {
    BidStatus.pending: frozenset({BidStatus.selected, BidStatus.rejected, BidStatus.withdrawn}),
    BidStatus.selected: frozenset(),
    BidStatus.rejected: frozenset(),
    BidStatus.withdrawn: frozenset(),
}


def can_transition_tender(current: str, target: str) -> bool:
    return TenderStatus(target) in TENDER_TRANSITIONS[TenderStatus(current)]


def can_transition_bid(current: str, target: str) -> bool:
    return BidStatus(target) in BID_TRANSITIONS[BidStatus(current)]


def tender_sources_for(target: TenderStatus) -> List[str]:
    """Statuses from which a tender may move to ``target``."""
    return [
        source.value
        for source, targets in TENDER_TRANSITIONS.items()
        if target in targets
    ]


# ============================================
# URGENCY → EXPIRY
# ============================================

URGENCY_TTL: Dict[TenderUrgency, Optional[timedelta]] = {
    TenderUrgency.today: timedelta(hours=24),
    TenderUrgency.this_week: timedelta(days=7),
    TenderUrgency.flexible: None,
}


def compute_expires_at(urgency: str, created_at: datetime) -> Optional[datetime]:
    """Expiry timestamp for a tender created at ``created_at``, or None for flexible."""
    ttl = URGENCY_TTL[TenderUrgency(urgency)]
    if ttl is None:
        return None
    return created_at + ttl


# ============================================
# ACTORS & TRANSIENT RESULTS
# ============================================

@dataclass(frozen=True)
class Actor:
    """Authenticated caller, as resolved by the (external) session layer."""

    id: str
    is_admin: bool = False
    is_professional: bool = False


@dataclass
class MatchCandidate:
    """Professional matched to a tender, ranked by matching score."""

    professional_id: str
    category: str
    status: str
    distance_km: float
    total_ratings: int = 0
    avg_score: Optional[float] = None
    professional_name: Optional[str] = None
    matching_score: int = 0
    match_reasons: List[str] = field(default_factory=list)


@dataclass
class NotificationResult:
    """Outcome of one create-and-send attempt."""

    professional_id: str
    channel: str
    matching_score: int
    reasons: List[str]
    success: bool
    notification_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)
