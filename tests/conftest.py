"""
Общие фикстуры: in-memory collaborators и временная SQLite база.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

import pytest

from database import close_database, init_database
from tender_market.collaborators import AggregateRating, ProfessionalProfile
from tender_market.config import DispatchSettings, ListingSettings, MatchingSettings
from tender_market.database import TenderMarketDB
from tender_market.models import Actor

# Paris, Notre-Dame
PARIS = "48.8566,2.3522"
# ~0.5 km north
NEAR_PARIS = "48.8611,2.3522"
# ~10 km north
MID_PARIS = "48.9466,2.3522"
# ~20 km north
FAR_PARIS = "49.0366,2.3522"


class FakeDirectory:
    """ProfileDirectory backed by a dict."""

    def __init__(self, profiles: Iterable[ProfessionalProfile] = ()):
        self.profiles: Dict[str, ProfessionalProfile] = {p.id: p for p in profiles}
        self.calls: List[tuple] = []
        self.fail_with: Optional[Exception] = None

    def add(self, profile: ProfessionalProfile) -> ProfessionalProfile:
        self.profiles[profile.id] = profile
        return profile

    async def find_professionals(self, category, status_in, has_coordinates):
        self.calls.append((category, status_in, has_coordinates))
        if self.fail_with is not None:
            raise self.fail_with
        return [
            p for p in self.profiles.values()
            if p.is_professional
            and p.category == category
            and (status_in is None or p.status in status_in)
            and (not has_coordinates or p.gps_coordinates)
        ]

    async def get_profile(self, user_id):
        if self.fail_with is not None:
            raise self.fail_with
        return self.profiles.get(user_id)


class FakeRatings:
    """RatingAggregates backed by a dict."""

    def __init__(self, ratings: Optional[Dict[str, AggregateRating]] = None):
        self.ratings = dict(ratings or {})
        self.fail_with: Optional[Exception] = None

    async def get_aggregate_rating(self, professional_id):
        if self.fail_with is not None:
            raise self.fail_with
        return self.ratings.get(professional_id)


class RecordingTransport:
    """NotificationTransport that records sends and fails on demand."""

    def __init__(self, reject=(), explode=(), delay: float = 0.0):
        self.sent: List[tuple] = []
        self.reject = set(reject)
        self.explode = set(explode)
        self.delay = delay

    async def send(self, channel, professional_id, payload):
        if self.delay:
            await asyncio.sleep(self.delay)
        if professional_id in self.explode:
            raise ConnectionError("provider unreachable")
        self.sent.append((channel, professional_id, payload))
        return professional_id not in self.reject


def professional(pid, gps=NEAR_PARIS, status='available', category='plumbing', name=None):
    return ProfessionalProfile(
        id=pid,
        name=name or f"Pro {pid}",
        is_professional=True,
        category=category,
        status=status,
        gps_coordinates=gps,
    )


@pytest.fixture
def directory():
    return FakeDirectory([
        ProfessionalProfile(id='client-1', name='Alice Client'),
        ProfessionalProfile(id='client-2', name='Bob Client'),
    ])


@pytest.fixture
def ratings():
    return FakeRatings()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def matching_settings():
    return MatchingSettings()


@pytest.fixture
def dispatch_settings():
    return DispatchSettings(max_concurrency=5, timeout_seconds=5.0)


@pytest.fixture
def listing_settings():
    return ListingSettings(default_limit=20, max_limit=100)


@pytest.fixture
async def db(tmp_path):
    """Пустая SQLite база на каждый тест."""
    await init_database(f"sqlite+aiosqlite:///{tmp_path / 'market.db'}")
    yield TenderMarketDB()
    await close_database()


@pytest.fixture
def client():
    return Actor(id='client-1')


@pytest.fixture
def other_client():
    return Actor(id='client-2')


@pytest.fixture
def admin():
    return Actor(id='admin-1', is_admin=True)


@pytest.fixture
def tender_request():
    return {
        'client_id': 'client-1',
        'title': 'Fuite sous évier',
        'category': 'plumbing',
        'description': "L'évier de la cuisine fuit depuis ce matin",
        'location': '12 rue de Rivoli',
        'city': 'Paris',
        'district': '4e',
        'gps_coordinates': PARIS,
        'urgency': 'today',
        'max_budget': 150,
    }
