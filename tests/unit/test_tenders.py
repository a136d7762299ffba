"""
Unit тесты для TenderLifecycleManager.

Тестируем:
- Создание тендера: валидация, права, expires_at по срочности
- Фоновый матчинг и рассылка после создания
- Чтение и список тендеров (фильтры, пагинация)
- Переходы статусов: cancel, complete
"""

from datetime import timedelta

import pytest

from conftest import FAR_PARIS, MID_PARIS, NEAR_PARIS, RecordingTransport, professional
from tender_market.collaborators import AggregateRating
from tender_market.bids import BidLifecycleManager
from tender_market.config import ListingSettings, MatchingSettings
from tender_market.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from tender_market.matching import CandidateFinder, MatchScorer
from tender_market.notifications import NotificationDispatcher
from tender_market.models import Actor
from tender_market.tenders import TenderLifecycleManager


@pytest.fixture
def manager(db, directory, ratings, transport, dispatch_settings):
    return TenderLifecycleManager(
        db,
        CandidateFinder(directory, ratings, retry_delay=0),
        MatchScorer(),
        NotificationDispatcher(db, transport, dispatch_settings),
        directory,
        MatchingSettings(),
        ListingSettings(default_limit=2, max_limit=3),
    )


@pytest.mark.unit
class TestCreateTender:

    async def test_created_open(self, manager, client, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert tender['id']
        assert tender['status'] == 'open'
        assert tender['client_id'] == 'client-1'
        assert tender['photos'] == []
        assert tender['selected_bid_id'] is None

    @pytest.mark.parametrize("urgency,ttl", [
        ('today', timedelta(hours=24)),
        ('this-week', timedelta(days=7)),
    ])
    async def test_expiry_by_urgency(self, manager, client, tender_request, urgency, ttl):
        tender_request['urgency'] = urgency

        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert tender['expires_at'] - tender['created_at'] == ttl

    async def test_flexible_never_expires(self, manager, client, tender_request):
        tender_request['urgency'] = 'flexible'

        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert tender['expires_at'] is None

    async def test_gps_normalized(self, manager, client, tender_request):
        tender_request['gps_coordinates'] = " 48.8566 , 2.3522 "

        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert tender['gps_coordinates'] == "48.8566,2.3522"

    @pytest.mark.parametrize("field,value", [
        ('title', '  '),
        ('urgency', 'tomorrow'),
        ('gps_coordinates', '95,2.35'),
        ('max_budget', -1),
        ('photos', ['p'] * 11),
    ])
    async def test_invalid_request(self, manager, client, tender_request, field, value):
        tender_request[field] = value

        with pytest.raises(ValidationError) as exc_info:
            await manager.create_tender(client, tender_request)

        assert exc_info.value.field.startswith(field)

    async def test_missing_field(self, manager, client, tender_request):
        del tender_request['category']

        with pytest.raises(ValidationError):
            await manager.create_tender(client, tender_request)

    async def test_cannot_create_for_someone_else(self, manager, other_client, tender_request):
        with pytest.raises(AuthorizationError):
            await manager.create_tender(other_client, tender_request)

    async def test_admin_can_create_for_client(self, manager, admin, tender_request):
        tender = await manager.create_tender(admin, tender_request)
        await manager.drain()

        assert tender['client_id'] == 'client-1'


@pytest.mark.unit
class TestMatchingOnCreate:

    async def test_nearby_professionals_notified(self, manager, db, directory, ratings, transport, client, tender_request):
        directory.add(professional('near', NEAR_PARIS, status='available'))
        directory.add(professional('mid', MID_PARIS, status='available'))
        directory.add(professional('far', FAR_PARIS, status='available'))
        ratings.ratings['near'] = AggregateRating(avg_score=90, total_ratings=10)

        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert sorted(pid for _, pid, _ in transport.sent) == ['mid', 'near']
        near = (await db.list_notifications('near'))[0]
        assert near['tender_id'] == tender['id']
        assert near['notification_type'] == 'push'
        assert near['matching_score'] > (await db.list_notifications('mid'))[0]['matching_score']

    async def test_urgent_skips_unavailable(self, manager, directory, transport, client, tender_request):
        directory.add(professional('busy', NEAR_PARIS, status='busy'))

        await manager.create_tender(client, tender_request)
        await manager.drain()

        assert transport.sent == []

    async def test_non_urgent_reaches_offline_by_sms(self, manager, directory, transport, client, tender_request):
        directory.add(professional('sleepy', NEAR_PARIS, status='offline'))
        tender_request['urgency'] = 'flexible'

        await manager.create_tender(client, tender_request)
        await manager.drain()

        assert [(channel, pid) for channel, pid, _ in transport.sent] == [('sms', 'sleepy')]

    async def test_no_gps_creates_tender_without_notifications(self, manager, directory, transport, client, tender_request):
        directory.add(professional('near', NEAR_PARIS))
        tender_request['gps_coordinates'] = None

        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert tender['status'] == 'open'
        assert transport.sent == []

    async def test_matching_failure_does_not_fail_creation(self, manager, db, directory, client, tender_request):
        directory.fail_with = RuntimeError("directory down")

        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert (await db.get_tender(tender['id']))['status'] == 'open'

    async def test_transport_failure_does_not_fail_creation(self, db, directory, ratings, client, tender_request):
        directory.add(professional('near', NEAR_PARIS))
        manager = TenderLifecycleManager(
            db,
            CandidateFinder(directory, ratings),
            MatchScorer(),
            NotificationDispatcher(db, RecordingTransport(explode={'near'})),
            directory,
        )

        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert tender['status'] == 'open'
        assert (await db.list_notifications('near'))[0]['status'] == 'failed'

    async def test_top_n_cut(self, db, directory, ratings, transport, client, tender_request):
        for i in range(5):
            directory.add(professional(f"p{i}", f"48.{8570 + i * 10},2.3522"))
        manager = TenderLifecycleManager(
            db,
            CandidateFinder(directory, ratings),
            MatchScorer(),
            NotificationDispatcher(db, transport),
            directory,
            MatchingSettings(max_candidates=2),
        )

        await manager.create_tender(client, tender_request)
        await manager.drain()

        assert sorted(pid for _, pid, _ in transport.sent) == ['p0', 'p1']


@pytest.mark.unit
class TestReadTenders:

    async def test_get_tender_with_client_and_bids(self, manager, client, tender_request):
        created = await manager.create_tender(client, tender_request)
        await manager.drain()

        tender = await manager.get_tender(created['id'])

        assert tender['client_name'] == 'Alice Client'
        assert tender['bids_count'] == 0

    async def test_get_tender_survives_profile_failure(self, manager, directory, client, tender_request):
        created = await manager.create_tender(client, tender_request)
        await manager.drain()
        directory.fail_with = RuntimeError("profiles down")

        tender = await manager.get_tender(created['id'])

        assert tender['client_name'] is None

    async def test_get_unknown(self, manager):
        with pytest.raises(NotFoundError):
            await manager.get_tender('missing')

    async def test_list_defaults_to_open(self, manager, client, tender_request):
        first = await manager.create_tender(client, tender_request)
        second = await manager.create_tender(client, tender_request)
        await manager.drain()
        await manager.cancel_tender(client, first['id'])

        tenders = await manager.list_tenders()

        assert [t['id'] for t in tenders] == [second['id']]
        assert tenders[0]['bids_count'] == 0

    async def test_list_by_status(self, manager, client, tender_request):
        first = await manager.create_tender(client, tender_request)
        await manager.drain()
        await manager.cancel_tender(client, first['id'])

        tenders = await manager.list_tenders({'status': 'cancelled'})

        assert [t['id'] for t in tenders] == [first['id']]

    async def test_list_filters(self, manager, client, tender_request):
        await manager.create_tender(client, tender_request)
        tender_request['category'] = 'electricity'
        electric = await manager.create_tender(client, tender_request)
        await manager.drain()

        tenders = await manager.list_tenders({'category': 'electricity', 'city': 'Paris'})

        assert [t['id'] for t in tenders] == [electric['id']]

    async def test_invalid_filter(self, manager):
        with pytest.raises(ValidationError):
            await manager.list_tenders({'status': 'archived'})

    async def test_pagination_newest_first(self, manager, client, tender_request):
        created = [await manager.create_tender(client, tender_request) for _ in range(4)]
        await manager.drain()
        newest_first = [t['id'] for t in reversed(created)]

        page1 = await manager.list_tenders(page=1)
        page2 = await manager.list_tenders(page=2)
        capped = await manager.list_tenders(limit=500)

        assert [t['id'] for t in page1] == newest_first[:2]
        assert [t['id'] for t in page2] == newest_first[2:]
        assert len(capped) == 3

    @pytest.mark.parametrize("page,limit", [('two', None), (1, 'many'), (1.5, None)])
    async def test_non_numeric_paging_rejected(self, manager, page, limit):
        with pytest.raises(ValidationError) as exc_info:
            await manager.list_tenders(page=page, limit=limit)

        assert exc_info.value.field in ('page', 'limit')

    async def test_numeric_strings_accepted(self, manager, client, tender_request):
        await manager.create_tender(client, tender_request)
        await manager.drain()

        assert len(await manager.list_tenders(page='1', limit='2')) == 1


@pytest.mark.unit
class TestTransitions:

    async def test_owner_cancels(self, manager, client, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        cancelled = await manager.cancel_tender(client, tender['id'])

        assert cancelled['status'] == 'cancelled'

    async def test_admin_cancels(self, manager, client, admin, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        assert (await manager.cancel_tender(admin, tender['id']))['status'] == 'cancelled'

    async def test_stranger_cannot_cancel(self, manager, client, other_client, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        with pytest.raises(AuthorizationError):
            await manager.cancel_tender(other_client, tender['id'])

    async def test_cancel_terminal_conflicts(self, manager, client, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()
        await manager.cancel_tender(client, tender['id'])

        with pytest.raises(ConflictError):
            await manager.cancel_tender(client, tender['id'])

    async def test_cancel_unknown(self, manager, client):
        with pytest.raises(NotFoundError):
            await manager.cancel_tender(client, 'missing')

    async def test_complete_requires_in_progress(self, manager, db, client, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()

        with pytest.raises(ConflictError):
            await manager.complete_tender(tender['id'])

        await db.transition_tender(tender['id'], ['open'], 'in-progress')
        completed = await manager.complete_tender(tender['id'])

        assert completed['status'] == 'completed'
        with pytest.raises(ConflictError):
            await manager.cancel_tender(client, tender['id'])


@pytest.mark.unit
class TestCancelKeepsBids:

    @pytest.fixture
    def bids(self, db, directory, ratings):
        for pid, gps in (('p1', NEAR_PARIS), ('p2', MID_PARIS), ('p3', FAR_PARIS)):
            directory.add(professional(pid, gps))
        return BidLifecycleManager(db, directory, ratings)

    async def _bid(self, bids, tender_id, pid, price):
        return await bids.submit_bid(Actor(id=pid, is_professional=True), tender_id, {
            'professional_id': pid, 'price': price, 'estimated_duration': '2 jours',
        })

    async def test_cancel_in_progress(self, manager, bids, client, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()
        chosen = await self._bid(bids, tender['id'], 'p1', 150)
        await self._bid(bids, tender['id'], 'p2', 90)
        withdrawn = await self._bid(bids, tender['id'], 'p3', 120)
        await bids.withdraw_bid(Actor(id='p3', is_professional=True), withdrawn['id'])
        await bids.select_bid(client, tender['id'], chosen['id'])
        before = {b['professional_id']: b['status'] for b in await bids.list_bids(tender['id'])}

        cancelled = await manager.cancel_tender(client, tender['id'])

        assert cancelled['status'] == 'cancelled'
        assert cancelled['selected_bid_id'] == chosen['id']
        after = {b['professional_id']: b['status'] for b in await bids.list_bids(tender['id'])}
        assert after == before == {'p1': 'selected', 'p2': 'rejected', 'p3': 'withdrawn'}

    async def test_cancel_open_leaves_bids_pending(self, manager, bids, client, tender_request):
        tender = await manager.create_tender(client, tender_request)
        await manager.drain()
        await self._bid(bids, tender['id'], 'p1', 150)
        await self._bid(bids, tender['id'], 'p2', 90)

        await manager.cancel_tender(client, tender['id'])

        assert [b['status'] for b in await bids.list_bids(tender['id'])] == ['pending', 'pending']
