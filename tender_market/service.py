"""
Tender Market Service - главный модуль координации.

Объединяет Candidate Finder, Match Scorer, Notification Dispatcher и
lifecycle managers в единую точку входа для вызывающего слоя (HTTP, бот).
"""

import logging
from typing import Any, Dict, List, Optional

from database import close_database, init_database
from tender_market.bids import BidLifecycleManager
from tender_market.collaborators import NotificationTransport, ProfileDirectory, RatingAggregates
from tender_market.config import MarketSettings
from tender_market.database import TenderMarketDB, get_market_db
from tender_market.errors import AuthorizationError, ConflictError, NotFoundError
from tender_market.logger import auto_setup_logging
from tender_market.matching import CandidateFinder, MatchScorer
from tender_market.models import Actor, NotificationStatus
from tender_market.schemas import PageQuery, parse_request
from tender_market.tenders import TenderLifecycleManager
from tender_market.notifications import (
    CompositeTransport,
    LoggingTransport,
    NotificationDispatcher,
    TelegramPushTransport,
)
from tender_market.notifications.transports import ChatIdResolver

logger = logging.getLogger(__name__)


def build_transport(
    settings: MarketSettings,
    resolve_chat_id: Optional[ChatIdResolver] = None
) -> NotificationTransport:
    """
    Push over Telegram when a bot token and chat resolver are available;
    otherwise every channel goes to the logging transport.
    """
    fallback = LoggingTransport()
    if not settings.telegram_bot_token or resolve_chat_id is None:
        logger.warning("⚠️ TELEGRAM_BOT_TOKEN not set, notifications are only logged")
        return fallback

    return CompositeTransport({
        'push': TelegramPushTransport(settings.telegram_bot_token, resolve_chat_id),
        'sms': fallback,
    })


class TenderMarketService:
    """
    Главный сервис Tender Market.

    Workflow:
    1. Client creates a tender (persisted as open)
    2. Candidate Finder + Match Scorer pick nearby professionals in the background
    3. Notification Dispatcher records and sends one notification per professional
    4. Professionals bid, the client selects one bid, the tender moves on
    """

    def __init__(
        self,
        profiles: ProfileDirectory,
        ratings: RatingAggregates,
        transport: Optional[NotificationTransport] = None,
        settings: Optional[MarketSettings] = None,
        db: Optional[TenderMarketDB] = None,
        resolve_chat_id: Optional[ChatIdResolver] = None,
    ):
        """
        Args:
            profiles: Profile directory collaborator
            ratings: Rating aggregates collaborator
            transport: Outbound transport; built from settings when omitted
            settings: Environment settings (MarketSettings.from_env() by default)
            db: Persistence adapter (singleton by default)
            resolve_chat_id: professional_id → Telegram chat id, for push
        """
        self.settings = settings or MarketSettings.from_env()
        self.db = db or get_market_db()
        self.profiles = profiles
        self.transport = transport or build_transport(self.settings, resolve_chat_id)

        features = self.settings.features
        matching = features.matching

        self.scorer = MatchScorer(reachable_statuses=matching.reachable_statuses)
        self.finder = CandidateFinder(profiles, ratings, matching)
        self.dispatcher = NotificationDispatcher(
            self.db,
            self.transport,
            features.dispatch,
            reachable_statuses=matching.reachable_statuses,
        )
        self.tenders = TenderLifecycleManager(
            self.db,
            self.finder,
            self.scorer,
            self.dispatcher,
            profiles,
            matching,
            features.listing,
        )
        self.bids = BidLifecycleManager(self.db, profiles, ratings)
        self.listing = features.listing

    async def initialize(self, configure_logging: bool = False):
        """
        Инициализация базы данных.

        Args:
            configure_logging: also install root logging from LOG_LEVEL/LOG_FORMAT/LOG_FILE
        """
        if configure_logging:
            auto_setup_logging(self.settings.log_level, self.settings.log_format, self.settings.log_file)

        logger.info("🚀 Initializing Tender Market service...")
        await init_database(self.settings.database_url)
        logger.info("✅ Tender Market service ready")

    async def close(self):
        """Дождаться фоновых рассылок и закрыть ресурсы."""
        await self.tenders.drain()
        close = getattr(self.transport, 'close', None)
        if close is not None:
            await close()
        await close_database()
        logger.info("🛑 Tender Market service stopped")

    # ============================================
    # TENDERS
    # ============================================

    async def create_tender(self, actor: Actor, request) -> Dict[str, Any]:
        return await self.tenders.create_tender(actor, request)

    async def get_tender(self, tender_id: str) -> Dict[str, Any]:
        return await self.tenders.get_tender(tender_id)

    async def list_tenders(self, filters=None, page: int = 1, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.tenders.list_tenders(filters, page, limit)

    async def cancel_tender(self, actor: Actor, tender_id: str) -> Dict[str, Any]:
        return await self.tenders.cancel_tender(actor, tender_id)

    async def complete_tender(self, tender_id: str) -> Dict[str, Any]:
        return await self.tenders.complete_tender(tender_id)

    # ============================================
    # BIDS
    # ============================================

    async def submit_bid(self, actor: Actor, tender_id: str, request) -> Dict[str, Any]:
        return await self.bids.submit_bid(actor, tender_id, request)

    async def list_bids(self, tender_id: str, sort_by: str = 'price', direction: str = 'asc') -> List[Dict[str, Any]]:
        return await self.bids.list_bids(tender_id, sort_by, direction)

    async def select_bid(self, actor: Actor, tender_id: str, bid_id: str) -> Dict[str, Any]:
        return await self.bids.select_bid(actor, tender_id, bid_id)

    async def withdraw_bid(self, actor: Actor, bid_id: str) -> Dict[str, Any]:
        return await self.bids.withdraw_bid(actor, bid_id)

    # ============================================
    # NOTIFICATIONS
    # ============================================

    async def list_notifications(
        self,
        actor: Actor,
        page: int = 1,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Notifications of the calling professional, newest first."""
        if not actor.is_professional:
            raise AuthorizationError("Only professionals receive tender notifications")

        offset, limit = parse_request(PageQuery, {'page': page, 'limit': limit}).window(
            self.listing.default_limit, self.listing.max_limit
        )
        return await self.db.list_notifications(actor.id, offset=offset, limit=limit)

    async def mark_notification_read(self, actor: Actor, notification_id: str) -> Dict[str, Any]:
        notification = await self._get_notification(notification_id)
        if notification['professional_id'] != actor.id:
            raise AuthorizationError("Notification belongs to another professional")
        if notification['status'] == NotificationStatus.read.value:
            return notification

        if not await self.db.mark_notification_read(notification_id, actor.id):
            raise ConflictError(f"Notification in status '{notification['status']}' cannot be marked read")
        return await self.db.get_notification(notification_id)

    async def mark_notification_delivered(self, notification_id: str) -> Dict[str, Any]:
        """Provider delivery receipt: sent → delivered."""
        notification = await self._get_notification(notification_id)
        if notification['status'] in (NotificationStatus.delivered.value, NotificationStatus.read.value):
            return notification

        if not await self.db.mark_notification_delivered(notification_id):
            raise ConflictError(f"Notification in status '{notification['status']}' cannot be marked delivered")
        return await self.db.get_notification(notification_id)

    async def _get_notification(self, notification_id: str) -> Dict[str, Any]:
        notification = await self.db.get_notification(notification_id)
        if not notification:
            raise NotFoundError(f"Notification {notification_id} not found")
        return notification

    def get_stats(self) -> Dict[str, Any]:
        return {
            'matching': self.scorer.get_stats(),
            'dispatch': self.dispatcher.get_stats(),
        }
