"""
SQLAlchemy adapter для tender_market/database.

Every read/write of tenders, bids and notifications goes through here.
State transitions are conditional UPDATEs so concurrent writers on the same
tender serialize on the row (PostgreSQL) or file lock (SQLite).
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update, func, and_
from sqlalchemy.exc import IntegrityError

from database import (
    Tender as TenderModel,
    TenderBid as TenderBidModel,
    TenderNotification as TenderNotificationModel,
    DatabaseSession,
    utcnow,
)
from tender_market.errors import ConflictError
from tender_market.models import BidStatus, NotificationStatus, TenderStatus

logger = logging.getLogger(__name__)


def serialize_for_json(obj: Any) -> Any:
    """Рекурсивная сериализация для JSON."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {k: serialize_for_json(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [serialize_for_json(item) for item in obj]
    return obj


def _row_to_dict(row) -> Dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}


class TenderMarketDB:
    """SQLAlchemy adapter for the tender/bid engine."""

    # ============================================
    # TENDERS
    # ============================================

    async def create_tender(self, data: Dict[str, Any]) -> Dict[str, Any]:
        async with DatabaseSession() as session:
            tender = TenderModel(**data)
            session.add(tender)
            await session.flush()
            return _row_to_dict(tender)

    async def get_tender(self, tender_id: str) -> Optional[Dict[str, Any]]:
        async with DatabaseSession() as session:
            tender = await session.get(TenderModel, tender_id)
            return _row_to_dict(tender) if tender else None

    async def count_bids(self, tender_id: str) -> int:
        async with DatabaseSession() as session:
            result = await session.execute(
                select(func.count(TenderBidModel.id)).where(TenderBidModel.tender_id == tender_id)
            )
            return result.scalar_one()

    async def list_tenders(
        self,
        filters: Dict[str, Any],
        offset: int = 0,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        """
        Tenders matching equality ``filters``, newest first, with bids_count.

        Args:
            filters: column → value (category, status, urgency, city, district, client_id)
            offset: rows to skip
            limit: max rows
        """
        bids_count = (
            select(TenderBidModel.tender_id, func.count(TenderBidModel.id).label('bids_count'))
            .group_by(TenderBidModel.tender_id)
            .subquery()
        )

        conditions = [getattr(TenderModel, key) == value for key, value in filters.items()]

        query = (
            select(TenderModel, func.coalesce(bids_count.c.bids_count, 0))
            .outerjoin(bids_count, bids_count.c.tender_id == TenderModel.id)
            .where(and_(*conditions))
            .order_by(TenderModel.created_at.desc(), TenderModel.id)
            .offset(offset)
            .limit(limit)
        )

        async with DatabaseSession() as session:
            result = await session.execute(query)
            tenders = []
            for tender, count in result.all():
                data = _row_to_dict(tender)
                data['bids_count'] = count
                tenders.append(data)
            return tenders

    async def transition_tender(
        self,
        tender_id: str,
        from_statuses: Sequence[str],
        to_status: str
    ) -> bool:
        """Move a tender to ``to_status`` only if it is currently in ``from_statuses``."""
        async with DatabaseSession() as session:
            result = await session.execute(
                update(TenderModel)
                .where(TenderModel.id == tender_id, TenderModel.status.in_(list(from_statuses)))
                .values(status=to_status, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ============================================
    # BIDS
    # ============================================

    async def get_active_bid(self, tender_id: str, professional_id: str) -> Optional[Dict[str, Any]]:
        """Non-withdrawn bid of a professional on a tender."""
        async with DatabaseSession() as session:
            result = await session.execute(
                select(TenderBidModel).where(
                    TenderBidModel.tender_id == tender_id,
                    TenderBidModel.professional_id == professional_id,
                    TenderBidModel.status != BidStatus.withdrawn.value,
                )
            )
            bid = result.scalars().first()
            return _row_to_dict(bid) if bid else None

    async def create_bid(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a pending bid.

        Raises:
            ConflictError: the professional already holds an active bid
                (unique index) or the tender stopped being open
        """
        try:
            async with DatabaseSession() as session:
                bid = TenderBidModel(**data)
                session.add(bid)
                await session.flush()

                # Проверка после INSERT: мы уже держим блокировку на запись
                result = await session.execute(
                    select(TenderModel.status)
                    .where(TenderModel.id == bid.tender_id)
                    .with_for_update()
                )
                if result.scalar_one_or_none() != TenderStatus.open.value:
                    raise ConflictError("Tender is not open for bidding")

                return _row_to_dict(bid)
        except IntegrityError:
            logger.warning(
                f"⚠️ Duplicate bid rejected: tender={data.get('tender_id')} "
                f"professional={data.get('professional_id')}"
            )
            raise ConflictError("You have already submitted a bid for this tender")

    async def get_bid(self, bid_id: str) -> Optional[Dict[str, Any]]:
        async with DatabaseSession() as session:
            bid = await session.get(TenderBidModel, bid_id)
            return _row_to_dict(bid) if bid else None

    async def list_bids(self, tender_id: str) -> List[Dict[str, Any]]:
        async with DatabaseSession() as session:
            result = await session.execute(
                select(TenderBidModel)
                .where(TenderBidModel.tender_id == tender_id)
                .order_by(TenderBidModel.created_at, TenderBidModel.id)
            )
            return [_row_to_dict(bid) for bid in result.scalars().all()]

    async def select_bid(self, tender_id: str, bid_id: str) -> Dict[str, Any]:
        """
        Select-one/reject-rest in a single transaction.

        Returns:
            {'tender': dict, 'selected_bid': dict, 'rejected_count': int}

        Raises:
            ConflictError: tender no longer open or bid no longer pending;
                nothing is written in that case
        """
        now = utcnow()
        async with DatabaseSession() as session:
            result = await session.execute(
                update(TenderModel)
                .where(TenderModel.id == tender_id, TenderModel.status == TenderStatus.open.value)
                .values(
                    status=TenderStatus.in_progress.value,
                    selected_bid_id=bid_id,
                    selected_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("Tender is not open")

            result = await session.execute(
                update(TenderBidModel)
                .where(
                    TenderBidModel.id == bid_id,
                    TenderBidModel.tender_id == tender_id,
                    TenderBidModel.status == BidStatus.pending.value,
                )
                .values(status=BidStatus.selected.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("Bid is not pending")

            rejected = await session.execute(
                update(TenderBidModel)
                .where(
                    TenderBidModel.tender_id == tender_id,
                    TenderBidModel.id != bid_id,
                    TenderBidModel.status == BidStatus.pending.value,
                )
                .values(status=BidStatus.rejected.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )

            tender = await session.get(TenderModel, tender_id, populate_existing=True)
            selected = await session.get(TenderBidModel, bid_id, populate_existing=True)

            return {
                'tender': _row_to_dict(tender),
                'selected_bid': _row_to_dict(selected),
                'rejected_count': rejected.rowcount,
            }

    async def withdraw_bid(self, bid_id: str, professional_id: str) -> bool:
        async with DatabaseSession() as session:
            result = await session.execute(
                update(TenderBidModel)
                .where(
                    TenderBidModel.id == bid_id,
                    TenderBidModel.professional_id == professional_id,
                    TenderBidModel.status == BidStatus.pending.value,
                )
                .values(status=BidStatus.withdrawn.value, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ============================================
    # NOTIFICATIONS
    # ============================================

    async def create_notification(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist a notification with status 'sent'.

        Raises:
            ConflictError: this professional was already notified for the tender
        """
        now = utcnow()
        try:
            async with DatabaseSession() as session:
                notification = TenderNotificationModel(
                    status=NotificationStatus.sent.value,
                    sent_at=now,
                    created_at=now,
                    **data
                )
                session.add(notification)
                await session.flush()
                return _row_to_dict(notification)
        except IntegrityError:
            raise ConflictError(
                f"Professional {data.get('professional_id')} already notified "
                f"for tender {data.get('tender_id')}"
            )

    async def mark_notification_failed(self, notification_id: str, error: str) -> None:
        async with DatabaseSession() as session:
            await session.execute(
                update(TenderNotificationModel)
                .where(TenderNotificationModel.id == notification_id)
                .values(status=NotificationStatus.failed.value, error=error[:1000])
                .execution_options(synchronize_session=False)
            )

    async def mark_notification_delivered(self, notification_id: str) -> bool:
        async with DatabaseSession() as session:
            result = await session.execute(
                update(TenderNotificationModel)
                .where(
                    TenderNotificationModel.id == notification_id,
                    TenderNotificationModel.status == NotificationStatus.sent.value,
                )
                .values(status=NotificationStatus.delivered.value, delivered_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def mark_notification_read(self, notification_id: str, professional_id: str) -> bool:
        async with DatabaseSession() as session:
            result = await session.execute(
                update(TenderNotificationModel)
                .where(
                    TenderNotificationModel.id == notification_id,
                    TenderNotificationModel.professional_id == professional_id,
                    TenderNotificationModel.status.in_([
                        NotificationStatus.sent.value,
                        NotificationStatus.delivered.value,
                    ]),
                )
                .values(status=NotificationStatus.read.value, read_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def get_notification(self, notification_id: str) -> Optional[Dict[str, Any]]:
        async with DatabaseSession() as session:
            notification = await session.get(TenderNotificationModel, notification_id)
            return _row_to_dict(notification) if notification else None

    async def list_notifications(
        self,
        professional_id: str,
        offset: int = 0,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        """Notifications of a professional, newest first, each with its tender."""
        async with DatabaseSession() as session:
            result = await session.execute(
                select(TenderNotificationModel, TenderModel)
                .outerjoin(TenderModel, TenderModel.id == TenderNotificationModel.tender_id)
                .where(TenderNotificationModel.professional_id == professional_id)
                .order_by(TenderNotificationModel.sent_at.desc(), TenderNotificationModel.id)
                .offset(offset)
                .limit(limit)
            )
            notifications = []
            for notification, tender in result.all():
                data = _row_to_dict(notification)
                data['tender'] = _row_to_dict(tender) if tender else None
                notifications.append(data)
            return notifications


# Singleton instance
_market_db_instance: Optional[TenderMarketDB] = None


def get_market_db() -> TenderMarketDB:
    """Получение singleton instance market database."""
    global _market_db_instance

    if _market_db_instance is None:
        _market_db_instance = TenderMarketDB()

    return _market_db_instance


__all__ = ['TenderMarketDB', 'get_market_db', 'serialize_for_json']
