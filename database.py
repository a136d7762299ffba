"""
ORM модели и engine для tender_market (PostgreSQL или SQLite).

Unified database layer for tenders, bids and notifications.
"""

import os
import logging
import uuid
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Boolean,
    DateTime, Text, JSON, ForeignKey, Index, UniqueConstraint, text
)
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)

# Base для всех моделей
Base = declarative_base()

# Глобальные переменные для engine и session factory
_engine = None
_async_session_factory = None


def utcnow() -> datetime:
    """Naive UTC timestamp (all columns are stored without tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================
# МОДЕЛИ БД
# ============================================

class Tender(Base):
    """Service request posted by a client."""
    __tablename__ = 'tenders'

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(64), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    category = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)

    location = Column(Text, nullable=False)
    city = Column(String(255), nullable=True)
    district = Column(String(255), nullable=True)
    gps_coordinates = Column(String(64), nullable=True)

    urgency = Column(String(20), nullable=False)  # today, this-week, flexible

    photos = Column(JSON, default=list)  # List[str]
    max_budget = Column(Integer, nullable=True)
    preferred_schedule = Column(Text, nullable=True)
    special_constraints = Column(Text, nullable=True)

    status = Column(String(20), default='open', nullable=False)  # open, in-progress, completed, cancelled

    selected_bid_id = Column(String(36), nullable=True)
    selected_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)

    # Relationships
    bids = relationship("TenderBid", back_populates="tender")
    notifications = relationship("TenderNotification", back_populates="tender")

    # Indexes
    __table_args__ = (
        Index('ix_tenders_status_created', 'status', 'created_at'),
        Index('ix_tenders_category_status', 'category', 'status'),
    )


class TenderBid(Base):
    """Priced offer submitted by a professional against a tender."""
    __tablename__ = 'tender_bids'

    id = Column(String(36), primary_key=True, default=new_id)
    tender_id = Column(String(36), ForeignKey('tenders.id'), nullable=False, index=True)
    professional_id = Column(String(64), nullable=False, index=True)

    price = Column(Integer, nullable=False)
    estimated_duration = Column(String(100), nullable=False)  # "1 jour", "3 jours"

    guarantee_period = Column(String(100), nullable=True)
    availability = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    photos = Column(JSON, default=list)

    has_guarantee = Column(Boolean, default=False, nullable=False)
    can_start_today = Column(Boolean, default=False, nullable=False)

    # Снимок на момент подачи, не пересчитывается
    professional_rating = Column(Float, nullable=True)
    professional_distance = Column(Float, nullable=True)  # km

    status = Column(String(20), default='pending', nullable=False)  # pending, selected, rejected, withdrawn

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    tender = relationship("Tender", back_populates="bids")

    # Indexes
    __table_args__ = (
        # Один активный бид на (tender, professional)
        Index(
            'uq_tender_bids_active_professional',
            'tender_id', 'professional_id',
            unique=True,
            postgresql_where=text("status != 'withdrawn'"),
            sqlite_where=text("status != 'withdrawn'"),
        ),
        Index('ix_tender_bids_tender_status', 'tender_id', 'status'),
    )


class TenderNotification(Base):
    """Notification sent to a matched professional."""
    __tablename__ = 'tender_notifications'

    id = Column(String(36), primary_key=True, default=new_id)
    tender_id = Column(String(36), ForeignKey('tenders.id'), nullable=False, index=True)
    professional_id = Column(String(64), nullable=False, index=True)

    notification_type = Column(String(10), nullable=False)  # push, sms, email
    status = Column(String(20), default='sent', nullable=False)  # sent, delivered, read, failed
    error = Column(Text, nullable=True)

    matching_score = Column(Integer, nullable=True)
    matching_reasons = Column(JSON, default=list)  # List[str]

    sent_at = Column(DateTime, default=utcnow, nullable=False)
    delivered_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    tender = relationship("Tender", back_populates="notifications")

    # Indexes
    __table_args__ = (
        UniqueConstraint('tender_id', 'professional_id', name='uq_notification_tender_professional'),
        Index('ix_tender_notifications_professional_sent', 'professional_id', 'sent_at'),
    )


# ============================================
# ENGINE И СЕССИИ
# ============================================

DEFAULT_SQLITE_URL = "sqlite+aiosqlite:///tender_market.db"

# Хостинги отдают голые postgres URL, async engine нужен драйвер asyncpg
_ASYNC_DRIVER_PREFIXES = (
    ('postgres://', 'postgresql+asyncpg://'),
    ('postgresql://', 'postgresql+asyncpg://'),
)


def get_database_url() -> str:
    """
    DATABASE_URL из окружения, приведённый к async драйверу.

    Без переменной используется локальный SQLite файл.
    """
    url = os.getenv('DATABASE_URL')
    if not url:
        logger.warning(f"DATABASE_URL не задан, используется {DEFAULT_SQLITE_URL}")
        return DEFAULT_SQLITE_URL
    return normalize_database_url(url)


def normalize_database_url(url: str) -> str:
    """Переписать postgres:// и postgresql:// на драйвер asyncpg."""
    for prefix, replacement in _ASYNC_DRIVER_PREFIXES:
        if url.startswith(prefix):
            return replacement + url[len(prefix):]
    return url


def _engine_options(url: str, echo: bool) -> Dict[str, Any]:
    if url.startswith('sqlite'):
        # Без пула: каждая сессия открывает файл, писатели ждут блокировку до 30с
        return {'echo': echo, 'poolclass': NullPool, 'connect_args': {'timeout': 30}}
    return {'echo': echo, 'pool_pre_ping': True, 'pool_size': 20, 'max_overflow': 40}


def _describe(url: str) -> str:
    return url.rsplit('@', 1)[-1] if '@' in url else url.split(':', 1)[0]


async def init_database(database_url: Optional[str] = None, echo: bool = False):
    """
    Создать engine, фабрику сессий и недостающие таблицы.

    Повторный вызов без ``close_database()`` ничего не делает.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        logger.info("Database уже инициализирована")
        return

    url = normalize_database_url(database_url) if database_url else get_database_url()
    logger.info(f"🗄 Подключение к database: {_describe(url)}")

    _engine = create_async_engine(url, **_engine_options(url, echo))
    _async_session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"✅ Database готова, таблиц: {len(Base.metadata.tables)}")


async def get_session() -> AsyncSession:
    """Новая сессия; engine поднимается лениво при первом обращении."""
    if _async_session_factory is None:
        await init_database()
    return _async_session_factory()


async def close_database():
    """Освободить пул соединений; после этого можно снова вызвать init_database."""
    global _engine, _async_session_factory

    engine, _engine, _async_session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
        logger.info("✅ Database connections закрыты")


# ============================================
# CONTEXT MANAGER
# ============================================

class DatabaseSession:
    """
    ``async with DatabaseSession() as session``: commit при успешном выходе,
    rollback при исключении, закрытие сессии в любом случае.
    """

    def __init__(self):
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> AsyncSession:
        self.session = await get_session()
        return self.session

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        session, self.session = self.session, None
        if session is None:
            return
        try:
            if exc_type is None:
                await session.commit()
            else:
                await session.rollback()
        finally:
            await session.close()


__all__ = [
    'Base',
    'Tender',
    'TenderBid',
    'TenderNotification',
    'utcnow',
    'new_id',
    'get_database_url',
    'normalize_database_url',
    'init_database',
    'get_session',
    'close_database',
    'DatabaseSession',
    'DEFAULT_SQLITE_URL',
]
