"""
Persistence for Tender Market.

Example usage:
    from tender_market.database import get_market_db

    db = get_market_db()
    tender = await db.get_tender(tender_id)
"""

from .sqlalchemy_adapter import TenderMarketDB, get_market_db, serialize_for_json

__all__ = [
    'TenderMarketDB',
    'get_market_db',
    'serialize_for_json',
]
