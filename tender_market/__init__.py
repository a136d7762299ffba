"""
Tender Market - geo-aware matching and lifecycle engine for service tenders.

Компоненты:
- matching/       - Candidate Finder + Match Scorer
- notifications/  - Notification Dispatcher и транспорты
- database/       - SQLAlchemy adapter
- tenders.py      - Tender Lifecycle Manager
- bids.py         - Bid Lifecycle Manager
- service.py      - TenderMarketService (точка входа)
"""

__version__ = '1.0.0'
