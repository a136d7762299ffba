"""
Notification dispatch for matched professionals.

- dispatcher.py - one create-and-send per candidate, failure-isolated
- transports.py - outbound delivery (logging, Telegram push, channel routing)
"""

from .dispatcher import NotificationDispatcher, choose_channel
from .transports import LoggingTransport, TelegramPushTransport, CompositeTransport

__all__ = [
    'NotificationDispatcher',
    'choose_channel',
    'LoggingTransport',
    'TelegramPushTransport',
    'CompositeTransport',
]
