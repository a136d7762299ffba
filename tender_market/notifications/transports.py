"""
Outbound notification transports.

Each transport implements ``send(channel, professional_id, payload) -> bool``.
Delivery is fire-and-forget: False means the provider did not accept the
message, and the dispatcher records the notification as failed.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from tender_market.collaborators import NotificationTransport
from tender_market.models import NotificationChannel

logger = logging.getLogger(__name__)

ChatIdResolver = Callable[[str], Awaitable[Optional[int]]]


class LoggingTransport:
    """Development transport: logs the message and reports success."""

    def __init__(self):
        self.stats = {'notifications_logged': 0}

    async def send(self, channel: str, professional_id: str, payload: Dict[str, Any]) -> bool:
        self.stats['notifications_logged'] += 1
        logger.info(f"📨 [{channel}] → {professional_id}: tender {payload.get('tender_id')}")
        return True

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        pass


class TelegramPushTransport:
    """
    Push channel over Telegram.

    Особенности:
    - chat id resolved per professional by an injected coroutine
    - blocked bot / bad chat id reported as failure, not raised
    """

    def __init__(self, bot_token: str, resolve_chat_id: ChatIdResolver, bot: Optional[Bot] = None):
        """
        Args:
            bot_token: Telegram Bot Token
            resolve_chat_id: professional_id → Telegram chat id (None if unknown)
            bot: Pre-built aiogram Bot (tests, shared sessions)
        """
        self.bot = bot or Bot(token=bot_token)
        self.resolve_chat_id = resolve_chat_id
        self.stats = {
            'notifications_sent': 0,
            'notifications_failed': 0,
            'users_blocked_bot': 0,
        }

    async def send(self, channel: str, professional_id: str, payload: Dict[str, Any]) -> bool:
        if channel != NotificationChannel.push.value:
            logger.warning(f"⚠️ Telegram transport cannot deliver '{channel}' notifications")
            return False

        chat_id = await self.resolve_chat_id(professional_id)
        if chat_id is None:
            self.stats['notifications_failed'] += 1
            logger.warning(f"⚠️ No Telegram chat for professional {professional_id}")
            return False

        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=payload['message'],
                parse_mode='HTML',
                disable_web_page_preview=True
            )
            self.stats['notifications_sent'] += 1
            return True

        except TelegramForbiddenError:
            # Пользователь заблокировал бота
            self.stats['users_blocked_bot'] += 1
            logger.warning(f"⛔ Professional {professional_id} blocked the bot")
            return False

        except TelegramBadRequest as e:
            self.stats['notifications_failed'] += 1
            logger.error(f"❌ Telegram rejected message for {professional_id}: {e}")
            return False

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        """Закрытие сессии бота."""
        await self.bot.session.close()


class CompositeTransport:
    """Routes each channel to its own transport."""

    def __init__(self, routes: Dict[str, NotificationTransport]):
        self.routes = {NotificationChannel(channel).value: transport for channel, transport in routes.items()}

    async def send(self, channel: str, professional_id: str, payload: Dict[str, Any]) -> bool:
        transport = self.routes.get(channel)
        if transport is None:
            logger.warning(f"⚠️ No transport configured for channel '{channel}'")
            return False
        return await transport.send(channel, professional_id, payload)

    async def close(self):
        # one transport may serve several channels
        unique = {id(transport): transport for transport in self.routes.values()}
        for transport in unique.values():
            close = getattr(transport, 'close', None)
            if close is not None:
                await close()
