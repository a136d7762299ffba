"""
Notification Dispatcher для матчинга тендеров.

One dispatch run per tender creation: every candidate gets at most one
create-and-send attempt. Sends run concurrently behind a semaphore and are
failure-isolated; the whole pass is bounded by a single timeout.
"""

import asyncio
import html
import logging
from typing import Any, Dict, List, Optional, Sequence

from tender_market.collaborators import NotificationTransport
from tender_market.config import DispatchSettings
from tender_market.database import TenderMarketDB, serialize_for_json
from tender_market.errors import ConflictError
from tender_market.logger import LoggerAdapter
from tender_market.models import MatchCandidate, NotificationChannel, NotificationResult

logger = logging.getLogger(__name__)


def choose_channel(status: str, reachable_statuses: Sequence[str] = ('available', 'online')) -> str:
    """Push when the professional is reachable now, SMS otherwise."""
    if status in reachable_statuses:
        return NotificationChannel.push.value
    return NotificationChannel.sms.value


def format_tender_message(tender: Dict[str, Any], candidate: MatchCandidate) -> str:
    """
    Форматирование сообщения о тендере.

    Args:
        tender: Tender record
        candidate: Scored candidate

    Returns:
        HTML message text
    """
    score = candidate.matching_score

    if score >= 80:
        score_emoji = "🔥"
    elif score >= 60:
        score_emoji = "✨"
    else:
        score_emoji = "📌"

    budget = tender.get('max_budget')
    budget_str = f"{budget:,}".replace(',', ' ') if budget else "Not specified"

    title = tender.get('title') or 'Untitled'
    if len(title) > 200:
        title = title[:197] + '...'

    place = ', '.join(part for part in (tender.get('location'), tender.get('city')) if part)
    reasons = ', '.join(candidate.match_reasons) if candidate.match_reasons else '-'

    # Клиентский текст уходит в Telegram с parse_mode=HTML
    title, category, place, urgency, reasons = (
        html.escape(str(value))
        for value in (title, tender.get('category'), place or 'Not specified', tender.get('urgency'), reasons)
    )

    message = f"""
{score_emoji} <b>New request near you!</b>

<b>{title}</b>

<b>📊 Match:</b> {score}/100
<b>🛠 Category:</b> {category}
<b>📍 Location:</b> {place}
<b>⏱ Urgency:</b> {urgency}
<b>💰 Budget:</b> {budget_str}

<b>🔑 Why you:</b> {reasons}
"""
    return message.strip()


class NotificationDispatcher:
    """
    Sends one notification per matched professional for a tender.

    Workflow per candidate:
    1. channel = choose_channel(status)
    2. persist notification (status=sent); on failure nothing is sent
    3. transport.send(); on failure the row is marked failed, no retry
    """

    def __init__(
        self,
        db: TenderMarketDB,
        transport: NotificationTransport,
        settings: Optional[DispatchSettings] = None,
        reachable_statuses: Sequence[str] = ('available', 'online'),
    ):
        self.db = db
        self.transport = transport
        self.settings = settings or DispatchSettings()
        self.reachable_statuses = tuple(reachable_statuses)

        self.stats = {
            'notifications_sent': 0,
            'notifications_failed': 0,
            'duplicates_skipped': 0,
            'timeouts': 0,
        }

    async def dispatch(
        self,
        tender: Dict[str, Any],
        candidates: Sequence[MatchCandidate]
    ) -> List[NotificationResult]:
        """
        Notify ``candidates`` about ``tender``.

        Never raises for per-candidate failures. Candidates not reached before
        the pass timeout are dropped from the results.
        """
        log = LoggerAdapter(logger, {'tender_id': tender['id']})

        queue = []
        seen = set()
        for candidate in sorted(candidates, key=lambda c: -c.matching_score):
            if candidate.professional_id in seen:
                self.stats['duplicates_skipped'] += 1
                continue
            seen.add(candidate.professional_id)
            queue.append(candidate)

        if not queue:
            log.info("ℹ️ No candidates to notify")
            return []

        log.info(f"📤 Dispatching {len(queue)} notifications...")

        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrency))

        async def run_one(candidate: MatchCandidate) -> NotificationResult:
            async with semaphore:
                return await self._notify_one(tender, candidate, log)

        tasks = [asyncio.create_task(run_one(candidate)) for candidate in queue]
        done, pending = await asyncio.wait(tasks, timeout=self.settings.timeout_seconds)

        if pending:
            self.stats['timeouts'] += len(pending)
            log.warning(
                f"⏱ Dispatch timeout after {self.settings.timeout_seconds}s: "
                f"{len(pending)} candidates not notified"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        results = []
        for task in tasks:
            if task not in done or task.cancelled():
                continue
            if task.exception() is not None:
                log.error(f"❌ Notification task crashed: {task.exception()}")
                continue
            results.append(task.result())

        sent = sum(1 for r in results if r.success)
        log.info(f"✅ Dispatch finished: sent {sent}, failed {len(results) - sent}")
        return results

    async def _notify_one(
        self,
        tender: Dict[str, Any],
        candidate: MatchCandidate,
        log: LoggerAdapter
    ) -> NotificationResult:
        log = log.bind(professional_id=candidate.professional_id)
        channel = choose_channel(candidate.status, self.reachable_statuses)
        result = NotificationResult(
            professional_id=candidate.professional_id,
            channel=channel,
            matching_score=candidate.matching_score,
            reasons=list(candidate.match_reasons),
            success=False,
        )

        try:
            notification = await self.db.create_notification({
                'tender_id': tender['id'],
                'professional_id': candidate.professional_id,
                'notification_type': channel,
                'matching_score': candidate.matching_score,
                'matching_reasons': list(candidate.match_reasons),
            })
        except ConflictError as e:
            self.stats['duplicates_skipped'] += 1
            result.error = e.message
            log.info(f"⏭️ {e.message}")
            return result
        except Exception as e:
            self.stats['notifications_failed'] += 1
            result.error = f"persist failed: {e}"
            log.error(f"❌ Could not record notification for {candidate.professional_id}: {e}")
            return result

        result.notification_id = notification['id']

        try:
            delivered = await self.transport.send(
                channel,
                candidate.professional_id,
                self._build_payload(tender, candidate, notification),
            )
            error = None if delivered else 'transport rejected notification'
        except asyncio.CancelledError:
            await self._mark_failed(notification['id'], 'dispatch timeout', log)
            raise
        except Exception as e:
            delivered = False
            error = f"send failed: {e}"

        if delivered:
            self.stats['notifications_sent'] += 1
            result.success = True
            log.info(f"✅ [{channel}] notified {candidate.professional_id} (score {candidate.matching_score})")
        else:
            self.stats['notifications_failed'] += 1
            result.error = error
            await self._mark_failed(notification['id'], error, log)

        return result

    async def _mark_failed(self, notification_id: str, error: str, log: LoggerAdapter) -> None:
        try:
            await self.db.mark_notification_failed(notification_id, error)
        except Exception as e:
            log.error(f"❌ Could not mark notification {notification_id} failed: {e}")
        else:
            log.warning(f"⚠️ Notification {notification_id} failed: {error}")

    def _build_payload(
        self,
        tender: Dict[str, Any],
        candidate: MatchCandidate,
        notification: Dict[str, Any]
    ) -> Dict[str, Any]:
        return serialize_for_json({
            'notification_id': notification['id'],
            'tender_id': tender['id'],
            'title': tender.get('title'),
            'category': tender.get('category'),
            'location': tender.get('location'),
            'city': tender.get('city'),
            'urgency': tender.get('urgency'),
            'max_budget': tender.get('max_budget'),
            'expires_at': tender.get('expires_at'),
            'matching_score': candidate.matching_score,
            'match_reasons': list(candidate.match_reasons),
            'message': format_tender_message(tender, candidate),
        })

    def get_stats(self) -> Dict[str, Any]:
        """Получение статистики уведомлений."""
        return self.stats.copy()
