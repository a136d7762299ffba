"""
Повторные попытки с экспоненциальной задержкой.

Применяются только к чтениям из каталога профессионалов и агрегатов
рейтингов. Отправка уведомлений никогда не повторяется.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Сетевые сбои коллабораторов, которые имеет смысл повторить
TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    asyncio.TimeoutError,
    ConnectionError,
    TimeoutError,
    OSError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to call and how long to wait in between.

    With initial_delay=0.5 and backoff_factor=2 the pauses before the
    2nd, 3rd and 4th attempts are 0.5s, 1s and 2s.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    exceptions: Tuple[Type[BaseException], ...] = (Exception,)

    def pauses(self) -> Iterator[float]:
        """Задержки перед каждой повторной попыткой."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield delay
            delay *= self.backoff_factor

    async def run(
        self,
        func: Callable[[], Awaitable[T]],
        name: str = 'call'
    ) -> T:
        if self.max_attempts < 1:
            raise ValueError(f"{name}: max_attempts must be >= 1")

        attempt = 1
        for pause in self.pauses():
            try:
                return await func()
            except self.exceptions as e:
                logger.warning(
                    f"⚠️ {name} attempt {attempt}/{self.max_attempts} failed: {e}. "
                    f"Retrying in {pause:.1f}s..."
                )
            await asyncio.sleep(pause)
            attempt += 1

        try:
            return await func()
        except self.exceptions as e:
            if self.max_attempts > 1:
                logger.error(f"❌ {name} failed after {self.max_attempts} attempts: {e}")
            raise
