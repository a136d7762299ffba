"""
Логирование tender_market.

Две формы вывода: JSON-строка на запись (для сборщиков логов) и
однострочный текст для локальной разработки. Контекст тендера или
профессионала передаётся через ``extra`` и попадает в поле "extra".
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

# Атрибуты, которые LogRecord создаёт сам; всё остальное считается контекстом
_RECORD_BUILTINS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

# Шумные библиотеки и уровень, ниже которого их не пишем
QUIET_LOGGERS = {
    'aiogram': logging.WARNING,
    'aiosqlite': logging.WARNING,
    'asyncio': logging.WARNING,
    'sqlalchemy.engine': logging.WARNING,
    'alembic': logging.INFO,
}


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Поля, добавленные через ``extra`` (tender_id, professional_id, ...)."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_BUILTINS and not key.startswith('_')
    }


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: timestamp (UTC, trailing "Z"), level, logger, message, then
    "extra" when the record carries context, "exception" when it carries
    a traceback, and "source" with file/line/function.
    """

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        moment = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f"{int(record.msecs):03d}Z"

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        context = record_context(record)
        if context:
            entry['extra'] = context
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        if record.stack_info:
            entry['stack_info'] = self.formatStack(record.stack_info)

        entry['source'] = {
            'file': record.pathname,
            'line': record.lineno,
            'function': record.funcName,
        }
        return json.dumps(entry, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``2026-10-18 12:34:56 INFO     tender_market.tenders: Tender created``"""

    FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'
    DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

    def __init__(self):
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


def _build_handlers(formatter: logging.Formatter, log_file: Optional[Path]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    level: Union[str, int] = "INFO",
    use_json: bool = True,
    log_file: Optional[Path] = None
) -> None:
    """
    Настроить root logger для всего процесса.

    Существующие handlers root logger'а заменяются: stdout всегда,
    файл только если передан ``log_file``.
    """
    formatter = StructuredFormatter() if use_json else HumanReadableFormatter()

    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.handlers[:] = _build_handlers(formatter, log_file)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger с постоянным контекстом.

    Контекст адаптера дописывается к ``extra`` каждого вызова и имеет
    приоритет при совпадении ключей:

        log = LoggerAdapter(logger, {'tender_id': tender['id']})
        log.info("📤 Dispatching", extra={'professional_id': 'p1'})
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs['extra'] = {**(kwargs.get('extra') or {}), **self.extra}
        return msg, kwargs

    def bind(self, **context: Any) -> 'LoggerAdapter':
        """Новый адаптер с дополнительным контекстом."""
        return LoggerAdapter(self.logger, {**self.extra, **context})


def auto_setup_logging(
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """
    Настройка из окружения: LOG_LEVEL (INFO), LOG_FORMAT (json | human),
    LOG_FILE (путь, опционально). Явно переданные значения важнее окружения.
    """
    log_file = log_file or os.getenv("LOG_FILE")
    setup_logging(
        level=level or os.getenv("LOG_LEVEL", "INFO"),
        use_json=(log_format or os.getenv("LOG_FORMAT", "json")).lower() == "json",
        log_file=Path(log_file) if log_file else None,
    )


__all__ = [
    'setup_logging',
    'auto_setup_logging',
    'record_context',
    'LoggerAdapter',
    'StructuredFormatter',
    'HumanReadableFormatter',
    'QUIET_LOGGERS',
]
