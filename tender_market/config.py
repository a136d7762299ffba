"""
Feature Configuration Loader for Tender Market

This module loads matching, dispatch and listing tunables from
config/features.yaml and environment settings from .env.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from database import normalize_database_url

logger = logging.getLogger(__name__)

# Загружаем переменные окружения из .env (только для локального запуска)
env_path = Path(__file__).parent.parent / '.env'
if env_path.exists():
    load_dotenv(env_path)

DEFAULT_FEATURES_PATH = Path(__file__).parent.parent / 'config' / 'features.yaml'


@dataclass(frozen=True)
class MatchingSettings:
    radius_km: float = 15.0
    min_rating: Optional[float] = 60.0
    include_unrated: bool = True
    max_candidates: int = 50
    reachable_statuses: Tuple[str, ...] = ('available', 'online')


@dataclass(frozen=True)
class DispatchSettings:
    max_concurrency: int = 10
    timeout_seconds: Optional[float] = 30.0


@dataclass(frozen=True)
class ListingSettings:
    default_limit: int = 20
    max_limit: int = 100


def _build(settings_cls, section: Dict[str, Any]):
    """Instantiate a settings dataclass from the recognized keys of ``section``."""
    known = {f.name for f in fields(settings_cls)}
    values = {}
    for key, value in (section or {}).items():
        if key not in known:
            logger.warning(f"⚠️ Unknown config key ignored: {settings_cls.__name__}.{key}")
            continue
        if key == 'reachable_statuses':
            value = tuple(value or ())
        values[key] = value
    return settings_cls(**values)


class FeatureConfig:
    """Feature configuration manager."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize feature config loader.

        Args:
            config_path: Path to features.yaml, defaults to $TENDER_MARKET_FEATURES
                or config/features.yaml
        """
        if config_path is None:
            override = os.getenv('TENDER_MARKET_FEATURES')
            config_path = Path(override) if override else DEFAULT_FEATURES_PATH

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            self._config = {}
            return

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"⚠️ Failed to load features config {self.config_path}: {e}")
            self._config = {}

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    @property
    def matching(self) -> MatchingSettings:
        return _build(MatchingSettings, self._config.get('matching'))

    @property
    def dispatch(self) -> DispatchSettings:
        return _build(DispatchSettings, self._config.get('dispatch'))

    @property
    def listing(self) -> ListingSettings:
        return _build(ListingSettings, self._config.get('listing'))

    def get_all_config(self) -> Dict[str, Any]:
        """Get full configuration dictionary."""
        return self._config.copy()


@dataclass(frozen=True)
class MarketSettings:
    """Environment-level settings."""

    database_url: Optional[str] = None
    telegram_bot_token: str = ''
    log_level: str = 'INFO'
    log_format: str = 'json'
    log_file: Optional[str] = None
    features: FeatureConfig = field(default_factory=FeatureConfig)

    @classmethod
    def from_env(cls) -> 'MarketSettings':
        database_url = os.getenv('DATABASE_URL')
        return cls(
            database_url=normalize_database_url(database_url) if database_url else None,
            telegram_bot_token=os.getenv('TELEGRAM_BOT_TOKEN', ''),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            log_format=os.getenv('LOG_FORMAT', 'json'),
            log_file=os.getenv('LOG_FILE') or None,
        )
