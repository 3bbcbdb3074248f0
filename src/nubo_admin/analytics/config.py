"""
Environment driven configuration for the analytics API.
"""

from __future__ import annotations

import os
from typing import Optional

from pydantic import BaseModel


class DatabaseConfig(BaseModel):
    url: Optional[str] = None
    page_size: int = 1000


class CacheConfig(BaseModel):
    enable: bool = True
    ttl_seconds: int = 300
    """Staleness window for cached aggregation results"""


class FeedConfig(BaseModel):
    error_feed_limit: int = 10
    locale: str = "pt-BR"
    timezone: str = "America/Sao_Paulo"


class AnalyticsConfig(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    cache: CacheConfig = CacheConfig()
    feed: FeedConfig = FeedConfig()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_analytics_config() -> AnalyticsConfig:
    cfg = AnalyticsConfig()
    cfg.database = DatabaseConfig(
        url=os.getenv("ANALYTICS_DATABASE_URL", cfg.database.url),
        page_size=max(1, _env_int("ANALYTICS_PAGE_SIZE", cfg.database.page_size)),
    )
    cfg.cache = CacheConfig(
        enable=_env_bool("ANALYTICS_CACHE_ENABLE", cfg.cache.enable),
        ttl_seconds=_env_int("ANALYTICS_CACHE_TTL_SECONDS", cfg.cache.ttl_seconds),
    )
    cfg.feed = FeedConfig(
        error_feed_limit=_env_int("ANALYTICS_ERROR_FEED_LIMIT", cfg.feed.error_feed_limit),
        locale=os.getenv("ANALYTICS_LOCALE", cfg.feed.locale),
        timezone=os.getenv("ANALYTICS_TIMEZONE", cfg.feed.timezone),
    )
    return cfg
