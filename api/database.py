"""
Result cache and provider access for route handlers.
"""
import logging
from typing import Callable, Optional

from melkmap.database import ResultCache
from melkmap.provider import DivarProvider

from .config import config

logger = logging.getLogger(__name__)

_cache: Optional[ResultCache] = None


def get_cache() -> ResultCache:
    """Process-wide result cache, opened on first use."""
    global _cache
    if _cache is None:
        logger.info(f"Opening result cache at {config.CACHE_DB_PATH}")
        _cache = ResultCache(config.CACHE_DB_PATH, ttl_seconds=config.CACHE_TTL_SECONDS)
    return _cache


def close_cache() -> None:
    global _cache
    if _cache is not None:
        _cache.close()
        _cache = None


def get_provider_factory() -> Callable[[], DivarProvider]:
    """
    Return a callable producing a fresh provider session.

    Crawls stream their progress after the handler returns, so the
    provider is opened inside the stream rather than as a yield dependency.
    """
    def factory() -> DivarProvider:
        return DivarProvider(base_url=config.PROVIDER_BASE_URL)
    return factory
