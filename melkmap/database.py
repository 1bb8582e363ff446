"""
SQLite-backed result cache with lazy expiry.
"""
import json
import logging
import os
import sqlite3
import threading
import time
from typing import Callable, List, Optional, Tuple

from .errors import CacheWriteFailure
from .models import CrawlResult

CACHE_TTL_SECONDS = 24 * 60 * 60

# Schema definitions
DDL_CRAWL_CACHE = """
CREATE TABLE IF NOT EXISTS crawl_cache (
  area_id TEXT PRIMARY KEY,
  payload TEXT NOT NULL,
  listing_count INTEGER NOT NULL,
  stored_at REAL NOT NULL
);
"""

DDL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_crawl_cache_stored_at ON crawl_cache(stored_at);",
]

logger = logging.getLogger(__name__)


def db_connect(path: str) -> sqlite3.Connection:
    """Create database connection with optimized settings."""
    if path != ":memory:":
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def db_init(conn: sqlite3.Connection):
    """Initialize database schema with tables and indexes."""
    conn.execute(DDL_CRAWL_CACHE)
    for ddl in DDL_INDEXES:
        conn.execute(ddl)
    conn.commit()


class ResultCache:
    """
    Crawl results keyed by area id, valid for ``ttl_seconds``.

    Stale entries are removed on read. Every statement runs under one lock
    and each write is a single transaction, so concurrent ``get``/``put``
    for the same area never observe a partial entry; the last ``put`` wins.
    """

    def __init__(
        self,
        path: str = ":memory:",
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.path = path
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._lock = threading.Lock()
        self._conn = db_connect(path)
        db_init(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _is_stale(self, stored_at: float) -> bool:
        return self.clock() - stored_at > self.ttl_seconds

    def _read(self, area_id: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload, stored_at FROM crawl_cache WHERE area_id = ?", (area_id,)
            ).fetchone()
            if row is None:
                return None
            payload, stored_at = row
            if self._is_stale(stored_at):
                logger.info(f"Cache entry for area {area_id} expired, removing")
                with self._conn:
                    self._conn.execute("DELETE FROM crawl_cache WHERE area_id = ?", (area_id,))
                return None
        return payload

    def get(self, area_id: str) -> Optional[CrawlResult]:
        """Return the cached result, or None on a miss, expired entry or unreadable cache."""
        try:
            payload = self._read(area_id)
        except sqlite3.Error as e:
            logger.error(f"Error reading cache for area {area_id}: {e}")
            return None
        if payload is None:
            return None
        try:
            return CrawlResult.from_dict(json.loads(payload), from_cache=True)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Corrupt cache entry for area {area_id}: {e}")
            self.evict(area_id)
            return None

    def _write(self, area_id: str, result: CrawlResult) -> None:
        try:
            payload = json.dumps(result.to_dict(), ensure_ascii=False)
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO crawl_cache (area_id, payload, listing_count, stored_at) "
                    "VALUES (?, ?, ?, ?)",
                    (area_id, payload, len(result.listings), self.clock()),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise CacheWriteFailure(f"Could not store area {area_id}: {e}") from e

    def put(self, area_id: str, result: CrawlResult) -> bool:
        """Store ``result`` for ``area_id``. Failures are logged and reported as False."""
        try:
            self._write(area_id, result)
        except CacheWriteFailure as e:
            logger.error(f"Error saving to cache: {e}")
            return False
        logger.info(f"Saved {len(result.listings)} listings to cache for area {area_id}")
        return True

    def evict(self, area_id: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM crawl_cache WHERE area_id = ?", (area_id,))
        return cur.rowcount > 0

    def evict_all(self) -> int:
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM crawl_cache")
        return cur.rowcount

    def entries(self) -> List[Tuple[str, float, int]]:
        """List fresh entries as (area_id, stored_at, listing_count)."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT area_id, stored_at, listing_count FROM crawl_cache ORDER BY stored_at DESC"
            ).fetchall()
        return [r for r in rows if not self._is_stale(r[1])]
