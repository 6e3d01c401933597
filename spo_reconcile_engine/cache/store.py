"""
SQLite-based caching layer for library enumerations.
Lets a compare run re-use a recent snapshot of a large library instead of
paging through it again.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Optional

from ..config import DEFAULT_CACHE_TTL_HOURS
from ..models import RemoteItem

logger = logging.getLogger("spo_reconcile_engine.cache")


def cache_key(site_url: str, library_title: str) -> str:
    return f"{site_url.rstrip('/').lower()}|{library_title.lower()}"


class EnumerationCache:
    """
    Persistent cache backed by SQLite.
    Features:
      - TTL-based expiration (48 h by default)
      - Keyed by site URL + library title, case-insensitive
      - Stores raw item snapshots; comparison keys are derived on load
      - Connection-per-call, safe to share across coroutines
    """

    def __init__(self, cache_dir: str | Path, ttl_hours: int = DEFAULT_CACHE_TTL_HOURS):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.cache_dir / "enumeration_cache.db"
        self.ttl_seconds = ttl_hours * 3600
        self.hits = 0
        self.misses = 0
        self._init_db()

    def _init_db(self):
        """Initialize the cache database schema."""
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS library_snapshots (
                    key TEXT PRIMARY KEY,
                    site_url TEXT NOT NULL,
                    library_title TEXT NOT NULL,
                    data TEXT NOT NULL,
                    timestamp REAL NOT NULL,
                    run_id TEXT NOT NULL,
                    item_count INTEGER DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_snapshot_timestamp
                ON library_snapshots(timestamp)
            """)
            conn.commit()

    def get(self, site_url: str, library_title: str) -> Optional[list[RemoteItem]]:
        """
        Return the cached snapshot if it exists and hasn't expired.
        Returns None if not found or expired.
        """
        key = cache_key(site_url, library_title)
        with sqlite3.connect(str(self.db_path)) as conn:
            row = conn.execute(
                "SELECT data, timestamp FROM library_snapshots WHERE key = ?",
                (key,),
            ).fetchone()

        if row is None:
            self.misses += 1
            return None

        data_json, timestamp = row
        if time.time() - timestamp > self.ttl_seconds:
            logger.debug(f"Cache expired for {key}")
            self.misses += 1
            return None

        try:
            items = [RemoteItem.from_dict(d) for d in json.loads(data_json)]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            self.invalidate(site_url, library_title)
            self.misses += 1
            return None

        self.hits += 1
        logger.debug(f"Cache hit for {key} ({len(items)} items)")
        return items

    def put(self, site_url: str, library_title: str, items: list[RemoteItem], run_id: str):
        """Store a library snapshot with the current timestamp."""
        key = cache_key(site_url, library_title)
        data_json = json.dumps([item.to_dict() for item in items])

        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO library_snapshots
                    (key, site_url, library_title, data, timestamp, run_id, item_count)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (key, site_url, library_title, data_json, time.time(), run_id, len(items)),
            )
            conn.commit()
        logger.debug(f"Cached {len(items)} items for {key}")

    def invalidate(self, site_url: str, library_title: str) -> None:
        with sqlite3.connect(str(self.db_path)) as conn:
            conn.execute(
                "DELETE FROM library_snapshots WHERE key = ?",
                (cache_key(site_url, library_title),),
            )
            conn.commit()

    def clear_expired(self) -> int:
        """Remove all expired snapshots."""
        cutoff = time.time() - self.ttl_seconds
        with sqlite3.connect(str(self.db_path)) as conn:
            deleted = conn.execute(
                "DELETE FROM library_snapshots WHERE timestamp < ?",
                (cutoff,),
            ).rowcount
            conn.commit()
        if deleted:
            logger.info(f"Cleared {deleted} expired cache entries.")
        return deleted
