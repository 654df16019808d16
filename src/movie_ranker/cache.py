"""
Metadata caches keyed by external (TMDB) id.

All caches are first-write-wins: once an id holds a payload it is never
refreshed or overwritten. Failed lookups are never stored, so a provider
outage only costs a retry on a later request.
"""
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from .metadata import MovieMetadata

logger = logging.getLogger(__name__)


class MetadataCache(ABC):
    """
    Get/put capability used by the enrichment fetcher.

    TmdbClient calls get/put synchronously from inside the event loop, so
    implementations must return quickly (in-process dict or a local SQLite
    file). A network-backed cache should run its I/O off the loop, for
    example via asyncio.to_thread in the caller, rather than block it.
    """

    @abstractmethod
    def get(self, external_id: int) -> MovieMetadata | None:
        """Return the cached payload, or None on miss."""

    @abstractmethod
    def put(self, external_id: int, metadata: MovieMetadata) -> bool:
        """Store a payload unless one already exists. Returns True if stored."""

    @abstractmethod
    def __len__(self) -> int:
        ...

    def __contains__(self, external_id: int) -> bool:
        return self.get(external_id) is not None


class InMemoryMetadataCache(MetadataCache):
    """Unbounded dict cache for the life of the process; safe across threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[int, MovieMetadata] = {}

    def get(self, external_id: int) -> MovieMetadata | None:
        with self._lock:
            return self._entries.get(external_id)

    def put(self, external_id: int, metadata: MovieMetadata) -> bool:
        with self._lock:
            if external_id in self._entries:
                return False
            self._entries[external_id] = metadata
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class SqliteMetadataCache(MetadataCache):
    """
    Persistent cache in a single SQLite table.

    Lets a cache warmed by ``movie-ranker warm-cache`` survive restarts.
    One shared connection is serialized behind a lock.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode = WAL")
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS metadata_cache (
                    external_id INTEGER PRIMARY KEY,
                    payload TEXT NOT NULL,  -- JSON of MovieMetadata.to_dict()
                    fetched_at TEXT
                )
            """)
        logger.debug(f"Opened metadata cache at {self.path}")

    def get(self, external_id: int) -> MovieMetadata | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payload FROM metadata_cache WHERE external_id = ?",
                (external_id,),
            ).fetchone()
        if row is None:
            return None
        try:
            return MovieMetadata.from_dict(json.loads(row[0]))
        except (ValueError, TypeError) as e:
            # Drop the row so the next successful fetch can replace it
            logger.warning(f"Corrupt cache entry for {external_id}, discarding: {e}")
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM metadata_cache WHERE external_id = ?", (external_id,))
            return None

    def put(self, external_id: int, metadata: MovieMetadata) -> bool:
        payload = json.dumps(metadata.to_dict())
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO metadata_cache (external_id, payload, fetched_at) VALUES (?, ?, ?)",
                (external_id, payload, datetime.now().isoformat()),
            )
            return cur.rowcount == 1

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM metadata_cache").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def open_cache(path: str | Path | None = None) -> MetadataCache:
    """SQLite cache when a path is configured, otherwise in-memory."""
    if path:
        return SqliteMetadataCache(path)
    return InMemoryMetadataCache()
