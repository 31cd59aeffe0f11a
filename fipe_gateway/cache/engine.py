"""Cache engine implementation for FIPE Gateway."""

import json
import threading
import time
import zlib
from typing import Any, Callable, Dict, Optional

from fipe_gateway.database.manager import DatabaseManager
from fipe_gateway.database.models import CacheEntry, CacheKey
from fipe_gateway.utils.logger import get_logger

_ZLIB_MAGIC = b"\x78\x9c"


class CacheEngine:
    """Key/value store with per-entry expiration for normalized upstream answers.

    Values are JSON documents stored in SQLite through ``DatabaseManager``.
    Entries are addressed by ``CacheKey``; an entry is served only while
    ``now < expires_at`` and expired rows are deleted when they are read.
    Writes are last-write-wins. There is a single global namespace: the
    pricing table is the same for every tenant.

    Example:
        >>> db_manager = DatabaseManager(":memory:")
        >>> cache = CacheEngine(db_manager)
        >>> key = CacheKey.build("brands", vehicle_type="cars", reference="324")
        >>> cache.set(key, [{"code": "59", "name": "VW - VolksWagen"}], ttl_seconds=3600)
        True
        >>> cache.get(key).value[0]["name"]
        'VW - VolksWagen'
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        max_response_size: int = 10485760,
        compression_threshold: int = 1024,
        max_cache_entries: int = 10000,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """Initialize cache engine.

        Args:
            db_manager: Database manager for persistent storage
            max_response_size: Maximum serialized value size to cache (bytes)
            compression_threshold: Minimum serialized size for compression (bytes)
            max_cache_entries: Maximum number of cache entries before LRU eviction
            clock: Time source returning epoch seconds, ``time.time`` by default
        """
        self.db_manager = db_manager
        self.max_response_size = max_response_size
        self.compression_threshold = compression_threshold
        self.max_cache_entries = max_cache_entries
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self.logger = get_logger("cache.engine")
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "sets": 0,
            "expired": 0,
            "compressed": 0,
            "rejected": 0,
        }
        self.purge_expired()

    def _encode(self, value: Any) -> bytes:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def _decode(self, data: bytes) -> Any:
        if data[:2] == _ZLIB_MAGIC:
            data = zlib.decompress(data)
        return json.loads(data.decode("utf-8"))

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return the live entry for ``key``, or None on a miss.

        An empty list is a legitimate cached value, so callers must test the
        returned entry against None rather than its value's truthiness.
        """
        digest = key.digest()
        with self._lock:
            rows = self.db_manager.execute_query(
                "SELECT value_data, created_at, expires_at, access_count FROM cache_entries WHERE cache_key = ?",
                (digest,),
            )
            if not rows:
                self._stats["misses"] += 1
                return None
            data, created_at, expires_at, access_count = rows[0]
            now = self._clock()
            if now >= expires_at:
                self.db_manager.execute_update("DELETE FROM cache_entries WHERE cache_key = ?", (digest,))
                self._stats["expired"] += 1
                self._stats["misses"] += 1
                return None
            self.db_manager.execute_update(
                "UPDATE cache_entries SET access_count = access_count + 1, last_accessed = ? WHERE cache_key = ?",
                (now, digest),
            )
            self._stats["hits"] += 1
        return CacheEntry(
            key=key,
            value=self._decode(bytes(data)),
            created_at=created_at,
            expires_at=expires_at,
            access_count=access_count + 1,
        )

    def set(self, key: CacheKey, value: Any, ttl_seconds: int) -> bool:
        """Store ``value`` under ``key`` for ``ttl_seconds``, overwriting any previous entry.

        Returns:
            True if cached, False if the value exceeds ``max_response_size``
        """
        data = self._encode(value)
        if len(data) > self.max_response_size:
            self.logger.warning(f"Not caching {key.operation}: {len(data)} bytes exceeds {self.max_response_size}")
            with self._lock:
                self._stats["rejected"] += 1
            return False

        compressed = False
        if len(data) > self.compression_threshold:
            data = zlib.compress(data)
            compressed = True

        now = self._clock()
        with self._lock:
            self.db_manager.execute_update(
                "REPLACE INTO cache_entries (cache_key, key_data, operation, value_data, "
                "created_at, expires_at, access_count, last_accessed) "
                "VALUES (?, ?, ?, ?, ?, ?, 0, ?)",
                (key.digest(), key.serialize(), key.operation, data, now, now + ttl_seconds, now),
            )
            self._evict_if_needed()
            self._stats["sets"] += 1
            if compressed:
                self._stats["compressed"] += 1
        return True

    def _evict_if_needed(self):
        """Evict least recently used entries if over max_cache_entries."""
        count = self.db_manager.execute_query("SELECT COUNT(*) FROM cache_entries")[0][0]
        if count <= self.max_cache_entries:
            return
        evicted = self.db_manager.execute_update(
            "DELETE FROM cache_entries WHERE cache_key IN "
            "(SELECT cache_key FROM cache_entries ORDER BY last_accessed ASC LIMIT ?)",
            (count - self.max_cache_entries,),
        )
        self._stats["evictions"] += evicted

    def delete(self, key: CacheKey) -> int:
        """Delete a cache entry."""
        return self.db_manager.execute_update("DELETE FROM cache_entries WHERE cache_key = ?", (key.digest(),))

    def purge_expired(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        removed = self.db_manager.execute_update(
            "DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),)
        )
        if removed > 0:
            with self._lock:
                self._stats["expired"] += removed
        return removed

    def clear_all(self) -> int:
        """Remove every entry regardless of operation. Returns the number evicted."""
        with self._lock:
            evicted = self.db_manager.execute_update("DELETE FROM cache_entries")
        self.logger.info(f"Cache cleared: {evicted} entries evicted")
        return evicted

    def count_entries(self) -> int:
        return self.db_manager.execute_query("SELECT COUNT(*) FROM cache_entries")[0][0]

    def get_cache_performance(self) -> Dict[str, Any]:
        """Return cache performance metrics."""
        total_size = (
            self.db_manager.execute_query("SELECT SUM(LENGTH(value_data)) FROM cache_entries")[0][0] or 0
        )
        by_operation = dict(
            self.db_manager.execute_query("SELECT operation, COUNT(*) FROM cache_entries GROUP BY operation")
        )
        stats = self.get_stats()
        lookups = stats["hits"] + stats["misses"]
        return {
            "total_entries": self.count_entries(),
            "entries_by_operation": by_operation,
            "total_size_bytes": total_size,
            "expired_entries": stats["expired"],
            "hit_rate": stats["hits"] / lookups if lookups > 0 else 0.0,
            "evictions": stats["evictions"],
            "compressed": stats["compressed"],
        }

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)
