"""Short-lived in-memory cache for search results.

One instance is shared by every caller in the process; the lifespan creates it
and hands it out through AppState. A single coarse lock guards the whole
mapping.

The cache is best effort and never raises. If the lock cannot be taken within
``lock_timeout`` the call degrades to a miss (reads) or a no-op (writes).
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from nixcache.models.index import PackageSummary

log = structlog.get_logger()

DEFAULT_TTL_SECONDS = 300.0


class ResultCacheStats(NamedTuple):
    total: int
    expired: int


@dataclass
class _Entry:
    results: list[PackageSummary]
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResultCache:
    """TTL cache keyed by lowercased query and result limit."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        lock_timeout: float = 1.0,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @staticmethod
    def make_key(query: str, limit: int) -> str:
        return f"{query.lower()}:{limit}"

    def get(self, query: str, limit: int) -> list[PackageSummary] | None:
        """Return cached results, or ``None`` when missing or expired."""
        key = self.make_key(query, limit)
        if not self._lock.acquire(timeout=self._lock_timeout):
            log.debug("result_cache_lock_timeout", op="get", key=key)
            return None
        try:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                log.debug("result_cache_expired", key=key)
                return None
            log.debug("result_cache_hit", key=key, results=len(entry.results))
            return list(entry.results)
        finally:
            self._lock.release()

    def put(self, query: str, limit: int, results: Sequence[PackageSummary]) -> None:
        """Store results under the cache's fixed TTL, replacing any previous entry."""
        key = self.make_key(query, limit)
        entry = _Entry(results=list(results), created_at=self._clock(), ttl=self._ttl)
        if not self._lock.acquire(timeout=self._lock_timeout):
            log.debug("result_cache_lock_timeout", op="put", key=key)
            return
        try:
            self._entries[key] = entry
        finally:
            self._lock.release()
        log.debug("result_cache_stored", key=key, results=len(entry.results))

    def clear(self) -> None:
        if not self._lock.acquire(timeout=self._lock_timeout):
            log.debug("result_cache_lock_timeout", op="clear")
            return
        try:
            self._entries.clear()
        finally:
            self._lock.release()
        log.debug("result_cache_cleared")

    def cleanup_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        if not self._lock.acquire(timeout=self._lock_timeout):
            log.debug("result_cache_lock_timeout", op="cleanup_expired")
            return 0
        try:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        finally:
            self._lock.release()
        log.debug("result_cache_cleanup_complete", removed=len(expired))
        return len(expired)

    def stats(self) -> ResultCacheStats:
        if not self._lock.acquire(timeout=self._lock_timeout):
            log.debug("result_cache_lock_timeout", op="stats")
            return ResultCacheStats(0, 0)
        try:
            now = self._clock()
            expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
            return ResultCacheStats(total=len(self._entries), expired=expired)
        finally:
            self._lock.release()
