"""Time-bounded query result cache.

Entries are keyed by a SHA-256 digest of the SQL text plus its JSON-encoded
bindings and expire ``ttl`` seconds after they are stored.  All operations
share a single read-write lock: lookups take the shared side, writes and
sweeps take the exclusive side.  A daemon thread sweeps expired entries
every ``sweep_interval`` seconds until :meth:`QueryCache.close` is called.

The cache is an optimization only.  Leaving ``cache_enabled`` off in
:class:`~chainql.config.ChainQLConfig` removes it from the execution path
entirely.
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


def cache_key(sql: str, bindings: Sequence[Any]) -> str:
    """Return the cache key for ``sql`` + ``bindings``."""
    payload = json.dumps([sql, list(bindings)], default=str, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheStats:
    """Counters reported by :meth:`QueryCache.stats`."""

    entries: int
    hits: int
    misses: int
    expired: int


class ReadWriteLock:
    """Many readers or one writer, built on a single condition variable."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class _Entry:
    rows: list[dict[str, Any]]
    expires_at: float


class QueryCache:
    """TTL cache of materialized rows.

    Args:
        ttl: Seconds an entry stays fresh.
        sweep_interval: Seconds between background sweeps.
        start_sweeper: Start the background sweep thread immediately.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        ttl: float = 300.0,
        sweep_interval: float = 60.0,
        start_sweeper: bool = True,
        clock=time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: dict[str, _Entry] = {}
        # Counters are updated under the read lock, so they get their own.
        self._counter_lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._expired = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        if start_sweeper:
            self._thread = threading.Thread(
                target=self._sweep_loop, name="chainql-cache-sweeper", daemon=True
            )
            self._thread.start()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, sql: str, bindings: Sequence[Any]) -> list[dict[str, Any]] | None:
        """Return a copy of the cached rows, or ``None`` on miss / expiry."""
        key = cache_key(sql, bindings)
        with self._lock.read():
            entry = self._entries.get(key)
            fresh = entry is not None and entry.expires_at > self._clock()
            rows = [dict(r) for r in entry.rows] if fresh and entry else None
        with self._counter_lock:
            if rows is None:
                self._misses += 1
            else:
                self._hits += 1
        if rows is not None:
            logger.debug("query cache hit %s", key[:12])
        return rows

    def set(self, sql: str, bindings: Sequence[Any], rows: Sequence[dict[str, Any]]) -> None:
        key = cache_key(sql, bindings)
        entry = _Entry(rows=[dict(r) for r in rows], expires_at=self._clock() + self._ttl)
        with self._lock.write():
            self._entries[key] = entry

    def delete(self, sql: str, bindings: Sequence[Any]) -> None:
        with self._lock.write():
            self._entries.pop(cache_key(sql, bindings), None)

    def clear(self) -> None:
        with self._lock.write():
            self._entries.clear()

    def sweep(self) -> int:
        """Evict expired entries now; return how many were removed."""
        now = self._clock()
        with self._lock.write():
            stale = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in stale:
                del self._entries[key]
        if stale:
            with self._counter_lock:
                self._expired += len(stale)
            logger.debug("query cache evicted %d expired entries", len(stale))
        return len(stale)

    def stats(self) -> CacheStats:
        with self._lock.read():
            entries = len(self._entries)
        with self._counter_lock:
            return CacheStats(
                entries=entries, hits=self._hits, misses=self._misses, expired=self._expired
            )

    def close(self) -> None:
        """Stop the background sweeper (idempotent)."""
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._sweep_interval)
        self._thread = None

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self._sweep_interval):
            self.sweep()
