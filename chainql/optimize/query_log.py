"""Bounded log of executed statements with slow-query reporting."""
from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryLogEntry:
    """One execution.

    Attributes:
        sql: SQL text handed to the executor.
        bindings: Bindings handed to the executor.
        duration: Wall time in seconds.
        error: ``repr`` of the failure, when the execution failed.
    """

    sql: str
    bindings: tuple[Any, ...] = ()
    duration: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class QueryLogStats:
    total: int
    slow: int
    failed: int
    average_duration: float
    max_duration: float
    slowest: QueryLogEntry | None = field(default=None)


class QueryLog:
    """Ring buffer of the most recent executions.

    Args:
        max_entries: Entries kept before the oldest is dropped.
        slow_threshold: Executions at or above this many seconds are slow and
            are reported with a WARNING log record.
    """

    def __init__(self, max_entries: int = 1000, slow_threshold: float = 1.0) -> None:
        self._entries: deque[QueryLogEntry] = deque(maxlen=max_entries)
        self._slow_threshold = slow_threshold
        self._lock = threading.Lock()

    def record(
        self,
        sql: str,
        bindings: Sequence[Any],
        duration: float,
        error: BaseException | None = None,
    ) -> QueryLogEntry:
        entry = QueryLogEntry(
            sql=sql,
            bindings=tuple(bindings),
            duration=duration,
            error=repr(error) if error is not None else None,
        )
        with self._lock:
            self._entries.append(entry)
        if duration >= self._slow_threshold:
            logger.warning("slow query (%.3fs): %s", duration, sql)
        return entry

    def entries(self) -> list[QueryLogEntry]:
        with self._lock:
            return list(self._entries)

    def slow_queries(self) -> list[QueryLogEntry]:
        return [e for e in self.entries() if e.duration >= self._slow_threshold]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> QueryLogStats:
        entries = self.entries()
        if not entries:
            return QueryLogStats(total=0, slow=0, failed=0, average_duration=0.0, max_duration=0.0)
        slowest = max(entries, key=lambda e: e.duration)
        return QueryLogStats(
            total=len(entries),
            slow=sum(1 for e in entries if e.duration >= self._slow_threshold),
            failed=sum(1 for e in entries if e.error is not None),
            average_duration=sum(e.duration for e in entries) / len(entries),
            max_duration=slowest.duration,
            slowest=slowest,
        )
