"""Bound the number of in-flight executions."""
from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager

from chainql.errors import QueryCancelledError

# Granularity at which a blocked acquire re-checks the cancel event.
_POLL_INTERVAL = 0.05


class ConcurrencyLimiter:
    """Counting semaphore for compiled-query executions.

    ``acquire`` honours the caller's cancellation signal (a
    :class:`threading.Event`) and an optional timeout; either one ends the
    wait with :class:`~chainql.errors.QueryCancelledError`.

    Args:
        max_concurrent: Maximum simultaneous holders.
    """

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max = max_concurrent
        self._sem = threading.BoundedSemaphore(max_concurrent)
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def acquire(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise QueryCancelledError("cancelled while waiting for an execution slot")
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise QueryCancelledError("timed out waiting for an execution slot")
                wait = min(wait, remaining)
            if self._sem.acquire(timeout=wait):
                with self._lock:
                    self._in_flight += 1
                return

    def release(self) -> None:
        with self._lock:
            self._in_flight -= 1
        self._sem.release()

    @contextmanager
    def slot(
        self,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[None]:
        """Hold one slot for the duration of the ``with`` block."""
        self.acquire(timeout=timeout, cancel_event=cancel_event)
        try:
            yield
        finally:
            self.release()
