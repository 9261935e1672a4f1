"""Bounded-memory iteration over large result sets.

Two batching strategies are offered and the caller picks one explicitly:

* **offset** (``chunk``, ``each``, ``lazy``): ``LIMIT size OFFSET n``.
  Ordered by the query's own orders, or by ``id`` when it has none.  Rows
  inserted or deleted at already-visited offsets shift later batches.
* **id cursor** (``chunk_by_id``, ``each_by_id``, ``lazy_by_id``): ``WHERE
  column > last_seen ORDER BY column LIMIT size``.  Stable under concurrent
  inserts and deletes.

Iteration stops on a short or empty batch.  A callback returning ``False``
stops early; a callback exception propagates and aborts the iteration.
``cursor`` streams every row from a single execution instead of batching.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Iterator
from typing import Any

from chainql.errors import MalformedQueryError
from chainql.execute.collection import Collection
from chainql.execute.engine import ExecutionEngine
from chainql.paginate.paginator import after_cursor, cursor_value
from chainql.schema.clauses import order_column
from chainql.schema.query import QueryState

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000

ChunkCallback = Callable[[Collection], Any]
RowCallback = Callable[[dict[str, Any]], Any]


def _check_size(size: int) -> None:
    if size <= 0:
        raise MalformedQueryError(
            "chunk size must be positive", code="INVALID_CHUNK_SIZE", details={"size": size}
        )


class Chunker:
    """Chunked and lazy iteration on top of an :class:`ExecutionEngine`.

    Args:
        engine: Engine used to fetch each batch.
        default_chunk_size: Batch size used by ``each`` / ``lazy`` when the
            caller passes no size or a size below 1.
    """

    def __init__(self, engine: ExecutionEngine, default_chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._engine = engine
        self._default_chunk_size = default_chunk_size

    def _size(self, size: int | None) -> int:
        return size if size is not None and size > 0 else self._default_chunk_size

    # ------------------------------------------------------------------
    # Batch generators
    # ------------------------------------------------------------------

    def batches(self, state: QueryState, size: int) -> Generator[Collection, None, None]:
        """Yield offset-based batches of at most ``size`` rows."""
        _check_size(size)
        offset = 0
        while True:
            clone = state.clone()
            if not clone.orders:
                clone.orders = [order_column("id")]
            clone.limit = size
            clone.offset = offset
            batch = self._engine.get(clone)
            logger.debug("chunk at offset %d returned %d rows", offset, len(batch))
            if batch.is_empty():
                return
            yield batch
            if len(batch) < size:
                return
            offset += size

    def batches_by_id(
        self, state: QueryState, size: int, column: str = "id"
    ) -> Generator[Collection, None, None]:
        """Yield id-cursor batches of at most ``size`` rows."""
        _check_size(size)
        last_seen: Any = None
        while True:
            batch = self._engine.get(after_cursor(state, column, last_seen, size))
            logger.debug("chunk after %s=%r returned %d rows", column, last_seen, len(batch))
            if batch.is_empty():
                return
            yield batch
            if len(batch) < size:
                return
            last_seen = cursor_value(batch[-1], column)

    # ------------------------------------------------------------------
    # Callback forms
    # ------------------------------------------------------------------

    def chunk(self, state: QueryState, size: int, callback: ChunkCallback) -> bool:
        """Pass each offset-based batch to ``callback``.

        Returns:
            ``False`` if the callback stopped the iteration, else ``True``.
        """
        return _drive(self.batches(state, size), callback)

    def chunk_by_id(
        self, state: QueryState, size: int, callback: ChunkCallback, column: str = "id"
    ) -> bool:
        """Pass each id-cursor batch to ``callback``."""
        return _drive(self.batches_by_id(state, size, column), callback)

    def each(self, state: QueryState, callback: RowCallback, size: int | None = None) -> bool:
        """Call ``callback`` for every row, fetching offset-based batches."""
        return _drive_rows(self.batches(state, self._size(size)), callback)

    def each_by_id(
        self,
        state: QueryState,
        callback: RowCallback,
        size: int | None = None,
        column: str = "id",
    ) -> bool:
        """Call ``callback`` for every row, fetching id-cursor batches."""
        return _drive_rows(
            self.batches_by_id(state, self._size(size), column), callback
        )

    # ------------------------------------------------------------------
    # Generators
    # ------------------------------------------------------------------

    def lazy(self, state: QueryState, size: int | None = None) -> Iterator[dict[str, Any]]:
        """Yield rows one at a time, loading offset-based batches on demand."""
        for batch in self.batches(state, self._size(size)):
            yield from batch

    def lazy_by_id(
        self, state: QueryState, size: int | None = None, column: str = "id"
    ) -> Iterator[dict[str, Any]]:
        """Yield rows one at a time, loading id-cursor batches on demand."""
        for batch in self.batches_by_id(state, self._size(size), column):
            yield from batch

    def cursor(self, state: QueryState) -> Iterator[dict[str, Any]]:
        """Stream every row of ``state`` from one execution."""
        compiled = self._engine.statements.compile_select(state)
        return self._engine.stream(compiled)


def _drive(batches: Generator[Collection, None, None], callback: ChunkCallback) -> bool:
    try:
        for batch in batches:
            if callback(batch) is False:
                return False
    finally:
        batches.close()
    return True


def _drive_rows(batches: Generator[Collection, None, None], callback: RowCallback) -> bool:
    try:
        for batch in batches:
            for row in batch:
                if callback(row) is False:
                    return False
    finally:
        batches.close()
    return True
