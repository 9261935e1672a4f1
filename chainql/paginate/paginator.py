"""Offset, simple and cursor pagination.

Every method derives its statements from *clones* of the caller's
:class:`~chainql.schema.query.QueryState`, so a single base query can be
paginated repeatedly (or counted and paged at the same time) without
cross-contamination.

Offset pagination
-----------------
Issues a count over a clone with ``LIMIT`` / ``OFFSET`` / ``ORDER BY``
removed (the select list is dropped too unless the query is grouped or
distinct, in which case it is counted as a derived table), then fetches
``LIMIT per_page OFFSET (page - 1) * per_page``.

Simple pagination
-----------------
Fetches ``per_page + 1`` rows and uses the extra row only to decide whether
a next page exists.  No count query is issued; ``total`` and ``last_page``
are reported as ``-1``.

Cursor pagination
-----------------
Orders by a monotonic column (``id`` by default), filters ``column >
cursor`` and fetches ``per_page + 1`` rows.  The cursor column value of the
last returned row is the next cursor, also on the final page.
"""
from __future__ import annotations

import logging
from typing import Any

from chainql.errors import MalformedQueryError
from chainql.execute.engine import ExecutionEngine, result_name
from chainql.paginate.meta import CursorPage, PaginationMeta, PaginationResult
from chainql.schema.clauses import Boolean, order_column, where_basic, where_nested
from chainql.schema.query import QueryState

logger = logging.getLogger(__name__)

DEFAULT_PER_PAGE = 15


def after_cursor(state: QueryState, column: str, cursor: Any, size: int) -> QueryState:
    """Return a clone of ``state`` reading ``size`` rows with ``column > cursor``.

    Existing orders are replaced by ``column ASC``.  Existing filters that
    use ``OR`` are grouped in parentheses so the cursor bound applies to all
    of them.
    """
    clone = state.clone()
    clone.orders = [order_column(column)]
    clone.limit = size
    clone.offset = None
    if cursor is not None:
        if any(w.boolean is Boolean.OR for w in clone.wheres):
            clone.wheres = [where_nested(clone.wheres)]
        clone.wheres.append(where_basic(column, ">", cursor))
    return clone


def cursor_value(row: dict[str, Any], column: str) -> Any:
    """Read the cursor ``column`` from a result row.

    A qualified column such as ``users.id`` is reported by the driver under
    its last segment (or its alias), so the lookup uses that key.

    Raises:
        MalformedQueryError: If the row has no value for the column; paging
            on would re-read the same rows forever.
    """
    key = result_name(column)
    value = row.get(key)
    if value is None:
        raise MalformedQueryError(
            f"cursor column '{column}' is missing from the result rows",
            code="MISSING_CURSOR",
            details={"column": column, "key": key},
        )
    return value


class Paginator:
    """Pagination strategies on top of an :class:`ExecutionEngine`.

    Args:
        engine: Engine used for the count and data queries.
        default_per_page: Page size used when the caller passes a value
            below ``1``.
    """

    def __init__(self, engine: ExecutionEngine, default_per_page: int = DEFAULT_PER_PAGE) -> None:
        self._engine = engine
        self._default_per_page = default_per_page

    def _normalize(self, page: int, per_page: int | None) -> tuple[int, int]:
        if page < 1:
            page = 1
        if per_page is None or per_page < 1:
            per_page = self._default_per_page
        return page, per_page

    def paginate(
        self, state: QueryState, page: int = 1, per_page: int | None = None
    ) -> PaginationResult:
        """Return one page plus totals.

        Args:
            state: Base query; not modified.
            page: 1-based page number (values below 1 become 1).
            per_page: Page size (values below 1 use the default).
        """
        page, per_page = self._normalize(page, per_page)

        count_state = state.clone()
        count_state.limit = None
        count_state.offset = None
        count_state.orders = []
        if not count_state.groups and not count_state.distinct:
            count_state.selects = []
            count_state.select_bindings = []
        total = self._engine.count(count_state)

        data_state = state.clone()
        data_state.limit = per_page
        data_state.offset = (page - 1) * per_page
        rows = self._engine.get(data_state).to_list()

        meta = PaginationMeta.counted(page, per_page, total, len(rows))
        logger.debug("page %d/%d of %d rows", page, meta.last_page, total)
        return PaginationResult(data=rows, meta=meta)

    def simple_paginate(
        self, state: QueryState, page: int = 1, per_page: int | None = None
    ) -> PaginationResult:
        """Return one page without counting the result set."""
        page, per_page = self._normalize(page, per_page)

        data_state = state.clone()
        data_state.limit = per_page + 1
        data_state.offset = (page - 1) * per_page
        rows = self._engine.get(data_state).to_list()

        has_more = len(rows) > per_page
        rows = rows[:per_page]
        meta = PaginationMeta.uncounted(page, per_page, len(rows), has_more)
        return PaginationResult(data=rows, meta=meta)

    def cursor_paginate(
        self,
        state: QueryState,
        per_page: int | None = None,
        cursor: Any = None,
        column: str = "id",
    ) -> CursorPage:
        """Return the rows after ``cursor`` ordered by ``column``.

        Args:
            state: Base query; not modified.
            per_page: Page size (values below 1 use the default).
            cursor: Value of ``column`` on the last row already seen, or
                ``None`` for the first page.
            column: Monotonic column to page over.
        """
        _, per_page = self._normalize(1, per_page)
        rows = self._engine.get(after_cursor(state, column, cursor, per_page + 1)).to_list()

        has_more = len(rows) > per_page
        rows = rows[:per_page]
        next_cursor = None
        if has_more:
            next_cursor = cursor_value(rows[-1], column)
        elif rows:
            next_cursor = rows[-1].get(result_name(column))
        return CursorPage(data=rows, next_cursor=next_cursor, has_more=has_more, per_page=per_page)
