"""Pagination result models.

``PaginationMeta`` carries the numbers an API response usually needs.  The
1-based ``from`` bound is exposed as ``from_`` in Python and serialized under
its real name with ``model_dump(by_alias=True)``.

Totals that were never counted (simple and cursor pagination) are reported
as :data:`UNKNOWN`.
"""
from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

#: Sentinel for a total / last page that was not computed.
UNKNOWN = -1


class PaginationMeta(BaseModel):
    """Page bounds and totals for one page of results.

    Invariants: ``from_`` and ``to`` are both ``0`` for an empty page;
    ``last_page`` is at least ``1`` whenever ``total`` is known.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    current_page: int = Field(ge=1)
    next_page: int | None = None
    per_page: int = Field(ge=1)
    total: int = UNKNOWN
    last_page: int = UNKNOWN
    from_: int = Field(default=0, alias="from", ge=0)
    to: int = Field(default=0, ge=0)

    @classmethod
    def counted(cls, page: int, per_page: int, total: int, count: int) -> PaginationMeta:
        """Build metadata for a page whose result-set ``total`` is known."""
        last_page = max(1, math.ceil(total / per_page))
        start, end = _bounds(page, per_page, count)
        return cls(
            current_page=page,
            next_page=page + 1 if page < last_page else None,
            per_page=per_page,
            total=total,
            last_page=last_page,
            from_=start,
            to=end,
        )

    @classmethod
    def uncounted(cls, page: int, per_page: int, count: int, has_more: bool) -> PaginationMeta:
        """Build metadata without a total (no count query was issued)."""
        start, end = _bounds(page, per_page, count)
        return cls(
            current_page=page,
            next_page=page + 1 if has_more else None,
            per_page=per_page,
            from_=start,
            to=end,
        )


def _bounds(page: int, per_page: int, count: int) -> tuple[int, int]:
    if count <= 0:
        return 0, 0
    start = (page - 1) * per_page + 1
    return start, start + count - 1


class PaginationResult(BaseModel):
    """One page of rows plus its :class:`PaginationMeta`."""

    model_config = ConfigDict(extra="forbid")

    data: list[dict[str, Any]]
    meta: PaginationMeta

    @property
    def count(self) -> int:
        return len(self.data)

    @property
    def is_empty(self) -> bool:
        return not self.data

    @property
    def has_more_pages(self) -> bool:
        return self.meta.next_page is not None

    @property
    def on_first_page(self) -> bool:
        return self.meta.current_page == 1

    @property
    def on_last_page(self) -> bool:
        return not self.has_more_pages

    @property
    def previous_page(self) -> int | None:
        page = self.meta.current_page
        return page - 1 if page > 1 else None


class CursorPage(BaseModel):
    """One page of cursor pagination.

    ``next_cursor`` is the cursor column value of the last row on the page,
    or ``None`` when the page is empty.  Check ``has_more`` to know whether
    another page exists.
    """

    model_config = ConfigDict(extra="forbid")

    data: list[dict[str, Any]]
    next_cursor: Any = None
    has_more: bool = False
    per_page: int = Field(ge=1)

    @property
    def count(self) -> int:
        return len(self.data)

    @property
    def is_empty(self) -> bool:
        return not self.data
