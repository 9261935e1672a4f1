"""In-memory result sets.

A :class:`Collection` is created fresh for every materialization.  It is
never modified in place: ``filter``, ``map`` and friends return a new
collection.
"""
from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

Row = dict[str, Any]


class Collection:
    """An ordered, finite sequence of rows (``dict`` column → value).

    Args:
        rows: Rows to hold.  Each row is copied into a plain ``dict``.
    """

    __slots__ = ("_rows",)

    def __init__(self, rows: Iterable[Mapping[str, Any]] = ()) -> None:
        self._rows: list[Row] = [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __getitem__(self, index: int) -> Row:
        return self._rows[index]

    def __bool__(self) -> bool:
        return bool(self._rows)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Collection):
            return self._rows == other._rows
        if isinstance(other, list):
            return self._rows == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"Collection({self._rows!r})"

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def to_list(self) -> list[Row]:
        """Return a shallow copy of the rows as a list."""
        return [dict(row) for row in self._rows]

    def count(self) -> int:
        return len(self._rows)

    def is_empty(self) -> bool:
        return not self._rows

    def is_not_empty(self) -> bool:
        return bool(self._rows)

    def first(self) -> Row | None:
        return self._rows[0] if self._rows else None

    def last(self) -> Row | None:
        return self._rows[-1] if self._rows else None

    def pluck(self, column: str) -> list[Any]:
        """Return the value of ``column`` from every row (None when absent)."""
        return [row.get(column) for row in self._rows]

    def key_by(self, column: str) -> dict[Any, Row]:
        """Index rows by ``column``; later rows win on duplicate keys."""
        return {row.get(column): row for row in self._rows}

    def group_by(self, column: str) -> dict[Any, Collection]:
        groups: dict[Any, list[Row]] = {}
        for row in self._rows:
            groups.setdefault(row.get(column), []).append(row)
        return {key: Collection(rows) for key, rows in groups.items()}

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------

    def each(self, fn: Callable[[Row], Any]) -> Collection:
        """Call ``fn`` for every row; stop early when it returns ``False``."""
        for row in self._rows:
            if fn(row) is False:
                break
        return self

    def filter(self, predicate: Callable[[Row], bool]) -> Collection:
        return Collection(row for row in self._rows if predicate(row))

    def map(self, fn: Callable[[Row], Mapping[str, Any]]) -> Collection:
        return Collection(fn(dict(row)) for row in self._rows)
