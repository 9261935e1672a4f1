"""Compiler abstractions: CompiledSQL, DebugInfo and the SQLCompiler ABC.

The Template Method pattern (GoF) is used:
- :class:`~chainql.compile.builder.StatementCompiler` owns the algorithm
  skeleton (section order, binding accumulation, DML statement shapes).
- ``SQLCompiler`` subclasses override the dialect-specific steps: the
  placeholder style, ``ILIKE`` support, JSON / full-text / date rendering,
  upsert and insert-or-ignore syntax.

Hooks for features a dialect cannot render raise
:class:`~chainql.errors.UnsupportedFeatureError` by default, so a dialect
only overrides what it genuinely supports and never emits wrong SQL.
"""
from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from chainql.errors import UnsupportedFeatureError
from chainql.schema.clauses import (
    ConflictAction,
    DatePart,
    JoinType,
    LockMode,
    Operator,
)


@dataclass
class CompiledSQL:
    """The output of a successful compilation.

    Attributes:
        sql: The compiled SQL string with dialect placeholders.
        bindings: Values for the placeholders, in placeholder order.
        dialect: The dialect the SQL was rendered for.
        duration: Compilation time in seconds (ignored by ``==``).
    """

    sql: str
    bindings: list[Any]
    dialect: str
    duration: float = field(default=0.0, compare=False)

    def __iter__(self):
        # Allows ``sql, bindings = compiled``.
        yield self.sql
        yield self.bindings

    def debug_info(self) -> DebugInfo:
        return DebugInfo(
            sql=self.sql,
            bindings=list(self.bindings),
            dialect=self.dialect,
            duration=self.duration,
        )


@dataclass
class DebugInfo:
    """Snapshot of the last compilation when debug capture is on.

    Attributes:
        sql: Rendered SQL text.
        bindings: Final binding list.
        dialect: Active dialect name.
        duration: Compilation time in seconds.
    """

    sql: str
    bindings: list[Any] = field(default_factory=list)
    dialect: str = ""
    duration: float = 0.0


_PATH_TOKEN = re.compile(r"\[(\d+)\]|([^.\[\]]+)")


def json_path_segments(path: str) -> list[str]:
    """Split ``$.a.b[0]`` / ``a.b.0`` / ``a->b`` into ``["a", "b", "0"]``."""
    text = path.strip()
    if text.startswith("$"):
        text = text[1:]
    text = text.replace("->", ".")
    segments = [idx or key for idx, key in _PATH_TOKEN.findall(text)]
    return [s.strip() for s in segments if s.strip()]


def sql_string_literal(text: str) -> str:
    """Render ``text`` as a single-quoted SQL literal."""
    return "'" + text.replace("'", "''") + "'"


class SQLCompiler(ABC):
    """Abstract base for dialect-specific SQL compilers.

    Subclasses implement the dialect-specific methods; the
    ``StatementCompiler`` uses this interface via the Strategy / Template
    Method patterns.
    """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the canonical dialect name (``'mysql'`` or ``'postgres'``)."""

    @abstractmethod
    def placeholder(self, index: int) -> str:
        """Return the SQL placeholder for the ``index``-th binding (1-based).

        Args:
            index: Position of the binding in the statement's binding list.

        Returns:
            Dialect-specific placeholder string.
        """

    def like_operator(self, op: Operator) -> str:
        """Return the SQL keyword for a LIKE-family operator."""
        return op.value

    def comparison(self, op: Operator) -> str:
        """Return the SQL text for a comparison operator."""
        if op in (Operator.LIKE, Operator.NOT_LIKE, Operator.ILIKE, Operator.NOT_ILIKE):
            return self.like_operator(op)
        return op.value

    def join_keyword(self, kind: JoinType) -> str:
        """Return the JOIN keyword sequence for ``kind``."""
        if kind is JoinType.FULL:
            raise UnsupportedFeatureError("FULL JOIN", self.dialect_name)
        return f"{kind.value} JOIN"

    def lock_clause(self, mode: LockMode) -> str:
        return mode.value

    # ------------------------------------------------------------------
    # JSON / full-text / date hooks
    # ------------------------------------------------------------------

    def json_contains(self, column: str, marker: str) -> str:
        raise UnsupportedFeatureError("JSON contains", self.dialect_name)

    def json_contains_value(self, value: Any) -> Any:
        """Prepare the bound value for a JSON containment test."""
        if isinstance(value, str):
            return value
        return json.dumps(value)

    def json_length(self, column: str) -> str:
        raise UnsupportedFeatureError("JSON length", self.dialect_name)

    def json_path(self, column: str, path: str) -> str:
        raise UnsupportedFeatureError("JSON path", self.dialect_name)

    def json_set(self, column: str, path: str, marker: str) -> str:
        raise UnsupportedFeatureError("JSON update", self.dialect_name)

    def json_set_value(self, value: Any) -> Any:
        return value

    def json_remove(self, column: str, path: str) -> str:
        raise UnsupportedFeatureError("JSON remove", self.dialect_name)

    def full_text(self, columns: Sequence[str], marker: str) -> str:
        raise UnsupportedFeatureError("full-text search", self.dialect_name)

    def date_part(self, column: str, part: DatePart) -> str:
        raise UnsupportedFeatureError(f"{part.value} comparison", self.dialect_name)

    # ------------------------------------------------------------------
    # Insert variants
    # ------------------------------------------------------------------

    def upsert_suffix(
        self,
        columns: Sequence[str],
        conflict_target: Sequence[str],
        update_columns: Sequence[str] | None,
        action: ConflictAction,
    ) -> str:
        """Return the clause appended to an INSERT to make it an upsert."""
        raise UnsupportedFeatureError("upsert", self.dialect_name)

    def insert_or_ignore_parts(self) -> tuple[str, str]:
        """Return ``(insert keyword, trailing clause)`` for insert-or-ignore."""
        raise UnsupportedFeatureError("insert or ignore", self.dialect_name)

    def replace_keyword(self) -> str:
        raise UnsupportedFeatureError("REPLACE", self.dialect_name)

    @property
    def supports_returning(self) -> bool:
        """Whether ``INSERT … RETURNING`` can fetch generated keys."""
        return False
