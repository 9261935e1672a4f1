"""Clause-level SQL builders.

Each class renders exactly one SQL section.  ``WhereClauseBuilder`` (for
EXISTS / IN sub-selects) and ``UnionClauseBuilder`` receive a *shared build
function* (``Callable[[QueryState], str]``) rather than a compiler factory.
Every nested statement is therefore compiled with the **same**
:class:`RuntimeContext` as the outer one, and ``$n`` numbering never
restarts mid-statement.

Classes
-------
SelectClauseBuilder   — ``SELECT [DISTINCT] <items>``
JoinClauseBuilder     — ``<TYPE> JOIN … ON … [AND …]``
WhereClauseBuilder    — the body of ``WHERE`` (also used inside joins)
HavingClauseBuilder   — the body of ``HAVING``
GroupClauseBuilder    — ``GROUP BY …``
OrderClauseBuilder    — ``ORDER BY …``
UnionClauseBuilder    — ``UNION [ALL] (…)``
"""
from __future__ import annotations

from collections.abc import Callable, Sequence

from chainql.compile.context import RuntimeContext
from chainql.errors import CompilationError, MalformedQueryError
from chainql.schema.clauses import (
    GroupClause,
    GroupKind,
    HavingClause,
    HavingKind,
    JoinClause,
    JoinType,
    OrderClause,
    OrderKind,
    SelectKind,
    UnionClause,
    WhereClause,
    WhereKind,
    count_placeholders,
)
from chainql.schema.query import QueryState

#: Compiles a nested QueryState against the shared runtime context.
BuildFn = Callable[[QueryState], str]


class SelectClauseBuilder:
    """Builds the ``SELECT [DISTINCT] …`` clause.

    Values attached to raw select items are consumed from
    ``QueryState.select_bindings`` in order.  The statement compiler renders
    this clause last so those values land after every other binding.
    """

    def __init__(self, runtime: RuntimeContext) -> None:
        self._runtime = runtime

    def build(self, state: QueryState) -> str:
        prefix = "SELECT DISTINCT" if state.distinct else "SELECT"
        if not state.selects:
            return f"{prefix} *"

        pending = list(state.select_bindings)
        items: list[str] = []
        for item in state.selects:
            if item.kind is SelectKind.RAW:
                needed = count_placeholders(item.raw or "")
                values, pending = pending[:needed], pending[needed:]
                items.append(self._runtime.add_raw(item.raw or "", values))
            elif item.alias:
                items.append(f"{item.column} AS {item.alias}")
            else:
                items.append(item.column or "")
        if pending:
            raise MalformedQueryError(
                f"{len(pending)} select binding(s) have no matching placeholder",
                code="BINDING_COUNT_MISMATCH",
                details={"unused": len(pending)},
            )
        return f"{prefix} {', '.join(items)}"


class WhereClauseBuilder:
    """Builds a sequence of filters joined by their connectives.

    The first filter is emitted without a connective; each later one is
    prefixed with ``AND`` / ``OR``.  Dialect-dependent kinds (JSON,
    full-text, date parts) are delegated to the compiler hooks.
    """

    def __init__(self, runtime: RuntimeContext, build_fn: BuildFn) -> None:
        self._runtime = runtime
        self._build_fn = build_fn

    def build(self, wheres: Sequence[WhereClause]) -> str:
        parts: list[str] = []
        for i, where in enumerate(wheres):
            sql = self.build_one(where)
            parts.append(sql if i == 0 else f"{where.boolean.value} {sql}")
        return " ".join(parts)

    def build_one(self, where: WhereClause) -> str:
        compiler = self._runtime.compiler
        bind = self._runtime.add_value
        kind = where.kind

        if kind is WhereKind.RAW:
            return self._runtime.add_raw(where.raw or "", where.bindings)

        if kind is WhereKind.BASIC:
            return f"{where.column} {compiler.comparison(where.operator)} {bind(where.value)}"

        if kind is WhereKind.BETWEEN:
            low, high = where.values
            keyword = "NOT BETWEEN" if where.negated else "BETWEEN"
            return f"{where.column} {keyword} {bind(low)} AND {bind(high)}"

        if kind is WhereKind.IN:
            keyword = "NOT IN" if where.negated else "IN"
            if where.query is not None:
                return f"{where.column} {keyword} ({self._build_fn(where.query)})"
            markers = self._runtime.add_values(where.values)
            return f"{where.column} {keyword} ({', '.join(markers)})"

        if kind is WhereKind.NULL:
            return f"{where.column} IS NOT NULL" if where.negated else f"{where.column} IS NULL"

        if kind is WhereKind.EXISTS:
            keyword = "NOT EXISTS" if where.negated else "EXISTS"
            return f"{keyword} ({self._build_fn(where.query)})"

        if kind is WhereKind.NESTED:
            return f"({self.build(where.wheres)})"

        if kind is WhereKind.COLUMN:
            return f"{where.column} {compiler.comparison(where.operator)} {where.second}"

        if kind is WhereKind.DATE:
            expr = compiler.date_part(where.column, where.date_part)
            return f"{expr} {compiler.comparison(where.operator)} {bind(where.value)}"

        if kind is WhereKind.JSON_CONTAINS:
            value = compiler.json_contains_value(where.value)
            return compiler.json_contains(where.column, bind(value))

        if kind is WhereKind.JSON_LENGTH:
            expr = compiler.json_length(where.column)
            return f"{expr} {compiler.comparison(where.operator)} {bind(where.value)}"

        if kind is WhereKind.JSON_PATH:
            expr = compiler.json_path(where.column, where.path)
            return f"{expr} {compiler.comparison(where.operator)} {bind(where.value)}"

        if kind is WhereKind.FULL_TEXT:
            return compiler.full_text(where.columns, bind(where.value))

        if kind is WhereKind.MULTI_COLUMN:
            op_sql = compiler.comparison(where.operator)
            joiner = " AND " if where.match_all else " OR "
            inner = joiner.join(f"{c} {op_sql} {bind(where.value)}" for c in where.columns)
            return f"NOT ({inner})" if where.negated else f"({inner})"

        raise CompilationError(f"Unknown filter kind: {kind!r}.", clause="WHERE")


class JoinClauseBuilder:
    """Builds a single ``JOIN … ON …`` fragment."""

    def __init__(self, runtime: RuntimeContext, where_builder: WhereClauseBuilder) -> None:
        self._runtime = runtime
        self._where = where_builder

    def build(self, join: JoinClause) -> str:
        compiler = self._runtime.compiler
        if join.kind is JoinType.CROSS:
            return f"CROSS JOIN {join.table}"
        sql = (
            f"{compiler.join_keyword(join.kind)} {join.table} "
            f"ON {join.first} {compiler.comparison(join.operator)} {join.second}"
        )
        for where in join.wheres:
            sql += f" {where.boolean.value} {self._where.build_one(where)}"
        return sql


class HavingClauseBuilder:
    """Builds the body of ``HAVING``."""

    def __init__(self, runtime: RuntimeContext) -> None:
        self._runtime = runtime

    def build(self, havings: Sequence[HavingClause]) -> str:
        parts: list[str] = []
        for i, having in enumerate(havings):
            sql = self._build_one(having)
            parts.append(sql if i == 0 else f"{having.boolean.value} {sql}")
        return " ".join(parts)

    def _build_one(self, having: HavingClause) -> str:
        if having.kind is HavingKind.RAW:
            return self._runtime.add_raw(having.raw or "", having.bindings)
        op_sql = self._runtime.compiler.comparison(having.operator)
        return f"{having.column} {op_sql} {self._runtime.add_value(having.value)}"


class GroupClauseBuilder:
    def __init__(self, runtime: RuntimeContext) -> None:
        self._runtime = runtime

    def build(self, groups: Sequence[GroupClause]) -> str:
        items = [
            self._runtime.add_raw(g.raw or "", g.bindings) if g.kind is GroupKind.RAW else g.column
            for g in groups
        ]
        return f"GROUP BY {', '.join(items)}"


class OrderClauseBuilder:
    def __init__(self, runtime: RuntimeContext) -> None:
        self._runtime = runtime

    def build(self, orders: Sequence[OrderClause]) -> str:
        items = [
            self._runtime.add_raw(o.raw or "", o.bindings)
            if o.kind is OrderKind.RAW
            else f"{o.column} {o.direction.value}"
            for o in orders
        ]
        return f"ORDER BY {', '.join(items)}"


class UnionClauseBuilder:
    """Builds ``UNION [ALL] (…)`` branches.

    Branches are compiled using ``build_fn`` so they share the outer
    :class:`RuntimeContext` and continue its placeholder numbering.
    """

    def __init__(self, build_fn: BuildFn) -> None:
        self._build_fn = build_fn

    def build(self, unions: Sequence[UnionClause]) -> str:
        parts = []
        for union in unions:
            keyword = "UNION ALL" if union.all else "UNION"
            parts.append(f"{keyword} ({self._build_fn(union.query)})")
        return " ".join(parts)
