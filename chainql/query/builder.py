"""Fluent query builder.

:class:`QueryBuilder` is the chaining surface over a
:class:`~chainql.schema.query.QueryState`.  Every mutating method appends a
clause (or sets a scalar) and returns the same builder; nothing is compiled
until :meth:`QueryBuilder.to_sql` or an execution method runs.

Sub-queries
-----------
Methods that accept a sub-query (``where_in``, ``where_exists``, ``union``)
take another ``QueryBuilder``, a bare ``QueryState`` or a callable.  A
callable receives a fresh builder on the same dialect and fills it in::

    db.table("users").where_exists(
        lambda q: q.table("orders").where_column("orders.user_id", "users.id")
    )

Nested groups
-------------
``where(callable)`` collects the filters the callable adds to a fresh
builder and renders them as one parenthesized group.

Concurrency
-----------
A builder is a plain mutable object.  Call :meth:`QueryBuilder.clone`
before handing variants of one query to different threads or tasks.
"""
from __future__ import annotations

import asyncio
import datetime
import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from chainql.compile import CompilerFactory
from chainql.compile.base import CompiledSQL, DebugInfo
from chainql.compile.builder import StatementCompiler
from chainql.config import ChainQLConfig
from chainql.errors import ConfigurationError, MalformedQueryError
from chainql.execute.collection import Collection
from chainql.execute.engine import ExecutionEngine
from chainql.execute.protocols import ExecResult
from chainql.paginate.chunking import ChunkCallback, Chunker, RowCallback
from chainql.paginate.meta import CursorPage, PaginationResult
from chainql.paginate.paginator import Paginator
from chainql.schema.clauses import (
    INVERSE_OPERATORS,
    Boolean,
    ConflictAction,
    DatePart,
    Direction,
    JoinClause,
    JoinType,
    LockMode,
    Operator,
    WhereClause,
    count_placeholders,
    group_column,
    group_raw,
    having_basic,
    having_raw,
    join_clause,
    order_column,
    order_raw,
    parse_operator,
    select_column,
    select_raw,
    union_clause,
    where_basic,
    where_between,
    where_column,
    where_date,
    where_exists,
    where_full_text,
    where_in,
    where_json_contains,
    where_json_length,
    where_json_path,
    where_multi_column,
    where_nested,
    where_null,
    where_raw,
)
from chainql.schema.query import QueryState

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING: Any = object()


def _now() -> datetime.datetime:
    return datetime.datetime.now()


def _operator_value(operator: Any, value: Any) -> tuple[Operator, Any]:
    """Resolve the two-argument ``(column, value)`` shorthand."""
    if value is _MISSING:
        return Operator.EQ, operator
    return parse_operator(operator), value


def _check_bindings(raw: str, bindings: Sequence[Any]) -> None:
    markers = count_placeholders(raw)
    if markers != len(bindings):
        raise MalformedQueryError(
            f"raw fragment has {markers} placeholder(s) but {len(bindings)} binding(s)",
            code="BINDING_COUNT_MISMATCH",
            details={"raw": raw, "markers": markers, "bindings": len(bindings)},
        )


# ---------------------------------------------------------------------------
# Join builder
# ---------------------------------------------------------------------------


class JoinBuilder:
    """Collects the ON conditions of a join built with a callable.

    The first :meth:`on` is the join's primary predicate; later ``on`` /
    ``or_on`` calls compare further columns and :meth:`where` compares a
    column with a bound value.
    """

    def __init__(self, kind: JoinType, table: str) -> None:
        self._kind = kind
        self._table = table
        self._first: tuple[str, Operator, str] | None = None
        self._wheres: list[WhereClause] = []

    def on(
        self, first: str, operator: Any, second: str = _MISSING, boolean: str = "and"
    ) -> JoinBuilder:
        if second is _MISSING:
            operator, second = Operator.EQ, operator
        op = parse_operator(operator)
        if self._first is None and boolean.lower() == "and":
            self._first = (first, op, second)
        else:
            self._wheres.append(where_column(first, op, second, boolean))
        return self

    def or_on(self, first: str, operator: Any, second: str = _MISSING) -> JoinBuilder:
        return self.on(first, operator, second, "or")

    def where(
        self, column: str, operator: Any, value: Any = _MISSING, boolean: str = "and"
    ) -> JoinBuilder:
        op, value = _operator_value(operator, value)
        self._wheres.append(where_basic(column, op, value, boolean))
        return self

    def or_where(self, column: str, operator: Any, value: Any = _MISSING) -> JoinBuilder:
        return self.where(column, operator, value, "or")

    def build(self) -> JoinClause:
        if self._first is None:
            raise MalformedQueryError(
                f"join on '{self._table}' needs an on() condition",
                code="INVALID_CLAUSE",
                details={"table": self._table},
            )
        first, op, second = self._first
        return join_clause(self._kind, self._table, first, op, second, self._wheres)


# ---------------------------------------------------------------------------
# Query builder
# ---------------------------------------------------------------------------


class QueryBuilder:
    """Chainable description of one query plus its execution shortcuts.

    Builders are normally obtained from :meth:`chainql.Database.table`, which
    attaches an execution engine.  A detached builder (created directly)
    can still compile with :meth:`to_sql`.

    Args:
        table: Target table.
        dialect: Registered dialect name; defaults to ``config.dialect``.
        config: Runtime settings (page sizes, chunk size, debug).
        engine: Execution engine; required by the execution methods.
        state: Existing query description to continue from.

    Example::

        sql, bindings = (
            QueryBuilder("users", dialect="postgres")
            .where("age", ">", 18)
            .where_in("role", ["admin", "user"])
            .order_by_desc("created_at")
            .limit(10)
            .to_sql()
        )
    """

    def __init__(
        self,
        table: str | None = None,
        dialect: str | None = None,
        *,
        config: ChainQLConfig | None = None,
        engine: ExecutionEngine | None = None,
        state: QueryState | None = None,
    ) -> None:
        self._config = config or ChainQLConfig()
        if engine is not None:
            self._statements = engine.statements
        else:
            self._statements = StatementCompiler(
                CompilerFactory.create(dialect or self._config.dialect)
            )
        self._engine = engine
        self._state = state if state is not None else QueryState()
        if table is not None:
            self._state.table = table
        self._scopes: list[Callable[[QueryBuilder], Any]] = []
        self._debug = self._config.debug
        self._last_debug: DebugInfo | None = None
        self._cancel_event: threading.Event | None = None
        self._slot_timeout: float | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> QueryState:
        return self._state

    @property
    def dialect(self) -> str:
        return self._statements.dialect

    @property
    def last_debug_info(self) -> DebugInfo | None:
        """The last statement compiled or executed while debugging is on."""
        return self._last_debug

    def clone(self) -> QueryBuilder:
        """Return an independent builder with a deep copy of the state."""
        other = self._spawn(self._state.clone())
        other._scopes = list(self._scopes)
        other._debug = self._debug
        other._cancel_event = self._cancel_event
        other._slot_timeout = self._slot_timeout
        return other

    def debug(self, enabled: bool = True) -> QueryBuilder:
        """Keep a :class:`DebugInfo` for each compiled statement and log it.

        Terminal operations record the statement they actually run, so after
        ``count()`` the debug info holds the aggregate query, not the plain
        SELECT.
        """
        self._debug = enabled
        return self

    def cancellable(
        self, event: threading.Event | None = None, timeout: float | None = None
    ) -> QueryBuilder:
        """Bound how long executions wait for a concurrency-limiter slot.

        Setting ``event`` from another thread, or waiting longer than
        ``timeout`` seconds, abandons the wait with
        :class:`~chainql.errors.QueryCancelledError`.  Has no effect when the
        database has no ``max_concurrency``.
        """
        self._cancel_event = event
        self._slot_timeout = timeout
        return self

    def to_sql(self) -> CompiledSQL:
        """Compile to SQL text and the ordered binding list."""
        self._apply_scopes()
        compiled = self._statements.compile_select(self._state)
        if self._debug:
            self._record_debug(compiled)
        return compiled

    def get_bindings(self) -> list[Any]:
        return list(self.to_sql().bindings)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def table(self, name: str) -> QueryBuilder:
        self._state.table = name
        return self

    def from_(self, name: str) -> QueryBuilder:
        return self.table(name)

    def select(self, *columns: str) -> QueryBuilder:
        """Add columns to the select list (``"col AS alias"`` is kept as is)."""
        for column in columns:
            self._state.selects.append(select_column(column))
        return self

    def select_as(self, column: str, alias: str) -> QueryBuilder:
        self._state.selects.append(select_column(column, alias))
        return self

    def select_raw(self, raw: str, *bindings: Any) -> QueryBuilder:
        """Add a raw select expression.

        Values for its ``?`` markers are bound after every other clause of
        the statement, not at the expression's position.
        """
        _check_bindings(raw, bindings)
        self._state.selects.append(select_raw(raw))
        self._state.select_bindings.extend(bindings)
        return self

    def distinct(self, enabled: bool = True) -> QueryBuilder:
        self._state.distinct = enabled
        return self

    # ------------------------------------------------------------------
    # Basic filters
    # ------------------------------------------------------------------

    def where(
        self,
        column: str | Mapping[str, Any] | Callable[[QueryBuilder], Any],
        operator: Any = _MISSING,
        value: Any = _MISSING,
        boolean: str | Boolean = Boolean.AND,
    ) -> QueryBuilder:
        """Add a filter.

        Forms:
            ``where("age", ">", 18)``; ``where("status", "active")`` (equality);
            ``where({"a": 1, "b": 2})`` (equality on each key);
            ``where(lambda q: q.where(...).or_where(...))`` (nested group).

        Comparing with ``None`` through ``=`` / ``!=`` renders
        ``IS NULL`` / ``IS NOT NULL``.
        """
        if callable(column):
            return self._nested(column, boolean)
        if isinstance(column, Mapping):
            for key, val in column.items():
                self.where(key, "=", val, boolean)
            return self
        if operator is _MISSING:
            raise MalformedQueryError(
                f"where('{column}') needs a value", code="INVALID_CLAUSE", details={"column": column}
            )
        op, value = _operator_value(operator, value)
        self._state.wheres.append(self._basic_or_null(column, op, value, boolean))
        return self

    def or_where(
        self,
        column: str | Mapping[str, Any] | Callable[[QueryBuilder], Any],
        operator: Any = _MISSING,
        value: Any = _MISSING,
    ) -> QueryBuilder:
        return self.where(column, operator, value, Boolean.OR)

    def where_not(
        self,
        column: str,
        operator: Any,
        value: Any = _MISSING,
        boolean: str | Boolean = Boolean.AND,
    ) -> QueryBuilder:
        """Add the logical complement of ``where(column, operator, value)``.

        The operator is inverted (``=`` to ``!=``, ``>`` to ``<=``, ``LIKE``
        to ``NOT LIKE`` and so on) rather than wrapped in ``NOT (...)``.
        """
        op, value = _operator_value(operator, value)
        try:
            inverse = INVERSE_OPERATORS[op]
        except KeyError:
            raise MalformedQueryError(
                f"operator '{op.value}' cannot be inverted",
                code="UNKNOWN_OPERATOR",
                details={"operator": op.value},
            ) from None
        self._state.wheres.append(self._basic_or_null(column, inverse, value, boolean))
        return self

    def or_where_not(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self.where_not(column, operator, value, Boolean.OR)

    def where_raw(self, raw: str, *bindings: Any) -> QueryBuilder:
        self._state.wheres.append(where_raw(raw, bindings))
        return self

    def or_where_raw(self, raw: str, *bindings: Any) -> QueryBuilder:
        self._state.wheres.append(where_raw(raw, bindings, Boolean.OR))
        return self

    def where_column(
        self,
        first: str,
        operator: Any,
        second: str = _MISSING,
        boolean: str | Boolean = Boolean.AND,
    ) -> QueryBuilder:
        """Compare two columns (``where_column("a", "b")`` means ``a = b``)."""
        op, second = _operator_value(operator, second)
        self._state.wheres.append(where_column(first, op, second, boolean))
        return self

    def or_where_column(self, first: str, operator: Any, second: str = _MISSING) -> QueryBuilder:
        return self.where_column(first, operator, second, Boolean.OR)

    # ------------------------------------------------------------------
    # BETWEEN / IN / NULL / EXISTS
    # ------------------------------------------------------------------

    def where_between(
        self,
        column: str,
        values: Iterable[Any],
        boolean: str | Boolean = Boolean.AND,
        negated: bool = False,
    ) -> QueryBuilder:
        self._state.wheres.append(where_between(column, values, boolean, negated))
        return self

    def or_where_between(self, column: str, values: Iterable[Any]) -> QueryBuilder:
        return self.where_between(column, values, Boolean.OR)

    def where_not_between(self, column: str, values: Iterable[Any]) -> QueryBuilder:
        return self.where_between(column, values, Boolean.AND, negated=True)

    def or_where_not_between(self, column: str, values: Iterable[Any]) -> QueryBuilder:
        return self.where_between(column, values, Boolean.OR, negated=True)

    def where_in(
        self,
        column: str,
        values: Any,
        boolean: str | Boolean = Boolean.AND,
        negated: bool = False,
    ) -> QueryBuilder:
        """``column IN (...)`` over a value list or a sub-query."""
        if isinstance(values, (QueryBuilder, QueryState)) or callable(values):
            values = self._sub_state(values)
        self._state.wheres.append(where_in(column, values, boolean, negated))
        return self

    def or_where_in(self, column: str, values: Any) -> QueryBuilder:
        return self.where_in(column, values, Boolean.OR)

    def where_not_in(self, column: str, values: Any) -> QueryBuilder:
        return self.where_in(column, values, Boolean.AND, negated=True)

    def or_where_not_in(self, column: str, values: Any) -> QueryBuilder:
        return self.where_in(column, values, Boolean.OR, negated=True)

    def where_null(
        self, column: str, boolean: str | Boolean = Boolean.AND, negated: bool = False
    ) -> QueryBuilder:
        self._state.wheres.append(where_null(column, boolean, negated))
        return self

    def or_where_null(self, column: str) -> QueryBuilder:
        return self.where_null(column, Boolean.OR)

    def where_not_null(self, column: str) -> QueryBuilder:
        return self.where_null(column, Boolean.AND, negated=True)

    def or_where_not_null(self, column: str) -> QueryBuilder:
        return self.where_null(column, Boolean.OR, negated=True)

    def where_exists(
        self, query: Any, boolean: str | Boolean = Boolean.AND, negated: bool = False
    ) -> QueryBuilder:
        self._state.wheres.append(where_exists(self._sub_state(query), boolean, negated))
        return self

    def or_where_exists(self, query: Any) -> QueryBuilder:
        return self.where_exists(query, Boolean.OR)

    def where_not_exists(self, query: Any) -> QueryBuilder:
        return self.where_exists(query, Boolean.AND, negated=True)

    def or_where_not_exists(self, query: Any) -> QueryBuilder:
        return self.where_exists(query, Boolean.OR, negated=True)

    # ------------------------------------------------------------------
    # Date filters
    # ------------------------------------------------------------------

    def _date(
        self, column: str, part: DatePart, operator: Any, value: Any, boolean: str | Boolean
    ) -> QueryBuilder:
        op, value = _operator_value(operator, value)
        self._state.wheres.append(where_date(column, part, op, value, boolean))
        return self

    def where_date(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.DATE, operator, value, Boolean.AND)

    def or_where_date(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.DATE, operator, value, Boolean.OR)

    def where_time(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.TIME, operator, value, Boolean.AND)

    def or_where_time(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.TIME, operator, value, Boolean.OR)

    def where_day(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.DAY, operator, value, Boolean.AND)

    def or_where_day(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.DAY, operator, value, Boolean.OR)

    def where_month(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.MONTH, operator, value, Boolean.AND)

    def or_where_month(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.MONTH, operator, value, Boolean.OR)

    def where_year(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.YEAR, operator, value, Boolean.AND)

    def or_where_year(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._date(column, DatePart.YEAR, operator, value, Boolean.OR)

    # Relative to the current moment; "today" helpers compare the date part.

    def where_past(self, column: str) -> QueryBuilder:
        return self.where(column, "<", _now())

    def where_future(self, column: str) -> QueryBuilder:
        return self.where(column, ">", _now())

    def where_now_or_past(self, column: str) -> QueryBuilder:
        return self.where(column, "<=", _now())

    def where_now_or_future(self, column: str) -> QueryBuilder:
        return self.where(column, ">=", _now())

    def where_today(self, column: str) -> QueryBuilder:
        return self.where_date(column, "=", _now().date().isoformat())

    def where_before_today(self, column: str) -> QueryBuilder:
        return self.where_date(column, "<", _now().date().isoformat())

    def where_after_today(self, column: str) -> QueryBuilder:
        return self.where_date(column, ">", _now().date().isoformat())

    def where_today_or_before(self, column: str) -> QueryBuilder:
        return self.where_date(column, "<=", _now().date().isoformat())

    def where_today_or_after(self, column: str) -> QueryBuilder:
        return self.where_date(column, ">=", _now().date().isoformat())

    # ------------------------------------------------------------------
    # JSON, full-text and multi-column filters
    # ------------------------------------------------------------------

    def where_json_contains(
        self, column: str, value: Any, boolean: str | Boolean = Boolean.AND
    ) -> QueryBuilder:
        self._state.wheres.append(where_json_contains(column, value, boolean))
        return self

    def or_where_json_contains(self, column: str, value: Any) -> QueryBuilder:
        return self.where_json_contains(column, value, Boolean.OR)

    def where_json_length(
        self,
        column: str,
        operator: Any,
        value: Any = _MISSING,
        boolean: str | Boolean = Boolean.AND,
    ) -> QueryBuilder:
        op, value = _operator_value(operator, value)
        self._state.wheres.append(where_json_length(column, op, value, boolean))
        return self

    def or_where_json_length(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self.where_json_length(column, operator, value, Boolean.OR)

    def where_json_path(
        self,
        column: str,
        path: str,
        operator: Any,
        value: Any = _MISSING,
        boolean: str | Boolean = Boolean.AND,
    ) -> QueryBuilder:
        """Compare the value at dotted ``path`` inside a JSON column."""
        op, value = _operator_value(operator, value)
        self._state.wheres.append(where_json_path(column, path, op, value, boolean))
        return self

    def or_where_json_path(
        self, column: str, path: str, operator: Any, value: Any = _MISSING
    ) -> QueryBuilder:
        return self.where_json_path(column, path, operator, value, Boolean.OR)

    def where_full_text(
        self,
        columns: str | Iterable[str],
        value: str,
        boolean: str | Boolean = Boolean.AND,
    ) -> QueryBuilder:
        if isinstance(columns, str):
            columns = [columns]
        self._state.wheres.append(where_full_text(columns, value, boolean))
        return self

    def or_where_full_text(self, columns: str | Iterable[str], value: str) -> QueryBuilder:
        return self.where_full_text(columns, value, Boolean.OR)

    def _multi(
        self,
        columns: Iterable[str],
        operator: Any,
        value: Any,
        boolean: str | Boolean,
        match_all: bool = False,
        negated: bool = False,
    ) -> QueryBuilder:
        op, value = _operator_value(operator, value)
        self._state.wheres.append(
            where_multi_column(columns, op, value, match_all, negated, boolean)
        )
        return self

    def where_any(self, columns: Iterable[str], operator: Any, value: Any = _MISSING) -> QueryBuilder:
        """Match when any of ``columns`` satisfies the comparison."""
        return self._multi(columns, operator, value, Boolean.AND)

    def or_where_any(self, columns: Iterable[str], operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._multi(columns, operator, value, Boolean.OR)

    def where_all(self, columns: Iterable[str], operator: Any, value: Any = _MISSING) -> QueryBuilder:
        """Match when every one of ``columns`` satisfies the comparison."""
        return self._multi(columns, operator, value, Boolean.AND, match_all=True)

    def or_where_all(self, columns: Iterable[str], operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._multi(columns, operator, value, Boolean.OR, match_all=True)

    def where_none(self, columns: Iterable[str], operator: Any, value: Any = _MISSING) -> QueryBuilder:
        """Match when none of ``columns`` satisfies the comparison."""
        return self._multi(columns, operator, value, Boolean.AND, negated=True)

    def or_where_none(self, columns: Iterable[str], operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self._multi(columns, operator, value, Boolean.OR, negated=True)

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    def join(
        self,
        table: str,
        first: str | Callable[[JoinBuilder], Any],
        operator: Any = _MISSING,
        second: str = _MISSING,
        kind: str | JoinType = JoinType.INNER,
    ) -> QueryBuilder:
        """Add a join.

        ``join("posts", "users.id", "posts.user_id")`` defaults the operator
        to ``=``.  Pass a callable instead of ``first`` to build the ON
        conditions with a :class:`JoinBuilder`.
        """
        join_type = JoinType(kind.value if isinstance(kind, JoinType) else str(kind).upper())
        if callable(first):
            jb = JoinBuilder(join_type, table)
            first(jb)
            self._state.joins.append(jb.build())
            return self
        if second is _MISSING:
            operator, second = Operator.EQ, operator
        self._state.joins.append(join_clause(join_type, table, first, operator, second))
        return self

    def left_join(self, table: str, first: Any, operator: Any = _MISSING, second: str = _MISSING) -> QueryBuilder:
        return self.join(table, first, operator, second, JoinType.LEFT)

    def right_join(self, table: str, first: Any, operator: Any = _MISSING, second: str = _MISSING) -> QueryBuilder:
        return self.join(table, first, operator, second, JoinType.RIGHT)

    def full_join(self, table: str, first: Any, operator: Any = _MISSING, second: str = _MISSING) -> QueryBuilder:
        return self.join(table, first, operator, second, JoinType.FULL)

    def cross_join(self, table: str) -> QueryBuilder:
        self._state.joins.append(join_clause(JoinType.CROSS, table))
        return self

    # ------------------------------------------------------------------
    # Grouping and ordering
    # ------------------------------------------------------------------

    def group_by(self, *columns: str) -> QueryBuilder:
        for column in columns:
            self._state.groups.append(group_column(column))
        return self

    def group_by_raw(self, raw: str, *bindings: Any) -> QueryBuilder:
        self._state.groups.append(group_raw(raw, bindings))
        return self

    def having(
        self,
        column: str,
        operator: Any,
        value: Any = _MISSING,
        boolean: str | Boolean = Boolean.AND,
    ) -> QueryBuilder:
        op, value = _operator_value(operator, value)
        self._state.havings.append(having_basic(column, op, value, boolean))
        return self

    def or_having(self, column: str, operator: Any, value: Any = _MISSING) -> QueryBuilder:
        return self.having(column, operator, value, Boolean.OR)

    def having_raw(self, raw: str, *bindings: Any) -> QueryBuilder:
        self._state.havings.append(having_raw(raw, bindings))
        return self

    def or_having_raw(self, raw: str, *bindings: Any) -> QueryBuilder:
        self._state.havings.append(having_raw(raw, bindings, Boolean.OR))
        return self

    def order_by(self, column: str, direction: str | Direction = Direction.ASC) -> QueryBuilder:
        self._state.orders.append(order_column(column, direction))
        return self

    def order_by_desc(self, column: str) -> QueryBuilder:
        return self.order_by(column, Direction.DESC)

    def order_by_raw(self, raw: str, *bindings: Any) -> QueryBuilder:
        self._state.orders.append(order_raw(raw, bindings))
        return self

    def latest(self, column: str = "created_at") -> QueryBuilder:
        return self.order_by(column, Direction.DESC)

    def oldest(self, column: str = "created_at") -> QueryBuilder:
        return self.order_by(column, Direction.ASC)

    # ------------------------------------------------------------------
    # Paging, unions and locks
    # ------------------------------------------------------------------

    def limit(self, value: int) -> QueryBuilder:
        self._set_scalar("limit", value)
        return self

    def offset(self, value: int) -> QueryBuilder:
        self._set_scalar("offset", value)
        return self

    def take(self, value: int) -> QueryBuilder:
        return self.limit(value)

    def skip(self, value: int) -> QueryBuilder:
        return self.offset(value)

    def for_page(self, page: int, per_page: int | None = None) -> QueryBuilder:
        """Set LIMIT / OFFSET for a 1-based page number."""
        per_page = per_page or self._config.default_per_page
        page = max(page, 1)
        return self.limit(per_page).offset((page - 1) * per_page)

    def union(self, query: Any, all: bool = False) -> QueryBuilder:
        self._state.unions.append(union_clause(self._sub_state(query), all))
        return self

    def union_all(self, query: Any) -> QueryBuilder:
        return self.union(query, all=True)

    def lock(self, mode: str | LockMode) -> QueryBuilder:
        if not isinstance(mode, LockMode):
            try:
                mode = LockMode(" ".join(str(mode).split()).upper())
            except ValueError:
                raise MalformedQueryError(
                    f"unknown lock mode '{mode}'",
                    code="UNKNOWN_LOCK",
                    details={"allowed": [m.value for m in LockMode]},
                ) from None
        self._state.lock = mode
        return self

    def for_update(self) -> QueryBuilder:
        return self.lock(LockMode.FOR_UPDATE)

    def for_share(self) -> QueryBuilder:
        return self.lock(LockMode.FOR_SHARE)

    # ------------------------------------------------------------------
    # Conditional construction
    # ------------------------------------------------------------------

    def when(
        self,
        condition: Any,
        fn: Callable[[QueryBuilder], Any],
        default: Callable[[QueryBuilder], Any] | None = None,
    ) -> QueryBuilder:
        """Apply ``fn`` only when ``condition`` is truthy (else ``default``)."""
        if condition:
            fn(self)
        elif default is not None:
            default(self)
        return self

    def unless(
        self,
        condition: Any,
        fn: Callable[[QueryBuilder], Any],
        default: Callable[[QueryBuilder], Any] | None = None,
    ) -> QueryBuilder:
        return self.when(not condition, fn, default)

    def tap(self, fn: Callable[[QueryBuilder], Any]) -> QueryBuilder:
        """Call ``fn`` with the builder and ignore its result."""
        fn(self)
        return self

    def scope(self, *fns: Callable[[QueryBuilder], Any]) -> QueryBuilder:
        """Register reusable constraints applied once, just before compiling."""
        self._scopes.extend(fns)
        return self

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get(self) -> Collection:
        return self._run().get(self._state)

    def first(self) -> dict[str, Any] | None:
        return self._run().first(self._state)

    def first_or_fail(self) -> dict[str, Any]:
        return self._run().first_or_fail(self._state)

    def find(self, key_value: Any, key: str = "id") -> dict[str, Any]:
        return self._run().find(self._state, key_value, key)

    def pluck(self, column: str) -> list[Any]:
        return self._run().pluck(self._state, column)

    def value(self, column: str) -> Any:
        return self._run().value(self._state, column)

    def exists(self) -> bool:
        return self._run().exists(self._state)

    def doesnt_exist(self) -> bool:
        return not self.exists()

    def count(self, column: str = "*") -> int:
        return self._run().count(self._state, column)

    def sum(self, column: str) -> Any:
        return self._run().sum(self._state, column)

    def avg(self, column: str) -> Any:
        return self._run().avg(self._state, column)

    def min(self, column: str) -> Any:
        return self._run().min(self._state, column)

    def max(self, column: str) -> Any:
        return self._run().max(self._state, column)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, values: Mapping[str, Any]) -> ExecResult:
        return self._run().insert(self._state, values)

    def insert_get_id(self, values: Mapping[str, Any], key: str = "id") -> Any:
        return self._run().insert_get_id(self._state, values, key)

    def insert_batch(self, rows: Sequence[Mapping[str, Any]]) -> ExecResult:
        return self._run().insert_batch(self._state, rows)

    def update(self, values: Mapping[str, Any]) -> int:
        return self._run().update(self._state, values)

    def delete(self) -> int:
        return self._run().delete(self._state)

    def increment(
        self, column: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None
    ) -> int:
        return self._run().increment(self._state, column, amount, extra)

    def decrement(
        self, column: str, amount: int | float = 1, extra: Mapping[str, Any] | None = None
    ) -> int:
        return self._run().decrement(self._state, column, amount, extra)

    def update_json(self, column: str, path: str, value: Any) -> int:
        return self._run().update_json(self._state, column, path, value)

    def update_json_remove(self, column: str, path: str) -> int:
        return self._run().update_json_remove(self._state, column, path)

    def upsert(
        self,
        rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        conflict_target: Sequence[str] = (),
        update_columns: Sequence[str] | None = None,
        action: ConflictAction | str = ConflictAction.DO_UPDATE,
    ) -> ExecResult:
        return self._run().upsert(self._state, rows, conflict_target, update_columns, action)

    def insert_or_ignore(
        self, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> ExecResult:
        return self._run().insert_or_ignore(self._state, rows)

    def replace(self, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]) -> ExecResult:
        return self._run().replace(self._state, rows)

    def update_or_insert(
        self, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None
    ) -> bool:
        return self._run().update_or_insert(self._state, attributes, values)

    def update_or_create(
        self, attributes: Mapping[str, Any], values: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        return self._run().update_or_create(self._state, attributes, values)

    # ------------------------------------------------------------------
    # Pagination and chunking
    # ------------------------------------------------------------------

    def paginate(self, page: int = 1, per_page: int | None = None) -> PaginationResult:
        return self._paginator().paginate(self._prepared(), page, per_page)

    def simple_paginate(self, page: int = 1, per_page: int | None = None) -> PaginationResult:
        return self._paginator().simple_paginate(self._prepared(), page, per_page)

    def cursor_paginate(
        self, per_page: int | None = None, cursor: Any = None, column: str = "id"
    ) -> CursorPage:
        return self._paginator().cursor_paginate(self._prepared(), per_page, cursor, column)

    def chunk(self, size: int, callback: ChunkCallback) -> bool:
        return self._chunker().chunk(self._prepared(), size, callback)

    def chunk_by_id(self, size: int, callback: ChunkCallback, column: str = "id") -> bool:
        return self._chunker().chunk_by_id(self._prepared(), size, callback, column)

    def each(self, callback: RowCallback, size: int | None = None) -> bool:
        return self._chunker().each(self._prepared(), callback, size)

    def each_by_id(
        self, callback: RowCallback, size: int | None = None, column: str = "id"
    ) -> bool:
        return self._chunker().each_by_id(self._prepared(), callback, size, column)

    def lazy(self, size: int | None = None) -> Iterator[dict[str, Any]]:
        return self._chunker().lazy(self._prepared(), size)

    def lazy_by_id(self, size: int | None = None, column: str = "id") -> Iterator[dict[str, Any]]:
        return self._chunker().lazy_by_id(self._prepared(), size, column)

    def cursor(self) -> Iterator[dict[str, Any]]:
        return self._chunker().cursor(self._prepared())

    # ------------------------------------------------------------------
    # Async variants
    # ------------------------------------------------------------------
    # Each runs the synchronous call on a worker thread against a snapshot
    # of the current state.  Cancelling the awaiting task signals the worker,
    # so a call still queued for a limiter slot gives up instead of running.

    async def get_async(self) -> Collection:
        state = self._prepared()
        return await self._offload(lambda engine: engine.get(state))

    async def first_async(self) -> dict[str, Any] | None:
        state = self._prepared()
        return await self._offload(lambda engine: engine.first(state))

    async def count_async(self, column: str = "*") -> int:
        state = self._prepared()
        return await self._offload(lambda engine: engine.count(state, column))

    async def paginate_async(self, page: int = 1, per_page: int | None = None) -> PaginationResult:
        state = self._prepared()
        per_page_default = self._config.default_per_page
        return await self._offload(
            lambda engine: Paginator(engine, per_page_default).paginate(state, page, per_page)
        )

    async def _offload(self, call: Callable[[ExecutionEngine], T]) -> T:
        cancel = threading.Event()
        engine = self._run(cancel)
        try:
            return await asyncio.to_thread(call, engine)
        except asyncio.CancelledError:
            cancel.set()
            raise

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _spawn(self, state: QueryState | None = None) -> QueryBuilder:
        other = QueryBuilder.__new__(QueryBuilder)
        other._config = self._config
        other._statements = self._statements
        other._engine = self._engine
        other._state = state if state is not None else QueryState()
        other._scopes = []
        other._debug = False
        other._last_debug = None
        other._cancel_event = self._cancel_event
        other._slot_timeout = self._slot_timeout
        return other

    def _nested(self, fn: Callable[[QueryBuilder], Any], boolean: str | Boolean) -> QueryBuilder:
        sub = self._spawn()
        fn(sub)
        if sub._state.wheres:
            self._state.wheres.append(where_nested(sub._state.wheres, boolean))
        return self

    def _sub_state(self, query: Any) -> QueryState:
        if isinstance(query, QueryBuilder):
            return query._prepared()
        if isinstance(query, QueryState):
            return query.clone()
        if callable(query):
            sub = self._spawn()
            query(sub)
            return sub._prepared()
        raise MalformedQueryError(
            f"expected a sub-query, got {type(query).__name__}", code="INVALID_SUBQUERY"
        )

    @staticmethod
    def _basic_or_null(column: str, op: Operator, value: Any, boolean: str | Boolean) -> WhereClause:
        if value is None and op is Operator.EQ:
            return where_null(column, boolean)
        if value is None and op in (Operator.NE, Operator.NE_ALT):
            return where_null(column, boolean, negated=True)
        return where_basic(column, op, value, boolean)

    def _set_scalar(self, field: str, value: int) -> None:
        try:
            setattr(self._state, field, value)
        except PydanticValidationError as exc:
            raise MalformedQueryError(
                f"{field} must be a non-negative integer, got {value!r}",
                code="INVALID_CLAUSE",
                details={field: value},
            ) from exc

    def _apply_scopes(self) -> None:
        scopes, self._scopes = self._scopes, []
        for fn in scopes:
            fn(self)

    def _prepared(self) -> QueryState:
        """Apply pending scopes and return a snapshot of the state."""
        self._apply_scopes()
        return self._state.clone()

    def _record_debug(self, compiled: CompiledSQL) -> None:
        self._last_debug = compiled.debug_info()
        logger.debug("compiled %s: %s %r", compiled.dialect, compiled.sql, compiled.bindings)

    def _run(self, cancel_event: threading.Event | None = None) -> ExecutionEngine:
        if self._engine is None:
            raise ConfigurationError(
                "query builder is not bound to an executor; create it with Database.table()",
                field="executor",
            )
        self._apply_scopes()
        return self._engine.with_options(
            on_compiled=self._record_debug if self._debug else None,
            cancel_event=cancel_event or self._cancel_event,
            slot_timeout=self._slot_timeout,
        )

    def _paginator(self) -> Paginator:
        return Paginator(self._run(), self._config.default_per_page)

    def _chunker(self) -> Chunker:
        return Chunker(self._run(), self._config.default_chunk_size)
