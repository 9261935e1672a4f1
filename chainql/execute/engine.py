"""Execution engine: compile, hand off to the executor, materialize.

``ExecutionEngine`` is the only place that talks to the execution
collaborator.  Every public method takes a :class:`QueryState`, derives the
statement it needs from a *clone* of it (the caller's state is never
mutated), compiles through :class:`~chainql.compile.builder.StatementCompiler`
and runs the result.

Failure handling
----------------
* Collaborator failures are wrapped in
  :class:`~chainql.errors.QueryExecutionError` (``raise … from``) and are
  never retried.
* A failure while reading any row raises
  :class:`~chainql.errors.RowIterationError`; no partial collection is
  ever returned.
* ``first_or_fail`` / ``find`` raise
  :class:`~chainql.errors.RecordNotFoundError` on an empty result.

Optional layers (result cache, concurrency limiter, query log) are passed in
by :class:`~chainql.database.Database` according to its config; each one is
skipped when ``None``.
"""
from __future__ import annotations

import contextlib
import copy
import datetime
import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

from chainql.compile.base import CompiledSQL
from chainql.compile.builder import StatementCompiler
from chainql.errors import (
    AggregateTypeError,
    ChainQLError,
    MalformedQueryError,
    QueryExecutionError,
    RecordNotFoundError,
    RowIterationError,
)
from chainql.execute.collection import Collection
from chainql.execute.protocols import ExecResult, Executor
from chainql.optimize.cache import QueryCache
from chainql.optimize.limiter import ConcurrencyLimiter
from chainql.optimize.query_log import QueryLog
from chainql.schema.clauses import (
    ConflictAction,
    select_column,
    select_raw,
    where_basic,
)
from chainql.schema.query import QueryState

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Aggregate functions supported by :meth:`ExecutionEngine.aggregate`.
AGGREGATE_FUNCTIONS: frozenset[str] = frozenset({"COUNT", "SUM", "AVG", "MIN", "MAX"})


# ---------------------------------------------------------------------------
# Value normalisation
# ---------------------------------------------------------------------------


def normalize_value(value: Any) -> Any:
    """Decode UTF-8 byte-like scan results to ``str``.

    Binary values that are not valid UTF-8 (images, hashes, packed data)
    are returned as ``bytes``.  Everything else passes through.
    """
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value)
    return value


def normalize_row(row: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key): normalize_value(val) for key, val in dict(row).items()}


def normalize_aggregate(function: str, value: Any) -> Any:
    """Interpret an aggregate scan result as a number.

    Native ints/floats, ``Decimal``, numeric text and byte buffers holding
    numeric text are all accepted.  ``NULL`` becomes ``0`` for COUNT/SUM and
    stays ``None`` for AVG/MIN/MAX.  MIN/MAX over dates return the date.

    Raises:
        AggregateTypeError: If the value cannot be read as a number.
    """
    fn = function.upper()
    if value is None:
        return 0 if fn in ("COUNT", "SUM") else None
    if isinstance(value, bool):
        raise AggregateTypeError(fn, value)
    if fn in ("MIN", "MAX") and isinstance(value, (datetime.date, datetime.time)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if fn == "COUNT" else value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = normalize_value(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise AggregateTypeError(fn, value) from None
        if not number.is_finite():
            raise AggregateTypeError(fn, value)
        return int(number) if fn == "COUNT" else float(number)
    raise AggregateTypeError(fn, value)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ExecutionEngine:
    """Runs query descriptions against an :class:`Executor`.

    Args:
        statements: Statement compiler for the active dialect.
        executor: The execution collaborator.
        cache: Optional result cache consulted by :meth:`get`.
        limiter: Optional bound on simultaneous executions.
        query_log: Optional log of every execution.
        on_compiled: Called with each statement right before it runs (or
            is answered from the cache).
        cancel_event: Set by the caller to abandon a wait for a limiter
            slot.
        slot_timeout: Seconds to wait for a limiter slot before giving up.
    """

    def __init__(
        self,
        statements: StatementCompiler,
        executor: Executor,
        cache: QueryCache | None = None,
        limiter: ConcurrencyLimiter | None = None,
        query_log: QueryLog | None = None,
        on_compiled: Callable[[CompiledSQL], None] | None = None,
        cancel_event: threading.Event | None = None,
        slot_timeout: float | None = None,
    ) -> None:
        self._statements = statements
        self._executor = executor
        self._cache = cache
        self._limiter = limiter
        self._query_log = query_log
        self._on_compiled = on_compiled
        self._cancel_event = cancel_event
        self._slot_timeout = slot_timeout

    def with_options(
        self,
        on_compiled: Callable[[CompiledSQL], None] | None = None,
        cancel_event: threading.Event | None = None,
        slot_timeout: float | None = None,
    ) -> ExecutionEngine:
        """Return a copy sharing every layer, with the given per-call options.

        Options left as ``None`` keep this engine's value.
        """
        engine = copy.copy(self)
        if on_compiled is not None:
            engine._on_compiled = on_compiled
        if cancel_event is not None:
            engine._cancel_event = cancel_event
        if slot_timeout is not None:
            engine._slot_timeout = slot_timeout
        return engine

    @property
    def statements(self) -> StatementCompiler:
        return self._statements

    @property
    def executor(self) -> Executor:
        return self._executor

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get(self, state: QueryState) -> Collection:
        """Run the SELECT described by ``state`` and materialize every row."""
        compiled = self._statements.compile_select(state)
        return Collection(self.fetch(compiled, "select"))

    def first(self, state: QueryState) -> dict[str, Any] | None:
        """Return the first row (the query is run with ``LIMIT 1``)."""
        clone = state.clone()
        clone.limit = 1
        return self.get(clone).first()

    def first_or_fail(self, state: QueryState) -> dict[str, Any]:
        row = self.first(state)
        if row is None:
            raise RecordNotFoundError(state.table)
        return row

    def find(self, state: QueryState, key_value: Any, key: str = "id") -> dict[str, Any]:
        """Return the row whose ``key`` equals ``key_value``.

        Raises:
            RecordNotFoundError: If no row matches.
        """
        clone = state.clone()
        clone.wheres.append(where_basic(key, "=", key_value))
        row = self.first(clone)
        if row is None:
            raise RecordNotFoundError(state.table, key_value)
        return row

    def pluck(self, state: QueryState, column: str) -> list[Any]:
        """Return the values of one column across the result set."""
        clone = state.clone()
        clone.selects = [select_column(column)]
        clone.select_bindings = []
        name = result_name(column)
        return [row.get(name) for row in self.get(clone)]

    def value(self, state: QueryState, column: str) -> Any:
        """Return ``column`` from the first row, or ``None``."""
        clone = state.clone()
        clone.selects = [select_column(column)]
        clone.select_bindings = []
        row = self.first(clone)
        return None if row is None else row.get(result_name(column))

    def exists(self, state: QueryState) -> bool:
        clone = state.clone()
        clone.selects = [select_raw("1 AS present")]
        clone.select_bindings = []
        clone.orders = []
        return self.first(clone) is not None

    def aggregate(self, state: QueryState, function: str, column: str = "*") -> Any:
        """Run ``FUNCTION(column)`` over the query and normalize the result.

        Grouped, distinct or unioned queries are wrapped as a derived table
        so the aggregate covers the rows the query would return.
        """
        fn = function.upper()
        if fn not in AGGREGATE_FUNCTIONS:
            raise MalformedQueryError(
                f"unknown aggregate function '{function}'",
                code="UNKNOWN_AGGREGATE",
                details={"allowed": sorted(AGGREGATE_FUNCTIONS)},
            )
        clone = state.clone()
        clone.orders = []
        clone.limit = None
        clone.offset = None
        clone.lock = None

        if clone.groups or clone.distinct or clone.unions:
            inner = self._statements.compile_select(clone)
            outer_col = "*" if column == "*" else result_name(column)
            compiled = CompiledSQL(
                sql=f"SELECT {fn}({outer_col}) AS aggregate FROM ({inner.sql}) AS aggregate_table",
                bindings=inner.bindings,
                dialect=inner.dialect,
            )
        else:
            clone.selects = [select_raw(f"{fn}({column}) AS aggregate")]
            clone.select_bindings = []
            compiled = self._statements.compile_select(clone)

        rows = self.fetch(compiled, fn.lower(), use_cache=False)
        raw = rows[0].get("aggregate") if rows else None
        return normalize_aggregate(fn, raw)

    def count(self, state: QueryState, column: str = "*") -> int:
        return self.aggregate(state, "COUNT", column)

    def sum(self, state: QueryState, column: str) -> Any:
        return self.aggregate(state, "SUM", column)

    def avg(self, state: QueryState, column: str) -> Any:
        return self.aggregate(state, "AVG", column)

    def min(self, state: QueryState, column: str) -> Any:
        return self.aggregate(state, "MIN", column)

    def max(self, state: QueryState, column: str) -> Any:
        return self.aggregate(state, "MAX", column)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, state: QueryState, values: Mapping[str, Any]) -> ExecResult:
        compiled = self._statements.compile_insert(state.table, values)
        return self.run(compiled, "insert")

    def insert_get_id(
        self, state: QueryState, values: Mapping[str, Any], key: str = "id"
    ) -> Any:
        """Insert one row and return its generated key.

        Dialects with ``RETURNING`` read the key from the statement; others
        use the driver's last-insert id.
        """
        compiled = self._statements.compile_insert(state.table, values, returning=key)
        if self._statements.compiler.supports_returning:
            row = self.fetch_one(compiled, "insert")
            return None if row is None else row.get(key)
        return self.run(compiled, "insert").last_insert_id

    def insert_batch(
        self, state: QueryState, rows: Sequence[Mapping[str, Any]]
    ) -> ExecResult:
        compiled = self._statements.compile_insert_batch(state.table, rows)
        return self.run(compiled, "insert batch")

    def update(self, state: QueryState, values: Mapping[str, Any]) -> int:
        compiled = self._statements.compile_update(state, values)
        return self.run(compiled, "update").rows_affected

    def delete(self, state: QueryState) -> int:
        compiled = self._statements.compile_delete(state)
        return self.run(compiled, "delete").rows_affected

    def increment(
        self,
        state: QueryState,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        compiled = self._statements.compile_increment(state, column, amount, extra)
        return self.run(compiled, "increment").rows_affected

    def decrement(
        self,
        state: QueryState,
        column: str,
        amount: int | float = 1,
        extra: Mapping[str, Any] | None = None,
    ) -> int:
        compiled = self._statements.compile_increment(state, column, -amount, extra)
        return self.run(compiled, "decrement").rows_affected

    def update_json(self, state: QueryState, column: str, path: str, value: Any) -> int:
        compiled = self._statements.compile_json_update(state, column, path, value)
        return self.run(compiled, "json update").rows_affected

    def update_json_remove(self, state: QueryState, column: str, path: str) -> int:
        compiled = self._statements.compile_json_remove(state, column, path)
        return self.run(compiled, "json remove").rows_affected

    def upsert(
        self,
        state: QueryState,
        rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        conflict_target: Sequence[str] = (),
        update_columns: Sequence[str] | None = None,
        action: ConflictAction | str = ConflictAction.DO_UPDATE,
    ) -> ExecResult:
        compiled = self._statements.compile_upsert(
            state.table,
            _as_rows(rows),
            conflict_target=conflict_target,
            update_columns=update_columns,
            action=ConflictAction(action),
        )
        return self.run(compiled, "upsert")

    def insert_or_ignore(
        self, state: QueryState, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> ExecResult:
        compiled = self._statements.compile_insert_or_ignore(state.table, _as_rows(rows))
        return self.run(compiled, "insert or ignore")

    def replace(
        self, state: QueryState, rows: Mapping[str, Any] | Sequence[Mapping[str, Any]]
    ) -> ExecResult:
        compiled = self._statements.compile_replace(state.table, _as_rows(rows))
        return self.run(compiled, "replace")

    def update_or_insert(
        self,
        state: QueryState,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> bool:
        """Update the rows matching ``attributes`` or insert a new one.

        Returns:
            ``True`` when a row was inserted, ``False`` when rows were updated.
        """
        values = dict(values or {})
        matched = self._match(state, attributes)
        if self.first(matched) is not None:
            if values:
                self.update(matched, values)
            return False
        self.insert(state, {**attributes, **values})
        return True

    def update_or_create(
        self,
        state: QueryState,
        attributes: Mapping[str, Any],
        values: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Like :meth:`update_or_insert` but return the resulting record."""
        values = dict(values or {})
        matched = self._match(state, attributes)
        record = self.first(matched)
        if record is not None:
            if values:
                self.update(matched, values)
            record.update(values)
            return record
        created = {**attributes, **values}
        self.insert(state, created)
        return created

    @staticmethod
    def _match(state: QueryState, attributes: Mapping[str, Any]) -> QueryState:
        clone = state.clone()
        for column, val in attributes.items():
            clone.wheres.append(where_basic(column, "=", val))
        return clone

    # ------------------------------------------------------------------
    # Low-level execution
    # ------------------------------------------------------------------

    def fetch(
        self, compiled: CompiledSQL, action: str = "select", use_cache: bool = True
    ) -> list[dict[str, Any]]:
        """Run a row-returning statement and materialize every row."""
        if use_cache and self._cache is not None:
            cached = self._cache.get(compiled.sql, compiled.bindings)
            if cached is not None:
                self._observe(compiled)
                return cached
        rows = self._timed(
            compiled, action, lambda: _materialize(self._executor.query(compiled.sql, compiled.bindings))
        )
        if use_cache and self._cache is not None:
            self._cache.set(compiled.sql, compiled.bindings, rows)
        return rows

    def fetch_one(self, compiled: CompiledSQL, action: str = "select") -> dict[str, Any] | None:
        def call() -> dict[str, Any] | None:
            row = self._executor.query_one(compiled.sql, compiled.bindings)
            return None if row is None else _materialize([row])[0]

        return self._timed(compiled, action, call)

    def run(self, compiled: CompiledSQL, action: str) -> ExecResult:
        """Run a statement that returns no rows."""
        return self._timed(
            compiled, action, lambda: self._executor.execute(compiled.sql, compiled.bindings)
        )

    def stream(self, compiled: CompiledSQL, action: str = "cursor") -> Iterator[dict[str, Any]]:
        """Yield rows one at a time from a single execution.

        An execution slot is held until the generator is exhausted or closed.
        """
        self._observe(compiled)
        with self._slot():
            logger.debug("executing %s: %s %r", action, compiled.sql, compiled.bindings)
            try:
                rows = iter(self._executor.query(compiled.sql, compiled.bindings))
            except ChainQLError:
                raise
            except Exception as exc:
                raise QueryExecutionError(action, compiled.sql, compiled.bindings) from exc
            index = 0
            while True:
                try:
                    row = next(rows)
                    normalized = normalize_row(row)
                except StopIteration:
                    return
                except Exception as exc:
                    raise RowIterationError(f"failed to read row {index}: {exc}", row_index=index) from exc
                yield normalized
                index += 1

    def _timed(self, compiled: CompiledSQL, action: str, call: Callable[[], T]) -> T:
        self._observe(compiled)
        with self._slot():
            logger.debug("executing %s: %s %r", action, compiled.sql, compiled.bindings)
            started = time.perf_counter()
            try:
                result = call()
            except RowIterationError as exc:
                self._log(compiled, started, exc)
                raise
            except ChainQLError:
                raise
            except Exception as exc:
                self._log(compiled, started, exc)
                raise QueryExecutionError(action, compiled.sql, compiled.bindings) from exc
            self._log(compiled, started)
            return result

    def _observe(self, compiled: CompiledSQL) -> None:
        if self._on_compiled is not None:
            self._on_compiled(compiled)

    def _slot(self) -> contextlib.AbstractContextManager[None]:
        if self._limiter is None:
            return contextlib.nullcontext()
        return self._limiter.slot(timeout=self._slot_timeout, cancel_event=self._cancel_event)

    def _log(
        self, compiled: CompiledSQL, started: float, error: BaseException | None = None
    ) -> None:
        if self._query_log is not None:
            self._query_log.record(
                compiled.sql, compiled.bindings, time.perf_counter() - started, error
            )


def _materialize(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    try:
        for row in rows:
            out.append(normalize_row(row))
    except Exception as exc:
        raise RowIterationError(
            f"failed to read row {len(out)}: {exc}", row_index=len(out)
        ) from exc
    return out


def _as_rows(
    rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
) -> list[Mapping[str, Any]]:
    if isinstance(rows, Mapping):
        return [rows]
    return list(rows)


def result_name(column: str) -> str:
    """Column key a driver reports for ``column`` (alias or last segment)."""
    lowered = column.lower()
    if " as " in lowered:
        return column[lowered.rindex(" as ") + 4 :].strip()
    return column.split(".")[-1].strip()
