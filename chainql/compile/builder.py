"""Core QueryState → SQL compilation logic.

``StatementCompiler`` is the top-level orchestrator.  It wires together the
focused clause-level sub-builders, then drives the compilation algorithm.
All dialect-specific behaviour is delegated to the injected ``SQLCompiler``;
clause rendering is delegated to the sub-builder hierarchy.

Sub-builder hierarchy
---------------------
StatementCompiler
  ├── SelectClauseBuilder  (clause_builders.py)
  ├── JoinClauseBuilder    (clause_builders.py)
  ├── WhereClauseBuilder   (clause_builders.py)
  ├── GroupClauseBuilder   (clause_builders.py)
  ├── HavingClauseBuilder  (clause_builders.py)
  ├── UnionClauseBuilder   (clause_builders.py)
  └── OrderClauseBuilder   (clause_builders.py)

Runtime context sharing
-----------------------
A single :class:`~chainql.compile.context.RuntimeContext` is created per
compile call and threaded through every sub-builder and every nested
statement (UNION branches, EXISTS / IN sub-selects).  Placeholder numbers
are therefore unique and contiguous across the whole statement.

Section order
-------------
SELECT, FROM, JOIN, WHERE, GROUP BY, HAVING, UNION, ORDER BY, LIMIT,
OFFSET, LOCK, joined by single spaces.  The SELECT list is *rendered* last
so that values attached to raw select items are bound after everything
else; on PostgreSQL their ``$n`` numbers follow suit, on MySQL the ``?``
markers in the SELECT list pair with those trailing values only when no
other bound marker precedes them.

WHERE-only entry point
----------------------
:meth:`StatementCompiler.compile_where` renders just the ``WHERE`` section.
SELECT, UPDATE, DELETE, increment and JSON updates all call it, so
mutations never have to recover the WHERE text from a compiled SELECT.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from typing import Any

from chainql.compile.base import CompiledSQL, SQLCompiler
from chainql.compile.clause_builders import (
    GroupClauseBuilder,
    HavingClauseBuilder,
    JoinClauseBuilder,
    OrderClauseBuilder,
    SelectClauseBuilder,
    UnionClauseBuilder,
    WhereClauseBuilder,
)
from chainql.compile.context import RuntimeContext
from chainql.errors import MalformedQueryError
from chainql.schema.clauses import ConflictAction
from chainql.schema.query import QueryState


class StatementCompiler:
    """Compiles a QueryState (and DML requests) to parameterized SQL.

    Args:
        compiler: Dialect-specific compiler instance.
    """

    def __init__(self, compiler: SQLCompiler) -> None:
        self._compiler = compiler

    @property
    def dialect(self) -> str:
        return self._compiler.dialect_name

    @property
    def compiler(self) -> SQLCompiler:
        return self._compiler

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def compile_select(self, state: QueryState) -> CompiledSQL:
        """Compile ``state`` to a SELECT statement.

        Args:
            state: The query description to render.

        Returns:
            :class:`~chainql.compile.base.CompiledSQL` with ``sql`` and the
            ordered ``bindings``.

        Raises:
            CompilationError: If a clause cannot be rendered for the dialect.
            MalformedQueryError: If raw fragment markers and bindings disagree.
        """
        runtime = RuntimeContext(self._compiler)
        sql = self._build_select(state, runtime)
        return self._result(sql, runtime)

    def compile_where(self, state: QueryState, runtime: RuntimeContext) -> str:
        """Render the ``WHERE …`` section of ``state`` into ``runtime``.

        Returns:
            ``"WHERE <conditions>"`` or ``""`` when there are no filters.
        """
        if not state.wheres:
            return ""
        return f"WHERE {self._where_builder(runtime).build(state.wheres)}"

    def _build_select(self, state: QueryState, runtime: RuntimeContext) -> str:
        def build_fn(sub: QueryState) -> str:
            return self._build_select(sub, runtime)

        where_builder = WhereClauseBuilder(runtime, build_fn)
        parts: list[str] = []

        if state.table:
            parts.append(f"FROM {state.table}")

        join_builder = JoinClauseBuilder(runtime, where_builder)
        for join in state.joins:
            parts.append(join_builder.build(join))

        where_sql = self.compile_where(state, runtime)
        if where_sql:
            parts.append(where_sql)

        if state.groups:
            parts.append(GroupClauseBuilder(runtime).build(state.groups))

        if state.havings:
            parts.append(f"HAVING {HavingClauseBuilder(runtime).build(state.havings)}")

        if state.unions:
            parts.append(UnionClauseBuilder(build_fn).build(state.unions))

        if state.orders:
            parts.append(OrderClauseBuilder(runtime).build(state.orders))

        if state.limit is not None:
            parts.append(f"LIMIT {int(state.limit)}")

        if state.offset is not None:
            parts.append(f"OFFSET {int(state.offset)}")

        if state.lock is not None:
            parts.append(self._compiler.lock_clause(state.lock))

        select_sql = SelectClauseBuilder(runtime).build(state)
        return " ".join([select_sql, *parts])

    # ------------------------------------------------------------------
    # INSERT family
    # ------------------------------------------------------------------

    def compile_insert(
        self,
        table: str | None,
        values: Mapping[str, Any],
        returning: str | None = None,
    ) -> CompiledSQL:
        """Compile a single-row INSERT.

        Args:
            table: Target table.
            values: Column → value mapping, rendered in mapping order.
            returning: Optional column for ``RETURNING`` (dialects that
                support it only; ignored elsewhere).

        Raises:
            MalformedQueryError: If ``values`` is empty or ``table`` unset.
        """
        if not values:
            raise MalformedQueryError("no values provided for insert", code="EMPTY_VALUES")
        return self.compile_insert_batch(table, [values], returning=returning)

    def compile_insert_batch(
        self,
        table: str | None,
        rows: Sequence[Mapping[str, Any]],
        returning: str | None = None,
    ) -> CompiledSQL:
        """Compile a multi-row INSERT.

        Columns are the union of all row keys in first-seen order; a row that
        lacks a column binds ``None`` for it.
        """
        runtime = RuntimeContext(self._compiler)
        sql = self._insert_sql("INSERT INTO", table, rows, runtime, action="insert")
        if returning and self._compiler.supports_returning:
            sql += f" RETURNING {returning}"
        return self._result(sql, runtime)

    def compile_upsert(
        self,
        table: str | None,
        rows: Sequence[Mapping[str, Any]],
        conflict_target: Sequence[str] = (),
        update_columns: Sequence[str] | None = None,
        action: ConflictAction = ConflictAction.DO_UPDATE,
    ) -> CompiledSQL:
        """Compile an insert-or-update-on-conflict statement.

        Args:
            table: Target table.
            rows: Rows to insert.
            conflict_target: Unique columns that define a conflict.  Required
                on PostgreSQL; MySQL relies on its unique indexes.
            update_columns: Columns overwritten on conflict.  Defaults to
                every inserted column (MySQL) or every inserted column not in
                the conflict target (PostgreSQL).
            action: ``DO UPDATE`` (default) or ``DO NOTHING``.

        Raises:
            UnsupportedFeatureError: PostgreSQL without a conflict target.
        """
        runtime = RuntimeContext(self._compiler)
        columns = self._columns(rows, "upsert")
        suffix = self._compiler.upsert_suffix(
            columns,
            list(conflict_target),
            list(update_columns) if update_columns is not None else None,
            action,
        )
        sql = self._insert_sql("INSERT INTO", table, rows, runtime, action="upsert")
        return self._result(f"{sql} {suffix}", runtime)

    def compile_insert_or_ignore(
        self, table: str | None, rows: Sequence[Mapping[str, Any]]
    ) -> CompiledSQL:
        keyword, suffix = self._compiler.insert_or_ignore_parts()
        runtime = RuntimeContext(self._compiler)
        sql = self._insert_sql(keyword, table, rows, runtime, action="insert")
        return self._result(f"{sql} {suffix}" if suffix else sql, runtime)

    def compile_replace(
        self, table: str | None, rows: Sequence[Mapping[str, Any]]
    ) -> CompiledSQL:
        keyword = self._compiler.replace_keyword()
        runtime = RuntimeContext(self._compiler)
        return self._result(
            self._insert_sql(keyword, table, rows, runtime, action="replace"), runtime
        )

    def _insert_sql(
        self,
        keyword: str,
        table: str | None,
        rows: Sequence[Mapping[str, Any]],
        runtime: RuntimeContext,
        action: str,
    ) -> str:
        columns = self._columns(rows, action)
        if not table:
            raise MalformedQueryError(f"no table specified for {action}", code="NO_TABLE")
        tuples = []
        for row in rows:
            markers = runtime.add_values(row.get(c) for c in columns)
            tuples.append(f"({', '.join(markers)})")
        return f"{keyword} {table} ({', '.join(columns)}) VALUES {', '.join(tuples)}"

    @staticmethod
    def _columns(rows: Sequence[Mapping[str, Any]], action: str) -> list[str]:
        if not rows or not any(rows):
            raise MalformedQueryError(f"no values provided for {action}", code="EMPTY_VALUES")
        columns: list[str] = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)
        return columns

    # ------------------------------------------------------------------
    # UPDATE / DELETE
    # ------------------------------------------------------------------

    def compile_update(self, state: QueryState, values: Mapping[str, Any]) -> CompiledSQL:
        """Compile ``UPDATE table SET … WHERE …``.

        SET placeholders are bound before WHERE bindings.

        Raises:
            MalformedQueryError: If ``values`` is empty or no table is set.
        """
        if not values:
            raise MalformedQueryError("no values provided for update", code="EMPTY_VALUES")
        runtime = RuntimeContext(self._compiler)
        assignments = [f"{col} = {runtime.add_value(val)}" for col, val in values.items()]
        return self._update(state, assignments, runtime)

    def compile_increment(
        self,
        state: QueryState,
        column: str,
        amount: int | float,
        extra: Mapping[str, Any] | None = None,
    ) -> CompiledSQL:
        """Compile ``SET column = column + ?`` (negative ``amount`` decrements)."""
        runtime = RuntimeContext(self._compiler)
        assignments = [f"{column} = {column} + {runtime.add_value(amount)}"]
        for col, val in (extra or {}).items():
            assignments.append(f"{col} = {runtime.add_value(val)}")
        return self._update(state, assignments, runtime)

    def compile_json_update(
        self, state: QueryState, column: str, path: str, value: Any
    ) -> CompiledSQL:
        """Compile an update that sets one key inside a JSON column."""
        runtime = RuntimeContext(self._compiler)
        marker = runtime.add_value(self._compiler.json_set_value(value))
        expr = self._compiler.json_set(column, path, marker)
        return self._update(state, [f"{column} = {expr}"], runtime)

    def compile_json_remove(self, state: QueryState, column: str, path: str) -> CompiledSQL:
        """Compile an update that removes one key from a JSON column."""
        runtime = RuntimeContext(self._compiler)
        expr = self._compiler.json_remove(column, path)
        return self._update(state, [f"{column} = {expr}"], runtime)

    def compile_delete(self, state: QueryState) -> CompiledSQL:
        if not state.table:
            raise MalformedQueryError("no table specified for delete", code="NO_TABLE")
        runtime = RuntimeContext(self._compiler)
        parts = [f"DELETE FROM {state.table}"]
        where_sql = self.compile_where(state, runtime)
        if where_sql:
            parts.append(where_sql)
        return self._result(" ".join(parts), runtime)

    def _update(
        self, state: QueryState, assignments: list[str], runtime: RuntimeContext
    ) -> CompiledSQL:
        if not state.table:
            raise MalformedQueryError("no table specified for update", code="NO_TABLE")
        parts = [f"UPDATE {state.table} SET {', '.join(assignments)}"]
        where_sql = self.compile_where(state, runtime)
        if where_sql:
            parts.append(where_sql)
        return self._result(" ".join(parts), runtime)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _where_builder(self, runtime: RuntimeContext) -> WhereClauseBuilder:
        def build_fn(sub: QueryState) -> str:
            return self._build_select(sub, runtime)

        return WhereClauseBuilder(runtime, build_fn)

    def _result(self, sql: str, runtime: RuntimeContext) -> CompiledSQL:
        return CompiledSQL(
            sql=sql,
            bindings=list(runtime.bindings),
            dialect=self._compiler.dialect_name,
            duration=time.perf_counter() - runtime.started,
        )
