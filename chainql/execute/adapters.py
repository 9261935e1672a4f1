"""Executor adapters for DB-API 2 connections and SQLAlchemy engines.

DB-API adapter
--------------
:class:`DBAPIExecutor` wraps any PEP 249 connection.  SQL is passed to the
driver unchanged, so pick the chainQL dialect whose placeholder style the
driver accepts (``sqlite3`` and other ``qmark`` drivers take the MySQL
dialect's ``?`` markers).

SQLAlchemy adapter
------------------
:class:`SQLAlchemyExecutor` runs statements through
:meth:`sqlalchemy.engine.Connection.exec_driver_sql`, which hands the SQL
and positional bindings straight to the underlying driver.  Install the
optional dependency before using it::

    pip install "chainql[sqlalchemy]"

Example::

    from sqlalchemy import create_engine
    from chainql import Database
    from chainql.execute.adapters import SQLAlchemyExecutor

    engine = create_engine("sqlite:///app.db")
    db = Database(SQLAlchemyExecutor(engine), dialect="mysql")
"""
from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any

from chainql.errors import TransactionError
from chainql.execute.protocols import ExecResult, Row

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine


# ---------------------------------------------------------------------------
# DB-API 2
# ---------------------------------------------------------------------------


class DBAPIExecutor:
    """Executor over a PEP 249 connection.

    Args:
        connection: An open DB-API connection (e.g. ``sqlite3.connect(...)``).
        autocommit: Commit after every ``execute`` issued outside a
            transaction.
    """

    def __init__(self, connection: Any, autocommit: bool = True) -> None:
        self._conn = connection
        self._autocommit = autocommit
        self._in_transaction = False

    @property
    def connection(self) -> Any:
        return self._conn

    def query(self, sql: str, bindings: Sequence[Any]) -> Iterator[Row]:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(bindings))
            columns = [d[0] for d in cursor.description or ()]
        except BaseException:
            cursor.close()
            raise
        return self._iter_rows(cursor, columns)

    @staticmethod
    def _iter_rows(cursor: Any, columns: list[str]) -> Iterator[Row]:
        try:
            for row in cursor:
                yield dict(zip(columns, row))
        finally:
            cursor.close()

    def query_one(self, sql: str, bindings: Sequence[Any]) -> Row | None:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(bindings))
            columns = [d[0] for d in cursor.description or ()]
            row = cursor.fetchone()
        finally:
            cursor.close()
        return dict(zip(columns, row)) if row is not None else None

    def execute(self, sql: str, bindings: Sequence[Any]) -> ExecResult:
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, tuple(bindings))
            result = ExecResult(
                rows_affected=cursor.rowcount,
                last_insert_id=getattr(cursor, "lastrowid", None),
            )
        finally:
            cursor.close()
        if self._autocommit and not self._in_transaction:
            self._conn.commit()
        return result

    def begin(self) -> DBAPITransaction:
        if self._in_transaction:
            raise TransactionError("transaction already in progress")
        self._in_transaction = True
        return DBAPITransaction(self)

    def _finish(self) -> None:
        self._in_transaction = False


class DBAPITransaction:
    """Transaction over the connection owned by a :class:`DBAPIExecutor`."""

    def __init__(self, executor: DBAPIExecutor) -> None:
        self._executor = executor
        self._done = False

    def query(self, sql: str, bindings: Sequence[Any]) -> Iterator[Row]:
        return self._executor.query(sql, bindings)

    def query_one(self, sql: str, bindings: Sequence[Any]) -> Row | None:
        return self._executor.query_one(sql, bindings)

    def execute(self, sql: str, bindings: Sequence[Any]) -> ExecResult:
        return self._executor.execute(sql, bindings)

    def commit(self) -> None:
        self._close(commit=True)

    def rollback(self) -> None:
        self._close(commit=False)

    def _close(self, commit: bool) -> None:
        if self._done:
            raise TransactionError("transaction already finished")
        self._done = True
        try:
            conn = self._executor.connection
            if commit:
                conn.commit()
            else:
                conn.rollback()
        finally:
            self._executor._finish()


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------


def _require_sqlalchemy() -> None:
    try:
        import sqlalchemy  # noqa: F401
    except ImportError as exc:
        raise ImportError(
            "SQLAlchemy is required for SQLAlchemyExecutor. "
            'Install it with: pip install "chainql[sqlalchemy]"'
        ) from exc


class SQLAlchemyExecutor:
    """Executor over a SQLAlchemy :class:`~sqlalchemy.Engine`.

    Reads use a short-lived connection; writes run inside ``engine.begin()``
    so each statement commits on its own.

    Args:
        engine: A SQLAlchemy engine.
    """

    def __init__(self, engine: Engine) -> None:
        _require_sqlalchemy()
        self._engine = engine

    def query(self, sql: str, bindings: Sequence[Any]) -> list[Row]:
        with self._engine.connect() as conn:
            return _fetch_all(conn, sql, bindings)

    def query_one(self, sql: str, bindings: Sequence[Any]) -> Row | None:
        with self._engine.connect() as conn:
            row = conn.exec_driver_sql(sql, tuple(bindings)).mappings().first()
            return dict(row) if row is not None else None

    def execute(self, sql: str, bindings: Sequence[Any]) -> ExecResult:
        with self._engine.begin() as conn:
            return _exec(conn, sql, bindings)

    def begin(self) -> SQLAlchemyTransaction:
        conn = self._engine.connect()
        return SQLAlchemyTransaction(conn)


class SQLAlchemyTransaction:
    """A transaction bound to one SQLAlchemy connection."""

    def __init__(self, connection: Connection) -> None:
        self._conn = connection
        self._tx = connection.begin()

    def query(self, sql: str, bindings: Sequence[Any]) -> list[Row]:
        return _fetch_all(self._conn, sql, bindings)

    def query_one(self, sql: str, bindings: Sequence[Any]) -> Row | None:
        row = self._conn.exec_driver_sql(sql, tuple(bindings)).mappings().first()
        return dict(row) if row is not None else None

    def execute(self, sql: str, bindings: Sequence[Any]) -> ExecResult:
        return _exec(self._conn, sql, bindings)

    def commit(self) -> None:
        try:
            self._tx.commit()
        finally:
            self._conn.close()

    def rollback(self) -> None:
        try:
            self._tx.rollback()
        finally:
            self._conn.close()


def _fetch_all(conn: Connection, sql: str, bindings: Sequence[Any]) -> list[Row]:
    result = conn.exec_driver_sql(sql, tuple(bindings))
    return [dict(row) for row in result.mappings()]


def _exec(conn: Connection, sql: str, bindings: Sequence[Any]) -> ExecResult:
    result = conn.exec_driver_sql(sql, tuple(bindings))
    return ExecResult(
        rows_affected=result.rowcount,
        last_insert_id=getattr(result, "lastrowid", None),
    )
