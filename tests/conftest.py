"""Shared pytest fixtures for chainQL unit and integration tests."""
from __future__ import annotations

import sqlite3
from collections.abc import Iterator

import pytest

from chainql import ChainQLConfig, Database, DBAPIExecutor, QueryBuilder
from tests.fixtures import RecordingExecutor, seed_sqlite


@pytest.fixture()
def executor() -> RecordingExecutor:
    """Fresh recording executor with no scripted rows."""
    return RecordingExecutor()


@pytest.fixture()
def mysql_db(executor: RecordingExecutor) -> Database:
    return Database(executor, dialect="mysql")


@pytest.fixture()
def pg_db(executor: RecordingExecutor) -> Database:
    return Database(executor, dialect="postgres")


@pytest.fixture()
def my() -> QueryBuilder:
    """Detached MySQL builder (compile only)."""
    return QueryBuilder(dialect="mysql")


@pytest.fixture()
def pg() -> QueryBuilder:
    """Detached PostgreSQL builder (compile only)."""
    return QueryBuilder(dialect="postgres")


@pytest.fixture()
def sqlite_conn() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(":memory:")
    seed_sqlite(conn)
    yield conn
    conn.close()


@pytest.fixture()
def sqlite_db(sqlite_conn: sqlite3.Connection) -> Iterator[Database]:
    """Seeded in-memory SQLite database driven through the ``?`` dialect."""
    db = Database(
        DBAPIExecutor(sqlite_conn),
        config=ChainQLConfig(dialect="mysql", query_log_enabled=True),
    )
    yield db
    db.close()
