"""Test fixtures: sample schema DDL, seed rows and a recording executor."""

from __future__ import annotations

import sqlite3
from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Literal

from chainql.execute.protocols import ExecResult

_FIXTURES_DIR = Path(__file__).parent

USERS: list[tuple[Any, ...]] = [
    # id, name, email, age, role, status, score, settings, created_at, deleted_at
    (1, "Alice", "alice@example.com", 34, "admin", "active", 91.5,
     '{"theme": "dark", "tags": ["a", "b"]}', "2024-01-05 09:00:00", None),
    (2, "Bob", "bob@example.com", 17, "user", "active", 55.0,
     None, "2024-02-11 10:30:00", None),
    (3, "Carol", "carol@example.com", 25, "user", "inactive", 72.25,
     '{"theme": "light"}', "2024-02-20 14:15:00", "2024-06-01 00:00:00"),
    (4, "Dave", "dave@example.com", 41, "editor", "active", None,
     None, "2024-03-02 08:45:00", None),
    (5, "Erin", "erin@example.com", 29, "user", "active", 64.0,
     None, "2024-03-15 18:20:00", None),
    (6, "Frank", "frank@example.com", None, "user", "banned", 12.0,
     None, "2024-04-01 12:00:00", None),
    (7, "Grace", "grace@example.com", 52, "admin", "active", 88.0,
     None, "2024-04-22 07:10:00", None),
]

POSTS: list[tuple[Any, ...]] = [
    # id, user_id, title, views, published
    (1, 1, "Hello world", 120, 1),
    (2, 1, "Second post", 40, 1),
    (3, 2, "Draft", 0, 0),
    (4, 4, "Editing tips", 300, 1),
    (5, 7, "Admin notes", 15, 0),
]


def load_ddl(target: Literal["sqlite"] = "sqlite") -> str:
    """Return the sample DDL SQL string for the given backend.

    Args:
        target: Only ``'sqlite'`` is shipped.

    Returns:
        DDL string ready to execute against the target backend.
    """
    return (_FIXTURES_DIR / f"ddl_{target}.sql").read_text()


def seed_sqlite(conn: sqlite3.Connection) -> None:
    """Create the sample schema and insert the seed rows."""
    conn.executescript(load_ddl("sqlite"))
    conn.executemany("INSERT INTO users VALUES (?,?,?,?,?,?,?,?,?,?)", USERS)
    conn.executemany("INSERT INTO posts VALUES (?,?,?,?,?)", POSTS)
    conn.commit()


# ---------------------------------------------------------------------------
# Recording executor
# ---------------------------------------------------------------------------


class RecordingExecutor:
    """In-memory executor that records every call and replays scripted rows.

    Args:
        rows: Rows returned by every read when no scripted response is left.
        responses: Per-read responses consumed in order.  Each item is a
            list of rows, or an exception instance to raise.
        exec_result: Result returned by every ``execute``.
    """

    def __init__(
        self,
        rows: Sequence[Mapping[str, Any]] = (),
        responses: Iterable[Any] = (),
        exec_result: ExecResult | None = None,
    ) -> None:
        self.rows = [dict(r) for r in rows]
        self.responses: deque[Any] = deque(responses)
        self.exec_result = exec_result or ExecResult(rows_affected=1, last_insert_id=None)
        self.execute_error: Exception | None = None
        self.calls: list[tuple[str, str, list[Any]]] = []
        self.transactions: list[RecordingTransaction] = []

    # -- helpers -------------------------------------------------------

    def queue(self, *responses: Any) -> RecordingExecutor:
        self.responses.extend(responses)
        return self

    @property
    def statements(self) -> list[str]:
        return [sql for _, sql, _ in self.calls]

    @property
    def last_sql(self) -> str:
        return self.calls[-1][1]

    @property
    def last_bindings(self) -> list[Any]:
        return self.calls[-1][2]

    def _next_response(self) -> Any:
        response = self.responses.popleft() if self.responses else self.rows
        if isinstance(response, BaseException):
            raise response
        return response

    def _next_rows(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self._next_response()]

    # -- executor contract ---------------------------------------------

    def query(self, sql: str, bindings: Sequence[Any]) -> Iterable[dict[str, Any]]:
        self.calls.append(("query", sql, list(bindings)))
        response = self._next_response()
        if isinstance(response, FailingRows):
            return response
        return [dict(r) for r in response]

    def query_one(self, sql: str, bindings: Sequence[Any]) -> dict[str, Any] | None:
        self.calls.append(("query_one", sql, list(bindings)))
        rows = self._next_rows()
        return rows[0] if rows else None

    def execute(self, sql: str, bindings: Sequence[Any]) -> ExecResult:
        self.calls.append(("execute", sql, list(bindings)))
        if self.execute_error is not None:
            raise self.execute_error
        return self.exec_result

    def begin(self) -> RecordingTransaction:
        tx = RecordingTransaction(self)
        self.transactions.append(tx)
        return tx


class RecordingTransaction:
    """Transaction over a :class:`RecordingExecutor`; records the outcome."""

    def __init__(self, parent: RecordingExecutor) -> None:
        self.parent = parent
        self.committed = False
        self.rolled_back = False

    def query(self, sql: str, bindings: Sequence[Any]) -> list[dict[str, Any]]:
        return self.parent.query(sql, bindings)

    def query_one(self, sql: str, bindings: Sequence[Any]) -> dict[str, Any] | None:
        return self.parent.query_one(sql, bindings)

    def execute(self, sql: str, bindings: Sequence[Any]) -> ExecResult:
        return self.parent.execute(sql, bindings)

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True


class FailingRows:
    """Iterable that yields ``good`` rows and then raises ``error``."""

    def __init__(self, good: Sequence[Mapping[str, Any]], error: Exception) -> None:
        self._good = list(good)
        self._error = error

    def __iter__(self):
        yield from self._good
        raise self._error
