"""Execution collaborator contracts.

chainQL never talks to a database itself.  It hands SQL text plus an
ordered binding list to an object satisfying :class:`Executor`; anything
that implements these three methods (a DB-API wrapper, a SQLAlchemy
connection, a test double) can drive the execution engine.

Pool lifecycle, credentials and the wire protocol all live behind this
boundary.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

#: One result row as returned by an executor.
Row = Mapping[str, Any]


@dataclass(frozen=True)
class ExecResult:
    """Summary of a statement that returns no rows.

    Attributes:
        rows_affected: Row count reported by the driver (-1 when unknown).
        last_insert_id: Generated key of the last inserted row, if any.
    """

    rows_affected: int
    last_insert_id: int | None = None


@runtime_checkable
class Executor(Protocol):
    """Runs compiled SQL.

    ``query`` may return a lazy iterable; the engine consumes it fully
    before returning anything to the caller.
    """

    def query(self, sql: str, bindings: Sequence[Any]) -> Iterable[Row]: ...

    def query_one(self, sql: str, bindings: Sequence[Any]) -> Row | None: ...

    def execute(self, sql: str, bindings: Sequence[Any]) -> ExecResult: ...


@runtime_checkable
class Transaction(Executor, Protocol):
    """An open transaction exposing the same execution contract."""

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@runtime_checkable
class TransactionalExecutor(Executor, Protocol):
    """An executor that can open transactions."""

    def begin(self) -> Transaction: ...
