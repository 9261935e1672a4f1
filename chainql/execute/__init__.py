"""Execution engine, collaborator contracts and adapters."""
from __future__ import annotations

from chainql.execute.adapters import DBAPIExecutor, SQLAlchemyExecutor
from chainql.execute.collection import Collection
from chainql.execute.engine import ExecutionEngine, normalize_aggregate, normalize_value
from chainql.execute.protocols import (
    ExecResult,
    Executor,
    Row,
    Transaction,
    TransactionalExecutor,
)
from chainql.execute.transaction import transaction

__all__ = [
    "Collection",
    "DBAPIExecutor",
    "ExecResult",
    "ExecutionEngine",
    "Executor",
    "Row",
    "SQLAlchemyExecutor",
    "Transaction",
    "TransactionalExecutor",
    "normalize_aggregate",
    "normalize_value",
    "transaction",
]
