"""chainQL – fluent, dialect-aware SQL query building and execution.

Chain it. Compile it. Bind it.

Public API
----------
``Database``
    Binds an executor to a dialect and a :class:`ChainQLConfig`; hands out
    :class:`QueryBuilder` instances via ``Database.table(name)``.

``QueryBuilder``
    The fluent surface.  ``to_sql()`` compiles to a :class:`CompiledSQL`
    (``sql`` text plus ordered ``bindings``); execution methods (``get``,
    ``paginate``, ``insert``, ``chunk_by_id`` …) run it through the
    database's executor.

``ConnectionRegistry``
    Explicitly constructed collection of named ``Database`` handles.

Re-exported types
-----------------
Executors (``DBAPIExecutor``, ``SQLAlchemyExecutor``), result types
(``Collection``, ``ExecResult``, ``PaginationResult``, ``PaginationMeta``,
``CursorPage``), configuration, and all error classes.

Extensibility
-------------
New dialect compilers can be registered via::

    from chainql.compile.registry import CompilerFactory

    @CompilerFactory.register("sqlite")
    class SQLiteCompiler(SQLCompiler):
        ...

After registration, ``Database(executor, dialect="sqlite")`` picks it up.
"""

from __future__ import annotations

from chainql.compile import (
    CompiledSQL,
    CompilerFactory,
    DebugInfo,
    MySQLCompiler,
    PostgresCompiler,
    SQLCompiler,
    StatementCompiler,
)
from chainql.config import ChainQLConfig, ChainQLConfigBuilder
from chainql.database import ConnectionRegistry, Database
from chainql.errors import (
    AggregateTypeError,
    ChainQLError,
    CompilationError,
    ConfigurationError,
    MalformedQueryError,
    QueryCancelledError,
    QueryExecutionError,
    RecordNotFoundError,
    RowIterationError,
    TransactionError,
    UnsupportedFeatureError,
)
from chainql.execute import (
    Collection,
    DBAPIExecutor,
    ExecResult,
    ExecutionEngine,
    Executor,
    SQLAlchemyExecutor,
    Transaction,
    TransactionalExecutor,
)
from chainql.optimize import ConcurrencyLimiter, QueryCache, QueryLog
from chainql.paginate import CursorPage, PaginationMeta, PaginationResult
from chainql.query import JoinBuilder, QueryBuilder
from chainql.schema import QueryState
from chainql.schema.clauses import ConflictAction, Direction, JoinType, LockMode, Operator

__all__ = [
    # Entry points
    "Database",
    "ConnectionRegistry",
    "QueryBuilder",
    "JoinBuilder",
    "QueryState",
    # Configuration
    "ChainQLConfig",
    "ChainQLConfigBuilder",
    # Enums
    "ConflictAction",
    "Direction",
    "JoinType",
    "LockMode",
    "Operator",
    # Compilation
    "CompiledSQL",
    "CompilerFactory",
    "DebugInfo",
    "MySQLCompiler",
    "PostgresCompiler",
    "SQLCompiler",
    "StatementCompiler",
    # Execution
    "Collection",
    "DBAPIExecutor",
    "ExecResult",
    "ExecutionEngine",
    "Executor",
    "SQLAlchemyExecutor",
    "Transaction",
    "TransactionalExecutor",
    # Pagination
    "CursorPage",
    "PaginationMeta",
    "PaginationResult",
    # Optional layers
    "ConcurrencyLimiter",
    "QueryCache",
    "QueryLog",
    # Errors
    "ChainQLError",
    "MalformedQueryError",
    "CompilationError",
    "UnsupportedFeatureError",
    "QueryExecutionError",
    "RecordNotFoundError",
    "RowIterationError",
    "AggregateTypeError",
    "TransactionError",
    "QueryCancelledError",
    "ConfigurationError",
]
