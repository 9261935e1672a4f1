"""Database handle and explicit connection registry.

``Database`` binds one executor to one dialect and one
:class:`~chainql.config.ChainQLConfig`, builds the optional execution
layers the config enables, and hands out query builders::

    import sqlite3
    from chainql import Database, DBAPIExecutor

    db = Database(DBAPIExecutor(sqlite3.connect(":memory:")), dialect="mysql")
    adults = db.table("users").where("age", ">=", 18).get()

    with db.transaction() as tx:
        tx.table("accounts").where("id", 1).decrement("balance", 10)
        tx.table("accounts").where("id", 2).increment("balance", 10)

``ConnectionRegistry`` is a plain object the application constructs and
passes around; nothing is read from the environment and there is no
module-level singleton.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from chainql.compile import CompilerFactory
from chainql.compile.base import CompiledSQL
from chainql.compile.builder import StatementCompiler
from chainql.config import ChainQLConfig
from chainql.errors import ConfigurationError
from chainql.execute.collection import Collection
from chainql.execute.engine import ExecutionEngine
from chainql.execute.protocols import ExecResult, Executor
from chainql.execute.transaction import transaction as begin_transaction
from chainql.optimize.cache import CacheStats, QueryCache
from chainql.optimize.limiter import ConcurrencyLimiter
from chainql.optimize.query_log import QueryLog
from chainql.query.builder import QueryBuilder

logger = logging.getLogger(__name__)


class Database:
    """Entry point tying an executor to a dialect and runtime settings.

    Args:
        executor: The execution collaborator (see
            :class:`~chainql.execute.protocols.Executor`).
        dialect: Registered dialect name; overrides ``config.dialect``.
        config: Runtime settings; defaults to :class:`ChainQLConfig()`.
    """

    def __init__(
        self,
        executor: Executor,
        dialect: str | None = None,
        config: ChainQLConfig | None = None,
    ) -> None:
        self._config = config or ChainQLConfig()
        self._statements = StatementCompiler(
            CompilerFactory.create(dialect or self._config.dialect)
        )
        self._executor = executor
        self._cache = (
            QueryCache(self._config.cache_ttl, self._config.cache_sweep_interval)
            if self._config.cache_enabled
            else None
        )
        self._limiter = (
            ConcurrencyLimiter(self._config.max_concurrency)
            if self._config.max_concurrency is not None
            else None
        )
        self._query_log = (
            QueryLog(self._config.query_log_size, self._config.slow_query_threshold)
            if self._config.query_log_enabled
            else None
        )
        self._engine = ExecutionEngine(
            self._statements,
            executor,
            cache=self._cache,
            limiter=self._limiter,
            query_log=self._query_log,
        )

    @classmethod
    def _bound(cls, parent: Database, executor: Executor) -> Database:
        """A handle sharing ``parent``'s layers but running on ``executor``.

        The result cache is not shared; reads inside a transaction always go
        to the executor.
        """
        db = cls.__new__(cls)
        db._config = parent._config
        db._statements = parent._statements
        db._executor = executor
        db._cache = None
        db._limiter = parent._limiter
        db._query_log = parent._query_log
        db._engine = ExecutionEngine(
            parent._statements,
            executor,
            limiter=parent._limiter,
            query_log=parent._query_log,
        )
        return db

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> ChainQLConfig:
        return self._config

    @property
    def dialect(self) -> str:
        return self._statements.dialect

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    @property
    def cache(self) -> QueryCache | None:
        return self._cache

    @property
    def limiter(self) -> ConcurrencyLimiter | None:
        return self._limiter

    @property
    def query_log(self) -> QueryLog | None:
        return self._query_log

    # ------------------------------------------------------------------
    # Builders and raw statements
    # ------------------------------------------------------------------

    def table(self, name: str) -> QueryBuilder:
        """Start a new query against ``name``."""
        return QueryBuilder(name, config=self._config, engine=self._engine)

    def query(self) -> QueryBuilder:
        """Start a new query with no table set."""
        return QueryBuilder(config=self._config, engine=self._engine)

    def raw_query(self, sql: str, *bindings: Any) -> Collection:
        """Run a row-returning statement written in the dialect's own markers."""
        compiled = CompiledSQL(sql=sql, bindings=list(bindings), dialect=self.dialect)
        return Collection(self._engine.fetch(compiled, "raw query", use_cache=False))

    def raw_execute(self, sql: str, *bindings: Any) -> ExecResult:
        """Run a statement that returns no rows."""
        compiled = CompiledSQL(sql=sql, bindings=list(bindings), dialect=self.dialect)
        return self._engine.run(compiled, "raw statement")

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Yield a handle whose statements all run in one transaction.

        Commits when the block exits normally; rolls back and re-raises on
        any exception.

        Raises:
            TransactionError: If called on a handle that is already inside a
                transaction, or the executor cannot open one.
        """
        with begin_transaction(self._executor) as tx:
            yield Database._bound(self, tx)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cache_stats(self) -> CacheStats | None:
        return self._cache.stats() if self._cache is not None else None

    def close(self) -> None:
        """Stop background work owned by this handle (the cache sweeper)."""
        if self._cache is not None:
            self._cache.close()

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ConnectionRegistry:
    """Named :class:`Database` handles, constructed and passed explicitly.

    The first handle added becomes the default unless another one is added
    with ``default=True``.
    """

    def __init__(self) -> None:
        self._databases: dict[str, Database] = {}
        self._default: str | None = None

    def add(self, name: str, database: Database, default: bool = False) -> Database:
        if name in self._databases:
            raise ConfigurationError(f"a database named '{name}' is already registered", field=name)
        self._databases[name] = database
        if default or self._default is None:
            self._default = name
        logger.debug("registered database %r (%s)", name, database.dialect)
        return database

    def get(self, name: str | None = None) -> Database:
        """Return the handle registered as ``name`` (the default when omitted)."""
        key = name if name is not None else self._default
        if key is None:
            raise ConfigurationError("no databases registered")
        if key not in self._databases:
            raise ConfigurationError(f"no database registered as '{key}'", field=key)
        return self._databases[key]

    @property
    def default(self) -> Database:
        return self.get()

    def names(self) -> list[str]:
        return list(self._databases)

    def remove(self, name: str) -> Database:
        database = self.get(name)
        del self._databases[name]
        if self._default == name:
            self._default = next(iter(self._databases), None)
        return database

    def close_all(self) -> None:
        for database in self._databases.values():
            database.close()

    def __contains__(self, name: object) -> bool:
        return name in self._databases

    def __len__(self) -> int:
        return len(self._databases)
