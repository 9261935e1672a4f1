"""Pydantic settings model for a chainQL database handle.

``ChainQLConfig`` controls the active dialect and the optional layers that
sit around execution (result cache, concurrency limiter, query log, debug
capture).  Every optional layer is off by default, so a bare config only
compiles and executes.

Create a config directly or through the builder, enabling exactly the
layers you need::

    from chainql import ChainQLConfig

    config = (
        ChainQLConfig.builder(dialect="postgres")
        .cache(ttl=120)
        .max_concurrency(8)
        .query_log(slow_threshold=0.5)
        .build()
    )

Reading these values from the environment is left to the application.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from chainql.errors import ConfigurationError

#: Dialect names understood by the built-in compilers.
DialectName = Literal["mysql", "postgres"]


class ChainQLConfig(BaseModel):
    """Runtime options shared by every query created from one ``Database``.

    Attributes:
        dialect: Placeholder/feature dialect (``'mysql'`` or ``'postgres'``).
        debug: Capture :class:`~chainql.compile.base.DebugInfo` for every
            compilation.
        cache_enabled: Serve repeated ``get`` calls from a TTL cache.
        cache_ttl: Seconds a cached result stays fresh.
        cache_sweep_interval: Seconds between background eviction sweeps.
        max_concurrency: Upper bound on in-flight executions (None = no limit).
        default_per_page: Page size used when a caller passes ``per_page < 1``.
        default_chunk_size: Batch size used by ``each`` / ``lazy``.
        query_log_enabled: Record every execution in a bounded query log.
        query_log_size: Maximum number of retained log entries.
        slow_query_threshold: Executions slower than this (seconds) are
            reported as slow.
    """

    model_config = ConfigDict(extra="forbid")

    dialect: DialectName = "mysql"
    debug: bool = False
    cache_enabled: bool = False
    cache_ttl: float = Field(default=300.0, gt=0)
    cache_sweep_interval: float = Field(default=60.0, gt=0)
    max_concurrency: int | None = Field(default=None, ge=1)
    default_per_page: int = Field(default=15, ge=1)
    default_chunk_size: int = Field(default=1000, ge=1)
    query_log_enabled: bool = False
    query_log_size: int = Field(default=1000, ge=1)
    slow_query_threshold: float = Field(default=1.0, ge=0)

    @classmethod
    def builder(cls, dialect: DialectName = "mysql") -> "ChainQLConfigBuilder":
        """Return a :class:`ChainQLConfigBuilder` for ``dialect``.

        Args:
            dialect: Target dialect (``'mysql'`` or ``'postgres'``).

        Returns:
            A fresh builder with every optional layer disabled.
        """
        return ChainQLConfigBuilder(dialect=dialect)


class ChainQLConfigBuilder:
    """Fluent builder for :class:`ChainQLConfig`.

    Always obtained via :meth:`ChainQLConfig.builder`.  Each method enables
    one independent layer and the methods can be combined in any order.
    """

    def __init__(self, dialect: DialectName) -> None:
        self._values: dict[str, object] = {"dialect": dialect}

    def debug(self, enabled: bool = True) -> "ChainQLConfigBuilder":
        """Capture SQL, bindings and compile duration for every query."""
        self._values["debug"] = enabled
        return self

    def cache(
        self, ttl: float = 300.0, sweep_interval: float = 60.0
    ) -> "ChainQLConfigBuilder":
        """Enable the TTL result cache.

        Args:
            ttl: Seconds a cached result stays fresh.
            sweep_interval: Seconds between background eviction sweeps.
        """
        self._values.update(
            cache_enabled=True, cache_ttl=ttl, cache_sweep_interval=sweep_interval
        )
        return self

    def max_concurrency(self, limit: int) -> "ChainQLConfigBuilder":
        """Bound the number of simultaneous executions."""
        self._values["max_concurrency"] = limit
        return self

    def pagination(self, per_page: int = 15, chunk_size: int = 1000) -> "ChainQLConfigBuilder":
        """Override the default page size and chunk size."""
        self._values.update(default_per_page=per_page, default_chunk_size=chunk_size)
        return self

    def query_log(
        self, size: int = 1000, slow_threshold: float = 1.0
    ) -> "ChainQLConfigBuilder":
        """Enable the bounded query log.

        Args:
            size: Maximum number of retained entries.
            slow_threshold: Seconds after which an execution counts as slow.
        """
        self._values.update(
            query_log_enabled=True,
            query_log_size=size,
            slow_query_threshold=slow_threshold,
        )
        return self

    def build(self) -> ChainQLConfig:
        """Validate the collected options and return the config.

        Raises:
            ConfigurationError: When any option is out of range or unknown.
        """
        try:
            return ChainQLConfig(**self._values)
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise ConfigurationError(
                f"Invalid chainQL configuration for '{field}': {first.get('msg')}",
                field=field or None,
            ) from exc
