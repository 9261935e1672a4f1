"""Optional layers around execution: result cache, limiter, query log."""
from __future__ import annotations

from chainql.optimize.cache import CacheStats, QueryCache
from chainql.optimize.limiter import ConcurrencyLimiter
from chainql.optimize.query_log import QueryLog, QueryLogEntry, QueryLogStats

__all__ = [
    "CacheStats",
    "ConcurrencyLimiter",
    "QueryCache",
    "QueryLog",
    "QueryLogEntry",
    "QueryLogStats",
]
