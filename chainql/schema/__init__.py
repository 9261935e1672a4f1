"""Clause models and the QueryState aggregate."""
from __future__ import annotations

from chainql.schema.query import QueryState

__all__ = ["QueryState"]
