"""Fluent query builder."""
from __future__ import annotations

from chainql.query.builder import JoinBuilder, QueryBuilder

__all__ = ["JoinBuilder", "QueryBuilder"]
