"""The QueryState aggregate: the data half of a query description.

``QueryState`` owns one ordered list per clause category plus the scalar
state of a SELECT statement.  List order is render order.  The fluent
surface in :mod:`chainql.query.builder` mutates a ``QueryState``; the
compiler in :mod:`chainql.compile` only reads it.

Cloning is a deep model copy, so a clone never shares list storage with its
origin.  Pagination, counting and chunking all rely on this when they derive
variant statements from one base query.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chainql.schema.clauses import (
    GroupClause,
    HavingClause,
    JoinClause,
    LockMode,
    OrderClause,
    SelectItem,
    UnionClause,
    WhereClause,
)


class QueryState(BaseModel):
    """Accumulated, not-yet-rendered description of one SELECT statement.

    Attributes:
        table: Target table (``FROM`` / ``INSERT INTO`` / ``UPDATE`` …).
        selects: Select list; empty renders ``*``.
        distinct: Emit ``SELECT DISTINCT``.
        wheres: Filters in render order.
        joins: Joins in render order.
        groups: GROUP BY keys.
        havings: HAVING conditions.
        orders: ORDER BY keys.
        unions: UNION branches.
        limit: Optional row limit.
        offset: Optional row offset.
        lock: Optional row-lock suffix.
        select_bindings: Values for ``?`` markers in raw select items.  These
            are bound after every other clause of the statement.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    table: str | None = None
    selects: list[SelectItem] = Field(default_factory=list)
    distinct: bool = False
    wheres: list[WhereClause] = Field(default_factory=list)
    joins: list[JoinClause] = Field(default_factory=list)
    groups: list[GroupClause] = Field(default_factory=list)
    havings: list[HavingClause] = Field(default_factory=list)
    orders: list[OrderClause] = Field(default_factory=list)
    unions: list[UnionClause] = Field(default_factory=list)
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)
    lock: LockMode | None = None
    select_bindings: list[Any] = Field(default_factory=list)

    @field_validator("limit", "offset", mode="before")
    @classmethod
    def _reject_bool(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("limit/offset must be an integer, not a bool")
        return value

    def clone(self) -> QueryState:
        """Return a fully independent deep copy."""
        return self.model_copy(deep=True)


# Clause models reference QueryState for sub-queries and union branches.
WhereClause.model_rebuild(_types_namespace={"QueryState": QueryState})
UnionClause.model_rebuild(_types_namespace={"QueryState": QueryState})
QueryState.model_rebuild()
