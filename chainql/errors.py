"""Custom exception hierarchy for chainQL.

All public errors inherit from ChainQLError so callers can catch the base
class for any chainQL-specific failure.  Errors are raised to the immediate
caller with context attached; nothing in the package logs and swallows them.
"""
from __future__ import annotations

from typing import Any


class ChainQLError(Exception):
    """Base exception for all chainQL errors."""


class MalformedQueryError(ChainQLError):
    """Raised when a request is rejected before any SQL is issued.

    Covers empty insert/update value sets, non-positive chunk sizes,
    mismatched BETWEEN arity and raw fragments whose ``?`` markers do not
    match their bindings.

    Args:
        message: Human-readable description.
        code: Machine-readable error code (e.g. ``EMPTY_VALUES``).
        details: Extra context about the rejected input.
    """

    def __init__(
        self,
        message: str,
        code: str = "MALFORMED_QUERY",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details: dict[str, Any] = details or {}

    def to_error_response(self) -> dict[str, Any]:
        """Returns a structured error response suitable for an API body."""
        return {
            "error": self.code,
            "message": str(self),
            "details": self.details,
        }


class CompilationError(ChainQLError):
    """Raised when SQL compilation fails.

    Args:
        message: Human-readable description.
        clause: The SQL section being compiled when the error occurred.
    """

    def __init__(self, message: str, clause: str | None = None) -> None:
        super().__init__(message)
        self.clause = clause


class UnsupportedFeatureError(CompilationError):
    """Raised when a feature has no correct rendering for the active dialect.

    Args:
        feature: Name of the feature (e.g. ``"replace"``).
        dialect: The dialect that cannot render it.
        message: Optional override for the default message.
    """

    def __init__(
        self,
        feature: str,
        dialect: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message or f"{feature} is not supported for dialect '{dialect}'.",
            clause=feature,
        )
        self.feature = feature
        self.dialect = dialect


class QueryExecutionError(ChainQLError):
    """Raised when the execution collaborator fails a query or statement.

    The original driver exception is chained as ``__cause__``.

    Args:
        action: What was being attempted (e.g. ``"insert"``).
        sql: The SQL text handed to the executor.
        bindings: The bindings handed to the executor.
    """

    def __init__(
        self,
        action: str,
        sql: str | None = None,
        bindings: list[Any] | None = None,
    ) -> None:
        super().__init__(f"failed to execute {action}")
        self.action = action
        self.sql = sql
        self.bindings: list[Any] = list(bindings or [])


class RecordNotFoundError(ChainQLError):
    """Raised when ``first_or_fail`` / ``find`` matches no rows.

    Args:
        table: The table that was queried.
        key: Lookup key value, when the lookup was by key.
    """

    def __init__(self, table: str | None = None, key: Any = None) -> None:
        if key is not None:
            message = f"no record found in '{table}' for key {key!r}"
        else:
            message = f"no record found in '{table}'" if table else "no record found"
        super().__init__(message)
        self.table = table
        self.key = key


class RowIterationError(ChainQLError):
    """Raised when scanning a row fails; the whole result set is discarded.

    Args:
        row_index: Zero-based index of the row that failed.
    """

    def __init__(self, message: str, row_index: int | None = None) -> None:
        super().__init__(message)
        self.row_index = row_index


class AggregateTypeError(ChainQLError):
    """Raised when an aggregate result cannot be interpreted as a number."""

    def __init__(self, function: str, value: Any) -> None:
        super().__init__(
            f"unexpected {function} result type {type(value).__name__}: {value!r}"
        )
        self.function = function
        self.value = value


class TransactionError(ChainQLError):
    """Raised on invalid transaction usage (e.g. nested begin)."""


class QueryCancelledError(ChainQLError):
    """Raised when waiting for an execution slot is cancelled or times out."""


class ConfigurationError(ChainQLError):
    """Raised when a ChainQLConfig or ConnectionRegistry is misconfigured.

    Args:
        message: Human-readable description.
        field: The offending setting or connection name.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
