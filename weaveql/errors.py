"""Custom exception hierarchy for weaveQL.

All public errors inherit from WeaveQLError so callers can catch the base
class for any weaveQL-specific failure.

Taxonomy
--------
ValidationError            malformed builder arguments (never retried)
  └── GuardViolationError  IN-list larger than the configured guard
CompilationError           unexpected state shape while rendering SQL
UnsupportedOperationError  feature the active dialect cannot express
PolicyRejectionError       a policy hook or table rule declined the call
  └── ReadonlyRejectionError  write attempted while the handle is readonly
ExecutionError             failure reported by the driver
  ├── RetryableExecutionError  deadlock / serialization conflict
  └── FatalExecutionError      everything else
"""
from __future__ import annotations

from typing import Any


class WeaveQLError(Exception):
    """Base exception for all weaveQL errors."""


class ValidationError(WeaveQLError):
    """Raised when builder arguments are malformed.

    Args:
        message: Human-readable description.
        code: Machine-readable error code (e.g. ``INVALID_OPERATOR``).
        details: Extra structured context about the violation.
    """

    def __init__(
        self,
        message: str,
        code: str = "INVALID_ARGUMENT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details: dict[str, Any] = details or {}

    def to_error_response(self) -> dict[str, Any]:
        """Returns a structured error response suitable for API callers."""
        return {
            "error": self.code,
            "message": str(self),
            "details": self.details,
        }


class GuardViolationError(ValidationError):
    """Raised when an IN list exceeds the configured parameter guard."""

    def __init__(self, column: str, count: int, limit: int) -> None:
        super().__init__(
            f"IN list for column '{column}' has {count} values; the limit is {limit}.",
            code="IN_GUARD_VIOLATION",
            details={"column": column, "count": count, "limit": limit},
        )


class CompilationError(WeaveQLError):
    """Raised when SQL compilation fails for an unexpected reason.

    Args:
        message: Human-readable description.
        clause: The clause being compiled when the error occurred.
    """

    def __init__(self, message: str, clause: str | None = None) -> None:
        super().__init__(message)
        self.clause = clause


class UnsupportedOperationError(WeaveQLError):
    """Raised when a feature is requested on a dialect that cannot express it."""

    def __init__(self, feature: str, dialect: str) -> None:
        super().__init__(f"Unsupported operation for dialect '{dialect}': {feature}.")
        self.feature = feature
        self.dialect = dialect


class PolicyRejectionError(WeaveQLError):
    """Raised when a policy declines an operation before execution.

    Args:
        message: Human-readable description.
        operation: Operation kind of the rejected statement.
        table: Target table, when known.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        table: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.table = table


class ReadonlyRejectionError(PolicyRejectionError):
    """Raised when a write is attempted while the handle is readonly."""

    def __init__(self, operation: str | None = None, table: str | None = None) -> None:
        super().__init__(
            "Database is in readonly mode", operation=operation, table=table
        )


class ExecutionError(WeaveQLError):
    """Base class for failures reported by the underlying driver.

    Args:
        message: Human-readable description.
        sql: Statement text that failed, when known.
        code: Driver-reported error code or SQLSTATE, when available.
    """

    #: Whether the Transaction Manager may replay the unit of work.
    retryable: bool = False

    def __init__(
        self,
        message: str,
        sql: str | None = None,
        code: str | int | None = None,
    ) -> None:
        super().__init__(message)
        self.sql = sql
        self.code = code


class RetryableExecutionError(ExecutionError):
    """Deadlock or serialization conflict; safe to replay the whole transaction."""

    retryable = True


class FatalExecutionError(ExecutionError):
    """Any other driver failure, including statement timeouts."""
