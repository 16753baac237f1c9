"""Execution context value object.

One :class:`ExecutionContext` is created per statement and handed by value to
policy hooks, middleware and the driver call.  Nothing retains it after the
call completes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class OperationKind(str, Enum):
    """Classification of a compiled statement."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    UPSERT = "upsert"
    RAW = "raw"


WRITE_OPERATIONS: frozenset[OperationKind] = frozenset(
    {
        OperationKind.INSERT,
        OperationKind.UPDATE,
        OperationKind.DELETE,
        OperationKind.UPSERT,
    }
)

# Leading keywords that make a raw statement a write.
_RAW_WRITE_VERBS: frozenset[str] = frozenset(
    {
        "INSERT", "UPDATE", "DELETE", "REPLACE", "MERGE", "UPSERT",
        "CREATE", "DROP", "ALTER", "TRUNCATE", "RENAME", "GRANT", "REVOKE",
    }
)


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable context for a single statement execution.

    Attributes:
        sql: Compiled statement text.
        params: Ordered positional parameters.
        operation: Operation classification.
        table: Target table name (unprefixed), when known.
        route: Routing hint (``"read"``, ``"write"`` or ``None``).
        timeout_ms: Per-call timeout, applied best-effort by the dialect.
        meta: Free-form annotations middleware may attach via :meth:`with_meta`.
    """

    sql: str
    params: tuple[Any, ...] = ()
    operation: OperationKind = OperationKind.RAW
    table: str | None = None
    route: str | None = None
    timeout_ms: int | None = None
    meta: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_write(self) -> bool:
        """True for DML operations and raw statements that modify data or schema."""
        if self.operation in WRITE_OPERATIONS:
            return True
        if self.operation is OperationKind.RAW:
            words = self.sql.lstrip(" \t\r\n(").split(None, 1)
            return bool(words) and words[0].upper() in _RAW_WRITE_VERBS
        return False

    def with_meta(self, **meta: Any) -> ExecutionContext:
        """Return a copy carrying additional ``meta`` entries."""
        return replace(self, meta={**self.meta, **meta})
