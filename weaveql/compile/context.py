"""Compilation context value objects.

Packages the ``(dialect, scope, soft-delete, guard, prefix)`` data clump that
the statement and predicate compilers share into a single cohesive object,
plus the per-statement parameter accumulator.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from weaveql.compile.base import Dialect
from weaveql.schema.config import SoftDeletePolicy


def utc_timestamp() -> str:
    """Default soft-delete clock: the current UTC time in ISO-8601."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class CompilationContext:
    """Immutable context for compiling statements against one table.

    Attributes:
        dialect: Backend-specific renderer.
        scope: Equality filters injected into every WHERE clause.
        soft_delete: The soft-delete policy when it applies to the target
            table (enabled *and* the column exists), else ``None``.
        max_in_params: Guard on the size of a single IN list.
        prefix: Optional table-name prefix.
        clock: Produces the value written by a TIMESTAMP-mode soft delete.
    """

    dialect: Dialect
    scope: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    soft_delete: SoftDeletePolicy | None = None
    max_in_params: int = 1000
    prefix: str | None = None
    clock: Callable[[], Any] = utc_timestamp

    def table_sql(self, table: str) -> str:
        """Return the prefixed, quoted table reference."""
        return self.dialect.quote_column(f"{self.prefix or ''}{table}")


@dataclass
class ParameterCollector:
    """Accumulates positional parameters during a single compilation run.

    Placeholders are positional, so the order of :meth:`add` calls must match
    the textual order of the placeholders in the final SQL.
    """

    dialect: Dialect
    params: list[Any] = field(default_factory=list)

    def add(self, value: Any) -> str:
        """Store a value and return the dialect's placeholder for it."""
        self.params.append(value)
        return self.dialect.param_placeholder()
