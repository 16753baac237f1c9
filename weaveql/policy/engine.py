"""Policy and authorization layer.

``PolicyEngine`` runs first for every statement, before any side effect.
It enforces, in order:

* **Readonly / maintenance mode** – any write-classified statement is
  rejected with :class:`~weaveql.errors.ReadonlyRejectionError`.
* **Table access control** – an optional positive table allowlist
  (``allowed_tables``), a negative blocklist (``denied_tables``), and
  per-table denied operations (``denied_operations``).
* **Policy hooks** – caller-registered callables receiving the
  :class:`~weaveql.schema.context.ExecutionContext`.  A hook declines by
  returning ``False`` or by raising.

Rejections are fatal to the call: they are never retried and the statement
is never sent to the driver.

Example: block writes to the audit table and deny one tenant::

    db = Database.from_dbapi(conn, policy={
        "denied_operations": {"audit_log": ["update", "delete"]},
    })

    def tenant_guard(ctx):
        return ctx.meta.get("tenant") != "suspended-corp"

    db.policy(tenant_guard)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from weaveql.errors import PolicyRejectionError, ReadonlyRejectionError
from weaveql.schema.context import ExecutionContext

#: A policy hook: return ``False`` (or raise) to reject the statement.
PolicyHook = Callable[[ExecutionContext], "bool | None"]


@dataclass
class PolicyConfig:
    """Static policy rules applied to every statement of a handle.

    Attributes:
        allowed_tables: If non-empty, only statements targeting these tables
            (or statements without a table, e.g. raw SQL) are permitted.
        denied_tables: Tables no statement may target.
        denied_operations: Maps a table name to the operation kinds
            (``"select"``, ``"insert"``, ``"update"``, ``"delete"``,
            ``"upsert"``) that are forbidden on it.  The key ``"*"`` applies
            to every table.
    """

    allowed_tables: list[str] = field(default_factory=list)
    denied_tables: list[str] = field(default_factory=list)
    denied_operations: dict[str, list[str]] = field(default_factory=dict)

    def denied_operations_for(self, table_name: str) -> set[str]:
        """Return the combined denied operation set for a specific table.

        Merges the wildcard ``"*"`` entry with any per-table entry.
        """
        return set(self.denied_operations.get("*", [])) | set(
            self.denied_operations.get(table_name, [])
        )


class PolicyEngine:
    """Checks an execution context against static rules and policy hooks.

    Args:
        config: Static rules for this handle.
        hooks: Registered policy hooks, evaluated in registration order.
    """

    def __init__(
        self,
        config: PolicyConfig,
        hooks: Sequence[PolicyHook] = (),
    ) -> None:
        self._config = config
        self._hooks = tuple(hooks)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def check(self, ctx: ExecutionContext, *, readonly: bool = False) -> None:
        """Raise if ``ctx`` must not be executed.

        Args:
            ctx: The statement about to run.
            readonly: Whether the owning handle is in readonly mode.

        Raises:
            ReadonlyRejectionError: Write statement on a readonly handle.
            PolicyRejectionError: Table rule or policy hook declined.
        """
        if readonly and ctx.is_write:
            raise ReadonlyRejectionError(ctx.operation.value, ctx.table)
        self._check_tables(ctx)
        self._run_hooks(ctx)

    # ------------------------------------------------------------------
    # Table rules
    # ------------------------------------------------------------------

    def _check_tables(self, ctx: ExecutionContext) -> None:
        if ctx.table is None:
            return
        operation = ctx.operation.value
        if self._config.allowed_tables and ctx.table not in self._config.allowed_tables:
            raise PolicyRejectionError(
                f"Table '{ctx.table}' is not allowed.", operation=operation, table=ctx.table
            )
        if ctx.table in self._config.denied_tables:
            raise PolicyRejectionError(
                f"Table '{ctx.table}' is denied.", operation=operation, table=ctx.table
            )
        if operation in self._config.denied_operations_for(ctx.table):
            raise PolicyRejectionError(
                f"Operation '{operation}' is denied on table '{ctx.table}'.",
                operation=operation,
                table=ctx.table,
            )

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _run_hooks(self, ctx: ExecutionContext) -> None:
        operation = ctx.operation.value
        for hook in self._hooks:
            try:
                allowed = hook(ctx)
            except PolicyRejectionError:
                raise
            except Exception as exc:
                raise PolicyRejectionError(
                    f"Policy hook rejected {operation}: {exc}",
                    operation=operation,
                    table=ctx.table,
                ) from exc
            if allowed is False:
                raise PolicyRejectionError(
                    f"Policy hook rejected {operation}.", operation=operation, table=ctx.table
                )
