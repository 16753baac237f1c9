"""Database handle: the entry point tying compilation and execution together.

Usage::

    import sqlite3
    from weaveql import Database

    db = Database.from_dbapi(
        sqlite3.connect("app.db"),
        dialect="sqlite",
        soft_delete={"enabled": True},
    )
    tenant = db.with_scope({"tenant_id": 42})
    rows = tenant.table("users").where("active", 1).order_by("id").get()

A handle owns no per-query state.  :meth:`Database.with_scope` and
:meth:`Database.using` return *new* handles that share the driver,
introspector, statement cache, hook registrations and statement recorder
with their parent; scope, route and the readonly / test-mode flags belong to
each handle.
"""
from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, TypeVar

from weaveql.compile.base import CompiledStatement, Dialect
from weaveql.compile.context import CompilationContext
from weaveql.compile.registry import DialectFactory
from weaveql.compile.statement import StatementCompiler
from weaveql.execute.driver import DBAPIDriver, Driver, ExecutionResult, StatementCache
from weaveql.execute.introspect import CachingIntrospector, DriverIntrospector, SchemaIntrospector
from weaveql.execute.pipeline import (
    ExecutionPipeline,
    LoggerHook,
    MetricsHook,
    Middleware,
    PipelineHooks,
)
from weaveql.execute.transaction import TransactionManager
from weaveql.policy.engine import PolicyHook
from weaveql.query import Query
from weaveql.schema.config import DatabaseConfig
from weaveql.schema.context import ExecutionContext, OperationKind

T = TypeVar("T")

READ_ROUTE = "read"


@dataclass
class _Shared:
    """Collaborators shared by a handle and every handle derived from it."""

    driver: Driver
    read_driver: Driver | None
    config: DatabaseConfig
    introspector: CachingIntrospector
    hooks: PipelineHooks
    pipeline: ExecutionPipeline
    transactions: TransactionManager


class Database:
    """A configured database handle.

    Args:
        driver: Primary driver; its dialect decides the SQL flavour.
        config: Handle configuration; defaults to ``DatabaseConfig()``.
        introspector: Column-existence oracle for soft delete; defaults to
            catalog queries through ``driver``.
        read_driver: Optional replica driver used by ``using("read")``.
        sleep: Sleep function for transaction backoff (injectable for tests).
    """

    def __init__(
        self,
        driver: Driver,
        config: DatabaseConfig | None = None,
        introspector: SchemaIntrospector | None = None,
        read_driver: Driver | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        config = config or DatabaseConfig()
        hooks = PipelineHooks()
        self._shared = _Shared(
            driver=driver,
            read_driver=read_driver,
            config=config,
            introspector=CachingIntrospector(introspector or DriverIntrospector(driver)),
            hooks=hooks,
            pipeline=ExecutionPipeline(hooks, config.policy),
            transactions=TransactionManager(driver, config.retry, sleep=sleep or time.sleep),
        )
        self._scope: Mapping[str, Any] = MappingProxyType({})
        self._route: str | None = None
        self._readonly = config.readonly
        self._test_mode = config.test_mode

    @classmethod
    def from_dbapi(
        cls,
        connection: Any,
        config: DatabaseConfig | Mapping[str, Any] | None = None,
        *,
        read_connection: Any = None,
        introspector: SchemaIntrospector | None = None,
        **overrides: Any,
    ) -> Database:
        """Build a handle over DB-API 2 connection(s).

        Args:
            connection: Primary connection.
            config: A ``DatabaseConfig`` or a mapping validated into one.
            read_connection: Optional replica connection for ``using("read")``.
            introspector: Optional column-existence oracle.
            **overrides: Config fields overriding ``config`` (e.g.
                ``dialect="postgres"``).

        Raises:
            pydantic.ValidationError: If the configuration is invalid.
            CompilationError: If the dialect is not registered.
        """
        if isinstance(config, DatabaseConfig):
            data: dict[str, Any] = config.model_dump()
        else:
            data = dict(config or {})
        data.update(overrides)
        settings = DatabaseConfig.model_validate(data)
        dialect = DialectFactory.create(settings.dialect)
        cache = StatementCache(settings.statement_cache_size)
        driver = DBAPIDriver(connection, dialect, cache)
        read_driver = None
        if read_connection is not None:
            read_driver = DBAPIDriver(read_connection, dialect, cache)
        return cls(driver, settings, introspector=introspector, read_driver=read_driver)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def dialect(self) -> Dialect:
        return self._shared.driver.dialect

    @property
    def config(self) -> DatabaseConfig:
        return self._shared.config

    @property
    def scope(self) -> Mapping[str, Any]:
        return self._scope

    @property
    def readonly(self) -> bool:
        return self._readonly

    @property
    def test_mode(self) -> bool:
        return self._test_mode

    # ------------------------------------------------------------------
    # Query entry points
    # ------------------------------------------------------------------

    def table(self, name: str) -> Query:
        """Start a fluent query on ``name`` (unprefixed)."""
        return Query(self, name)

    def raw(self, sql: str, params: Sequence[Any] = ()) -> ExecutionResult:
        """Run a raw statement through the pipeline.

        Scope and soft-delete rules are not applied to raw SQL.  Policy,
        readonly mode (for DML/DDL verbs), test mode and middleware are.
        """
        compiled = CompiledStatement(
            sql=sql, params=tuple(params), dialect=self.dialect.name, operation=OperationKind.RAW
        )
        return self.run(compiled)

    def transaction(self, work: Callable[[Database], T], attempts: int | None = None) -> T:
        """Run ``work(self)`` in a transaction, retrying on deadlocks.

        Args:
            work: Unit of work; replayed from scratch on each retry.
            attempts: Total tries; defaults to ``config.retry.attempts``.

        Returns:
            Whatever ``work`` returned on the successful attempt.
        """
        return self._shared.transactions.run(
            lambda: work(self), attempts, dry_run=self._test_mode
        )

    # ------------------------------------------------------------------
    # Derived handles
    # ------------------------------------------------------------------

    def with_scope(self, scope: Mapping[str, Any]) -> Database:
        """Return a handle whose every query is AND-ed with ``scope`` equalities."""
        clone = self._derive()
        clone._scope = MappingProxyType({**self._scope, **scope})
        return clone

    def using(self, route: str | None) -> Database:
        """Return a handle tagged with ``route``.

        ``"read"`` sends SELECTs to the read driver (when configured and no
        transaction is open).  The route is also visible to policy hooks and
        middleware through the execution context.
        """
        clone = self._derive()
        clone._route = route
        return clone

    # ------------------------------------------------------------------
    # Modes and hooks
    # ------------------------------------------------------------------

    def set_readonly(self, on: bool) -> None:
        self._readonly = on

    def set_test_mode(self, on: bool) -> None:
        self._test_mode = on

    def query_string(self) -> str | None:
        """SQL of the most recent statement (executed or dry-run)."""
        return self._shared.pipeline.recorder.sql

    def query_params(self) -> tuple[Any, ...]:
        """Parameters of the most recent statement."""
        return self._shared.pipeline.recorder.params

    def use(self, middleware: Middleware) -> None:
        """Register a ``(ctx, next) -> ExecutionResult`` middleware.

        The first registered middleware is the outermost.
        """
        self._shared.hooks.middleware.append(middleware)

    def policy(self, hook: PolicyHook) -> None:
        """Register a policy hook; return ``False`` or raise to reject."""
        self._shared.hooks.policy_hooks.append(hook)

    def set_logger(self, hook: LoggerHook | None) -> None:
        self._shared.hooks.logger = hook

    def set_metrics(self, hook: MetricsHook | None) -> None:
        self._shared.hooks.metrics = hook

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_column(self, table: str, column: str) -> bool:
        """Whether ``table`` (unprefixed) has ``column``; cached per pair."""
        return self._shared.introspector.has_column(self._table_name(table), column)

    def info(self) -> dict[str, Any]:
        """Summary of the handle's configuration and state."""
        shared = self._shared
        return {
            "dialect": self.dialect.name,
            "prefix": shared.config.prefix,
            "readonly": self._readonly,
            "test_mode": self._test_mode,
            "scope": dict(self._scope),
            "route": self._route,
            "read_replica": shared.read_driver is not None,
            "in_transaction": shared.transactions.active,
            "soft_delete": shared.config.soft_delete.model_dump(mode="json"),
            "max_in_params": shared.config.max_in_params,
            "middleware": len(shared.hooks.middleware),
            "policies": len(shared.hooks.policy_hooks),
        }

    # ------------------------------------------------------------------
    # Collaborator API used by Query
    # ------------------------------------------------------------------

    def compiler(self, table: str) -> StatementCompiler:
        """Return a statement compiler bound to ``table`` for this handle."""
        config = self._shared.config
        policy = config.soft_delete
        soft_delete = None
        if policy.enabled and table and self.has_column(table, policy.column):
            soft_delete = policy
        ctx = CompilationContext(
            dialect=self.dialect,
            scope=self._scope,
            soft_delete=soft_delete,
            max_in_params=config.max_in_params,
            prefix=config.prefix,
        )
        return StatementCompiler(ctx)

    def run(
        self,
        compiled: CompiledStatement,
        *,
        table: str | None = None,
        timeout_ms: int | None = None,
    ) -> ExecutionResult:
        """Execute a compiled statement through the pipeline."""
        ctx = ExecutionContext(
            sql=compiled.sql,
            params=compiled.params,
            operation=compiled.operation,
            table=table,
            route=self._route,
            timeout_ms=timeout_ms,
        )
        return self._shared.pipeline.run(
            ctx,
            self._driver_for(ctx),
            readonly=self._readonly,
            test_mode=self._test_mode,
        )

    def last_insert_id(self, result: ExecutionResult) -> Any:
        """Generated key of an INSERT result; ``None`` in test mode."""
        if self._test_mode:
            return None
        if result.last_insert_id is not None and self.dialect.last_insert_id_query() is None:
            return result.last_insert_id
        return self._shared.driver.last_insert_id()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _derive(self) -> Database:
        clone = object.__new__(Database)
        clone._shared = self._shared
        clone._scope = self._scope
        clone._route = self._route
        clone._readonly = self._readonly
        clone._test_mode = self._test_mode
        return clone

    def _driver_for(self, ctx: ExecutionContext) -> Driver:
        shared = self._shared
        if (
            ctx.route == READ_ROUTE
            and shared.read_driver is not None
            and ctx.operation is OperationKind.SELECT
            and not shared.transactions.active
        ):
            return shared.read_driver
        return shared.driver

    def _table_name(self, table: str) -> str:
        return f"{self._shared.config.prefix or ''}{table}"
