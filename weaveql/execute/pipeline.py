"""Execution pipeline: everything that happens around a driver call.

For each :class:`~weaveql.schema.context.ExecutionContext` the pipeline runs,
in order:

1. **Record**: the SQL text and parameters become the handle's "last
   statement" (``Database.query_string()`` / ``query_params()``).
2. **Policy**: :class:`~weaveql.policy.engine.PolicyEngine` may reject the
   call; nothing further happens.
3. **Dry run**: in test mode an empty :class:`ExecutionResult` is returned
   here; middleware, driver, metrics and logging are never reached.
4. **Middleware chain**: ``(ctx, next) -> ExecutionResult`` callables.  The
   first registered is the outermost.
5. **Core**: per-call timeout set (best-effort), driver execute, timeout
   reset, then the metrics and logger hooks.

Example::

    def audit(ctx, next_):
        started = time.monotonic()
        result = next_(ctx.with_meta(request_id=current_request_id()))
        audit_log.append((ctx.operation, time.monotonic() - started))
        return result

    db.use(audit)
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any

import structlog

from weaveql.errors import ExecutionError
from weaveql.execute.driver import Driver, ExecutionResult
from weaveql.policy.engine import PolicyConfig, PolicyEngine, PolicyHook
from weaveql.schema.context import ExecutionContext

logger = structlog.get_logger(__name__)

Handler = Callable[[ExecutionContext], ExecutionResult]
Middleware = Callable[[ExecutionContext, Handler], ExecutionResult]
LoggerHook = Callable[[str, "tuple[Any, ...]", float], None]


@dataclass(frozen=True)
class MetricsRecord:
    """What the metrics hook receives after each executed statement."""

    operation: str
    table: str | None
    elapsed_ms: float
    row_count: int


MetricsHook = Callable[[MetricsRecord], None]


@dataclass
class PipelineHooks:
    """Hook registrations shared by a handle and every handle derived from it.

    Registrations are expected at setup time.  The pipeline snapshots the
    middleware list on each call.
    """

    middleware: list[Middleware] = field(default_factory=list)
    policy_hooks: list[PolicyHook] = field(default_factory=list)
    logger: LoggerHook | None = None
    metrics: MetricsHook | None = None


class StatementRecorder:
    """Remembers the most recent statement for test-mode inspection."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sql: str | None = None
        self.params: tuple[Any, ...] = ()
        self.history: list[tuple[str, tuple[Any, ...]]] = []

    def record(self, sql: str, params: tuple[Any, ...]) -> None:
        with self._lock:
            self.sql = sql
            self.params = params
            self.history.append((sql, params))

    def clear(self) -> None:
        with self._lock:
            self.sql = None
            self.params = ()
            self.history.clear()


def compose(middleware: Sequence[Middleware], terminal: Handler) -> Handler:
    """Wrap ``terminal`` so that ``middleware[0]`` is the outermost layer."""
    handler = terminal
    for mw in reversed(middleware):
        handler = partial(_call_middleware, mw, handler)
    return handler


def _call_middleware(mw: Middleware, next_: Handler, ctx: ExecutionContext) -> ExecutionResult:
    return mw(ctx, next_)


class ExecutionPipeline:
    """Runs execution contexts through policy, middleware and the driver.

    Args:
        hooks: Shared hook registrations.
        policy_config: Static table / operation rules.
        recorder: Shared last-statement recorder.
    """

    def __init__(
        self,
        hooks: PipelineHooks,
        policy_config: PolicyConfig | None = None,
        recorder: StatementRecorder | None = None,
    ) -> None:
        self.hooks = hooks
        self.policy_config = policy_config or PolicyConfig()
        self.recorder = recorder or StatementRecorder()
        self._lock = threading.Lock()
        # id(driver) -> (middleware snapshot, driver, composed handler)
        self._chains: dict[int, tuple[tuple[Middleware, ...], Driver, Handler]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        ctx: ExecutionContext,
        driver: Driver,
        *,
        readonly: bool = False,
        test_mode: bool = False,
    ) -> ExecutionResult:
        """Execute ``ctx`` on ``driver`` through the full pipeline.

        Raises:
            ReadonlyRejectionError: Write on a readonly handle.
            PolicyRejectionError: A table rule or policy hook declined.
            RetryableExecutionError: Deadlock / serialization conflict.
            FatalExecutionError: Any other driver failure.
        """
        self.recorder.record(ctx.sql, ctx.params)
        PolicyEngine(self.policy_config, self.hooks.policy_hooks).check(ctx, readonly=readonly)
        if test_mode:
            logger.debug(
                "statement_dry_run",
                operation=ctx.operation.value,
                table=ctx.table,
                sql=ctx.sql,
            )
            return ExecutionResult()
        return self._chain_for(driver)(ctx)

    # ------------------------------------------------------------------
    # Middleware composition
    # ------------------------------------------------------------------

    def _chain_for(self, driver: Driver) -> Handler:
        snapshot = tuple(self.hooks.middleware)
        key = id(driver)
        with self._lock:
            cached = self._chains.get(key)
            if cached is not None and cached[1] is driver and cached[0] == snapshot:
                return cached[2]
        handler = compose(snapshot, partial(self._execute, driver))
        with self._lock:
            self._chains[key] = (snapshot, driver, handler)
        return handler

    # ------------------------------------------------------------------
    # Core execution
    # ------------------------------------------------------------------

    def _execute(self, driver: Driver, ctx: ExecutionContext) -> ExecutionResult:
        statement = driver.prepare(ctx.sql)
        reset_sql = self._apply_timeout(driver, ctx.timeout_ms)
        started = time.perf_counter()
        try:
            result = driver.execute(statement, ctx.params)
        except ExecutionError as exc:
            logger.debug(
                "statement_failed",
                operation=ctx.operation.value,
                table=ctx.table,
                retryable=exc.retryable,
                error=str(exc),
            )
            raise
        finally:
            if reset_sql:
                self._tune(driver, reset_sql)
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self._emit(ctx, result, elapsed_ms)
        return result

    def _apply_timeout(self, driver: Driver, timeout_ms: int | None) -> str | None:
        if not timeout_ms:
            return None
        set_sql, reset_sql = driver.dialect.timeout_statements(timeout_ms)
        if set_sql and not self._tune(driver, set_sql):
            return None
        return reset_sql

    def _tune(self, driver: Driver, sql: str) -> bool:
        """Run a session-tuning statement; failures are logged and ignored."""
        try:
            driver.execute(driver.prepare(sql), ())
        except ExecutionError as exc:
            logger.debug("timeout_tuning_failed", sql=sql, error=str(exc))
            return False
        return True

    def _emit(self, ctx: ExecutionContext, result: ExecutionResult, elapsed_ms: float) -> None:
        row_count = len(result.rows) if result.rows else result.rowcount
        if self.hooks.metrics is not None:
            self.hooks.metrics(
                MetricsRecord(
                    operation=ctx.operation.value,
                    table=ctx.table,
                    elapsed_ms=elapsed_ms,
                    row_count=row_count,
                )
            )
        if self.hooks.logger is not None:
            self.hooks.logger(ctx.sql, ctx.params, elapsed_ms)
        logger.debug(
            "statement_executed",
            operation=ctx.operation.value,
            table=ctx.table,
            route=ctx.route,
            elapsed_ms=round(elapsed_ms, 3),
            row_count=row_count,
        )
