"""Unit tests for the execution pipeline, statement cache and read routing."""

from __future__ import annotations

from typing import Any

import pytest

from weaveql import Database, DatabaseConfig
from weaveql.compile.postgres import PostgresDialect
from weaveql.errors import (
    FatalExecutionError,
    PolicyRejectionError,
    ReadonlyRejectionError,
)
from weaveql.execute.driver import ExecutionResult, PreparedStatement, StatementCache
from weaveql.execute.pipeline import (
    ExecutionPipeline,
    MetricsRecord,
    PipelineHooks,
    StatementRecorder,
    compose,
)
from weaveql.policy.engine import PolicyConfig
from weaveql.schema.context import ExecutionContext, OperationKind
from tests.fixtures import FakeDriver


def _ctx(
    sql: str = 'SELECT * FROM "users"',
    operation: OperationKind = OperationKind.SELECT,
    **kwargs: Any,
) -> ExecutionContext:
    return ExecutionContext(sql=sql, operation=operation, table="users", **kwargs)


def _pipeline(**hooks: Any) -> ExecutionPipeline:
    return ExecutionPipeline(PipelineHooks(**hooks))


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def test_compose_first_middleware_is_outermost():
    trace: list[str] = []

    def make(name: str):
        def mw(ctx, next_):
            trace.append(f"{name}:before")
            result = next_(ctx)
            trace.append(f"{name}:after")
            return result

        return mw

    def terminal(ctx):
        trace.append("core")
        return ExecutionResult()

    compose([make("a"), make("b")], terminal)(_ctx())
    assert trace == ["a:before", "b:before", "core", "b:after", "a:after"]


class TestMiddleware:
    def test_middleware_wraps_driver_call(self):
        driver = FakeDriver(results=[ExecutionResult(rows=[{"id": 1}], rowcount=1)])
        seen: list[int] = []

        def count_before(ctx, next_):
            seen.append(len(driver.executed))
            result = next_(ctx)
            seen.append(len(driver.executed))
            return result

        result = _pipeline(middleware=[count_before]).run(_ctx(), driver)
        assert result.rows == [{"id": 1}]
        assert seen == [0, 1]

    def test_short_circuit_skips_driver(self):
        driver = FakeDriver()
        cached = ExecutionResult(rows=[{"id": 99}], rowcount=1)
        result = _pipeline(middleware=[lambda ctx, next_: cached]).run(_ctx(), driver)
        assert result is cached
        assert driver.executed == []

    def test_middleware_can_rewrite_context(self):
        driver = FakeDriver()

        def retarget(ctx, next_):
            return next_(ExecutionContext(sql="SELECT 2", params=(5,), operation=ctx.operation))

        _pipeline(middleware=[retarget]).run(_ctx(), driver)
        assert driver.executed == [("SELECT 2", (5,))]

    def test_chain_is_reused_until_registrations_change(self):
        hooks = PipelineHooks()
        pipeline = ExecutionPipeline(hooks)
        driver = FakeDriver()
        first = pipeline._chain_for(driver)
        assert pipeline._chain_for(driver) is first

        calls: list[str] = []

        def mw(ctx, next_):
            calls.append("mw")
            return next_(ctx)

        hooks.middleware.append(mw)
        rebuilt = pipeline._chain_for(driver)
        assert rebuilt is not first
        pipeline.run(_ctx(), driver)
        assert calls == ["mw"]


# ---------------------------------------------------------------------------
# Policy & dry run
# ---------------------------------------------------------------------------


class TestPolicyAndDryRun:
    def test_policy_runs_before_middleware(self):
        driver = FakeDriver()
        reached: list[bool] = []

        def mw(ctx, next_):
            reached.append(True)
            return next_(ctx)

        pipeline = _pipeline(middleware=[mw], policy_hooks=[lambda ctx: False])
        with pytest.raises(PolicyRejectionError):
            pipeline.run(_ctx(), driver)
        assert reached == []
        assert driver.executed == []

    def test_static_rules_applied(self):
        pipeline = ExecutionPipeline(PipelineHooks(), PolicyConfig(denied_tables=["users"]))
        with pytest.raises(PolicyRejectionError):
            pipeline.run(_ctx(), FakeDriver())

    def test_readonly_rejects_write(self):
        driver = FakeDriver()
        ctx = _ctx('DELETE FROM "users"', OperationKind.DELETE)
        with pytest.raises(ReadonlyRejectionError):
            _pipeline().run(ctx, driver, readonly=True)
        assert driver.executed == []

    def test_dry_run_records_but_never_executes(self):
        driver = FakeDriver()
        metrics: list[MetricsRecord] = []
        mw_calls: list[bool] = []

        def mw(ctx, next_):
            mw_calls.append(True)
            return next_(ctx)

        pipeline = _pipeline(middleware=[mw], metrics=metrics.append)
        ctx = _ctx('UPDATE "users" SET "name" = ?', OperationKind.UPDATE, params=("x",))
        result = pipeline.run(ctx, driver, test_mode=True)

        assert result == ExecutionResult()
        assert driver.executed == []
        assert mw_calls == []
        assert metrics == []
        assert pipeline.recorder.sql == 'UPDATE "users" SET "name" = ?'
        assert pipeline.recorder.params == ("x",)

    def test_dry_run_still_enforces_policy(self):
        with pytest.raises(ReadonlyRejectionError):
            _pipeline().run(
                _ctx("DROP TABLE users", OperationKind.RAW), FakeDriver(), readonly=True, test_mode=True
            )

    def test_rejected_statement_is_still_recorded(self):
        pipeline = _pipeline(policy_hooks=[lambda ctx: False])
        with pytest.raises(PolicyRejectionError):
            pipeline.run(_ctx("SELECT 42"), FakeDriver())
        assert pipeline.recorder.sql == "SELECT 42"


def test_recorder_history_and_clear():
    recorder = StatementRecorder()
    recorder.record("SELECT 1", ())
    recorder.record("SELECT ?", (2,))
    assert recorder.history == [("SELECT 1", ()), ("SELECT ?", (2,))]
    recorder.clear()
    assert recorder.sql is None
    assert recorder.params == ()
    assert recorder.history == []


# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------


class TestTimeouts:
    def test_set_execute_reset_order(self):
        driver = FakeDriver(PostgresDialect())
        _pipeline().run(_ctx(timeout_ms=250), driver)
        assert driver.statements == [
            "SET statement_timeout = 250",
            'SELECT * FROM "users"',
            "SET statement_timeout = DEFAULT",
        ]

    def test_reset_runs_even_when_statement_fails(self):
        driver = FakeDriver(
            PostgresDialect(),
            results=[ExecutionResult(), FatalExecutionError("boom"), ExecutionResult()],
        )
        with pytest.raises(FatalExecutionError):
            _pipeline().run(_ctx(timeout_ms=250), driver)
        assert driver.statements[-1] == "SET statement_timeout = DEFAULT"

    def test_tuning_failure_is_ignored(self):
        driver = FakeDriver(
            PostgresDialect(),
            results=[FatalExecutionError("permission denied"), ExecutionResult(rowcount=3)],
        )
        result = _pipeline().run(_ctx(timeout_ms=250), driver)
        assert result.rowcount == 3
        # No reset is attempted when the set statement failed.
        assert driver.statements == ["SET statement_timeout = 250", 'SELECT * FROM "users"']

    def test_no_timeout_no_tuning(self):
        driver = FakeDriver(PostgresDialect())
        _pipeline().run(_ctx(), driver)
        assert driver.statements == ['SELECT * FROM "users"']


# ---------------------------------------------------------------------------
# Metrics & logger hooks
# ---------------------------------------------------------------------------


class TestObservabilityHooks:
    def test_metrics_record(self):
        records: list[MetricsRecord] = []
        driver = FakeDriver(results=[ExecutionResult(rows=[{"id": 1}, {"id": 2}], rowcount=2)])
        _pipeline(metrics=records.append).run(_ctx(), driver)
        assert len(records) == 1
        record = records[0]
        assert record.operation == "select"
        assert record.table == "users"
        assert record.row_count == 2
        assert record.elapsed_ms >= 0.0

    def test_metrics_row_count_for_writes(self):
        records: list[MetricsRecord] = []
        driver = FakeDriver(results=[ExecutionResult(rowcount=4)])
        _pipeline(metrics=records.append).run(
            _ctx('DELETE FROM "users"', OperationKind.DELETE), driver
        )
        assert records[0].row_count == 4

    def test_logger_hook_receives_sql_params_elapsed(self):
        lines: list[tuple[str, tuple[Any, ...], float]] = []
        driver = FakeDriver()
        _pipeline(logger=lambda sql, params, ms: lines.append((sql, params, ms))).run(
            _ctx("SELECT ?", params=(1,)), driver
        )
        assert lines[0][:2] == ("SELECT ?", (1,))
        assert lines[0][2] >= 0.0

    def test_hooks_not_called_on_failure(self):
        records: list[MetricsRecord] = []
        driver = FakeDriver(results=[FatalExecutionError("boom")])
        with pytest.raises(FatalExecutionError):
            _pipeline(metrics=records.append).run(_ctx(), driver)
        assert records == []


# ---------------------------------------------------------------------------
# Statement cache
# ---------------------------------------------------------------------------


class TestStatementCache:
    def test_hit_and_miss_counters(self):
        cache = StatementCache(capacity=4)
        first = cache.get_or_create("sqlite", "SELECT 1", lambda: PreparedStatement("SELECT 1", "sqlite"))
        again = cache.get_or_create("sqlite", "SELECT 1", lambda: PreparedStatement("SELECT 1", "sqlite"))
        assert again is first
        assert (cache.hits, cache.misses) == (1, 1)

    def test_key_includes_dialect(self):
        cache = StatementCache()
        cache.get_or_create("sqlite", "SELECT 1", lambda: PreparedStatement("SELECT 1", "sqlite"))
        cache.get_or_create("postgres", "SELECT 1", lambda: PreparedStatement("SELECT 1", "postgres"))
        assert len(cache) == 2

    def test_lru_eviction(self):
        cache = StatementCache(capacity=2)

        def prep(sql: str) -> PreparedStatement:
            return cache.get_or_create("sqlite", sql, lambda: PreparedStatement(sql, "sqlite"))

        a = prep("A")
        prep("B")
        prep("A")  # A is now most recent
        prep("C")  # evicts B
        assert len(cache) == 2
        assert prep("A") is a
        misses = cache.misses
        prep("B")
        assert cache.misses == misses + 1

    def test_zero_capacity_disables_caching(self):
        cache = StatementCache(capacity=0)
        cache.get_or_create("sqlite", "A", lambda: PreparedStatement("A", "sqlite"))
        assert len(cache) == 0


# ---------------------------------------------------------------------------
# Read routing through Database
# ---------------------------------------------------------------------------


class TestReadRouting:
    def _db(self) -> tuple[Database, FakeDriver, FakeDriver]:
        primary = FakeDriver()
        replica = FakeDriver()
        db = Database(primary, DatabaseConfig(), read_driver=replica, sleep=lambda _: None)
        return db, primary, replica

    def test_selects_on_read_route_use_replica(self):
        db, primary, replica = self._db()
        db.using("read").table("events").get()
        assert replica.statements == ['SELECT * FROM "events"']
        assert primary.statements == []

    def test_writes_on_read_route_use_primary(self):
        db, primary, replica = self._db()
        db.using("read").table("events").where("id", 1).update({"kind": "x"})
        assert primary.statements == ['UPDATE "events" SET "kind" = ? WHERE "id" = ?']
        assert replica.statements == []

    def test_default_route_uses_primary(self):
        db, primary, replica = self._db()
        db.table("events").get()
        assert primary.statements == ['SELECT * FROM "events"']
        assert replica.statements == []

    def test_reads_inside_transaction_stay_on_primary(self):
        db, primary, replica = self._db()
        reader = db.using("read")
        reader.transaction(lambda tx: tx.table("events").get())
        assert replica.statements == []
        assert primary.statements == ['SELECT * FROM "events"']
        assert primary.calls == ["begin", "commit"]

    def test_route_visible_to_middleware(self):
        db, _, _ = self._db()
        routes: list[str | None] = []

        def mw(ctx, next_):
            routes.append(ctx.route)
            return next_(ctx)

        db.use(mw)
        db.using("read").table("events").get()
        db.table("events").get()
        assert routes == ["read", None]
