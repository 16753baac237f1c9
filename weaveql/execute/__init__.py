"""weaveQL execution layer: driver boundary, pipeline and transactions."""
from weaveql.execute.driver import DBAPIDriver, Driver, ExecutionResult, PreparedStatement, StatementCache
from weaveql.execute.introspect import (
    CachingIntrospector,
    DriverIntrospector,
    SchemaIntrospector,
    SqlAlchemyIntrospector,
)
from weaveql.execute.pipeline import ExecutionPipeline, MetricsRecord, PipelineHooks, StatementRecorder
from weaveql.execute.transaction import TransactionManager

__all__ = [
    "CachingIntrospector",
    "DBAPIDriver",
    "Driver",
    "DriverIntrospector",
    "ExecutionPipeline",
    "ExecutionResult",
    "MetricsRecord",
    "PipelineHooks",
    "PreparedStatement",
    "SchemaIntrospector",
    "SqlAlchemyIntrospector",
    "StatementCache",
    "StatementRecorder",
    "TransactionManager",
]
