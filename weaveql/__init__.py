"""weaveQL – cross-dialect query compiler and execution pipeline.

Build queries fluently, compile them for SQLite, PostgreSQL, MySQL/MariaDB,
SQL Server or strict ANSI SQL, and run them through a policy-checked,
middleware-wrapped pipeline with retrying transactions.

Public API
----------
``Database``
    The handle: ``Database.from_dbapi(connection, dialect="postgres")``.

``Query``
    The fluent builder returned by ``Database.table(name)``.

Re-exported types
-----------------
``DatabaseConfig``, ``SoftDeletePolicy``, ``RetrySettings``,
``PolicyConfig``, ``ExecutionContext``, ``ExecutionResult``,
``MetricsRecord``, ``CompiledStatement``, ``KeysetPage`` and all error
classes.

Extensibility
-------------
New dialects can be registered via::

    from weaveql.compile.registry import DialectFactory

    @DialectFactory.register("duckdb")
    class DuckDBDialect(Dialect):
        ...

After registration, ``Database.from_dbapi(conn, dialect="duckdb")`` picks it
up automatically.
"""

from __future__ import annotations

from weaveql.compile.ansi import AnsiDialect
from weaveql.compile.base import CompiledStatement, Dialect
from weaveql.compile.mysql import MySQLDialect
from weaveql.compile.postgres import PostgresDialect
from weaveql.compile.registry import DialectFactory
from weaveql.compile.sqlite import SQLiteDialect
from weaveql.compile.sqlserver import SQLServerDialect
from weaveql.database import Database
from weaveql.errors import (
    CompilationError,
    ExecutionError,
    FatalExecutionError,
    GuardViolationError,
    PolicyRejectionError,
    ReadonlyRejectionError,
    RetryableExecutionError,
    UnsupportedOperationError,
    ValidationError,
    WeaveQLError,
)
from weaveql.execute.driver import DBAPIDriver, Driver, ExecutionResult
from weaveql.execute.introspect import (
    DriverIntrospector,
    SchemaIntrospector,
    SqlAlchemyIntrospector,
)
from weaveql.execute.pipeline import MetricsRecord
from weaveql.logging import configure_logging
from weaveql.policy.engine import PolicyConfig, PolicyEngine
from weaveql.query import KeysetPage, Query
from weaveql.schema.config import DatabaseConfig, RetrySettings, SoftDeleteMode, SoftDeletePolicy
from weaveql.schema.context import ExecutionContext, OperationKind
from weaveql.schema.query_state import QueryState, Visibility

# ---------------------------------------------------------------------------
# Register built-in dialects with DialectFactory
# ---------------------------------------------------------------------------

DialectFactory.register_class("sqlite", SQLiteDialect)
DialectFactory.register_class("postgres", PostgresDialect, aliases=("pgsql", "postgresql"))
DialectFactory.register_class("mysql", MySQLDialect, aliases=("mariadb",))
DialectFactory.register_class("sqlserver", SQLServerDialect, aliases=("sqlsrv", "mssql"))
DialectFactory.register_class("ansi", AnsiDialect)

__all__ = [
    # Entry points
    "Database",
    "Query",
    "KeysetPage",
    "configure_logging",
    # Configuration
    "DatabaseConfig",
    "RetrySettings",
    "SoftDeleteMode",
    "SoftDeletePolicy",
    "PolicyConfig",
    "PolicyEngine",
    # Execution
    "DBAPIDriver",
    "Driver",
    "DriverIntrospector",
    "ExecutionContext",
    "ExecutionResult",
    "MetricsRecord",
    "OperationKind",
    "SchemaIntrospector",
    "SqlAlchemyIntrospector",
    # Compilation
    "CompiledStatement",
    "Dialect",
    "DialectFactory",
    "AnsiDialect",
    "MySQLDialect",
    "PostgresDialect",
    "SQLiteDialect",
    "SQLServerDialect",
    "QueryState",
    "Visibility",
    # Errors
    "WeaveQLError",
    "ValidationError",
    "GuardViolationError",
    "CompilationError",
    "UnsupportedOperationError",
    "PolicyRejectionError",
    "ReadonlyRejectionError",
    "ExecutionError",
    "RetryableExecutionError",
    "FatalExecutionError",
]
