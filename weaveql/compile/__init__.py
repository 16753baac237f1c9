"""weaveQL compilation layer: query state → parameterized SQL."""
from weaveql.compile.ansi import AnsiDialect
from weaveql.compile.base import CompiledStatement, Dialect
from weaveql.compile.context import CompilationContext, ParameterCollector
from weaveql.compile.mysql import MySQLDialect
from weaveql.compile.postgres import PostgresDialect
from weaveql.compile.predicate import PredicateCompiler
from weaveql.compile.sqlite import SQLiteDialect
from weaveql.compile.sqlserver import SQLServerDialect
from weaveql.compile.statement import StatementCompiler

__all__ = [
    "AnsiDialect",
    "CompiledStatement",
    "CompilationContext",
    "Dialect",
    "MySQLDialect",
    "ParameterCollector",
    "PostgresDialect",
    "PredicateCompiler",
    "SQLiteDialect",
    "SQLServerDialect",
    "StatementCompiler",
]
