"""Schema introspection used to decide whether soft-delete rules apply.

Only one question is ever asked: *does this table have this column?*  Two
implementations are provided:

* :class:`DriverIntrospector` runs a per-dialect catalog query through the
  driver.
* :class:`SqlAlchemyIntrospector` reflects through ``sqlalchemy.inspect``.

Install the optional dependency before using the SQLAlchemy variant::

    pip install "weaveql[sqlalchemy]"

Either one is wrapped in a :class:`CachingIntrospector` by the database
handle, so each ``(table, column)`` pair hits the catalog once.
"""
from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from weaveql.execute.driver import Driver

if TYPE_CHECKING:
    from sqlalchemy import Engine


@runtime_checkable
class SchemaIntrospector(Protocol):
    """Answers column-existence questions about the live schema."""

    def has_column(self, table: str, column: str) -> bool: ...


# Catalog lookups returning a row iff the column exists.  ``{p}`` is the
# dialect's positional placeholder; the parameters are (table, column).
_CATALOG_QUERIES: dict[str, str] = {
    "sqlite": "SELECT 1 AS present FROM pragma_table_info({p}) WHERE name = {p}",
    "postgres": (
        "SELECT 1 AS present FROM information_schema.columns "
        "WHERE table_name = {p} AND column_name = {p} "
        "AND table_schema = ANY(current_schemas(false))"
    ),
    "mysql": (
        "SELECT 1 AS present FROM information_schema.columns "
        "WHERE table_name = {p} AND column_name = {p} AND table_schema = DATABASE()"
    ),
    "sqlserver": (
        "SELECT 1 AS present FROM sys.columns "
        "WHERE object_id = OBJECT_ID({p}) AND name = {p}"
    ),
}

_ANSI_CATALOG_QUERY = (
    "SELECT 1 AS present FROM information_schema.columns "
    "WHERE table_name = {p} AND column_name = {p}"
)


class DriverIntrospector:
    """Looks columns up in the backend catalog through ``driver``.

    Catalog queries go straight to the driver: they are not user statements,
    so policy, middleware and test mode do not apply to them.
    """

    def __init__(self, driver: Driver) -> None:
        self._driver = driver

    def has_column(self, table: str, column: str) -> bool:
        dialect = self._driver.dialect
        template = _CATALOG_QUERIES.get(dialect.name, _ANSI_CATALOG_QUERY)
        sql = template.format(p=dialect.param_placeholder())
        result = self._driver.execute(self._driver.prepare(sql), (table, column))
        return bool(result.rows)


class SqlAlchemyIntrospector:
    """Reflects columns with :func:`sqlalchemy.inspect`.

    Args:
        engine: A SQLAlchemy engine bound to the same database.
        schema: Optional schema name (e.g. ``"public"``).

    Raises:
        ImportError: If ``sqlalchemy`` is not installed.
    """

    def __init__(self, engine: Engine, schema: str | None = None) -> None:
        try:
            from sqlalchemy import inspect as _inspect
        except ImportError as exc:
            raise ImportError(
                "SQLAlchemy is required for SqlAlchemyIntrospector. "
                'Install it with: pip install "weaveql[sqlalchemy]"'
            ) from exc
        self._inspect = _inspect
        self._engine = engine
        self._schema = schema

    def has_column(self, table: str, column: str) -> bool:
        from sqlalchemy.exc import NoSuchTableError

        try:
            columns = self._inspect(self._engine).get_columns(table, schema=self._schema)
        except NoSuchTableError:
            return False
        return any(col["name"] == column for col in columns)


class CachingIntrospector:
    """Thread-safe memoizing wrapper around another introspector."""

    def __init__(self, inner: SchemaIntrospector) -> None:
        self._inner = inner
        self._cache: dict[tuple[str, str], bool] = {}
        self._lock = threading.Lock()

    def has_column(self, table: str, column: str) -> bool:
        key = (table, column)
        with self._lock:
            if key in self._cache:
                return self._cache[key]
        found = self._inner.has_column(table, column)
        with self._lock:
            self._cache[key] = found
        return found

    def invalidate(self, table: str | None = None) -> None:
        """Forget cached answers for ``table``, or for every table."""
        with self._lock:
            if table is None:
                self._cache.clear()
            else:
                for key in [k for k in self._cache if k[0] == table]:
                    del self._cache[key]
