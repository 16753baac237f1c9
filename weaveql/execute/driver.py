"""Driver boundary: the prepared-statement protocol and a DB-API 2 adapter.

The execution pipeline only talks to a :class:`Driver`.  :class:`DBAPIDriver`
implements it over any DB-API 2 connection (``sqlite3``, ``psycopg``,
``PyMySQL``, ``pyodbc``) and turns driver exceptions into
:class:`~weaveql.errors.RetryableExecutionError` or
:class:`~weaveql.errors.FatalExecutionError` using the dialect's
classification.

Statements are "prepared" through a :class:`StatementCache`: DB-API has no
portable prepare call, so a prepared statement is the cached, immutable
``(dialect, sql)`` handle the driver re-uses.  Drivers with real server-side
preparation can subclass and attach their native handle.
"""
from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from weaveql.compile.base import Dialect, driver_error_code
from weaveql.errors import FatalExecutionError, RetryableExecutionError

logger = structlog.get_logger(__name__)


@dataclass
class ExecutionResult:
    """What a single statement execution returned.

    Attributes:
        rows: Result rows as ``column -> value`` dicts (empty for writes).
        rowcount: Affected row count for writes; ``len(rows)`` for reads.
        last_insert_id: Key generated by the statement, when the driver
            reports one.
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = 0
    last_insert_id: Any = None


@dataclass(frozen=True)
class PreparedStatement:
    """A statement handle returned by :meth:`Driver.prepare`."""

    sql: str
    dialect: str
    handle: Any = None


@runtime_checkable
class Driver(Protocol):
    """The narrow driver interface the pipeline and transactions depend on."""

    dialect: Dialect

    @property
    def in_transaction(self) -> bool: ...

    def prepare(self, sql: str) -> PreparedStatement: ...

    def execute(self, statement: PreparedStatement, params: Sequence[Any]) -> ExecutionResult: ...

    def last_insert_id(self) -> Any: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class StatementCache:
    """Thread-safe LRU of prepared statements keyed by ``(dialect, sql)``.

    Args:
        capacity: Maximum number of cached statements; ``0`` disables caching.
    """

    def __init__(self, capacity: int = 256) -> None:
        self._capacity = capacity
        self._entries: OrderedDict[tuple[str, str], PreparedStatement] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get_or_create(
        self,
        dialect: str,
        sql: str,
        factory: Callable[[], PreparedStatement],
    ) -> PreparedStatement:
        """Return the cached statement for ``(dialect, sql)`` or build one."""
        key = (dialect, sql)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self._entries.move_to_end(key)
                self.hits += 1
                return cached
            self.misses += 1
        statement = factory()
        if self._capacity <= 0:
            return statement
        with self._lock:
            # Another thread may have prepared the same text meanwhile.
            existing = self._entries.setdefault(key, statement)
            self._entries.move_to_end(key)
            while len(self._entries) > self._capacity:
                self._entries.popitem(last=False)
        return existing

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class DBAPIDriver:
    """:class:`Driver` implementation over a DB-API 2 connection.

    Outside a transaction every statement is committed right after it runs,
    so the connection behaves like autocommit.  Inside one, commit and
    rollback are delegated to the connection; the connection must be in its
    default (non-autocommit) mode so the driver opens the transaction
    implicitly.

    Args:
        connection: An open DB-API 2 connection.
        dialect: Dialect matching the connection's backend.
        cache: Prepared-statement cache, shared across handles.
    """

    def __init__(
        self,
        connection: Any,
        dialect: Dialect,
        cache: StatementCache | None = None,
    ) -> None:
        self.connection = connection
        self.dialect = dialect
        self._cache = cache if cache is not None else StatementCache()
        self._in_transaction = False
        self._last_insert_id: Any = None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @property
    def cache(self) -> StatementCache:
        return self._cache

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def prepare(self, sql: str) -> PreparedStatement:
        return self._cache.get_or_create(
            self.dialect.name, sql, lambda: PreparedStatement(sql=sql, dialect=self.dialect.name)
        )

    def execute(self, statement: PreparedStatement, params: Sequence[Any]) -> ExecutionResult:
        """Run ``statement`` with ``params``.

        Raises:
            RetryableExecutionError: The driver reported a deadlock or
                serialization conflict.
            FatalExecutionError: Any other driver failure.
        """
        cursor = self.connection.cursor()
        try:
            cursor.execute(statement.sql, tuple(params))
            if cursor.description:
                names = [col[0] for col in cursor.description]
                rows = [dict(zip(names, row)) for row in cursor.fetchall()]
                result = ExecutionResult(rows=rows, rowcount=len(rows))
            else:
                result = ExecutionResult(rowcount=max(cursor.rowcount or 0, 0))
            lastrowid = getattr(cursor, "lastrowid", None)
            if lastrowid:
                result.last_insert_id = lastrowid
                self._last_insert_id = lastrowid
            if not self._in_transaction:
                self.connection.commit()
            return result
        except Exception as exc:
            if not self._in_transaction:
                self._safe_rollback()
            raise self._translate(exc, statement.sql) from exc
        finally:
            cursor.close()

    def last_insert_id(self) -> Any:
        """Return the key generated by the most recent INSERT on this connection."""
        query = self.dialect.last_insert_id_query()
        if query is None:
            return self._last_insert_id
        result = self.execute(self.prepare(query), ())
        if not result.rows:
            return None
        return next(iter(result.rows[0].values()))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin(self) -> None:
        self._in_transaction = True

    def commit(self) -> None:
        try:
            self.connection.commit()
        except Exception as exc:
            raise self._translate(exc, "COMMIT") from exc
        finally:
            self._in_transaction = False

    def rollback(self) -> None:
        try:
            self.connection.rollback()
        except Exception as exc:
            raise self._translate(exc, "ROLLBACK") from exc
        finally:
            self._in_transaction = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _translate(self, exc: Exception, sql: str) -> FatalExecutionError | RetryableExecutionError:
        code = driver_error_code(exc)
        error_cls = RetryableExecutionError if self.dialect.is_retryable(exc) else FatalExecutionError
        return error_cls(str(exc), sql=sql, code=code)

    def _safe_rollback(self) -> None:
        try:
            self.connection.rollback()
        except Exception as exc:
            # The original failure is what the caller needs to see.
            logger.debug("autocommit_rollback_failed", error=str(exc))
