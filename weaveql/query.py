"""Fluent query surface.

A :class:`Query` is obtained from :meth:`weaveql.database.Database.table` and
accumulates a :class:`~weaveql.schema.query_state.QueryState` through
chainable calls.  Terminal calls compile the state for the handle's dialect
and run the statement through the handle's execution pipeline.

Example::

    page = (
        db.table("orders")
        .select("id", "total")
        .where("status", "=", "paid")
        .where_in("region", ["eu", "us"])
        .order_by("id", "desc")
        .limit(50)
        .get_keyset(cursor, "id")
    )

A query is single-owner and not safe to share between threads; use
:meth:`Query.clone` to branch.  Terminal calls never mutate the state they
compile: derived statements (``first``, ``count``, keyset pages) are compiled
from clones.
"""
from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from weaveql.compile.base import CompiledStatement
from weaveql.compile.statement import resolve_upsert_columns
from weaveql.errors import ValidationError
from weaveql.schema.context import OperationKind
from weaveql.schema.query_state import (
    BasicFilter,
    BetweenFilter,
    BooleanOp,
    GroupFilter,
    HavingClause,
    InFilter,
    JoinClause,
    JsonFilter,
    NullFilter,
    OrderByItem,
    QueryState,
    Visibility,
)

if TYPE_CHECKING:
    from weaveql.database import Database
    from weaveql.execute.driver import ExecutionResult

_MISSING: Any = object()

# Generated-key column assumed by insert() when the table has it.
DEFAULT_KEY = "id"


@dataclass(frozen=True)
class KeysetPage:
    """One page of a keyset traversal.

    Attributes:
        data: Rows of this page.
        next_cursor: Key of the last row when the page is full, else ``None``
            (the traversal is exhausted).
    """

    data: list[dict[str, Any]]
    next_cursor: Any = None


class Query:
    """Chainable builder bound to one table of a :class:`Database` handle.

    Args:
        db: The owning handle; supplies compilation context and execution.
        table: Target table name, without prefix.
        state: Initial state; a fresh one is created when omitted.
    """

    def __init__(self, db: Database, table: str, state: QueryState | None = None) -> None:
        self._db = db
        self._state = state if state is not None else QueryState(table=table)

    @property
    def state(self) -> QueryState:
        return self._state

    def clone(self) -> Query:
        """Return an independent copy of this query."""
        return Query(self._db, self._state.table, self._state.clone())

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def select(self, *columns: str | Sequence[str]) -> Query:
        """Set the projected columns.

        Accepts ``select("a", "b")`` or ``select(["a", "b"])``.  Entries
        containing ``(`` are rendered verbatim; ``"col AS alias"`` is quoted
        part by part.
        """
        flat: list[str] = []
        for col in columns:
            if isinstance(col, str):
                flat.append(col)
            else:
                flat.extend(col)
        self._state.columns = flat or ["*"]
        return self

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def where(self, column: str, operator: Any, value: Any = _MISSING) -> Query:
        """Add ``column <operator> value`` joined with AND.

        The two-argument form ``where("id", 5)`` means ``=``.
        """
        return self._basic(column, operator, value, "AND")

    def or_where(self, column: str, operator: Any, value: Any = _MISSING) -> Query:
        return self._basic(column, operator, value, "OR")

    def where_in(self, column: str, values: Sequence[Any]) -> Query:
        return self._in(column, values, negate=False, boolean="AND")

    def or_where_in(self, column: str, values: Sequence[Any]) -> Query:
        return self._in(column, values, negate=False, boolean="OR")

    def where_not_in(self, column: str, values: Sequence[Any]) -> Query:
        return self._in(column, values, negate=True, boolean="AND")

    def or_where_not_in(self, column: str, values: Sequence[Any]) -> Query:
        return self._in(column, values, negate=True, boolean="OR")

    def where_between(self, column: str, bounds: Sequence[Any]) -> Query:
        """Add ``column BETWEEN low AND high``.

        Raises:
            ValidationError: If ``bounds`` does not hold exactly two values.
        """
        return self._between(column, bounds, negate=False)

    def where_not_between(self, column: str, bounds: Sequence[Any]) -> Query:
        return self._between(column, bounds, negate=True)

    def where_null(self, column: str) -> Query:
        self._state.filters.append(NullFilter(column=column))
        return self

    def where_not_null(self, column: str) -> Query:
        self._state.filters.append(NullFilter(column=column, negate=True))
        return self

    def or_where_null(self, column: str) -> Query:
        self._state.filters.append(NullFilter(column=column, boolean="OR"))
        return self

    def or_where_not_null(self, column: str) -> Query:
        self._state.filters.append(NullFilter(column=column, negate=True, boolean="OR"))
        return self

    def where_json(self, path: str, operator: Any, value: Any = _MISSING) -> Query:
        """Compare a value inside a JSON column.

        ``path`` is ``"column.key.subkey"``; numeric segments index arrays.
        """
        return self._json(path, operator, value, "AND")

    def or_where_json(self, path: str, operator: Any, value: Any = _MISSING) -> Query:
        return self._json(path, operator, value, "OR")

    def where_group(self, build: Callable[[Query], Any]) -> Query:
        """Add a parenthesised group built by ``build`` on a nested query.

        Example::

            q.where("active", 1).where_group(
                lambda g: g.where("role", "admin").or_where("role", "owner")
            )
        """
        return self._group(build, "AND")

    def or_where_group(self, build: Callable[[Query], Any]) -> Query:
        return self._group(build, "OR")

    # ------------------------------------------------------------------
    # Joins, grouping, ordering, paging
    # ------------------------------------------------------------------

    def join(
        self,
        table: str,
        left: str,
        operator: str,
        right: str,
        type: str = "INNER",
    ) -> Query:
        kind = type.upper()
        if kind not in ("INNER", "LEFT", "RIGHT"):
            raise ValidationError(
                f"Unsupported join type: {type!r}.",
                code="INVALID_JOIN",
                details={"type": type},
            )
        self._state.joins.append(
            JoinClause(table=table, left=left, operator=operator, right=right, type=kind)
        )
        return self

    def left_join(self, table: str, left: str, operator: str, right: str) -> Query:
        return self.join(table, left, operator, right, "LEFT")

    def right_join(self, table: str, left: str, operator: str, right: str) -> Query:
        return self.join(table, left, operator, right, "RIGHT")

    def group_by(self, *columns: str) -> Query:
        self._state.group_by.extend(columns)
        return self

    def having(self, expression: str, operator: str, value: Any) -> Query:
        """Add ``expression <operator> ?``; ``expression`` is rendered verbatim."""
        self._state.having.append(HavingClause(expression=expression, operator=operator, value=value))
        return self

    def order_by(self, column: str, direction: str = "asc") -> Query:
        normalized = direction.upper()
        if normalized not in ("ASC", "DESC"):
            raise ValidationError(
                f"Invalid order direction: {direction!r}.",
                code="INVALID_ORDER",
                details={"direction": direction},
            )
        self._state.order_by.append(OrderByItem(column=column, direction=normalized))
        return self

    def limit(self, n: int) -> Query:
        self._state.limit = _non_negative("limit", n)
        return self

    def offset(self, n: int) -> Query:
        self._state.offset = _non_negative("offset", n)
        return self

    def timeout(self, ms: int) -> Query:
        """Set a per-call timeout in milliseconds (clamped to at least 1)."""
        self._state.timeout_ms = max(1, int(ms))
        return self

    def with_trashed(self) -> Query:
        self._state.visibility = Visibility.WITH_TRASHED
        return self

    def only_trashed(self) -> Query:
        self._state.visibility = Visibility.ONLY_TRASHED
        return self

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def to_sql(self) -> CompiledStatement:
        """Compile the SELECT without executing it."""
        return self._db.compiler(self._state.table).select(self._state)

    def get(self) -> list[dict[str, Any]]:
        return self._select(self._state)

    def first(self) -> dict[str, Any] | None:
        state = self._state.clone()
        state.limit = 1
        rows = self._select(state)
        return rows[0] if rows else None

    def exists(self) -> bool:
        return self.count() > 0

    def count(self) -> int:
        value = self._aggregate("COUNT(1)", "c")
        return int(value or 0)

    def sum(self, column: str) -> Any:
        """Return ``SUM(column)``, or ``0`` when no row matches."""
        value = self._aggregate(f"SUM({self._db.dialect.quote_column(column)})", "s")
        return 0 if value is None else value

    def avg(self, column: str) -> Any:
        return self._aggregate(f"AVG({self._db.dialect.quote_column(column)})", "a")

    def min(self, column: str) -> Any:
        return self._aggregate(f"MIN({self._db.dialect.quote_column(column)})", "m")

    def max(self, column: str) -> Any:
        return self._aggregate(f"MAX({self._db.dialect.quote_column(column)})", "m")

    def pluck(self, column: str, key: str | None = None) -> list[Any] | dict[Any, Any]:
        """Return one column as a list, or as a ``{key: column}`` dict."""
        state = self._state.clone()
        state.columns = [column] if key is None else [column, key]
        rows = self._select(state)
        name = _result_name(column)
        if key is None:
            return [row.get(name) for row in rows]
        key_name = _result_name(key)
        return {row[key_name]: row.get(name) for row in rows}

    def get_keyset(self, cursor: Any, key: str) -> KeysetPage:
        """Fetch the page after ``cursor`` ordered by ``key``.

        The comparison follows the ORDER BY direction of ``key`` (``>`` for
        ascending, ``<`` for descending).  When ``key`` is not ordered yet an
        ORDER BY on it is added.  Pass ``None`` as the first cursor.

        Raises:
            ValidationError: If the projection leaves out ``key``, since the
                next cursor is read from the last row.
        """
        state = self._state.clone()
        if not _projects(state.columns, key):
            raise ValidationError(
                f"Keyset key {key!r} is not in the projection.",
                code="KEYSET_KEY_NOT_SELECTED",
                details={"key": key, "columns": list(state.columns)},
            )
        direction = state.order_direction_for(key)
        if not any(item.column == key for item in state.order_by):
            state.order_by.insert(0, OrderByItem(column=key, direction=direction))
        if cursor is not None:
            if len(state.filters) > 1:
                # Keep user OR chains from bypassing the cursor bound.
                state.filters = [GroupFilter(state=QueryState(filters=state.filters))]
            op = ">" if direction == "ASC" else "<"
            state.filters.append(BasicFilter(column=key, operator=op, value=cursor))
        rows = self._select(state)
        next_cursor = None
        if rows and state.limit is not None and len(rows) >= state.limit:
            next_cursor = rows[-1].get(_result_name(key))
        return KeysetPage(data=rows, next_cursor=next_cursor)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, row: Mapping[str, Any], key: str | None = None) -> Any:
        """Insert one row and return its generated key.

        On dialects with ``RETURNING`` the ``key`` column is returned
        directly; elsewhere the driver's last-insert id is used.  Without an
        explicit ``key``, ``RETURNING "id"`` is only added when the table has
        an ``id`` column.  Returns ``None`` in test mode.
        """
        table = self._state.table
        if key is None and self._db.dialect.supports_returning:
            key = DEFAULT_KEY if self._db.has_column(table, DEFAULT_KEY) else None
        compiler = self._db.compiler(table)
        returning = (key,) if key else ()
        result = self._db.run(
            compiler.insert(self._state.table, [row], returning=returning),
            table=self._state.table,
            timeout_ms=self._state.timeout_ms,
        )
        if key and result.rows:
            return result.rows[0].get(key)
        return self._db.last_insert_id(result)

    def insert_many(self, rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert all ``rows`` in one statement; return the affected count."""
        if not rows:
            return 0
        compiled = self._db.compiler(self._state.table).insert(self._state.table, rows)
        return self._run(compiled).rowcount

    def insert_get(
        self,
        row: Mapping[str, Any],
        columns: Sequence[str] = ("*",),
        key: str = DEFAULT_KEY,
    ) -> dict[str, Any] | None:
        """Insert one row and return it as stored (defaults included)."""
        table = self._state.table
        if self._db.dialect.supports_returning:
            compiled = self._db.compiler(table).insert(table, [row], returning=columns)
            rows = self._run(compiled).rows
            return rows[0] if rows else None
        new_id = self.insert(row, key=key)
        if new_id is None:
            return None
        return Query(self._db, table).select(*columns).with_trashed().where(key, "=", new_id).first()

    def update(self, values: Mapping[str, Any]) -> int:
        compiled = self._db.compiler(self._state.table).update(self._state, values)
        return self._run(compiled).rowcount

    def delete(self) -> int:
        """Soft-delete matching rows when soft delete applies, else hard-delete."""
        compiled = self._db.compiler(self._state.table).delete(self._state)
        return self._run(compiled).rowcount

    def force_delete(self) -> int:
        """Hard-delete matching rows, trashed or not."""
        compiled = self._db.compiler(self._state.table).delete(self._state, force=True)
        return self._run(compiled).rowcount

    def restore(self) -> int:
        """Clear the soft-delete marker on matching trashed rows."""
        compiled = self._db.compiler(self._state.table).restore(self._state)
        if compiled is None:
            return 0
        return self._run(compiled).rowcount

    def upsert(
        self,
        row: Mapping[str, Any],
        conflict: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> int:
        """Insert ``row`` or update the row sharing its ``conflict`` columns.

        Dialects without a native upsert run an existence check followed by
        an UPDATE or INSERT inside one retrying transaction.  That fallback
        is only race-free under serializable (or equivalent) isolation.
        """
        table = self._state.table
        update_columns = resolve_upsert_columns(row, conflict, update_columns)
        if self._db.dialect.supports_native_upsert:
            compiled = self._db.compiler(table).upsert(table, row, conflict, update_columns)
            return self._run(compiled).rowcount

        def fallback(db: Database) -> int:
            compiler = db.compiler(table)
            match = QueryState(table=table, visibility=Visibility.WITH_TRASHED)
            for col in conflict:
                match.filters.append(BasicFilter(column=col, operator="=", value=row[col]))
            existence = match.model_copy(update={"columns": ["COUNT(1) AS c"]})
            found = db.run(compiler.select(existence), table=table, timeout_ms=self._state.timeout_ms)
            if found.rows and int(found.rows[0].get("c") or 0) > 0:
                values = {col: row[col] for col in update_columns}
                compiled = compiler.update(match, values, operation=OperationKind.UPSERT)
            else:
                compiled = replace(compiler.insert(table, [row]), operation=OperationKind.UPSERT)
            return db.run(compiled, table=table, timeout_ms=self._state.timeout_ms).rowcount

        return self._db.transaction(fallback)

    def json_set(self, column: str, values: Mapping[str, Any]) -> int:
        """Write ``{"path.inside": value}`` entries into a JSON column."""
        compiled = self._db.compiler(self._state.table).json_set(self._state, column, values)
        return self._run(compiled).rowcount

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(self, compiled: CompiledStatement) -> ExecutionResult:
        return self._db.run(compiled, table=self._state.table, timeout_ms=self._state.timeout_ms)

    def _select(self, state: QueryState) -> list[dict[str, Any]]:
        compiled = self._db.compiler(state.table).select(state)
        return self._db.run(compiled, table=state.table, timeout_ms=state.timeout_ms).rows

    def _aggregate(self, expression: str, alias: str) -> Any:
        state = self._state.model_copy(
            update={
                "columns": [f"{expression} AS {alias}"],
                "order_by": [],
                "limit": None,
                "offset": None,
            },
            deep=True,
        )
        rows = self._select(state)
        return rows[0].get(alias) if rows else None

    def _basic(self, column: str, operator: Any, value: Any, boolean: BooleanOp) -> Query:
        if value is _MISSING:
            operator, value = "=", operator
        self._state.filters.append(
            BasicFilter(column=column, operator=str(operator), value=value, boolean=boolean)
        )
        return self

    def _in(self, column: str, values: Sequence[Any], negate: bool, boolean: BooleanOp) -> Query:
        if isinstance(values, (str, bytes)) or not isinstance(values, (Sequence, set, frozenset)):
            raise ValidationError(
                f"IN values for column '{column}' must be a list.",
                code="INVALID_ARGUMENT",
                details={"column": column},
            )
        self._state.filters.append(
            InFilter(column=column, values=tuple(values), negate=negate, boolean=boolean)
        )
        return self

    def _between(self, column: str, bounds: Sequence[Any], negate: bool) -> Query:
        if isinstance(bounds, (str, bytes)) or len(bounds) != 2:
            raise ValidationError(
                f"BETWEEN on column '{column}' needs exactly two bounds.",
                code="INVALID_BETWEEN",
                details={"column": column},
            )
        low, high = bounds
        self._state.filters.append(BetweenFilter(column=column, low=low, high=high, negate=negate))
        return self

    def _json(self, path: str, operator: Any, value: Any, boolean: BooleanOp) -> Query:
        if value is _MISSING:
            operator, value = "=", operator
        if "." not in path:
            raise ValidationError(
                f"JSON path {path!r} must be 'column.key'.",
                code="INVALID_JSON_PATH",
                details={"path": path},
            )
        self._state.filters.append(
            JsonFilter(path=path, operator=str(operator), value=value, boolean=boolean)
        )
        return self

    def _group(self, build: Callable[[Query], Any], boolean: BooleanOp) -> Query:
        nested = Query(self._db, self._state.table, QueryState(table=self._state.table))
        build(nested)
        if nested.state.filters:
            self._state.filters.append(
                GroupFilter(state=QueryState(filters=nested.state.filters), boolean=boolean)
            )
        return self


def _non_negative(name: str, n: int) -> int:
    value = int(n)
    if value < 0:
        raise ValidationError(f"{name} must be >= 0.", code="INVALID_ARGUMENT", details={name: n})
    return value


def _result_name(column: str) -> str:
    """Return the key a projected ``column`` shows up under in result rows."""
    lowered = column.lower()
    if " as " in lowered:
        return column[lowered.rindex(" as ") + 4:].strip()
    return column.rsplit(".", 1)[-1]


def _projects(columns: Sequence[str], key: str) -> bool:
    """Whether rows selected with ``columns`` carry ``key``."""
    name = _result_name(key)
    return not columns or any(
        col == "*" or col.endswith(".*") or _result_name(col) == name for col in columns
    )
