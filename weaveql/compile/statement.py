"""Statement compiler: query state → complete SQL statement.

``StatementCompiler`` composes the dialect and the predicate compiler into
full SELECT / INSERT / UPDATE / DELETE / UPSERT statements.  Every public
method starts a fresh :class:`~weaveql.compile.context.ParameterCollector`,
so the returned parameter tuple always matches the placeholders of the
returned SQL, in order.

Soft delete
-----------
When the context carries a soft-delete policy (enabled *and* the column
exists on the table), :meth:`StatementCompiler.delete` compiles to an UPDATE
of the marker column unless ``force=True``; a forced delete is always a
literal ``DELETE``.  :meth:`StatementCompiler.restore` writes the policy's
restored value back.

Generated keys
--------------
The compiler only renders ``RETURNING`` when asked and when the dialect
supports it.  Falling back to ``lastrowid`` / an identity query is the
execution layer's job.
"""
from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from weaveql.compile.base import CompiledStatement
from weaveql.compile.context import CompilationContext, ParameterCollector
from weaveql.compile.predicate import PredicateCompiler, normalize_operator
from weaveql.errors import UnsupportedOperationError, ValidationError
from weaveql.schema.config import SoftDeleteMode
from weaveql.schema.context import OperationKind
from weaveql.schema.query_state import QueryState, Visibility

_ALIAS = re.compile(r"^\s*([\w.*]+)\s+AS\s+(\w+)\s*$", re.IGNORECASE)


class StatementCompiler:
    """Compiles query states to parameterized SQL for one table context.

    Args:
        ctx: Dialect, scope, soft-delete decision and guard for the table.
    """

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx
        self._dialect = ctx.dialect

    # ------------------------------------------------------------------
    # SELECT
    # ------------------------------------------------------------------

    def select(self, state: QueryState) -> CompiledStatement:
        """Compile ``state`` to a SELECT statement.

        Clause order: columns, FROM, joins (declaration order), WHERE,
        GROUP BY, HAVING, ORDER BY, dialect pagination.
        """
        params = ParameterCollector(self._dialect)
        predicates = PredicateCompiler(self._ctx, params)

        parts = [f"SELECT {self._projection(state.columns)}"]
        parts.append(f"FROM {self._ctx.table_sql(state.table)}")
        for join in state.joins:
            op = normalize_operator(join.operator)
            parts.append(
                f"{join.type} JOIN {self._ctx.table_sql(join.table)} "
                f"ON {self._col(join.left)} {op} {self._col(join.right)}"
            )

        qualifier = f"{self._ctx.prefix or ''}{state.table}" if state.joins else None
        where = predicates.build_where(state.filters, state.visibility, qualifier=qualifier)
        if where:
            parts.append(f"WHERE {where}")

        if state.group_by:
            parts.append("GROUP BY " + ", ".join(self._col(c) for c in state.group_by))

        if state.having:
            parts.append(f"HAVING {predicates.build_having(state.having)}")

        if state.order_by:
            order = ", ".join(f"{self._col(o.column)} {o.direction}" for o in state.order_by)
            parts.append(f"ORDER BY {order}")

        pagination = self._dialect.render_pagination(
            state.limit, state.offset, has_order_by=bool(state.order_by)
        )
        if pagination:
            parts.append(pagination)

        return self._result(" ".join(parts), params, OperationKind.SELECT)

    # ------------------------------------------------------------------
    # INSERT
    # ------------------------------------------------------------------

    def insert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        returning: Sequence[str] = (),
    ) -> CompiledStatement:
        """Compile a single- or multi-row INSERT.

        The column list comes from the first row; every other row must have
        exactly the same keys.

        Args:
            table: Target table (unprefixed).
            rows: One or more rows.
            returning: Columns for a ``RETURNING`` clause; ignored when the
                dialect does not support it.

        Raises:
            ValidationError: If ``rows`` is empty, a row is empty, or rows
                have different key sets.
        """
        columns = self._insert_columns(rows)
        params = ParameterCollector(self._dialect)
        groups = []
        for row in rows:
            groups.append("(" + ", ".join(params.add(row[c]) for c in columns) + ")")
        sql = (
            f"INSERT INTO {self._ctx.table_sql(table)} "
            f"({', '.join(self._dialect.quote_identifier(c) for c in columns)}) "
            f"VALUES {', '.join(groups)}"
        )
        if returning and self._dialect.supports_returning:
            sql = f"{sql} {self._dialect.render_returning(returning)}"
        return self._result(sql, params, OperationKind.INSERT)

    # ------------------------------------------------------------------
    # UPSERT
    # ------------------------------------------------------------------

    def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        conflict: Sequence[str],
        update_columns: Sequence[str] | None = None,
    ) -> CompiledStatement:
        """Compile a native single-statement upsert.

        Raises:
            UnsupportedOperationError: If the dialect has no native upsert;
                callers should use the transactional fallback instead.
            ValidationError: If the conflict or update columns are invalid.
        """
        if not self._dialect.supports_native_upsert:
            raise UnsupportedOperationError("native upsert", self._dialect.name)
        update_columns = resolve_upsert_columns(row, conflict, update_columns)
        compiled = self.insert(table, [row])
        clause = self._dialect.render_upsert(conflict, update_columns)
        return CompiledStatement(
            sql=f"{compiled.sql} {clause}",
            params=compiled.params,
            dialect=compiled.dialect,
            operation=OperationKind.UPSERT,
        )

    # ------------------------------------------------------------------
    # UPDATE / DELETE / RESTORE
    # ------------------------------------------------------------------

    def update(
        self,
        state: QueryState,
        values: Mapping[str, Any],
        operation: OperationKind = OperationKind.UPDATE,
    ) -> CompiledStatement:
        """Compile ``UPDATE table SET … WHERE …``.

        Raises:
            ValidationError: If ``values`` is empty.
        """
        if not values:
            raise ValidationError("UPDATE requires at least one column.", code="EMPTY_UPDATE")
        params = ParameterCollector(self._dialect)
        assignments = ", ".join(
            f"{self._dialect.quote_identifier(col)} = {params.add(val)}"
            for col, val in values.items()
        )
        return self._update_sql(state, assignments, params, operation)

    def delete(self, state: QueryState, force: bool = False) -> CompiledStatement:
        """Compile a soft delete (UPDATE of the marker) or a hard DELETE."""
        policy = self._ctx.soft_delete
        if policy is not None and not force:
            marker = self._ctx.clock() if policy.mode is SoftDeleteMode.TIMESTAMP else policy.deleted_value
            return self.update(state, {policy.column: marker}, OperationKind.DELETE)

        params = ParameterCollector(self._dialect)
        visibility = state.visibility
        if force and visibility is Visibility.DEFAULT:
            # A forced delete removes matching rows whether trashed or not.
            visibility = Visibility.WITH_TRASHED
        where = PredicateCompiler(self._ctx, params).build_where(state.filters, visibility)
        sql = f"DELETE FROM {self._ctx.table_sql(state.table)}"
        if where:
            sql = f"{sql} WHERE {where}"
        return self._result(sql, params, OperationKind.DELETE)

    def restore(self, state: QueryState) -> CompiledStatement | None:
        """Compile an UPDATE clearing the soft-delete marker.

        Returns ``None`` when soft delete does not apply to the table.
        Default visibility is narrowed to trashed rows only.
        """
        policy = self._ctx.soft_delete
        if policy is None:
            return None
        if state.visibility is Visibility.DEFAULT:
            state = state.model_copy(update={"visibility": Visibility.ONLY_TRASHED})
        return self.update(state, {policy.column: policy.restored_value})

    def json_set(
        self,
        state: QueryState,
        column: str,
        values: Mapping[str, Any],
    ) -> CompiledStatement:
        """Compile an UPDATE writing each ``path -> value`` into a JSON column.

        Keys of ``values`` are dot-separated paths inside the document
        (``{"profile.name": "Doe"}``).  Each key nests one dialect
        ``json_set`` call around the previous one.

        Raises:
            ValidationError: If ``values`` is empty or a path is malformed.
            UnsupportedOperationError: If the dialect cannot update JSON.
        """
        if not values:
            raise ValidationError("json_set requires at least one path.", code="EMPTY_UPDATE")
        params = ParameterCollector(self._dialect)
        expr = self._dialect.quote_identifier(column)
        for path, value in values.items():
            placeholder = params.add(self._dialect.json_param(value))
            expr = self._dialect.json_set(expr, path.split("."), placeholder)
        assignments = f"{self._dialect.quote_identifier(column)} = {expr}"
        return self._update_sql(state, assignments, params, OperationKind.UPDATE)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _update_sql(
        self,
        state: QueryState,
        assignments: str,
        params: ParameterCollector,
        operation: OperationKind,
    ) -> CompiledStatement:
        where = PredicateCompiler(self._ctx, params).build_where(state.filters, state.visibility)
        sql = f"UPDATE {self._ctx.table_sql(state.table)} SET {assignments}"
        if where:
            sql = f"{sql} WHERE {where}"
        return self._result(sql, params, operation)

    def _projection(self, columns: Sequence[str]) -> str:
        if not columns:
            return "*"
        rendered = []
        for col in columns:
            if "(" in col:
                rendered.append(col)
                continue
            match = _ALIAS.match(col)
            if match:
                rendered.append(
                    f"{self._col(match.group(1))} AS {self._dialect.quote_identifier(match.group(2))}"
                )
            else:
                rendered.append(self._col(col))
        return ", ".join(rendered)

    def _insert_columns(self, rows: Sequence[Mapping[str, Any]]) -> list[str]:
        if not rows:
            raise ValidationError("INSERT requires at least one row.", code="EMPTY_INSERT")
        columns = list(rows[0].keys())
        if not columns:
            raise ValidationError("INSERT rows must not be empty.", code="EMPTY_INSERT")
        expected = set(columns)
        for index, row in enumerate(rows[1:], start=1):
            if set(row.keys()) != expected:
                raise ValidationError(
                    f"Row {index} has different columns than row 0.",
                    code="ROW_SHAPE_MISMATCH",
                    details={"expected": columns, "got": list(row.keys())},
                )
        return columns

    def _col(self, ref: str) -> str:
        return self._dialect.quote_column(ref)

    def _result(
        self,
        sql: str,
        params: ParameterCollector,
        operation: OperationKind,
    ) -> CompiledStatement:
        return CompiledStatement(
            sql=sql,
            params=tuple(params.params),
            dialect=self._dialect.name,
            operation=operation,
        )


def resolve_upsert_columns(
    row: Mapping[str, Any],
    conflict: Sequence[str],
    update_columns: Sequence[str] | None,
) -> list[str]:
    """Validate upsert arguments and return the columns to update on conflict.

    ``update_columns`` defaults to every column of ``row`` that is not a
    conflict column.

    Raises:
        ValidationError: If ``conflict`` is empty, names a column missing from
            ``row``, or no update columns remain.
    """
    if not conflict:
        raise ValidationError("Upsert requires at least one conflict column.", code="INVALID_UPSERT")
    missing = [c for c in conflict if c not in row]
    if missing:
        raise ValidationError(
            f"Conflict columns missing from row: {missing}.",
            code="INVALID_UPSERT",
            details={"missing": missing},
        )
    if update_columns is None:
        update_columns = [c for c in row if c not in conflict]
    unknown = [c for c in update_columns if c not in row]
    if unknown:
        raise ValidationError(
            f"Update columns missing from row: {unknown}.",
            code="INVALID_UPSERT",
            details={"missing": unknown},
        )
    if not update_columns:
        raise ValidationError("Upsert requires at least one update column.", code="INVALID_UPSERT")
    return list(update_columns)
