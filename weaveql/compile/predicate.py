"""Predicate compiler: filter nodes → SQL boolean expression.

``PredicateCompiler`` turns a query state's filter list, the handle's scope
and the soft-delete decision into one WHERE expression, appending every bound
value to a shared :class:`~weaveql.compile.context.ParameterCollector` in
placeholder order.

Fragment order
--------------
1. Scope equalities (``col = ?`` / ``col IS NULL``), AND-ed.
2. The soft-delete visibility predicate, AND-ed.
3. User filters, each prefixed by its own declared ``AND``/``OR`` except the
   first.  No precedence rebalancing happens.  When 1. or 2. produced
   anything and there is more than one user filter, the user chain is
   parenthesised so an ``OR`` cannot escape the injected predicates.

When a ``qualifier`` is given (a SELECT with joins), unqualified scope and
soft-delete columns are rendered as ``qualifier.column``.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from weaveql.compile.context import CompilationContext, ParameterCollector
from weaveql.errors import CompilationError, GuardViolationError, ValidationError
from weaveql.schema.config import SoftDeleteMode
from weaveql.schema.query_state import (
    COMPARISON_OPERATORS,
    BasicFilter,
    BetweenFilter,
    GroupFilter,
    HavingClause,
    InFilter,
    JsonFilter,
    NullFilter,
    Visibility,
)

# Literal predicates for IN lists with no values.
ALWAYS_FALSE = "1 = 0"
ALWAYS_TRUE = "1 = 1"


def normalize_operator(operator: str) -> str:
    """Upper-case and whitespace-normalise ``operator``; reject unknown ones.

    Raises:
        ValidationError: If the operator is not in the comparison allowlist.
    """
    op = " ".join(str(operator).upper().split())
    if op not in COMPARISON_OPERATORS:
        raise ValidationError(
            f"Unsupported comparison operator: {operator!r}.",
            code="INVALID_OPERATOR",
            details={"operator": operator, "allowed": sorted(COMPARISON_OPERATORS)},
        )
    return op


class PredicateCompiler:
    """Compiles filter nodes (WHERE) and having clauses (HAVING) to SQL.

    Args:
        ctx: Static compilation context for the target table.
        params: Shared parameter accumulator for this statement.
    """

    def __init__(self, ctx: CompilationContext, params: ParameterCollector) -> None:
        self._ctx = ctx
        self._params = params

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_where(
        self,
        filters: Sequence[Any],
        visibility: Visibility = Visibility.DEFAULT,
        scope: Mapping[str, Any] | None = None,
        qualifier: str | None = None,
    ) -> str:
        """Return the full WHERE expression (without ``WHERE``), or ``""``.

        Args:
            filters: User filter nodes in declaration order.
            visibility: Soft-delete visibility of the query.
            scope: Scope mapping; defaults to the context's scope.
            qualifier: Table reference (already prefixed) used to qualify
                injected scope and soft-delete columns.
        """
        scope = self._ctx.scope if scope is None else scope
        injected = [
            self._scope_equality(self._injected_col(col, qualifier), value)
            for col, value in scope.items()
        ]
        soft = self._soft_delete_predicate(visibility, qualifier)
        if soft:
            injected.append(soft)

        user_sql, user_count = self._build_chain(filters)
        if not user_sql:
            return " AND ".join(injected)
        if injected and user_count > 1:
            user_sql = f"({user_sql})"
        return " AND ".join([*injected, user_sql])

    def build_having(self, having: Sequence[HavingClause]) -> str:
        """Return the HAVING expression, AND-joined in declaration order."""
        parts = []
        for clause in having:
            op = normalize_operator(clause.operator)
            parts.append(f"{clause.expression} {op} {self._params.add(clause.value)}")
        return " AND ".join(parts)

    # ------------------------------------------------------------------
    # User filter chain
    # ------------------------------------------------------------------

    def _build_chain(self, filters: Sequence[Any]) -> tuple[str, int]:
        """Compile a filter list; return the SQL and the number of fragments."""
        sql = ""
        count = 0
        for node in filters:
            fragment = self._build_node(node)
            if not fragment:
                continue
            sql = fragment if count == 0 else f"{sql} {node.boolean} {fragment}"
            count += 1
        return sql, count

    def _build_node(self, node: Any) -> str:
        if isinstance(node, BasicFilter):
            return self._build_basic(node)
        if isinstance(node, InFilter):
            return self._build_in(node)
        if isinstance(node, NullFilter):
            keyword = "IS NOT NULL" if node.negate else "IS NULL"
            return f"{self._col(node.column)} {keyword}"
        if isinstance(node, BetweenFilter):
            low = self._params.add(node.low)
            high = self._params.add(node.high)
            keyword = "NOT BETWEEN" if node.negate else "BETWEEN"
            return f"{self._col(node.column)} {keyword} {low} AND {high}"
        if isinstance(node, JsonFilter):
            return self._build_json(node)
        if isinstance(node, GroupFilter):
            inner, _ = self._build_chain(node.state.filters)
            return f"({inner})" if inner else ""
        raise CompilationError(
            f"Unknown filter node: {type(node).__name__}", clause="WHERE"
        )

    def _build_basic(self, node: BasicFilter) -> str:
        op = normalize_operator(node.operator)
        column = self._col(node.column)
        if node.value is None and op in ("=", "!=", "<>"):
            return f"{column} IS NULL" if op == "=" else f"{column} IS NOT NULL"
        return f"{column} {op} {self._params.add(node.value)}"

    def _build_in(self, node: InFilter) -> str:
        count = len(node.values)
        if count > self._ctx.max_in_params:
            raise GuardViolationError(node.column, count, self._ctx.max_in_params)
        if count == 0:
            return ALWAYS_TRUE if node.negate else ALWAYS_FALSE
        placeholders = ", ".join(self._params.add(v) for v in node.values)
        keyword = "NOT IN" if node.negate else "IN"
        return f"{self._col(node.column)} {keyword} ({placeholders})"

    def _build_json(self, node: JsonFilter) -> str:
        op = normalize_operator(node.operator)
        expr = self._ctx.dialect.json_extract(self._col(node.column), node.segments)
        if node.value is None and op in ("=", "!=", "<>"):
            return f"{expr} IS NULL" if op == "=" else f"{expr} IS NOT NULL"
        return f"{expr} {op} {self._params.add(node.value)}"

    # ------------------------------------------------------------------
    # Injected predicates
    # ------------------------------------------------------------------

    def _injected_col(self, column: str, qualifier: str | None) -> str:
        if qualifier and "." not in column:
            return self._col(f"{qualifier}.{column}")
        return self._col(column)

    def _scope_equality(self, column: str, value: Any) -> str:
        if value is None:
            return f"{column} IS NULL"
        return f"{column} = {self._params.add(value)}"

    def _soft_delete_predicate(
        self, visibility: Visibility, qualifier: str | None = None
    ) -> str:
        policy = self._ctx.soft_delete
        if policy is None or visibility is Visibility.WITH_TRASHED:
            return ""
        column = self._injected_col(policy.column, qualifier)
        if policy.mode is SoftDeleteMode.TIMESTAMP:
            if visibility is Visibility.ONLY_TRASHED:
                return f"{column} IS NOT NULL"
            return f"{column} IS NULL"
        if visibility is Visibility.ONLY_TRASHED:
            return f"{column} = {self._params.add(policy.deleted_value)}"
        return f"({column} IS NULL OR {column} <> {self._params.add(policy.deleted_value)})"

    def _col(self, ref: str) -> str:
        return self._ctx.dialect.quote_column(ref)
