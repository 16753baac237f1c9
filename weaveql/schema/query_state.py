"""Pydantic models for the weaveQL query state.

A :class:`QueryState` is what the fluent :class:`~weaveql.query.Query`
surface accumulates and what the statement compiler consumes.  Filters are a
closed tagged union discriminated by ``kind``; the predicate compiler
switches over that tag, so adding a filter kind means adding a model here and
a branch there.

States are single-owner.  Use :meth:`QueryState.clone` to branch a query.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

#: Boolean connective that prefixes a filter (ignored for the first filter).
BooleanOp = Literal["AND", "OR"]

#: Comparison operators allowed in basic, JSON, join and HAVING predicates.
#: Operators are rendered into SQL text, so they are never free-form.
COMPARISON_OPERATORS: frozenset[str] = frozenset(
    {"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE"}
)

_FROZEN = ConfigDict(extra="forbid", frozen=True)


class Visibility(str, Enum):
    """Soft-delete visibility mode of a query."""

    DEFAULT = "default"
    WITH_TRASHED = "with_trashed"
    ONLY_TRASHED = "only_trashed"


# ---------------------------------------------------------------------------
# Filter nodes
# ---------------------------------------------------------------------------


class BasicFilter(BaseModel):
    """``column <operator> value``."""

    model_config = _FROZEN

    kind: Literal["basic"] = "basic"
    column: str
    operator: str
    value: Any = None
    boolean: BooleanOp = "AND"


class InFilter(BaseModel):
    """``column [NOT] IN (values…)``."""

    model_config = _FROZEN

    kind: Literal["in"] = "in"
    column: str
    values: tuple[Any, ...] = ()
    negate: bool = False
    boolean: BooleanOp = "AND"


class NullFilter(BaseModel):
    """``column IS [NOT] NULL``."""

    model_config = _FROZEN

    kind: Literal["null"] = "null"
    column: str
    negate: bool = False
    boolean: BooleanOp = "AND"


class BetweenFilter(BaseModel):
    """``column [NOT] BETWEEN low AND high``."""

    model_config = _FROZEN

    kind: Literal["between"] = "between"
    column: str
    low: Any
    high: Any
    negate: bool = False
    boolean: BooleanOp = "AND"


class JsonFilter(BaseModel):
    """Comparison against a value extracted from a JSON column.

    Attributes:
        path: Dot-separated logical path; the first segment is the column,
            the rest is the path inside the JSON document
            (``"data.profile.name"``).
    """

    model_config = _FROZEN

    kind: Literal["json"] = "json"
    path: str
    operator: str
    value: Any = None
    boolean: BooleanOp = "AND"

    @property
    def column(self) -> str:
        return self.path.split(".", 1)[0]

    @property
    def segments(self) -> list[str]:
        return self.path.split(".")[1:]


class GroupFilter(BaseModel):
    """A parenthesised group of filters taken from a nested state."""

    model_config = _FROZEN

    kind: Literal["group"] = "group"
    state: QueryState
    boolean: BooleanOp = "AND"


FilterNode = Annotated[
    Union[BasicFilter, InFilter, NullFilter, BetweenFilter, JsonFilter, GroupFilter],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Clause models
# ---------------------------------------------------------------------------


class JoinClause(BaseModel):
    """A single ``<type> JOIN table ON left <op> right`` entry."""

    model_config = _FROZEN

    table: str
    left: str
    operator: str = "="
    right: str
    type: Literal["INNER", "LEFT", "RIGHT"] = "INNER"


class HavingClause(BaseModel):
    """``expression <operator> ?``; the value is always bound as a parameter.

    Attributes:
        expression: Raw aggregate expression (e.g. ``"COUNT(1)"``).  It is
            rendered verbatim, so it must come from trusted code.
    """

    model_config = _FROZEN

    expression: str
    operator: str
    value: Any


class OrderByItem(BaseModel):
    """A single ORDER BY pair."""

    model_config = _FROZEN

    column: str
    direction: Literal["ASC", "DESC"] = "ASC"


# ---------------------------------------------------------------------------
# Query state
# ---------------------------------------------------------------------------


class QueryState(BaseModel):
    """Everything a fluent query has accumulated so far.

    Attributes:
        table: Target table (without prefix).  Empty for nested group states.
        columns: Projected columns; ``["*"]`` by default.
        filters: User filters in declaration order.
        joins: Joins in declaration order.
        group_by: GROUP BY columns.
        having: HAVING clauses, joined with ``AND``.
        order_by: ORDER BY pairs in declaration order.
        limit: Optional row limit.
        offset: Optional row offset.
        timeout_ms: Optional per-call timeout in milliseconds.
        visibility: Soft-delete visibility mode.
    """

    model_config = ConfigDict(extra="forbid")

    table: str = ""
    columns: list[str] = Field(default_factory=lambda: ["*"])
    filters: list[FilterNode] = Field(default_factory=list)
    joins: list[JoinClause] = Field(default_factory=list)
    group_by: list[str] = Field(default_factory=list)
    having: list[HavingClause] = Field(default_factory=list)
    order_by: list[OrderByItem] = Field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    timeout_ms: int | None = None
    visibility: Visibility = Visibility.DEFAULT

    def clone(self) -> QueryState:
        """Return an independent deep copy of this state."""
        return self.model_copy(deep=True)

    def order_direction_for(self, column: str) -> str:
        """Return the direction the state orders ``column`` by.

        Falls back to the first ORDER BY entry, then to ``ASC``.
        """
        for item in self.order_by:
            if item.column == column:
                return item.direction
        if self.order_by:
            return self.order_by[0].direction
        return "ASC"


GroupFilter.model_rebuild()
QueryState.model_rebuild()
