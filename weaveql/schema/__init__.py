"""weaveQL schema models: query state, handle configuration, execution context."""
from weaveql.schema.config import DatabaseConfig, RetrySettings, SoftDeleteMode, SoftDeletePolicy
from weaveql.schema.context import ExecutionContext, OperationKind
from weaveql.schema.query_state import (
    BasicFilter,
    BetweenFilter,
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

__all__ = [
    "DatabaseConfig",
    "RetrySettings",
    "SoftDeleteMode",
    "SoftDeletePolicy",
    "ExecutionContext",
    "OperationKind",
    "BasicFilter",
    "BetweenFilter",
    "GroupFilter",
    "HavingClause",
    "InFilter",
    "JoinClause",
    "JsonFilter",
    "NullFilter",
    "OrderByItem",
    "QueryState",
    "Visibility",
]
