"""Microsoft SQL Server dialect."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from weaveql.compile.base import Dialect
from weaveql.errors import UnsupportedOperationError


class SQLServerDialect(Dialect):
    """Renders T-SQL parameterized SQL.

    Parameter style: ``?`` – compatible with ``pyodbc``.

    Pagination uses ``OFFSET … ROWS FETCH NEXT … ROWS ONLY``, which T-SQL
    only accepts after an ORDER BY; when the query has none,
    ``ORDER BY (SELECT NULL)`` is emitted first.  There is no single-statement
    upsert here, so upserts go through the transactional fallback.
    """

    retryable_codes = frozenset({"1205", "40001"})
    retryable_patterns = (r"deadlock", r"\(1205\)", r"snapshot isolation")

    @property
    def name(self) -> str:
        return "sqlserver"

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace("]", "]]")
        return f"[{escaped}]"

    def render_pagination(self, limit: int | None, offset: int | None, has_order_by: bool) -> str:
        if limit is None and offset is None:
            return ""
        parts: list[str] = []
        if not has_order_by:
            parts.append("ORDER BY (SELECT NULL)")
        parts.append(f"OFFSET {int(offset or 0)} ROWS")
        if limit is not None:
            parts.append(f"FETCH NEXT {int(limit)} ROWS ONLY")
        return " ".join(parts)

    def json_extract(self, column_sql: str, segments: Sequence[str]) -> str:
        return f"JSON_VALUE({column_sql}, {self.json_dollar_path(segments)})"

    def json_set(self, target_sql: str, segments: Sequence[str], placeholder: str) -> str:
        return f"JSON_MODIFY({target_sql}, {self.json_dollar_path(segments)}, {placeholder})"

    def json_param(self, value: Any) -> Any:
        # JSON_MODIFY stores a bound string as an escaped JSON string, so
        # only scalars round-trip.
        if isinstance(value, (dict, list)):
            raise UnsupportedOperationError("JSON object values in json_set", self.name)
        return value

    def last_insert_id_query(self) -> str | None:
        # @@IDENTITY survives across batches on the same session, unlike
        # SCOPE_IDENTITY() which resets with every pyodbc execute().
        return "SELECT CAST(@@IDENTITY AS BIGINT) AS id"

    def timeout_statements(self, timeout_ms: int) -> tuple[str | None, str | None]:
        return f"SET LOCK_TIMEOUT {max(1, int(timeout_ms))}", "SET LOCK_TIMEOUT -1"
