"""MySQL dialect."""

from __future__ import annotations

from collections.abc import Sequence

from weaveql.compile.base import Dialect

# Largest LIMIT MySQL accepts; the documented way to express "no limit".
_MYSQL_MAX_LIMIT = 18446744073709551615


class MySQLDialect(Dialect):
    """Renders MySQL-flavoured parameterized SQL.

    Parameter style: ``%s`` – compatible with ``PyMySQL`` and
    ``mysql-connector-python`` positional execution.

    Identifiers are quoted with backticks (`` ` ``) rather than double-quotes.
    MySQL has no ``OFFSET`` without ``LIMIT``, so an offset-only page uses
    the maximum unsigned BIGINT as its limit.
    """

    supports_native_upsert = True
    # ER_LOCK_DEADLOCK, ER_LOCK_WAIT_TIMEOUT
    retryable_codes = frozenset({"1213", "1205", "40001"})

    @property
    def name(self) -> str:
        return "mysql"

    def param_placeholder(self) -> str:
        return "%s"

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace("`", "``")
        return f"`{escaped}`"

    def render_pagination(self, limit: int | None, offset: int | None, has_order_by: bool) -> str:
        if limit is None and offset is None:
            return ""
        if limit is None:
            return f"LIMIT {_MYSQL_MAX_LIMIT} OFFSET {int(offset)}"
        if offset is None:
            return f"LIMIT {int(limit)}"
        return f"LIMIT {int(limit)} OFFSET {int(offset)}"

    def render_upsert(self, conflict: Sequence[str], update_columns: Sequence[str]) -> str:
        # MySQL infers the conflict target from the table's unique keys.
        quote = self.quote_identifier
        assignments = ", ".join(f"{quote(c)} = VALUES({quote(c)})" for c in update_columns)
        return f"ON DUPLICATE KEY UPDATE {assignments}"

    def json_extract(self, column_sql: str, segments: Sequence[str]) -> str:
        return f"JSON_UNQUOTE(JSON_EXTRACT({column_sql}, {self.json_dollar_path(segments)}))"

    def json_set(self, target_sql: str, segments: Sequence[str], placeholder: str) -> str:
        return f"JSON_SET({target_sql}, {self.json_dollar_path(segments)}, CAST({placeholder} AS JSON))"

    def timeout_statements(self, timeout_ms: int) -> tuple[str | None, str | None]:
        # Applies to SELECTs only; DML ignores MAX_EXECUTION_TIME.
        return (
            f"SET SESSION MAX_EXECUTION_TIME = {max(1, int(timeout_ms))}",
            "SET SESSION MAX_EXECUTION_TIME = 0",
        )
