"""PostgreSQL dialect."""

from __future__ import annotations

from collections.abc import Sequence

from weaveql.compile.base import Dialect, validate_json_segments


class PostgresDialect(Dialect):
    """Renders PostgreSQL-flavoured parameterized SQL.

    Parameter style: ``%s`` – compatible with ``psycopg2`` and ``psycopg``
    positional execution.

    JSON extraction uses the ``#>>`` operator, which returns ``text``; compare
    it against string parameters (or cast explicitly in raw SQL).
    """

    supports_native_upsert = True
    supports_returning = True
    retryable_codes = frozenset({"40001", "40P01"})

    @property
    def name(self) -> str:
        return "postgres"

    def param_placeholder(self) -> str:
        return "%s"

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace('"', '""')
        return f'"{escaped}"'

    def render_pagination(self, limit: int | None, offset: int | None, has_order_by: bool) -> str:
        parts: list[str] = []
        if limit is not None:
            parts.append(f"LIMIT {int(limit)}")
        if offset is not None:
            parts.append(f"OFFSET {int(offset)}")
        return " ".join(parts)

    def render_upsert(self, conflict: Sequence[str], update_columns: Sequence[str]) -> str:
        quote = self.quote_identifier
        target = ", ".join(quote(c) for c in conflict)
        assignments = ", ".join(f"{quote(c)} = EXCLUDED.{quote(c)}" for c in update_columns)
        return f"ON CONFLICT ({target}) DO UPDATE SET {assignments}"

    def json_extract(self, column_sql: str, segments: Sequence[str]) -> str:
        return f"{column_sql} #>> {self._brace_path(segments)}"

    def json_set(self, target_sql: str, segments: Sequence[str], placeholder: str) -> str:
        return (
            f"jsonb_set(CAST({target_sql} AS jsonb), {self._brace_path(segments)}, "
            f"CAST({placeholder} AS jsonb))"
        )

    def render_returning(self, columns: Sequence[str]) -> str:
        return "RETURNING " + ", ".join(self.quote_column(c) for c in columns)

    def timeout_statements(self, timeout_ms: int) -> tuple[str | None, str | None]:
        # statement_timeout is in milliseconds and is session-scoped.
        return (
            f"SET statement_timeout = {max(1, int(timeout_ms))}",
            "SET statement_timeout = DEFAULT",
        )

    @staticmethod
    def _brace_path(segments: Sequence[str]) -> str:
        """Render ``['a', 'b']`` as the text-array literal ``'{a,b}'``."""
        return "'{" + ",".join(validate_json_segments(segments)) + "}'"
