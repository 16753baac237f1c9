"""SQLite dialect."""
from __future__ import annotations

from collections.abc import Sequence

from weaveql.compile.base import Dialect


class SQLiteDialect(Dialect):
    """Renders SQLite-flavoured parameterized SQL.

    Parameter style: ``?`` – compatible with Python's built-in ``sqlite3``
    positional execution (``cursor.execute(sql, params)``).

    Note: generated keys come from ``cursor.lastrowid`` rather than
    ``RETURNING`` so older SQLite builds keep working.
    """

    supports_native_upsert = True
    retryable_codes = frozenset({"5", "6"})  # SQLITE_BUSY, SQLITE_LOCKED
    retryable_patterns = (r"database is locked", r"database table is locked", r"deadlock")

    @property
    def name(self) -> str:
        return "sqlite"

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace('"', '""')
        return f'"{escaped}"'

    def render_pagination(self, limit: int | None, offset: int | None, has_order_by: bool) -> str:
        if limit is None and offset is None:
            return ""
        if limit is None:
            # SQLite requires LIMIT before OFFSET; -1 means "no limit".
            return f"LIMIT -1 OFFSET {int(offset)}"
        if offset is None:
            return f"LIMIT {int(limit)}"
        return f"LIMIT {int(limit)} OFFSET {int(offset)}"

    def render_upsert(self, conflict: Sequence[str], update_columns: Sequence[str]) -> str:
        quote = self.quote_identifier
        target = ", ".join(quote(c) for c in conflict)
        assignments = ", ".join(f"{quote(c)} = excluded.{quote(c)}" for c in update_columns)
        return f"ON CONFLICT ({target}) DO UPDATE SET {assignments}"

    def json_extract(self, column_sql: str, segments: Sequence[str]) -> str:
        return f"json_extract({column_sql}, {self.json_dollar_path(segments)})"

    def json_set(self, target_sql: str, segments: Sequence[str], placeholder: str) -> str:
        return f"json_set({target_sql}, {self.json_dollar_path(segments)}, json({placeholder}))"

    def timeout_statements(self, timeout_ms: int) -> tuple[str | None, str | None]:
        # busy_timeout only bounds lock waits; it stays set for the connection.
        return f"PRAGMA busy_timeout = {max(1, int(timeout_ms))}", None
