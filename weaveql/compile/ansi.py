"""Strict ANSI SQL:2008 dialect.

Used for engines with no dedicated dialect.  It renders only portable
syntax: double-quoted identifiers, ``?`` placeholders and
``OFFSET … FETCH FIRST`` pagination.  Upserts use the transactional
fallback and JSON predicates are unsupported.
"""
from __future__ import annotations

from weaveql.compile.base import Dialect


class AnsiDialect(Dialect):
    """Portable fallback dialect."""

    @property
    def name(self) -> str:
        return "ansi"

    def quote_identifier(self, name: str) -> str:
        escaped = name.replace('"', '""')
        return f'"{escaped}"'

    def render_pagination(self, limit: int | None, offset: int | None, has_order_by: bool) -> str:
        parts: list[str] = []
        if offset is not None:
            parts.append(f"OFFSET {int(offset)} ROWS")
        if limit is not None:
            parts.append(f"FETCH FIRST {int(limit)} ROWS ONLY")
        return " ".join(parts)
