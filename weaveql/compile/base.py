"""Dialect abstractions: CompiledStatement and the Dialect ABC.

The Template Method pattern (GoF) is used:
- ``Dialect`` declares every backend-specific capability the statement and
  predicate compilers need (quoting, pagination, upsert, JSON paths,
  RETURNING, timeouts, retry classification) and provides the shared
  defaults.
- ``SQLiteDialect``, ``PostgresDialect``, ``MySQLDialect``,
  ``SQLServerDialect`` and ``AnsiDialect`` override the steps that differ.

The compilers never embed dialect literals themselves; everything that
varies by backend goes through this interface.
"""
from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, ClassVar

from weaveql.errors import UnsupportedOperationError, ValidationError
from weaveql.schema.context import OperationKind

_JSON_SEGMENT = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class CompiledStatement:
    """The output of a successful compilation.

    Attributes:
        sql: The compiled SQL string with positional placeholders.
        params: Values for the placeholders, in placeholder order.
        dialect: The target dialect name.
        operation: Statement classification used by policy and metrics.
    """

    sql: str
    params: tuple[Any, ...]
    dialect: str
    operation: OperationKind = OperationKind.RAW


class Dialect(ABC):
    """Abstract base for backend-specific SQL rendering.

    Subclasses implement the abstract methods and flip the capability flags
    they support; everything else falls back to the conservative defaults
    below, which raise :class:`~weaveql.errors.UnsupportedOperationError`
    for features that cannot be expressed portably.
    """

    #: Whether ``render_upsert`` produces a single-statement upsert.
    supports_native_upsert: ClassVar[bool] = False

    #: Whether ``INSERT … RETURNING`` is available for generated keys.
    supports_returning: ClassVar[bool] = False

    #: Driver error codes / SQLSTATEs classified as retryable.
    retryable_codes: ClassVar[frozenset[str]] = frozenset({"40001"})

    #: Message patterns classified as retryable when no code matches.
    retryable_patterns: ClassVar[tuple[str, ...]] = (
        r"deadlock",
        r"serializ(e|ation)",
    )

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the canonical dialect name (e.g. ``'postgres'``)."""

    # ------------------------------------------------------------------
    # Identifiers & placeholders
    # ------------------------------------------------------------------

    def param_placeholder(self) -> str:
        """Return the positional placeholder used by the dialect's drivers."""
        return "?"

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Return a properly-quoted SQL identifier.

        Args:
            name: Unquoted identifier (a single table or column name).

        Returns:
            Quoted identifier.
        """

    def quote_column(self, ref: str) -> str:
        """Quote a possibly qualified reference (``table.column``, ``t.*``, ``*``)."""
        if ref == "*":
            return ref
        parts = ref.split(".")
        return ".".join(p if p == "*" else self.quote_identifier(p) for p in parts)

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    @abstractmethod
    def render_pagination(
        self,
        limit: int | None,
        offset: int | None,
        has_order_by: bool,
    ) -> str:
        """Return the trailing pagination clause, or ``""`` when neither is set.

        Args:
            limit: Maximum number of rows, or ``None`` for no limit.
            offset: Rows to skip, or ``None``.
            has_order_by: Whether the statement already has an ORDER BY.
        """

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def render_upsert(
        self,
        conflict: Sequence[str],
        update_columns: Sequence[str],
    ) -> str:
        """Return the clause appended to ``INSERT … VALUES (…)`` for an upsert."""
        raise UnsupportedOperationError("native upsert", self.name)

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------

    def json_extract(self, column_sql: str, segments: Sequence[str]) -> str:
        """Return an expression extracting ``segments`` from a JSON column as text."""
        raise UnsupportedOperationError("JSON path extraction", self.name)

    def json_set(self, target_sql: str, segments: Sequence[str], placeholder: str) -> str:
        """Return an expression writing the bound value at ``segments``."""
        raise UnsupportedOperationError("JSON path update", self.name)

    def json_param(self, value: Any) -> Any:
        """Encode a value bound by :meth:`json_set`."""
        return json.dumps(value)

    @staticmethod
    def json_dollar_path(segments: Sequence[str]) -> str:
        """Render ``['a', '0', 'b']`` as the literal ``'$.a[0].b'``."""
        path = "$"
        for seg in validate_json_segments(segments):
            path += f"[{seg}]" if seg.isdigit() else f".{seg}"
        return f"'{path}'"

    # ------------------------------------------------------------------
    # Generated keys
    # ------------------------------------------------------------------

    def render_returning(self, columns: Sequence[str]) -> str:
        """Return a ``RETURNING`` clause for ``columns``."""
        raise UnsupportedOperationError("INSERT … RETURNING", self.name)

    def last_insert_id_query(self) -> str | None:
        """Return a query fetching the last generated key, or ``None`` to use
        the driver's ``lastrowid``."""
        return None

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    def timeout_statements(self, timeout_ms: int) -> tuple[str | None, str | None]:
        """Return ``(set_sql, reset_sql)`` applying a per-statement timeout.

        Either element may be ``None`` when the dialect needs no statement for
        that step.  Timeouts are best-effort; callers ignore failures.
        """
        return None, None

    # ------------------------------------------------------------------
    # Error classification
    # ------------------------------------------------------------------

    def is_retryable(self, exc: BaseException) -> bool:
        """Return True if ``exc`` is a deadlock or serialization conflict."""
        code = driver_error_code(exc)
        if code is not None and str(code) in self.retryable_codes:
            return True
        message = str(exc)
        return any(re.search(p, message, re.IGNORECASE) for p in self.retryable_patterns)


def validate_json_segments(segments: Sequence[str]) -> Sequence[str]:
    """Reject JSON path segments that are empty or not plain words.

    Segments are rendered as SQL literals, so only ``[A-Za-z0-9_]`` is allowed.

    Raises:
        ValidationError: If a segment is malformed or the path is empty.
    """
    if not segments:
        raise ValidationError(
            "JSON path needs at least one segment after the column.",
            code="INVALID_JSON_PATH",
        )
    for seg in segments:
        if not _JSON_SEGMENT.match(seg):
            raise ValidationError(
                f"Invalid JSON path segment: {seg!r}.",
                code="INVALID_JSON_PATH",
                details={"segment": seg},
            )
    return segments


def driver_error_code(exc: BaseException) -> str | int | None:
    """Best-effort extraction of a driver error code from a DB-API exception.

    Looks at ``sqlstate`` (psycopg 3), ``pgcode`` (psycopg2),
    ``sqlite_errorcode`` (sqlite3) and a leading int/SQLSTATE in ``args``
    (PyMySQL, pyodbc).
    """
    for attr in ("sqlstate", "pgcode", "sqlite_errorcode"):
        code = getattr(exc, attr, None)
        if code is not None:
            return code
    args = getattr(exc, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    if args and isinstance(args[0], str) and re.fullmatch(r"[0-9A-Z]{5}", args[0]):
        return args[0]
    return None
