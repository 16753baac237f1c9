"""Test fixtures: sample DDL and a scriptable in-memory driver."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

from weaveql.compile.base import Dialect
from weaveql.compile.sqlite import SQLiteDialect
from weaveql.execute.driver import ExecutionResult, PreparedStatement

_FIXTURES_DIR = Path(__file__).parent


def load_ddl() -> str:
    """Return the sample SQLite DDL."""
    return (_FIXTURES_DIR / "ddl_sqlite.sql").read_text()


class FakeDriver:
    """Records every call and replays scripted results.

    Args:
        dialect: Dialect reported to the pipeline; SQLite by default.
        results: Queue of ``ExecutionResult`` objects or exceptions returned
            (or raised) by successive ``execute`` calls.  When empty, an
            empty result is returned.
        respond: Optional ``(sql, params) -> ExecutionResult`` used instead of
            the queue.
    """

    def __init__(
        self,
        dialect: Dialect | None = None,
        results: Sequence[ExecutionResult | BaseException] = (),
        respond: Callable[[str, tuple[Any, ...]], ExecutionResult] | None = None,
    ) -> None:
        self.dialect = dialect or SQLiteDialect()
        self.results = list(results)
        self.respond = respond
        self.executed: list[tuple[str, tuple[Any, ...]]] = []
        self.calls: list[str] = []
        self.next_id: Any = 1
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @property
    def statements(self) -> list[str]:
        return [sql for sql, _ in self.executed]

    def prepare(self, sql: str) -> PreparedStatement:
        return PreparedStatement(sql=sql, dialect=self.dialect.name)

    def execute(self, statement: PreparedStatement, params: Sequence[Any]) -> ExecutionResult:
        params = tuple(params)
        self.executed.append((statement.sql, params))
        if self.respond is not None:
            return self.respond(statement.sql, params)
        if self.results:
            outcome = self.results.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return ExecutionResult()

    def last_insert_id(self) -> Any:
        return self.next_id

    def begin(self) -> None:
        self.calls.append("begin")
        self._in_transaction = True

    def commit(self) -> None:
        self.calls.append("commit")
        self._in_transaction = False

    def rollback(self) -> None:
        self.calls.append("rollback")
        self._in_transaction = False
