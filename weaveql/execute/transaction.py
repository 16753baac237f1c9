"""Transaction Manager: unit of work with bounded retry.

State machine per attempt::

    Idle --begin--> InTransaction --ok--> Committed
                          |
                          +--error--> RolledBack --retryable, attempts left--> Idle

Retries use tenacity with exponential backoff plus jitter: the sleep before
attempt ``n + 1`` is
``min(base_delay * 2 ** (n - 1), max_delay) + uniform(0, jitter)``.
Exhaustion re-raises the last observed error itself, never a wrapper.

The *whole* unit of work is replayed on retry, so it must be idempotent with
respect to anything outside the rolled-back transaction (HTTP calls, files,
in-memory counters).  That is the caller's obligation.
"""
from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from weaveql.errors import ExecutionError, WeaveQLError
from weaveql.execute.driver import Driver
from weaveql.schema.config import RetrySettings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TransactionManager:
    """Runs callables inside a driver transaction, retrying on conflicts.

    Nested :meth:`run` calls on the same thread join the outermost
    transaction; only the outermost call begins, commits, rolls back and
    retries.  Nesting depth is tracked per thread, so concurrent callers on
    one handle each get their own unit of work.

    Args:
        driver: The primary (write) driver.
        settings: Retry settings.
        sleep: Sleep function used between attempts (injectable for tests).
    """

    def __init__(
        self,
        driver: Driver,
        settings: RetrySettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._driver = driver
        self._settings = settings or RetrySettings()
        self._sleep = sleep
        self._local = threading.local()

    @property
    def active(self) -> bool:
        """True while a unit of work is running on the calling thread."""
        return self._depth > 0

    @property
    def _depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @_depth.setter
    def _depth(self, value: int) -> None:
        self._local.depth = value

    def run(
        self,
        work: Callable[[], T],
        attempts: int | None = None,
        *,
        dry_run: bool = False,
    ) -> T:
        """Run ``work`` in a transaction and return its result.

        Args:
            work: The unit of work.  It is replayed from the start on retry.
            attempts: Total tries; defaults to the configured ``attempts``.
            dry_run: Skip the driver's begin/commit/rollback (test mode).

        Raises:
            ValueError: If ``attempts`` is less than 1.
            Exception: Whatever the last attempt raised.
        """
        if self.active:
            return work()

        attempts = self._settings.attempts if attempts is None else attempts
        if attempts < 1:
            raise ValueError("attempts must be >= 1")

        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=(
                wait_exponential(multiplier=self._settings.base_delay, max=self._settings.max_delay)
                + wait_random(0, self._settings.jitter)
            ),
            retry=retry_if_exception(self.is_retryable),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                return self._attempt(work, dry_run)
        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    def is_retryable(self, exc: BaseException) -> bool:
        """Classify ``exc`` as a deadlock / serialization conflict."""
        if isinstance(exc, ExecutionError):
            return exc.retryable
        if isinstance(exc, WeaveQLError):
            return False
        if not isinstance(exc, Exception):
            return False
        return self._driver.dialect.is_retryable(exc)

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    def _attempt(self, work: Callable[[], T], dry: bool) -> T:
        if not dry:
            self._driver.begin()
        self._depth += 1
        try:
            result = work()
        except BaseException:
            self._depth -= 1
            if not dry:
                self._rollback_quietly()
            raise
        self._depth -= 1
        if not dry:
            try:
                self._driver.commit()
            except ExecutionError:
                self._rollback_quietly()
                raise
        return result

    def _rollback_quietly(self) -> None:
        try:
            self._driver.rollback()
        except ExecutionError as exc:
            # The unit of work's error is the one the caller must see.
            logger.warning("transaction_rollback_failed", error=str(exc))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc: Any = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "transaction_retry",
            attempt=retry_state.attempt_number,
            sleep=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )
