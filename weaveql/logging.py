"""Structured logging setup for weaveQL.

Every module logs through ``structlog.get_logger(__name__)``.  Importing
weaveQL installs no handlers; applications that already configure structlog
need nothing from here.  :func:`configure_logging` is a convenience for
scripts and tests: it routes structlog through stdlib logging and attaches a
single handler to the ``weaveql`` logger (the root logger is left alone).

Events emitted:

* ``statement_executed`` / ``statement_failed`` / ``statement_dry_run``
  (debug), from the execution pipeline.
* ``timeout_tuning_failed`` (debug), when a per-call timeout could not be
  applied.
* ``transaction_retry`` / ``transaction_rollback_failed`` (warning), from the
  transaction manager.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

_PACKAGE_LOGGER = "weaveql"


def _remove_internal_fields(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Drop ProcessorFormatter bookkeeping keys from the rendered event."""
    event_dict.pop("_record", None)
    event_dict.pop("_from_structlog", None)
    return event_dict


def configure_logging(*, level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and the ``weaveql`` stdlib logger.

    Args:
        level: Log level name (``DEBUG``, ``INFO``, ``WARNING``, ``ERROR``).
        json_output: Render JSON lines instead of the console format.

    Raises:
        ValueError: If ``level`` is not a known level name.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ProcessorFormatter(processors=final_processors, foreign_pre_chain=shared_processors)
    )
    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    package_logger.handlers = [handler]
    package_logger.setLevel(log_level)
    package_logger.propagate = False
