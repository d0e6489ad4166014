"""Structured logging configuration -- structlog + stdlib integration.

Provides a single :func:`setup_logging` entry-point that configures
**structlog** and Python's built-in :mod:`logging` so that every log
statement flows through one processor pipeline and renderer.

Processors added to every log event:

* **timestamp** -- UTC ISO-8601
* **log level** and **logger name**
* **session_id** -- bound through :mod:`structlog.contextvars` by the
  transport session's receive task

In **JSON** mode events are rendered as single-line JSON objects; otherwise
they go through :class:`structlog.dev.ConsoleRenderer`.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def setup_logging(
    level: str = "info",
    json_output: bool = False,
    log_file: str | None = None,
) -> None:
    """Configure structlog with stdlib logging integration.

    Args:
        level: Log level string (``debug``, ``info``, ``warning``, ``error``,
            ``critical``).
        json_output: If ``True``, output JSON lines; otherwise human-readable
            output on stderr.
        log_file: Optional file path for log output **in addition** to
            stderr. File output is always JSON.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stderr.isatty(),
            pad_event=30,
        )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [console_handler]

    if log_file:
        file_formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=shared_processors,
        )
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)
    for handler in handlers:
        root_logger.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    structlog.get_logger(__name__).debug(
        "logging_configured",
        level=level,
        json_output=json_output,
        log_file=log_file or "none",
    )


def get_logger(name: str | None = None) -> Any:
    """Return a structlog bound logger."""
    return structlog.get_logger(name)


__all__ = ["setup_logging", "get_logger"]
