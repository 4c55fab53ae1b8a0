"""
Structured logging for the reminder engine (structlog over stdlib logging).

Both execution contexts (background delivery worker and foreground poller) log
through the same pipeline; each binds its own ``context`` key so interleaved
output from one process can be told apart.

Usage:
    from hrcall.logging_config import setup_logging, bind_execution_context
    setup_logging()
    bind_execution_context("worker")

Environment:
    HRCALL_LOG_LEVEL   DEBUG | INFO | WARNING | ERROR (default INFO)
    HRCALL_LOG_FORMAT  "json" for JSON lines, anything else for console
    HRCALL_LOG_FILE    optional path; the worker usually runs detached
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import structlog


def setup_logging(
    level: str | None = None,
    json_output: bool | None = None,
    log_file: str | Path | None = None,
) -> None:
    level = level or os.environ.get("HRCALL_LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("HRCALL_LOG_FORMAT", "").lower() == "json"
    if log_file is None:
        log_file = os.environ.get("HRCALL_LOG_FILE") or None

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def bind_execution_context(name: str) -> None:
    """Tag every subsequent log line from this task with ``context=name``."""
    structlog.contextvars.bind_contextvars(context=name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["bind_execution_context", "get_logger", "setup_logging"]
