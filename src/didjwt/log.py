"""Structured logging configuration for didjwt.

The library only ever asks for loggers; output is configured by the
application (or the ``didjwt`` command line) through :func:`configure_logging`.

Environment Variables:
    DIDJWT_LOG_FORMAT: "json" for JSON lines, "console" for colored output
    DIDJWT_LOG_LEVEL: Minimum log level (DEBUG, INFO, WARNING, ERROR)
"""

from __future__ import annotations

import logging
import os
import sys

import structlog
from structlog.typing import Processor

DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_LOG_FORMAT = "console"

ENV_LOG_FORMAT = "DIDJWT_LOG_FORMAT"
ENV_LOG_LEVEL = "DIDJWT_LOG_LEVEL"

_logging_configured = False


def _get_shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(
    log_format: str | None = None,
    log_level: str | None = None,
    force: bool = False,
) -> None:
    """Configure structlog and the standard library root handler.

    Args:
        log_format: "json" or "console". Defaults to env var or "console".
        log_level: Minimum log level. Defaults to env var or "WARNING".
        force: Reconfigure even if logging was already configured.
    """
    global _logging_configured

    if _logging_configured and not force:
        return

    log_format = (log_format or os.environ.get(ENV_LOG_FORMAT, DEFAULT_LOG_FORMAT)).lower()
    log_level = (log_level or os.environ.get(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL)).upper()

    shared_processors = _get_shared_processors()
    if log_format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

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
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    # stderr keeps stdout free for command output
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level, logging.WARNING))

    _logging_configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for the given module name."""
    return structlog.stdlib.get_logger(name)
