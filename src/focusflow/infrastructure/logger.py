"""Structured logging for FocusFlow.

Console output is human readable and goes to stderr so that command output
on stdout (``focusflow export``) stays machine readable. The optional log file
under ``.focusflow/logs`` receives one JSON object per event.
"""

import logging
import sys
from pathlib import Path
from typing import Any, cast

import structlog

LOG_FILE_NAME = "focusflow.log"

# Third-party loggers that are noisy below WARNING
_QUIET_LOGGERS = ("aiosqlite", "asyncio")


def _pre_chain() -> list[Any]:
    """Processors applied to both structlog and plain stdlib records."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]


def _formatter(*renderers: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_pre_chain(),
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
    )


def _file_handler(log_dir: Path) -> logging.FileHandler:
    """Return the root handler for ``log_dir``, creating it on first use."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = str((log_dir / LOG_FILE_NAME).resolve())
    for handler in logging.root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == log_file:
            return handler
    handler = logging.FileHandler(log_file, encoding="utf-8")
    logging.root.addHandler(handler)
    return handler


def setup_logging(log_level: str = "INFO", log_dir: Path | None = None) -> None:
    """Configure structured logging with structlog.

    Safe to call more than once; later calls adjust the level and reuse the
    existing file handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            unknown names fall back to INFO
        log_dir: Directory for the JSON log file (if None, only console logging)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    file_handler = _file_handler(log_dir) if log_dir else None
    if file_handler is not None:
        file_handler.setLevel(level)
        file_handler.setFormatter(
            _formatter(structlog.processors.format_exc_info, structlog.processors.JSONRenderer())
        )

    console_formatter = _formatter(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    for handler in logging.root.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setFormatter(console_formatter)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, typically ``get_logger(__name__)``."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
