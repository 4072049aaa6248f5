"""
Structured logging for buildorch.

structlog events carry the bound run context (`run_id`, `mode`). Output goes
to stderr by default because stdout may carry command output. The renderer is
picked from the `log_format` setting: "console" for people, "json" for build
servers, "auto" to decide by whether the stream is a terminal.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, TextIO

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from .config import ToolSettings


def _renderers(log_format: str, stream: TextIO) -> list[structlog.types.Processor]:
    is_tty = stream.isatty()
    if log_format == "console" or (log_format == "auto" and is_tty):
        return [structlog.dev.ConsoleRenderer(colors=is_tty)]
    return [
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(sort_keys=True),
    ]


def setup_logging(settings: ToolSettings | None = None, stream: TextIO | None = None) -> None:
    """Configure stdlib logging and structlog for one process.

    Safe to call again; the latest call wins.

    Args:
        settings: Tool settings. If None, INFO level and automatic format.
        stream: Where log lines go. Defaults to stderr.
    """
    stream = stream or sys.stderr
    log_level = settings.log_level if settings else "INFO"
    log_format = settings.log_format if settings else "auto"
    level = getattr(logging, log_level, logging.INFO)

    handler = RichHandler(
        console=Console(file=stream),
        show_path=False,
        rich_tracebacks=True,
        tracebacks_show_locals=level == logging.DEBUG,
    )
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            *_renderers(log_format, stream),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: object) -> None:
    """Bind key-value pairs to every later event of this run."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
