"""Structured logging for agentrelay.

Library modules only ask for loggers. Handlers are installed by the CLI via
``configure_logging``, so importing agentrelay into another application leaves
that application's logging untouched.

Sinks installed by ``configure_logging``:
- Rich console on stderr, level chosen by the -v count
- ``{logs_dir}/debug.jsonl`` with every event, enabled by --log
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from pathlib import Path

    from structlog.typing import EventDict, FilteringBoundLogger, Processor

DEBUG_LOG_FILENAME = "debug.jsonl"

# Provider SDKs log every request at DEBUG
QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "anthropic",
    "ollama",
    "langchain",
    "langchain_core",
    "langsmith",
    "asyncio",
)

# Handlers owned by agentrelay; anything else on the root logger belongs to the host
_installed: list[logging.Handler] = []
_file_handler: logging.FileHandler | None = None


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _drop_rich_columns(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    """Rich already prints time and level."""
    event_dict.pop("timestamp", None)
    event_dict.pop("level", None)
    return event_dict


def _console_handler(verbosity: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
    )
    handler.setLevel({0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG))
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _drop_rich_columns,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
        )
    )
    return handler


def _jsonl_handler(logs_dir: Path) -> logging.FileHandler:
    logs_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(logs_dir / DEBUG_LOG_FILENAME, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_processors(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.dict_tracebacks,
                structlog.processors.EventRenamer("message"),
                structlog.processors.JSONRenderer(default=str),
            ],
        )
    )
    return handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    logs_dir: Path | None = None,
) -> None:
    """Install agentrelay's console and file handlers on the root logger.

    Calling it again replaces the handlers from the previous call.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG on the console.
        log_to_file: Also write every event to ``logs_dir/debug.jsonl``.
        logs_dir: Directory for log files. Required if log_to_file=True.

    Raises:
        ValueError: If log_to_file=True but logs_dir is not provided.
    """
    global _file_handler

    if log_to_file and logs_dir is None:
        raise ValueError("logs_dir is required when log_to_file=True")

    root = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        handler.close()
    _file_handler = None

    _installed.append(_console_handler(verbosity))
    if log_to_file and logs_dir is not None:
        _file_handler = _jsonl_handler(logs_dir)
        _installed.append(_file_handler)
    for handler in _installed:
        root.addHandler(handler)

    level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    root.setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Return a structlog logger. Never configures logging."""
    logger: FilteringBoundLogger = structlog.get_logger(name)
    return logger


def close_file_logging() -> None:
    """Flush and detach the debug.jsonl handler, if any."""
    global _file_handler
    if _file_handler is None:
        return
    logging.getLogger().removeHandler(_file_handler)
    _installed.remove(_file_handler)
    _file_handler.close()
    _file_handler = None
