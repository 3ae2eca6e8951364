"""Structured logging for the Codebase Indexer.

structlog renders colored console lines in development and JSON lines in
production; standard library loggers (uvicorn, watchfiles) are routed
through the same output. Per-project context such as ``project_id`` is
carried in context variables, so it reaches every log line emitted by a scan
or by the tasks of a watch session.
"""

import logging
import sys
from pathlib import PurePath
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from codebase_indexer.config import get_settings


def _render_paths(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render path values as forward-slash strings."""
    for key, value in event_dict.items():
        if isinstance(value, PurePath):
            event_dict[key] = value.as_posix()
    return event_dict


def setup_logging(log_level: str | None = None, json_output: bool | None = None) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        log_level: Level name, ``APP_LOG_LEVEL`` by default.
        json_output: Emit JSON lines; by default only outside development.
    """
    settings = get_settings()
    level_name = log_level or settings.app.log_level
    if json_output is None:
        json_output = settings.app.env != "development"

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        _render_paths,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level_name))

    # One line per debounced batch is enough
    logging.getLogger("watchfiles").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Scan finished", indexed=10, unchanged=230)
    """
    return structlog.get_logger(name)


class LogContext:
    """Bind key-value pairs to every log line emitted inside the block.

    Asyncio tasks created inside the block copy the context, so a watcher
    started within ``LogContext(project_id=...)`` tags all of its lines.

    Example:
        >>> with LogContext(project_id="web-1a2b3c4d"):
        ...     await pipeline.scan(root)
    """

    def __init__(self, **context: Any) -> None:
        self.context = context
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "LogContext":
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, *args: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
