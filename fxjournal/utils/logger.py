from __future__ import annotations

import logging
import os
import sys
from typing import Any, List

import structlog

from fxjournal.utils.config import get_settings

# Loggers that stay at WARNING unless the journal runs at DEBUG.
_NOISY = ("uvicorn.access", "asyncio")


def _renderer(fmt: str) -> Any:
    if fmt.lower() == "console":
        return structlog.dev.ConsoleRenderer(colors=False)
    return structlog.processors.JSONRenderer()


def setup_logging() -> None:
    """Route stdlib and structlog output to stdout plus the optional journal log file."""
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        os.makedirs(os.path.dirname(settings.log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)
    if level > logging.DEBUG:
        for name in _NOISY:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            _renderer(settings.log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_scope(user_id: str, account_id: str) -> None:
    """Attach the active journal scope to every log line emitted afterwards."""
    structlog.contextvars.bind_contextvars(user_id=user_id, account_id=account_id)


def clear_scope() -> None:
    structlog.contextvars.unbind_contextvars("user_id", "account_id")
