from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

# Attributes every LogRecord carries; anything else came from `extra=` or log_context().
_STANDARD_LOG_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__.keys()
    | {"message", "asctime", "taskName", "color_message"}
)

# Propagates across awaits and into tasks created inside a log_context() scope.
_LOG_CONTEXT: ContextVar[dict[str, Any] | None] = ContextVar("log_context", default=None)

DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"

APP_LOGGER_PREFIX = "clipforge"

_THIRD_PARTY_LEVELS: dict[str, int] = {
    "uvicorn": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "supabase": logging.WARNING,
    "postgrest": logging.WARNING,
    "supabase_auth": logging.WARNING,
    "storage3": logging.WARNING,
    "multipart": logging.WARNING,
}


class ContextInjectionFilter(logging.Filter):
    """Injects contextvars-based fields into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _LOG_CONTEXT.get()
        if not context:
            return True

        for key, value in context.items():
            if key in _STANDARD_LOG_RECORD_ATTRS or hasattr(record, key):
                continue
            setattr(record, key, value)
        return True


class SmartContextFormatter(logging.Formatter):
    """Formatter that appends all extra fields as key=value context."""

    def format(self, record: logging.LogRecord) -> str:
        base_message = super().format(record)
        extra_fields = {key: value for key, value in record.__dict__.items() if key not in _STANDARD_LOG_RECORD_ATTRS}
        if not extra_fields:
            return base_message

        context_str = " ".join(f"{key}={value}" for key, value in extra_fields.items())
        return f"{base_message} [{context_str}]"


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily attach context fields to all log lines in this scope."""

    current = _LOG_CONTEXT.get() or {}
    new_context = {**current, **kwargs}
    token = _LOG_CONTEXT.set(new_context)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def get_log_context() -> Mapping[str, Any]:
    """Return the current logging context (useful for debugging/tests)."""

    return _LOG_CONTEXT.get() or {}


def _resolve_log_level(default: str = "INFO") -> int:
    raw_level = os.getenv("LOG_LEVEL", default).upper().strip()
    return getattr(logging, raw_level, logging.INFO)


def setup_logging(*, log_level: str | None = None) -> None:
    """
    Configure global, context-aware logging for the application.

    Environment variables:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    """
    root_level = _resolve_log_level(log_level or "INFO")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.captureWarnings(True)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SmartContextFormatter(LOG_FORMAT, datefmt=DEFAULT_DATE_FORMAT))
    handler.addFilter(ContextInjectionFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(root_level)

    logging.getLogger(APP_LOGGER_PREFIX).setLevel(root_level)
    for name, level in _THIRD_PARTY_LEVELS.items():
        # Third-party chatter never goes below its floor, even with LOG_LEVEL=DEBUG.
        logging.getLogger(name).setLevel(max(level, root_level))

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(root_level)},
    )
