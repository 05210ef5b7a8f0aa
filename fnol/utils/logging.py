"""Structured logging setup for the FNOL service."""

import functools
import inspect
import logging
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional

# Per-task context so concurrent requests do not see each other's claim ids
_log_context: ContextVar[Dict[str, Any]] = ContextVar("fnol_log_context", default={})

DEFAULT_CONTEXT_FIELDS = ("session_id", "claim_id")


class ContextFilter(logging.Filter):
    """Add session and claim context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in DEFAULT_CONTEXT_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, "-")
        for key, value in _log_context.get().items():
            setattr(record, key, value)
        return True


_context_filter = ContextFilter()


def setup_logging(
    level: str = "INFO",
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up structured logging with optional file output.

    Format strings may reference ``%(session_id)s`` and ``%(claim_id)s``;
    records emitted outside a session get ``-``.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format string for log messages
        log_file: Optional path to log file

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)

    # botocore is chatty at DEBUG and logs request bodies containing image bytes
    logging.getLogger("botocore").setLevel(max(numeric_level, logging.INFO))

    return root_logger


def set_context(**kwargs):
    """
    Set context fields for all subsequent log messages in the current task.

    Example:
        set_context(session_id=session.session_id, claim_id=claim.id)
        logger.info("Finalizing claim")
    """
    current = dict(_log_context.get())
    current.update(kwargs)
    _log_context.set(current)


def clear_context():
    """Clear all context fields."""
    _log_context.set({})


def with_context(**context_kwargs):
    """
    Decorator to add context to all log messages within a function.

    Works for both plain functions and coroutines; the previous context is
    restored when the call returns.

    Example:
        @with_context(component="finalization")
        async def finalize(...):
            logger.info("Finalizing")  # Includes component
    """
    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                token = _log_context.set({**_log_context.get(), **context_kwargs})
                try:
                    return await func(*args, **kwargs)
                finally:
                    _log_context.reset(token)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            token = _log_context.set({**_log_context.get(), **context_kwargs})
            try:
                return func(*args, **kwargs)
            finally:
                _log_context.reset(token)
        return wrapper
    return decorator
