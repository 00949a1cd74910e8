"""
Engine Logger

This module provides the logging setup shared by the cache engine components,
with configurable log levels, formatters, and handlers.
"""

import os
import sys
import json
import time
import logging
import datetime
import functools
import asyncio
from typing import Dict, Any, Optional, Union, Callable, TypeVar

# Default log format
DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "snipecache"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'configure_logger',
    'get_logger',
    'get_app_logger',
    'LoggerAdapter',
    'JsonFormatter',
    'with_context',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    Formatter that renders each log record as a single JSON line.

    Structured context attached through ``LoggerAdapter`` (the ``data`` extra)
    is merged into the top-level object.
    """

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        style: str = '%',
        validate: bool = True,
        *,
        indent: Optional[int] = None
    ):
        super().__init__(fmt, datefmt, style, validate)
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the specified record as JSON.

        Args:
            record: Log record to format

        Returns:
            Formatted JSON string
        """
        log_object = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "name": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "filename": record.filename,
            "line": record.lineno
        }

        if record.exc_info:
            log_object["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        if hasattr(record, 'data') and isinstance(record.data, dict):
            log_object.update(record.data)

        return json.dumps(log_object, indent=self.indent, default=str)


def configure_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Union[str, int] = logging.INFO,
    format_string: str = DEFAULT_LOG_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
    use_json: bool = False,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure a logger with appropriate handlers and formatters.

    Args:
        name: Logger name
        level: Log level
        format_string: Log format string
        date_format: Date format string
        use_json: Whether to use JSON formatting
        log_file: Path to log file (if None, no file handler is created)
        console_output: Whether to output logs to console

    Returns:
        Configured logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers = []

    if use_json:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(format_string, date_format)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            directory = os.path.dirname(log_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except (FileNotFoundError, PermissionError) as e:
            logging.getLogger("fallback").warning(f"Could not create log file {log_file}: {e}")

    return logger


def get_logger(
    name: str,
    parent: Optional[logging.Logger] = None
) -> logging.Logger:
    """Get a logger by name, optionally as a child of ``parent``."""
    if parent:
        return parent.getChild(name)
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds contextual information to log records.

    Used by long-lived components (store, scheduler, warmer) to stamp every
    message with the component name and its configured limits.
    """

    def __init__(
        self,
        logger: logging.Logger,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(logger, context or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs = kwargs.copy()
        extra = kwargs.get('extra')
        if not extra:
            extra = {}
            kwargs['extra'] = extra

        data = extra.get('data')
        if not data:
            data = {}
            extra['data'] = data

        if self.extra:
            for key, value in self.extra.items():
                data.setdefault(key, value)

        return msg, kwargs

    def with_context(self, **context) -> 'LoggerAdapter':
        """Create a new adapter with additional context."""
        new_context = dict(self.extra)
        new_context.update(context)
        return LoggerAdapter(self.logger, new_context)


def with_context(name: Optional[str] = None, **context) -> LoggerAdapter:
    """
    Create a logger adapter with context.

    Args:
        name: Optional logger name; defaults to the application logger
        context: Context dictionary

    Returns:
        Logger adapter with context
    """
    logger = get_logger(name) if name else get_app_logger()
    return LoggerAdapter(logger, context)


def get_app_logger() -> logging.Logger:
    """
    Get or create the application logger.

    Configuration is read from ``SNIPECACHE_LOG_LEVEL``, ``SNIPECACHE_LOG_JSON``
    and ``SNIPECACHE_LOG_FILE`` the first time the logger is requested.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    if not logger.handlers:
        return configure_logger(
            name=ROOT_LOGGER_NAME,
            level=os.environ.get("SNIPECACHE_LOG_LEVEL", "INFO"),
            use_json=os.environ.get("SNIPECACHE_LOG_JSON", "false").lower() == "true",
            log_file=os.environ.get("SNIPECACHE_LOG_FILE"),
            console_output=True
        )

    return logger


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator to log the execution time of a function.

    Args:
        logger: Optional logger to use. If not provided, uses the app logger.

    Returns:
        Decorated function that logs its execution time
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                (logger or get_app_logger()).debug(
                    f"{func.__name__} executed in {time.perf_counter() - start_time:.3f} seconds"
                )
                return result
            except Exception as e:
                (logger or get_app_logger()).error(
                    f"{func.__name__} failed after {time.perf_counter() - start_time:.3f} seconds: {e}"
                )
                raise

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                (logger or get_app_logger()).debug(
                    f"{func.__name__} executed in {time.perf_counter() - start_time:.3f} seconds"
                )
                return result
            except Exception as e:
                (logger or get_app_logger()).error(
                    f"{func.__name__} failed after {time.perf_counter() - start_time:.3f} seconds: {e}"
                )
                raise

        return async_wrapper if asyncio.iscoroutinefunction(func) else wrapper
    return decorator
