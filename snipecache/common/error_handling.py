"""
Error Handling for the cache engine

This module provides:
1. The exception hierarchy shared by the store, the prefetch scheduler and the
   resource optimizer
2. Retry helpers with exponential backoff for transient load failures
3. Structured error information for logging and API responses
"""

import logging
import traceback
import asyncio
import random
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type, TypeVar
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar('T')

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Error codes raised by the cache engine"""
    UNKNOWN_ERROR = "unknown_error"
    CONFIGURATION_ERROR = "configuration_error"

    # Store errors
    CACHE_ERROR = "cache_error"
    ENTRY_TOO_LARGE = "entry_too_large"
    NOT_FOUND = "not_found"

    # Load errors
    LOAD_FAILED = "load_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Split a string stack trace into lines"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class SnipeCacheError(Exception):
    """Base exception class for all cache engine errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.details = details or {}
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exc().splitlines()

        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details,
            exception_type=type(self).__name__,
            exception_message=str(self),
            stack_trace=stack_trace,
            context=self.context
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a JSON-compatible dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {self.cause}"
        return base_str


class ConfigurationError(SnipeCacheError):
    """Error raised when the engine configuration cannot be loaded"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            code=ErrorCode.CONFIGURATION_ERROR,
            details={"config_key": config_key} if config_key else None,
            cause=cause
        )
        self.config_key = config_key


class CacheError(SnipeCacheError):
    """Base class for store errors"""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.CACHE_ERROR, **kwargs):
        super().__init__(message=message, code=code, **kwargs)


class EntryTooLargeError(CacheError):
    """Error raised when an entry can never fit in the store"""

    def __init__(self, key: str, size: int, max_size: int):
        super().__init__(
            message=f"Entry {key!r} of {size} bytes exceeds cache capacity of {max_size} bytes",
            code=ErrorCode.ENTRY_TOO_LARGE,
            severity=ErrorSeverity.WARNING,
            details={"key": key, "size": size, "max_size": max_size}
        )
        self.key = key
        self.size = size
        self.max_size = max_size


class CacheMissError(CacheError):
    """Error describing a miss, including entries that expired on read"""

    def __init__(self, key: str, expired: bool = False):
        reason = "expired" if expired else "not found"
        super().__init__(
            message=f"Cache key {key!r} {reason}",
            code=ErrorCode.NOT_FOUND,
            severity=ErrorSeverity.DEBUG,
            details={"key": key, "expired": expired}
        )
        self.key = key
        self.expired = expired


class LoadFailedError(SnipeCacheError):
    """Error raised when fetching or transforming a resource fails"""

    def __init__(
        self,
        resource_id: str,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"resource_id": resource_id}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            message=f"Failed to load {resource_id!r}: {message}",
            code=ErrorCode.LOAD_FAILED,
            details=details,
            cause=cause
        )
        self.resource_id = resource_id
        self.status_code = status_code


class RetriesExhaustedError(SnipeCacheError):
    """Error raised once every retry of an operation has failed"""

    def __init__(self, operation: str, attempts: int, cause: Optional[Exception] = None):
        super().__init__(
            message=f"{operation} failed after {attempts} attempts",
            code=ErrorCode.RETRIES_EXHAUSTED,
            details={"operation": operation, "attempts": attempts},
            cause=cause
        )
        self.operation = operation
        self.attempts = attempts


def backoff_delay(attempt: int, retry_delay: float, backoff_factor: float = 2.0, jitter: float = 0.0) -> float:
    """Delay before retry number ``attempt + 1`` (attempt counts from 0)."""
    delay = retry_delay * (backoff_factor ** attempt)
    if jitter:
        delay *= 1 + random.uniform(-jitter, jitter)
    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    jitter: float = 0.0,
    retry_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ignore_exceptions: Tuple[Type[Exception], ...] = (),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    operation: Optional[str] = None,
    **kwargs: Any
) -> T:
    """
    Await ``func(*args, **kwargs)``, retrying failures with exponential backoff.

    The n-th retry (n starting at 1) waits ``retry_delay * backoff_factor ** (n - 1)``.
    Once ``max_retries`` retries have failed the last error is raised wrapped in
    ``RetriesExhaustedError``.

    Raises:
        RetriesExhaustedError: when every attempt failed
    """
    name = operation or getattr(func, "__name__", "operation")
    attempt = 0

    while True:
        try:
            return await func(*args, **kwargs)
        except ignore_exceptions:
            raise
        except retry_exceptions as e:
            if attempt >= max_retries:
                raise RetriesExhaustedError(name, attempt + 1, cause=e) from e

            delay = backoff_delay(attempt, retry_delay, backoff_factor, jitter)
            attempt += 1

            if on_retry:
                on_retry(attempt, e, delay)

            logger.warning(
                f"Retry {attempt}/{max_retries} for {name} "
                f"after {delay:.2f}s due to {type(e).__name__}: {e}"
            )
            await sleep(delay)
