"""
Common infrastructure for the cache engine.

Key components:
1. Logging - Centralized logging configuration
2. Configuration - Engine settings from defaults, files and environment
3. Error Handling - Exception hierarchy and retry helpers
"""

from snipecache.common.logger import get_app_logger, get_logger, with_context
from snipecache.common.config import AppConfig, ConfigLoader, get_config
from snipecache.common.error_handling import (
    SnipeCacheError, CacheError, EntryTooLargeError, CacheMissError,
    LoadFailedError, RetriesExhaustedError, ConfigurationError, retry_async
)

__all__ = [
    # Logging
    'get_app_logger', 'get_logger', 'with_context',

    # Configuration
    'AppConfig', 'ConfigLoader', 'get_config',

    # Errors
    'SnipeCacheError', 'CacheError', 'EntryTooLargeError', 'CacheMissError',
    'LoadFailedError', 'RetriesExhaustedError', 'ConfigurationError',
    'retry_async',
]
