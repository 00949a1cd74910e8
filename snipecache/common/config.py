"""
Centralized Configuration for the cache engine

Configuration comes from defaults, an optional YAML/JSON file and
``SNIPECACHE_*`` environment variables, in increasing order of priority.
All durations are in seconds and all sizes in bytes.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from snipecache.common.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

KB = 1024
MB = 1024 * KB


class CacheConfig(BaseModel):
    """Cache store configuration"""
    max_size_bytes: int = Field(default=100 * MB, gt=0)
    max_entries: int = Field(default=1000, gt=0)
    default_ttl: float = Field(default=3600.0, gt=0)  # 1 hour
    cleanup_interval: float = Field(default=300.0, gt=0)  # 5 minutes
    eviction_policy: str = "lru"


class PrefetchConfig(BaseModel):
    """Access prediction and prefetch configuration"""
    concurrency: int = Field(default=3, ge=1)
    threshold: float = 0.7
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    warmup_interval: float = Field(default=5.0, gt=0)
    max_prefetch_bytes: int = Field(default=50 * MB, gt=0)
    history_length: int = Field(default=5, ge=2)
    max_tracked_keys: int = Field(default=1000, ge=1)
    max_successors: int = Field(default=50, ge=1)

    @field_validator('threshold')
    @classmethod
    def validate_threshold(cls, v):
        """Threshold is a probability"""
        if not 0 <= v <= 1:
            raise ValueError(f"Prefetch threshold must be between 0 and 1, got {v}")
        return v


class OptimizerConfig(BaseModel):
    """Resource loading and optimization configuration"""
    compression_threshold: int = Field(default=50 * KB, ge=0)
    image_quality: float = 0.8
    preload_distance: int = Field(default=1000, ge=0)
    request_timeout: float = Field(default=10.0, gt=0)
    load_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)

    @field_validator('image_quality')
    @classmethod
    def validate_quality(cls, v):
        """Quality is a fraction of the encoder's maximum"""
        if not 0 < v <= 1:
            raise ValueError(f"Image quality must be in (0, 1], got {v}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration"""
    level: str = "INFO"
    json_format: bool = False
    file_path: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level"""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class APIConfig(BaseModel):
    """HTTP stats API configuration"""
    host: str = "0.0.0.0"
    port: int = 8000
    prefix: str = "/api"


class AppConfig(BaseModel):
    """Main configuration"""
    app_name: str = "snipecache"
    cache: CacheConfig = Field(default_factory=CacheConfig)
    prefetch: PrefetchConfig = Field(default_factory=PrefetchConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)


# Environment variable -> (section, field)
ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "SNIPECACHE_MAX_SIZE_BYTES": ("cache", "max_size_bytes"),
    "SNIPECACHE_MAX_ENTRIES": ("cache", "max_entries"),
    "SNIPECACHE_DEFAULT_TTL": ("cache", "default_ttl"),
    "SNIPECACHE_CLEANUP_INTERVAL": ("cache", "cleanup_interval"),
    "SNIPECACHE_EVICTION_POLICY": ("cache", "eviction_policy"),
    "SNIPECACHE_PREFETCH_CONCURRENCY": ("prefetch", "concurrency"),
    "SNIPECACHE_PREFETCH_THRESHOLD": ("prefetch", "threshold"),
    "SNIPECACHE_MAX_RETRIES": ("prefetch", "max_retries"),
    "SNIPECACHE_RETRY_DELAY": ("prefetch", "retry_delay"),
    "SNIPECACHE_WARMUP_INTERVAL": ("prefetch", "warmup_interval"),
    "SNIPECACHE_COMPRESSION_THRESHOLD": ("optimizer", "compression_threshold"),
    "SNIPECACHE_IMAGE_QUALITY": ("optimizer", "image_quality"),
    "SNIPECACHE_REQUEST_TIMEOUT": ("optimizer", "request_timeout"),
    "SNIPECACHE_LOG_LEVEL": ("logging", "level"),
    "SNIPECACHE_LOG_FILE": ("logging", "file_path"),
    "SNIPECACHE_API_HOST": ("api", "host"),
    "SNIPECACHE_API_PORT": ("api", "port"),
}


class ConfigLoader:
    """
    Configuration loader.

    Loads configuration from:
    1. Default values
    2. Config file
    3. Environment variables (highest priority)
    """

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialize the config loader.

        Args:
            config_path: Path to config file (YAML or JSON)
            environ: Environment mapping, defaults to ``os.environ``
        """
        self.environ = os.environ if environ is None else environ
        self.config_path = config_path or self.environ.get("SNIPECACHE_CONFIG_PATH")
        self._config: Optional[AppConfig] = None

    def load(self) -> AppConfig:
        """
        Load configuration from all sources.

        Raises:
            ConfigurationError: if the merged values fail validation
        """
        if self._config is not None:
            return self._config

        data: Dict[str, Any] = {}
        if self.config_path:
            data = self._load_from_file(self.config_path)

        self._apply_environment(data)

        try:
            self._config = AppConfig(**data)
        except ValidationError as e:
            raise ConfigurationError("Invalid engine configuration", cause=e) from e
        return self._config

    def _apply_environment(self, data: Dict[str, Any]) -> None:
        for env_name, (section, field_name) in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value is None:
                continue
            data.setdefault(section, {})[field_name] = value

    def _load_from_file(self, path: str) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Missing or unreadable files fall back to defaults with a warning.
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return {}

        try:
            if path.suffix.lower() in ['.yaml', '.yml']:
                with open(path, 'r') as f:
                    return yaml.safe_load(f) or {}
            elif path.suffix.lower() == '.json':
                with open(path, 'r') as f:
                    return json.load(f)
            else:
                logger.warning(f"Unsupported config file format: {path.suffix}")
                return {}
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Error loading config file: {e}")
            return {}


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the loaded configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = ConfigLoader().load()
    return _config
