"""
Tests for configuration loading, error types and retry helpers.
"""

import json
import logging
import unittest
from unittest.mock import MagicMock

import pytest
import yaml
from pydantic import ValidationError

from snipecache.common.config import AppConfig, ConfigLoader, PrefetchConfig, OptimizerConfig, LoggingConfig
from snipecache.common.error_handling import (
    CacheMissError,
    ConfigurationError,
    EntryTooLargeError,
    ErrorCode,
    LoadFailedError,
    RetriesExhaustedError,
    SnipeCacheError,
    backoff_delay,
    retry_async,
)
from snipecache.common.logger import JsonFormatter, LoggerAdapter


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        config = AppConfig()
        self.assertEqual(config.cache.max_size_bytes, 100 * 1024 * 1024)
        self.assertEqual(config.cache.max_entries, 1000)
        self.assertEqual(config.cache.default_ttl, 3600)
        self.assertEqual(config.cache.cleanup_interval, 300)
        self.assertEqual(config.cache.eviction_policy, "lru")
        self.assertEqual(config.prefetch.concurrency, 3)
        self.assertEqual(config.prefetch.threshold, 0.7)
        self.assertEqual(config.prefetch.max_retries, 3)
        self.assertEqual(config.prefetch.retry_delay, 1.0)
        self.assertEqual(config.optimizer.compression_threshold, 50 * 1024)
        self.assertEqual(config.optimizer.image_quality, 0.8)

    def test_validation(self):
        with self.assertRaises(ValidationError):
            PrefetchConfig(threshold=1.5)
        with self.assertRaises(ValidationError):
            OptimizerConfig(image_quality=0)
        with self.assertRaises(ValidationError):
            LoggingConfig(level="LOUD")
        self.assertEqual(LoggingConfig(level="debug").level, "DEBUG")


class TestConfigLoader:
    """Test loading configuration from files and environment."""

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "snipecache.yaml"
        path.write_text(yaml.safe_dump({"cache": {"max_entries": 50, "eviction_policy": "lfu"}}))

        config = ConfigLoader(str(path), environ={}).load()

        assert config.cache.max_entries == 50
        assert config.cache.eviction_policy == "lfu"
        assert config.prefetch.concurrency == 3

    def test_json_file(self, tmp_path):
        path = tmp_path / "snipecache.json"
        path.write_text(json.dumps({"prefetch": {"threshold": 0.5}}))

        assert ConfigLoader(str(path), environ={}).load().prefetch.threshold == 0.5

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "snipecache.yaml"
        path.write_text(yaml.safe_dump({"cache": {"max_entries": 50}}))
        environ = {"SNIPECACHE_MAX_ENTRIES": "75", "SNIPECACHE_PREFETCH_CONCURRENCY": "6"}

        config = ConfigLoader(str(path), environ=environ).load()

        assert config.cache.max_entries == 75
        assert config.prefetch.concurrency == 6

    def test_config_path_from_environment(self, tmp_path):
        path = tmp_path / "snipecache.yaml"
        path.write_text(yaml.safe_dump({"api": {"port": 9100}}))

        config = ConfigLoader(environ={"SNIPECACHE_CONFIG_PATH": str(path)}).load()

        assert config.api.port == 9100

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigLoader(str(tmp_path / "absent.yaml"), environ={}).load()
        assert config == AppConfig()

    def test_invalid_values_raise(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigLoader(environ={"SNIPECACHE_PREFETCH_THRESHOLD": "2"}).load()
        assert exc_info.value.code == ErrorCode.CONFIGURATION_ERROR


class TestErrors(unittest.TestCase):

    def test_entry_too_large(self):
        error = EntryTooLargeError("k", 200, 100)
        self.assertEqual(error.code, ErrorCode.ENTRY_TOO_LARGE)
        self.assertEqual(error.details, {"key": "k", "size": 200, "max_size": 100})
        self.assertIn("exceeds cache capacity", str(error))

    def test_cache_miss(self):
        self.assertIn("expired", CacheMissError("k", expired=True).message)
        self.assertEqual(CacheMissError("k").code, ErrorCode.NOT_FOUND)

    def test_to_dict(self):
        cause = ConnectionResetError("reset by peer")
        error = LoadFailedError("img", "connection reset", cause=cause)

        data = error.to_dict()

        self.assertEqual(data["code"], "load_failed")
        self.assertEqual(data["exception_type"], "LoadFailedError")
        self.assertEqual(data["details"]["resource_id"], "img")
        self.assertEqual(data["details"]["cause"]["type"], "ConnectionResetError")
        self.assertIsInstance(error, SnipeCacheError)

    def test_backoff_delay(self):
        self.assertEqual([backoff_delay(n, 1.0) for n in range(3)], [1.0, 2.0, 4.0])
        self.assertEqual(backoff_delay(2, 0.5, backoff_factor=3.0), 4.5)


@pytest.mark.asyncio
async def test_retry_async_backoff(sleep):
    func = MagicMock(side_effect=[OSError("down"), OSError("down"), "ok"])
    on_retry = MagicMock()

    async def call():
        return func()

    result = await retry_async(call, max_retries=3, retry_delay=0.2, on_retry=on_retry, sleep=sleep)

    assert result == "ok"
    assert sleep.delays == pytest.approx([0.2, 0.4])
    assert [c.args[0] for c in on_retry.call_args_list] == [1, 2]


@pytest.mark.asyncio
async def test_retry_async_exhaustion(sleep):
    async def always_fails():
        raise OSError("down")

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await retry_async(always_fails, max_retries=2, sleep=sleep, operation="fetch")

    assert exc_info.value.attempts == 3
    assert exc_info.value.operation == "fetch"
    assert isinstance(exc_info.value.cause, OSError)


@pytest.mark.asyncio
async def test_retry_async_ignored_exceptions(sleep):
    async def missing():
        raise KeyError("gone")

    with pytest.raises(KeyError):
        await retry_async(missing, ignore_exceptions=(KeyError,), sleep=sleep)
    assert sleep.delays == []


class TestLogging(unittest.TestCase):

    def test_json_formatter_includes_data(self):
        record = logging.LogRecord("snipecache.test", logging.INFO, __file__, 10, "hello", None, None)
        record.data = {"store": "memory"}

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "hello")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["store"], "memory")

    def test_adapter_context(self):
        logger = logging.getLogger("snipecache.test.adapter")
        adapter = LoggerAdapter(logger, {"store": "memory"}).with_context(policy="lru")

        with self.assertLogs(logger, level="INFO") as captured:
            adapter.info("evicted")

        self.assertEqual(captured.records[0].data, {"store": "memory", "policy": "lru"})
