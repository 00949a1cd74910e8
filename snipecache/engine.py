"""
Cache Engine

The engine owns one instance of every component and wires them together:
accesses reported by the store feed the predictor, the warmer turns
predictions into prefetches through the scheduler, and the optimizer loads
resources for both prefetches and on-demand requests.

Usage:
    async with CacheEngine(get_config()) as engine:
        resource = Resource("page-2", "https://example.com/page-2")
        engine.register_resource(resource)
        value = await engine.request_resource(resource)
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from snipecache.cache.base import CacheResult, CacheStats
from snipecache.cache.store import CacheStore
from snipecache.cache.strategies import create_cache_strategy
from snipecache.common.config import AppConfig
from snipecache.resources.loader import HttpResourceFetcher
from snipecache.resources.models import Resource
from snipecache.resources.optimizer import Fetcher, ResourceOptimizer
from snipecache.resources.viewport import ProximityObserver
from snipecache.warming.predictor import AccessPredictor, Prediction
from snipecache.warming.scheduler import PrefetchScheduler
from snipecache.warming.warmer import CacheWarmer

logger = logging.getLogger(__name__)


class CacheEngine:
    """Explicitly constructed owner of the cache, predictor and loaders."""

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        fetcher: Optional[Fetcher] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Build the engine from configuration.

        Args:
            config: Engine settings (default: built-in defaults)
            fetcher: Coroutine fetching resource bytes (default: HTTP via aiohttp)
            clock: Time source for the store
            sleep: Coroutine used to wait between load retries
        """
        self.config = config or AppConfig()
        cache_config = self.config.cache
        prefetch_config = self.config.prefetch
        optimizer_config = self.config.optimizer

        self.store = CacheStore(
            max_size_bytes=cache_config.max_size_bytes,
            max_entries=cache_config.max_entries,
            default_ttl=cache_config.default_ttl,
            policy=create_cache_strategy(cache_config.eviction_policy),
            clock=clock
        )

        self.predictor = AccessPredictor(
            history_length=prefetch_config.history_length,
            threshold=prefetch_config.threshold,
            max_tracked_keys=prefetch_config.max_tracked_keys,
            max_successors=prefetch_config.max_successors
        )
        self.store.add_access_listener(self.predictor.record_access)

        self.scheduler = PrefetchScheduler(
            max_concurrent=prefetch_config.concurrency,
            max_retries=prefetch_config.max_retries,
            retry_delay=prefetch_config.retry_delay,
            backoff_factor=prefetch_config.backoff_factor,
            sleep=sleep
        )

        self._http_fetcher: Optional[HttpResourceFetcher] = None
        if fetcher is None:
            self._http_fetcher = HttpResourceFetcher(timeout=optimizer_config.request_timeout)
            fetcher = self._http_fetcher

        self.optimizer = ResourceOptimizer(
            fetcher,
            store=self.store,
            compression_threshold=optimizer_config.compression_threshold,
            image_quality=optimizer_config.image_quality,
            load_retries=optimizer_config.load_retries,
            retry_delay=optimizer_config.retry_delay,
            sleep=sleep
        )

        self.warmer = CacheWarmer(
            self.store,
            self.predictor,
            self.scheduler,
            self.optimizer.load,
            max_prefetch_bytes=prefetch_config.max_prefetch_bytes
        )

        self.observer = ProximityObserver(
            on_enter=self.warmer.prefetch,
            margin=optimizer_config.preload_distance,
            is_settled=self._is_settled
        )

        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    # Cache

    def cache_get(self, key: str) -> CacheResult:
        return self.store.get(key)

    def cache_set(self, key: str, value: Any, **kwargs) -> bool:
        return self.store.set(key, value, **kwargs)

    def cache_delete(self, key: str) -> bool:
        return self.store.delete(key)

    def cache_clear(self) -> None:
        self.store.clear()

    def cache_stats(self) -> CacheStats:
        return self.store.stats()

    # Prediction and prefetching

    def record_access(self, key: str) -> None:
        """Report an access that did not go through the store."""
        self.predictor.record_access(key)

    def predict_next(self, key: str, threshold: Optional[float] = None) -> List[Prediction]:
        return self.predictor.predict_next(key, threshold)

    def register_resource(self, resource: Resource) -> None:
        self.warmer.register_resource(resource)

    def enqueue_prefetch(self, resource: Resource) -> bool:
        """Queue a speculative load of ``resource``. Requires a running event loop."""
        return self.warmer.prefetch(resource)

    async def warm(self, current_key: Optional[str] = None) -> int:
        return await self.warmer.warm(current_key)

    # Resources

    async def request_resource(self, resource: Resource) -> Any:
        """
        Return a resource's content, from the cache when possible.

        Raises:
            LoadFailedError: if the resource cannot be loaded
        """
        return await self.optimizer.request(resource)

    def observe(self, resource: Resource, top: float, height: float = 0) -> None:
        self.observer.observe(resource, top, height)

    def update_viewport(self, top: float, height: float) -> List[Resource]:
        """Prefetch observed resources near the viewport. Requires a running event loop."""
        return self.observer.update_viewport(top, height)

    def stats(self) -> Dict[str, Any]:
        """Snapshot of every component's statistics."""
        return {
            "cache": self.store.stats().to_dict(),
            "predictor": self.predictor.stats(),
            "prefetch": self.scheduler.stats().to_dict(),
            "warmup": self.warmer.stats().to_dict(),
            "optimizer": self.optimizer.stats(),
        }

    # Lifecycle

    async def start(self) -> None:
        """Start the periodic expiry sweep and warmup loop."""
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._cleanup_loop()),
            loop.create_task(self._warmup_loop()),
        ]
        logger.info(
            f"Cache engine started (policy={self.store.policy.name}, "
            f"max_size={self.store.max_size_bytes}, max_entries={self.store.max_entries})"
        )

    async def close(self) -> None:
        """Stop the background loops, cancel prefetches and release the fetcher."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.warmer.close()
        self.observer.disconnect()

        if self._http_fetcher is not None:
            await self._http_fetcher.close()
        logger.info("Cache engine closed")

    async def __aenter__(self) -> "CacheEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _is_settled(self, resource_id: str) -> bool:
        return (
            resource_id in self.store
            or self.scheduler.is_scheduled(resource_id)
            or self.optimizer.is_loading(resource_id)
        )

    async def _cleanup_loop(self) -> None:
        interval = self.config.cache.cleanup_interval
        while True:
            await asyncio.sleep(interval)
            try:
                self.store.cleanup_expired()
            except Exception as e:
                logger.error(f"Error during cache cleanup: {e}")

    async def _warmup_loop(self) -> None:
        interval = self.config.prefetch.warmup_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.warmer.warm()
            except Exception as e:
                logger.error(f"Error during cache warmup: {e}")
