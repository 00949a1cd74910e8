"""
Cache Warmer Module

Ties the predictor, the prefetch scheduler and a resource loader to a cache
store: predicted successors of the current key are loaded in the background
and inserted as predicted entries, so a later request for them is a hit.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from snipecache.cache.base import CachePriority
from snipecache.cache.entry import estimate_size
from snipecache.cache.store import CacheStore
from snipecache.common.logger import LoggerAdapter
from snipecache.resources.models import Resource
from snipecache.warming.predictor import AccessPredictor
from snipecache.warming.scheduler import PrefetchScheduler

logger = logging.getLogger(__name__)

Loader = Callable[[Resource], Awaitable[Any]]


@dataclass
class WarmupStats:
    """Counters of the warmup process."""
    total_predicted: int = 0
    enqueued: int = 0
    successful: int = 0
    failed: int = 0
    in_progress: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class CacheWarmer:
    """
    Predictive cache warmer.

    Only resources registered with ``register_resource`` can be prefetched;
    predictions for unknown keys are counted but ignored. Values that are
    already cached, or larger than ``max_prefetch_bytes``, are not stored.
    """

    def __init__(
        self,
        store: CacheStore,
        predictor: AccessPredictor,
        scheduler: PrefetchScheduler,
        loader: Loader,
        max_prefetch_bytes: int = 50 * 1024 * 1024,
        on_prefetch_start: Optional[Callable[[Resource], None]] = None,
        on_warmup_complete: Optional[Callable[[WarmupStats], None]] = None
    ):
        self._store = store
        self._predictor = predictor
        self._scheduler = scheduler
        self._loader = loader
        self._max_prefetch_bytes = max_prefetch_bytes
        self._on_prefetch_start = on_prefetch_start
        self._on_warmup_complete = on_warmup_complete

        self._resources: Dict[str, Resource] = {}
        self._stats = WarmupStats()
        self._log = LoggerAdapter(logger, {"component": "warmer"})

    @property
    def scheduler(self) -> PrefetchScheduler:
        return self._scheduler

    def register_resource(self, resource: Resource) -> None:
        """Make a resource eligible for prefetching under its id."""
        self._resources[resource.id] = resource

    def unregister_resource(self, resource_id: str) -> bool:
        return self._resources.pop(resource_id, None) is not None

    def get_resource(self, resource_id: str) -> Optional[Resource]:
        return self._resources.get(resource_id)

    def resources(self) -> List[Resource]:
        return list(self._resources.values())

    def prefetch(self, resource: Resource) -> bool:
        """
        Queue a single resource for prefetching and start the workers.

        Must be called from a running event loop.

        Returns:
            False if the resource is cached, queued or already loading

        Raises:
            RuntimeError: if there is no running event loop; nothing is queued
        """
        asyncio.get_running_loop()
        if resource.id in self._store or not self._scheduler.enqueue(resource):
            return False
        self._stats.enqueued += 1
        self._scheduler.drain(self._prefetch_one)
        return True

    async def warm(self, current_key: Optional[str] = None) -> int:
        """
        Run one warmup pass.

        Args:
            current_key: Key to predict from (default: the last recorded access)

        Returns:
            Number of resources queued by this pass
        """
        key = current_key if current_key is not None else self._predictor.last_key
        if key is None:
            return 0

        predictions = self._predictor.predict_next(key)
        self._stats.total_predicted += len(predictions)

        queued = 0
        for prediction in predictions:
            resource = self._resources.get(prediction.key)
            if resource is None:
                continue
            if self.prefetch(resource.with_priority(prediction.probability)):
                queued += 1

        if queued:
            self._log.debug(f"Queued {queued} prefetches after {key!r}")

        if self._on_warmup_complete is not None:
            self._on_warmup_complete(self.stats())
        return queued

    async def join(self) -> None:
        """Wait for every queued prefetch to finish."""
        await self._scheduler.join()

    def stats(self) -> WarmupStats:
        scheduler_stats = self._scheduler.stats()
        stats = WarmupStats(**asdict(self._stats))
        stats.failed = scheduler_stats.failed
        return stats

    async def _prefetch_one(self, resource: Resource) -> None:
        if self._on_prefetch_start is not None:
            self._on_prefetch_start(resource)

        self._stats.in_progress += 1
        try:
            value = await self._loader(resource)
        finally:
            self._stats.in_progress -= 1

        if resource.id in self._store:
            self._stats.skipped += 1
            self._log.info(f"Dropping prefetch of {resource.id!r}: cached while loading")
            return

        size = estimate_size(value)
        if size > self._max_prefetch_bytes:
            self._stats.skipped += 1
            self._log.info(
                f"Skipping prefetched {resource.id!r}: {size} bytes exceeds {self._max_prefetch_bytes}"
            )
            return

        if self._store.set(resource.id, value, size=size, priority=CachePriority.LOW, predicted=True):
            self._stats.successful += 1
        else:
            self._stats.skipped += 1

    async def close(self) -> None:
        await self._scheduler.shutdown()
