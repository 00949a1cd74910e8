"""
Resource Optimizer Module

Loads resources through a fetcher and applies a per-type transform before the
result reaches the cache. Oversized images are re-encoded as JPEG; the other
resource types pass through unless a strategy is registered for them.
"""

import asyncio
import io
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from PIL import Image

from snipecache.cache.store import CacheStore
from snipecache.common.error_handling import LoadFailedError, RetriesExhaustedError, retry_async
from snipecache.common.logger import log_execution_time
from snipecache.resources.models import Resource, ResourceStatus, ResourceType

logger = logging.getLogger(__name__)

Fetcher = Callable[[Resource], Awaitable[bytes]]
Strategy = Callable[[Resource, bytes], Awaitable[Any]]


@log_execution_time(logger)
def reencode_image(data: bytes, quality: float) -> bytes:
    """
    Decode an image and re-encode it as JPEG.

    Args:
        data: Encoded image bytes in any format Pillow can read
        quality: Encoder quality as a fraction (0.8 -> JPEG quality 80)

    Returns:
        JPEG bytes
    """
    with Image.open(io.BytesIO(data)) as image:
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=int(round(quality * 100)), optimize=True)
        return buffer.getvalue()


class ResourceOptimizer:
    """
    Loads and optimizes resources.

    ``load`` performs a single attempt and lets ``LoadFailedError`` propagate,
    so speculative callers can apply their own retry policy. ``request`` is the
    on-demand path: it serves from the cache when possible and otherwise loads
    with retries, raising to the caller if the content cannot be obtained.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        store: Optional[CacheStore] = None,
        compression_threshold: int = 50 * 1024,
        image_quality: float = 0.8,
        load_retries: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self._fetcher = fetcher
        self._store = store
        self.compression_threshold = compression_threshold
        self.image_quality = image_quality
        self.load_retries = load_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

        self._strategies: Dict[ResourceType, Strategy] = {
            ResourceType.IMAGE: self.optimize_image,
        }
        self._status: Dict[str, ResourceStatus] = {}
        self._stats = {"total": 0, "loaded": 0, "failed": 0, "optimized": 0}

    def register_strategy(self, resource_type: ResourceType, strategy: Strategy) -> None:
        """Install or replace the transform applied to ``resource_type``."""
        self._strategies[resource_type] = strategy

    def status(self, resource_id: str) -> Optional[ResourceStatus]:
        return self._status.get(resource_id)

    def is_loading(self, resource_id: str) -> bool:
        return self._status.get(resource_id) == ResourceStatus.LOADING

    def track(self, resource: Resource) -> None:
        """Start tracking a resource as pending."""
        if resource.id not in self._status:
            self._status[resource.id] = ResourceStatus.PENDING
            self._stats["total"] += 1

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    async def load(self, resource: Resource) -> Any:
        """
        Fetch a resource and apply its type's transform.

        Raises:
            LoadFailedError: if the fetch or the transform fails
        """
        self.track(resource)
        self._status[resource.id] = ResourceStatus.LOADING

        try:
            data = await self._fetcher(resource)
        except LoadFailedError:
            self._mark_failed(resource)
            raise
        except Exception as e:
            self._mark_failed(resource)
            raise LoadFailedError(resource.id, str(e) or type(e).__name__, cause=e) from e

        try:
            value = await self._optimize(resource, data)
        except LoadFailedError:
            self._mark_failed(resource)
            raise
        except Exception as e:
            self._mark_failed(resource)
            raise LoadFailedError(resource.id, f"optimization failed: {e}", cause=e) from e

        self._status[resource.id] = ResourceStatus.LOADED
        self._stats["loaded"] += 1
        return value

    async def request(self, resource: Resource) -> Any:
        """
        Return a resource's content, loading it on a cache miss.

        Raises:
            LoadFailedError: once every retry has failed
        """
        if self._store is not None:
            result = self._store.get(resource.id)
            if result.hit:
                return result.value

        try:
            value = await retry_async(
                self.load, resource,
                max_retries=self.load_retries,
                retry_delay=self.retry_delay,
                retry_exceptions=(LoadFailedError,),
                sleep=self._sleep,
                operation=f"load of {resource.id!r}"
            )
        except RetriesExhaustedError as e:
            raise LoadFailedError(resource.id, str(e), cause=e.cause) from e

        if self._store is not None:
            self._store.set(resource.id, value, size=resource.size if resource.size else None)
        return value

    async def optimize_image(self, resource: Resource, data: bytes) -> bytes:
        """
        Re-encode an image that exceeds the compression threshold.

        Images that cannot be decoded, or that would not shrink, are returned
        unchanged.
        """
        if len(data) <= self.compression_threshold:
            return data

        loop = asyncio.get_running_loop()
        try:
            optimized = await loop.run_in_executor(None, reencode_image, data, self.image_quality)
        except (OSError, ValueError) as e:
            logger.error(f"Error optimizing image {resource.id!r}: {e}")
            return data

        if len(optimized) >= len(data):
            return data

        self._stats["optimized"] += 1
        logger.debug(f"Optimized {resource.id!r}: {len(data)} -> {len(optimized)} bytes")
        return optimized

    async def _optimize(self, resource: Resource, data: bytes) -> Any:
        strategy = self._strategies.get(resource.type)
        if strategy is None:
            return data
        return await strategy(resource, data)

    def _mark_failed(self, resource: Resource) -> None:
        self._status[resource.id] = ResourceStatus.FAILED
        self._stats["failed"] += 1
