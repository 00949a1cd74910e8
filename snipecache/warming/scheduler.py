"""
Prefetch Scheduler Module

A FIFO queue of speculative loads drained by a bounded pool of asyncio
workers. Each worker carries at most one load at a time, so no more than
``max_concurrent`` loads are ever in flight. Failed loads are retried with
exponential backoff and then dropped; a failed prefetch never propagates.
"""

import asyncio
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from snipecache.common.error_handling import RetriesExhaustedError, retry_async
from snipecache.resources.models import Resource

logger = logging.getLogger(__name__)

LoadFn = Callable[[Resource], Awaitable[Any]]


@dataclass
class PrefetchStats:
    """Counters of a prefetch scheduler."""
    submitted: int = 0
    deduplicated: int = 0
    succeeded: int = 0
    failed: int = 0
    retries: int = 0
    queued: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class PrefetchScheduler:
    """
    Concurrency-bounded prefetch queue.

    Resources are de-duplicated by id against both the pending queue and the
    in-flight set. Queue order is submission order; there is no priority
    reordering. In-flight loads are never cancelled except by ``shutdown``.
    """

    def __init__(
        self,
        max_concurrent: int = 3,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        backoff_factor: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the scheduler.

        Args:
            max_concurrent: Maximum number of loads in flight
            max_retries: Retries per load before it is dropped
            retry_delay: Delay before the first retry, in seconds
            backoff_factor: Multiplier applied to the delay after each retry
            sleep: Coroutine used to wait between retries
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")

        self.max_concurrent = max_concurrent
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self._sleep = sleep

        self._queue: Deque[Resource] = deque()
        self._queued_ids: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

        self._workers: Set[asyncio.Task] = set()
        self._active_workers = 0

        self._submitted = 0
        self._deduplicated = 0
        self._succeeded = 0
        self._failed = 0
        self._retries = 0
        self._peak_in_flight = 0

    @property
    def in_flight(self) -> Set[str]:
        with self._lock:
            return set(self._in_flight)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return not self._queue and not self._in_flight

    def is_scheduled(self, resource_id: str) -> bool:
        """Whether a resource is queued or currently loading."""
        with self._lock:
            return resource_id in self._queued_ids or resource_id in self._in_flight

    def enqueue(self, resource: Resource) -> bool:
        """
        Add a resource to the queue.

        Returns:
            False if a resource with the same id is already queued or in flight
        """
        with self._lock:
            if resource.id in self._queued_ids or resource.id in self._in_flight:
                self._deduplicated += 1
                return False
            self._queue.append(resource)
            self._queued_ids.add(resource.id)
            self._submitted += 1
            return True

    def drain(self, load_fn: LoadFn) -> int:
        """
        Start workers for the queued resources.

        Must be called from a running event loop. Workers keep pulling from the
        queue until it is empty, so one call drains everything enqueued before
        the queue runs dry.

        Args:
            load_fn: Coroutine function loading one resource

        Returns:
            Number of workers started
        """
        loop = asyncio.get_running_loop()

        with self._lock:
            spawn = min(self.max_concurrent - self._active_workers, len(self._queue))
            spawn = max(spawn, 0)
            self._active_workers += spawn

        for _ in range(spawn):
            task = loop.create_task(self._worker(load_fn))
            self._workers.add(task)
            task.add_done_callback(self._workers.discard)
        return spawn

    async def join(self) -> None:
        """Wait until every started worker has finished."""
        while self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)

    async def shutdown(self) -> None:
        """Drop queued resources and cancel in-flight loads."""
        with self._lock:
            dropped = len(self._queue)
            self._queue.clear()
            self._queued_ids.clear()

        workers = list(self._workers)
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

        with self._lock:
            self._in_flight.clear()
            # Workers cancelled before their first step never reach their finally block.
            self._active_workers = 0
        if dropped or workers:
            logger.info(f"Prefetch scheduler stopped ({dropped} queued dropped, {len(workers)} workers cancelled)")

    def stats(self) -> PrefetchStats:
        with self._lock:
            return PrefetchStats(
                submitted=self._submitted,
                deduplicated=self._deduplicated,
                succeeded=self._succeeded,
                failed=self._failed,
                retries=self._retries,
                queued=len(self._queue),
                in_flight=len(self._in_flight),
                peak_in_flight=self._peak_in_flight
            )

    async def _worker(self, load_fn: LoadFn) -> None:
        try:
            while True:
                resource = self._next()
                if resource is None:
                    return
                try:
                    await self._load(load_fn, resource)
                finally:
                    with self._lock:
                        self._in_flight.discard(resource.id)
        finally:
            with self._lock:
                self._active_workers -= 1

    def _next(self) -> Optional[Resource]:
        with self._lock:
            if not self._queue:
                return None
            resource = self._queue.popleft()
            self._queued_ids.discard(resource.id)
            self._in_flight.add(resource.id)
            self._peak_in_flight = max(self._peak_in_flight, len(self._in_flight))
            return resource

    async def _load(self, load_fn: LoadFn, resource: Resource) -> bool:
        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            with self._lock:
                self._retries += 1

        try:
            await retry_async(
                load_fn, resource,
                max_retries=self.max_retries,
                retry_delay=self.retry_delay,
                backoff_factor=self.backoff_factor,
                on_retry=on_retry,
                sleep=self._sleep,
                operation=f"prefetch of {resource.id!r}"
            )
        except RetriesExhaustedError as e:
            with self._lock:
                self._failed += 1
            logger.warning(f"Dropping prefetch: {e}")
            return False

        with self._lock:
            self._succeeded += 1
        return True
