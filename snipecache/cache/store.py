"""
Cache Store Module

This module implements the bounded in-memory store at the heart of the engine:
a key-to-entry map with byte-size accounting that delegates victim selection
to a pluggable eviction policy.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from snipecache.cache.base import CachePriority, CacheResult, CacheStats
from snipecache.cache.entry import CacheEntry, estimate_size
from snipecache.cache.strategies import EvictionPolicy, LRUPolicy
from snipecache.common.error_handling import CacheError, CacheMissError, EntryTooLargeError
from snipecache.common.logger import LoggerAdapter

logger = logging.getLogger(__name__)

AccessListener = Callable[[str], None]


class CacheStore:
    """
    Bounded in-memory cache store.

    The sum of entry sizes never exceeds ``max_size_bytes`` and the number of
    entries never exceeds ``max_entries``. An entry larger than the whole store
    is rejected outright rather than evicting everything to admit it.

    Reads are not pure: ``get`` updates access metadata, deletes entries found
    expired, and reports the access to registered listeners (normally the
    access predictor). Successful explicit ``set`` calls are reported as well,
    exactly once per call and in call order.

    All state is guarded by a single re-entrant lock, so every operation is
    atomic with respect to the others.
    """

    def __init__(
        self,
        max_size_bytes: int = 100 * 1024 * 1024,
        max_entries: int = 1000,
        default_ttl: float = 3600.0,
        policy: Optional[EvictionPolicy] = None,
        clock: Callable[[], float] = time.time,
        name: str = "memory"
    ):
        """
        Initialize the store.

        Args:
            max_size_bytes: Byte budget for all entries
            max_entries: Maximum number of entries
            default_ttl: Time-to-live in seconds for entries set without one
            policy: Eviction policy (default: LRU)
            clock: Time source, injectable for tests
            name: Name reported in results and logs
        """
        self._entries: Dict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._max_size = max_size_bytes
        self._max_entries = max_entries
        self._default_ttl = default_ttl
        self._policy = policy or LRUPolicy()
        self._clock = clock
        self._name = name
        self._current_size = 0
        self._sequence = 0
        self._listeners: List[AccessListener] = []

        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._rejections = 0
        self._predicted_hits = 0

        self._log = LoggerAdapter(logger, {"store": name, "policy": self._policy.name})

    @property
    def name(self) -> str:
        return self._name

    @property
    def policy(self) -> EvictionPolicy:
        return self._policy

    @property
    def max_size_bytes(self) -> int:
        return self._max_size

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def current_size(self) -> int:
        with self._lock:
            return self._current_size

    def set_policy(self, policy: EvictionPolicy) -> None:
        """Swap the eviction policy; entry metadata carries over unchanged."""
        with self._lock:
            self._policy = policy
            self._log = self._log.with_context(policy=policy.name)

    def add_access_listener(self, listener: AccessListener) -> None:
        """Register a callback invoked with the key of every reported access."""
        with self._lock:
            self._listeners.append(listener)

    def remove_access_listener(self, listener: AccessListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def get(self, key: str) -> CacheResult:
        """
        Get a value from the store.

        This read mutates the store: a hit updates the entry's access time and
        hit count, an expired entry is deleted and reported as a miss, and a
        successful read is reported to the access listeners.

        Args:
            key: The cache key

        Returns:
            A CacheResult; ``hit`` is False on a miss or expiry
        """
        with self._lock:
            entry = self._entries.get(key)

            if entry is None:
                self._misses += 1
                return self._miss(CacheMissError(key))

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._expirations += 1
                self._misses += 1
                self._log.debug(f"Entry {key!r} expired on read")
                return self._miss(CacheMissError(key, expired=True))

            if entry.predicted and entry.hit_count == 0:
                self._predicted_hits += 1
            entry.touch(now)
            self._hits += 1
            self._notify(key)

            return CacheResult(success=True, value=entry.value, hit=True, source=self._name)

    def set(
        self,
        key: str,
        value: Any,
        size: Optional[int] = None,
        priority: Optional[int] = None,
        ttl: Optional[float] = None,
        predicted: bool = False
    ) -> bool:
        """
        Store a value, evicting entries as needed to stay within budget.

        Entries set with ``predicted=True`` come from speculative prefetching;
        they are stored the same way but are not reported as accesses.

        Args:
            key: The cache key
            value: The value to cache
            size: Size in bytes; estimated from the value when omitted
            priority: Eviction priority (default: medium)
            ttl: Time-to-live in seconds (default: the store-wide TTL)
            predicted: Whether the value was prefetched rather than requested

        Returns:
            True if the value was stored, False if it was rejected
        """
        with self._lock:
            try:
                self._admit(key, value, size, priority, ttl, predicted)
            except CacheError as e:
                self._log.warning(f"Rejected cache entry: {e}")
                return False

            if not predicted:
                self._notify(key)
            return True

    def delete(self, key: str) -> bool:
        """
        Delete a value from the store.

        Returns:
            True if the key was found and deleted, False otherwise
        """
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        """Remove every entry and reset the statistics."""
        with self._lock:
            self._entries.clear()
            self._current_size = 0
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            self._expirations = 0
            self._rejections = 0
            self._predicted_hits = 0

    def cleanup_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired_keys = [
                key for key, entry in self._entries.items()
                if entry.is_expired(now)
            ]
            for key in expired_keys:
                self._remove(key)
                self._expirations += 1

        if expired_keys:
            self._log.info(f"Cleaned up {len(expired_keys)} expired cache entries")
        return len(expired_keys)

    def stats(self) -> CacheStats:
        """Get statistics about the store."""
        with self._lock:
            return CacheStats(
                size_bytes=self._current_size,
                entry_count=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
                rejections=self._rejections,
                predicted_hits=self._predicted_hits,
                max_size_bytes=self._max_size,
                max_entries=self._max_entries
            )

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` without touching it or reporting an access."""
        with self._lock:
            return self._entries.get(key)

    def _admit(
        self,
        key: str,
        value: Any,
        size: Optional[int],
        priority: Optional[int],
        ttl: Optional[float],
        predicted: bool
    ) -> None:
        if size is None:
            size = estimate_size(value)
        if size < 0:
            self._rejections += 1
            raise CacheError(f"Entry {key!r} has negative size {size}")
        if size > self._max_size:
            self._rejections += 1
            raise EntryTooLargeError(key, size, self._max_size)

        if key in self._entries:
            self._remove(key)

        self._make_room(size)

        if self._current_size + size > self._max_size or len(self._entries) >= self._max_entries:
            self._rejections += 1
            raise CacheError(
                f"Unable to free space for {key!r}",
                details={"size": size, "current_size": self._current_size}
            )

        self._sequence += 1
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            size=size,
            ttl=self._default_ttl if ttl is None else ttl,
            priority=CachePriority.MEDIUM if priority is None else priority,
            created_at=self._clock(),
            predicted=predicted,
            sequence=self._sequence
        )
        self._current_size += size

    def _make_room(self, size: int) -> None:
        while self._entries and (
            self._current_size + size > self._max_size
            or len(self._entries) >= self._max_entries
        ):
            victim = self._select_victim()
            if victim is None:
                break
            self._remove(victim)
            self._evictions += 1
            self._log.debug(f"Evicted {victim!r}")

    def _select_victim(self) -> Optional[str]:
        now = self._clock()
        victim = self._policy.select_victim(self._entries, now)
        if victim is None and self._policy.fallback is not None:
            victim = self._policy.fallback.select_victim(self._entries, now)
        return victim

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._current_size -= entry.size

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception as e:
                self._log.error(f"Access listener failed for {key!r}: {e}")

    def _miss(self, error: CacheMissError) -> CacheResult:
        return CacheResult(success=False, value=None, hit=False, source=self._name, error=error.message)

    def __contains__(self, key: str) -> bool:
        """Membership test without side effects; expired entries count as absent."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def __len__(self) -> int:
        """Return the number of entries in the store."""
        with self._lock:
            return len(self._entries)
