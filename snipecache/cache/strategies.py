"""
Eviction Strategies Module

Pluggable victim-selection policies for ``CacheStore``. A policy reads entry
metadata and names one key to evict; it keeps no state of its own, so a store
can switch policies without migrating anything.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional, Type, Union

from snipecache.cache.base import CachePolicy
from snipecache.cache.entry import CacheEntry

logger = logging.getLogger(__name__)


def _min_by(entries: Mapping[str, CacheEntry], metric: Callable[[CacheEntry], Any]) -> Optional[str]:
    # Strict comparison keeps the first entry in insertion order on ties.
    victim_key = None
    victim_metric = None
    for key, entry in entries.items():
        value = metric(entry)
        if victim_metric is None or value < victim_metric:
            victim_key = key
            victim_metric = value
    return victim_key


class EvictionPolicy(ABC):
    """
    Base class for eviction policies.

    ``select_victim`` returns ``None`` when the store is empty. A policy that
    may also decline to pick a victim from a non-empty store (TTL) sets
    ``fallback`` to the policy the store must use instead.
    """

    policy: CachePolicy
    fallback: Optional["EvictionPolicy"] = None

    @property
    def name(self) -> str:
        return self.policy.value

    @abstractmethod
    def select_victim(self, entries: Mapping[str, CacheEntry], now: float) -> Optional[str]:
        """
        Pick the key to evict.

        Args:
            entries: Entry metadata keyed by cache key, in insertion order
            now: Current time, as seen by the store's clock

        Returns:
            The key to evict, or None if no victim is available
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class LRUPolicy(EvictionPolicy):
    """Evict the entry read least recently."""
    policy = CachePolicy.LRU

    def select_victim(self, entries, now):
        return _min_by(entries, lambda entry: entry.last_accessed)


class LFUPolicy(EvictionPolicy):
    """Evict the entry with the fewest reads."""
    policy = CachePolicy.LFU

    def select_victim(self, entries, now):
        return _min_by(entries, lambda entry: entry.hit_count)


class FIFOPolicy(EvictionPolicy):
    """Evict the oldest entry."""
    policy = CachePolicy.FIFO

    def select_victim(self, entries, now):
        return _min_by(entries, lambda entry: (entry.created_at, entry.sequence))


class PriorityPolicy(EvictionPolicy):
    """Evict the lowest priority entry, oldest first among equals."""
    policy = CachePolicy.PRIORITY

    def select_victim(self, entries, now):
        return _min_by(entries, lambda entry: (entry.priority, entry.created_at, entry.sequence))


class TTLPolicy(EvictionPolicy):
    """
    Evict the entry that expired first.

    When nothing has expired yet the policy has no victim; the store then
    forces eviction through ``fallback`` (FIFO unless configured otherwise)
    so that ``set`` always makes progress under pressure.
    """
    policy = CachePolicy.TTL

    def __init__(self, fallback: Optional[EvictionPolicy] = None):
        self.fallback = fallback or FIFOPolicy()

    def select_victim(self, entries, now):
        expired = {key: entry for key, entry in entries.items() if entry.expires_at <= now}
        return _min_by(expired, lambda entry: entry.expires_at)

    def __repr__(self) -> str:
        return f"TTLPolicy(fallback={self.fallback!r})"


POLICY_REGISTRY: Dict[CachePolicy, Type[EvictionPolicy]] = {
    CachePolicy.LRU: LRUPolicy,
    CachePolicy.LFU: LFUPolicy,
    CachePolicy.FIFO: FIFOPolicy,
    CachePolicy.PRIORITY: PriorityPolicy,
    CachePolicy.TTL: TTLPolicy,
}


def create_cache_strategy(
    kind: Union[str, CachePolicy, None],
    options: Optional[Dict[str, Any]] = None
) -> EvictionPolicy:
    """
    Build an eviction policy by name.

    Unknown names fall back to LRU with a warning instead of failing.

    Args:
        kind: Policy name (lru, lfu, fifo, priority, ttl) or CachePolicy
        options: Policy options; ``fallback`` names the policy TTL falls back to

    Returns:
        The eviction policy instance
    """
    options = options or {}

    try:
        policy = CachePolicy(kind.lower() if isinstance(kind, str) else kind)
    except ValueError:
        logger.warning(f"Unknown cache strategy type: {kind}, falling back to LRU")
        return LRUPolicy()

    if policy is CachePolicy.TTL:
        fallback_kind = options.get("fallback")
        if fallback_kind is None:
            return TTLPolicy()
        fallback = create_cache_strategy(fallback_kind)
        if isinstance(fallback, TTLPolicy):
            logger.warning("TTL policy cannot fall back to itself, using FIFO")
            return TTLPolicy()
        return TTLPolicy(fallback=fallback)

    return POLICY_REGISTRY[policy]()
