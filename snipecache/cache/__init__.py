"""
Policy-driven object cache.

This package provides a bounded in-memory store with byte-size accounting and
pluggable eviction policies (LRU, LFU, FIFO, priority and TTL).
"""

from snipecache.cache.base import CachePolicy, CachePriority, CacheResult, CacheStats
from snipecache.cache.entry import CacheEntry, estimate_size
from snipecache.cache.strategies import (
    EvictionPolicy,
    LRUPolicy,
    LFUPolicy,
    FIFOPolicy,
    PriorityPolicy,
    TTLPolicy,
    create_cache_strategy
)
from snipecache.cache.store import CacheStore

__all__ = [
    'CachePolicy',
    'CachePriority',
    'CacheResult',
    'CacheStats',
    'CacheEntry',
    'estimate_size',
    'EvictionPolicy',
    'LRUPolicy',
    'LFUPolicy',
    'FIFOPolicy',
    'PriorityPolicy',
    'TTLPolicy',
    'create_cache_strategy',
    'CacheStore',
]
