"""
Base Cache Module

This module defines the core types of the caching system: eviction policy
names, entry priorities, operation results and store statistics.
"""

from dataclasses import asdict, dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, Generic, Optional, TypeVar

V = TypeVar('V')


class CachePolicy(str, Enum):
    """Cache eviction policies."""

    # Least Recently Used eviction
    LRU = "lru"

    # Least Frequently Used eviction
    LFU = "lfu"

    # First In, First Out eviction
    FIFO = "fifo"

    # Lowest priority first, FIFO among equals
    PRIORITY = "priority"

    # Expired entries first, forced FIFO when nothing has expired
    TTL = "ttl"


class CachePriority(IntEnum):
    """Entry priority; lower values are evicted first by the priority policy."""
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass
class CacheResult(Generic[V]):
    """
    Result of a cache operation.

    Attributes:
        success: Whether the operation was successful
        value: The value retrieved or stored
        hit: Whether the value was found in cache (for get operations)
        source: Name of the store that served the operation
        error: Optional error message if the operation failed
    """
    success: bool
    value: Optional[V] = None
    hit: bool = False
    source: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CacheStats:
    """Point-in-time statistics of a cache store."""
    size_bytes: int = 0
    entry_count: int = 0
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    rejections: int = 0
    predicted_hits: int = 0
    max_size_bytes: int = 0
    max_entries: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["hit_rate"] = self.hit_rate
        return data
