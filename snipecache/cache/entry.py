"""
Cache Entry Module

This module provides the CacheEntry class, which wraps a cached value with the
metadata eviction policies work from, and the size estimator used when a
caller does not supply an entry size.
"""

import json
import logging
import sys
import time
from typing import Any, Generic, Optional, TypeVar

from snipecache.cache.base import CachePriority

logger = logging.getLogger(__name__)

V = TypeVar('V')


def estimate_size(value: Any) -> int:
    """
    Approximate the in-memory size of a value in bytes.

    Strings count two bytes per character, binary values their byte length,
    and anything else twice the length of its JSON encoding.
    """
    if value is None:
        return 0
    if isinstance(value, str):
        return len(value) * 2
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, memoryview):
        return value.nbytes
    try:
        return len(json.dumps(value, default=str)) * 2
    except (TypeError, ValueError) as e:
        logger.warning(f"Falling back to sys.getsizeof for {type(value).__name__}: {e}")
        return sys.getsizeof(value)


class CacheEntry(Generic[V]):
    """
    Represents a cached value with metadata.

    Entries are owned by a single ``CacheStore``; only the store mutates them.

    Attributes:
        key: The cache key
        value: The cached value
        size: Size of the value in bytes
        priority: Eviction priority (used by the priority policy only)
        created_at: When the entry was created (epoch time)
        last_accessed: When the entry was last read (epoch time)
        expires_at: When the entry expires (epoch time)
        hit_count: Number of reads since insertion
        predicted: Whether the entry was inserted by the prefetcher
        sequence: Insertion order within the owning store
    """

    __slots__ = (
        "key", "value", "size", "priority", "created_at", "last_accessed",
        "expires_at", "hit_count", "predicted", "sequence"
    )

    def __init__(
        self,
        key: str,
        value: V,
        size: int,
        ttl: float,
        priority: int = CachePriority.MEDIUM,
        created_at: Optional[float] = None,
        predicted: bool = False,
        sequence: int = 0
    ):
        self.key = key
        self.value = value
        self.size = size
        self.priority = int(priority)
        self.created_at = time.time() if created_at is None else created_at
        self.last_accessed = self.created_at
        self.expires_at = self.created_at + ttl
        self.hit_count = 0
        self.predicted = predicted
        self.sequence = sequence

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if the entry has expired."""
        now = time.time() if now is None else now
        return now >= self.expires_at

    def touch(self, now: Optional[float] = None) -> None:
        """Record a read of this entry."""
        self.hit_count += 1
        self.last_accessed = time.time() if now is None else now

    def get_age(self, now: Optional[float] = None) -> float:
        """Seconds since the entry was created."""
        now = time.time() if now is None else now
        return now - self.created_at

    def get_ttl(self, now: Optional[float] = None) -> float:
        """Remaining time-to-live in seconds."""
        now = time.time() if now is None else now
        return max(0.0, self.expires_at - now)

    def __repr__(self) -> str:
        return (
            f"CacheEntry(key={self.key!r}, size={self.size}, priority={self.priority}, "
            f"hits={self.hit_count}, predicted={self.predicted})"
        )
