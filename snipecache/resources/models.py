"""
Resource Models

Descriptions of the resources the engine loads, optimizes and prefetches.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


class ResourceType(str, Enum):
    """Kinds of resources with distinct optimization strategies."""
    IMAGE = "image"
    SCRIPT = "script"
    STYLE = "style"
    FONT = "font"
    DATA = "data"


class ResourceStatus(str, Enum):
    """Load state of a resource known to the optimizer."""
    PENDING = "pending"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(frozen=True)
class Resource:
    """
    A loadable resource.

    Attributes:
        id: Identifier, also used as the cache key
        url: Locator passed to the fetcher
        type: Resource type
        priority: Scheduling hint; prefetches carry the prediction probability
        size: Expected size in bytes, if known
    """
    id: str
    url: str
    type: ResourceType = ResourceType.DATA
    priority: float = 0.0
    size: Optional[int] = None

    def with_priority(self, priority: float) -> "Resource":
        return replace(self, priority=priority)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "type": self.type.value,
            "priority": self.priority,
            "size": self.size,
        }
