"""
Resource loading and optimization.
"""

from snipecache.resources.models import Resource, ResourceStatus, ResourceType
from snipecache.resources.loader import HttpResourceFetcher
from snipecache.resources.optimizer import ResourceOptimizer, reencode_image
from snipecache.resources.viewport import ProximityObserver

__all__ = [
    'Resource',
    'ResourceStatus',
    'ResourceType',
    'HttpResourceFetcher',
    'ResourceOptimizer',
    'reencode_image',
    'ProximityObserver',
]
