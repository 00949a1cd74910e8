"""
Predictive cache warming.

The predictor learns which keys tend to follow each other, the scheduler runs
speculative loads with bounded concurrency, and the warmer connects both to a
cache store.
"""

from snipecache.warming.predictor import AccessPredictor, Prediction
from snipecache.warming.scheduler import PrefetchScheduler, PrefetchStats
from snipecache.warming.warmer import CacheWarmer, WarmupStats

__all__ = [
    'AccessPredictor',
    'Prediction',
    'PrefetchScheduler',
    'PrefetchStats',
    'CacheWarmer',
    'WarmupStats',
]
