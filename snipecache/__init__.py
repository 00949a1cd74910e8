"""
snipecache - adaptive caching and prefetch engine.

A policy-driven in-memory object cache bounded by byte and entry budgets,
with background warming driven by a first-order access predictor.
"""

__version__ = "0.1.0"
