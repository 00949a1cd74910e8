"""
Shared fixtures for the cache engine tests.
"""

from typing import List

import pytest

from snipecache.resources.models import Resource


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def resources():
    """Five data resources r0..r4."""
    return [Resource(f"r{i}", f"https://cdn.example.com/r{i}") for i in range(5)]
