"""
Tests for resource loading, optimization and viewport proximity.
"""

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from PIL import Image

from snipecache.cache.store import CacheStore
from snipecache.common.error_handling import LoadFailedError
from snipecache.resources.loader import HttpResourceFetcher
from snipecache.resources.models import Resource, ResourceStatus, ResourceType
from snipecache.resources.optimizer import ResourceOptimizer, reencode_image
from snipecache.resources.viewport import ProximityObserver


def make_bitmap() -> bytes:
    """A 256x256 gradient stored as an uncompressed BMP (~196 KB)."""
    image = Image.linear_gradient("L").convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="BMP")
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, status=200, body=b""):
        self.status = status
        self._body = body

    async def read(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Minimal stand-in for aiohttp.ClientSession."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requested = []
        self.close = AsyncMock()

    def get(self, url, timeout=None):
        self.requested.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response


# Fetcher

@pytest.mark.asyncio
async def test_fetch_returns_body():
    session = FakeSession(FakeResponse(200, b"payload"))
    fetcher = HttpResourceFetcher(timeout=2.5, session=session)

    data = await fetcher.fetch(Resource("r", "https://cdn.example.com/r"))

    assert data == b"payload"
    url, timeout = session.requested[0]
    assert url == "https://cdn.example.com/r"
    assert timeout.total == 2.5


@pytest.mark.asyncio
async def test_fetch_non_200_raises():
    fetcher = HttpResourceFetcher(session=FakeSession(FakeResponse(404)))

    with pytest.raises(LoadFailedError) as exc_info:
        await fetcher.fetch(Resource("r", "https://cdn.example.com/r"))

    assert exc_info.value.status_code == 404
    assert exc_info.value.resource_id == "r"


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    aiohttp.ClientConnectionError("connection refused"),
    asyncio.TimeoutError(),
])
async def test_fetch_transport_errors_raise(error):
    fetcher = HttpResourceFetcher(session=FakeSession(error=error))

    with pytest.raises(LoadFailedError) as exc_info:
        await fetcher(Resource("r", "https://cdn.example.com/r"))

    assert exc_info.value.cause is error


@pytest.mark.asyncio
async def test_close_leaves_injected_session_open():
    session = FakeSession()
    fetcher = HttpResourceFetcher(session=session)

    await fetcher.close()

    session.close.assert_not_called()


# Optimizer

@pytest.mark.asyncio
async def test_load_passes_data_through():
    fetcher = AsyncMock(return_value=b'{"rows": []}')
    optimizer = ResourceOptimizer(fetcher)
    resource = Resource("data", "https://api.example.com/data")

    assert await optimizer.load(resource) == b'{"rows": []}'
    assert optimizer.status("data") == ResourceStatus.LOADED
    assert optimizer.stats() == {"total": 1, "loaded": 1, "failed": 0, "optimized": 0}


@pytest.mark.asyncio
async def test_small_image_is_untouched():
    optimizer = ResourceOptimizer(AsyncMock(return_value=b"tiny"))

    result = await optimizer.load(Resource("img", "https://cdn.example.com/img", ResourceType.IMAGE))

    assert result == b"tiny"
    assert optimizer.stats()["optimized"] == 0


@pytest.mark.asyncio
async def test_large_image_is_reencoded_as_jpeg():
    bitmap = make_bitmap()
    optimizer = ResourceOptimizer(AsyncMock(return_value=bitmap), image_quality=0.8)

    result = await optimizer.load(Resource("img", "https://cdn.example.com/img.bmp", ResourceType.IMAGE))

    assert result[:2] == b"\xff\xd8"
    assert len(result) < len(bitmap)
    assert optimizer.stats()["optimized"] == 1


@pytest.mark.asyncio
async def test_undecodable_image_passes_through():
    garbage = b"not an image" * 10
    optimizer = ResourceOptimizer(AsyncMock(return_value=garbage), compression_threshold=10)

    result = await optimizer.load(Resource("img", "https://cdn.example.com/img", ResourceType.IMAGE))

    assert result == garbage
    assert optimizer.status("img") == ResourceStatus.LOADED


def test_reencode_image_respects_quality():
    bitmap = make_bitmap()
    low = reencode_image(bitmap, 0.1)
    high = reencode_image(bitmap, 0.95)
    assert len(low) < len(high)


@pytest.mark.asyncio
async def test_custom_strategy():
    optimizer = ResourceOptimizer(AsyncMock(return_value=b"  body { }  "))

    async def strip(resource, data):
        return data.strip()

    optimizer.register_strategy(ResourceType.STYLE, strip)

    result = await optimizer.load(Resource("css", "https://cdn.example.com/site.css", ResourceType.STYLE))
    assert result == b"body { }"


@pytest.mark.asyncio
async def test_load_failure_propagates():
    error = LoadFailedError("r", "HTTP error 500", status_code=500)
    optimizer = ResourceOptimizer(AsyncMock(side_effect=error))

    with pytest.raises(LoadFailedError):
        await optimizer.load(Resource("r", "https://cdn.example.com/r"))

    assert optimizer.status("r") == ResourceStatus.FAILED
    assert optimizer.stats()["failed"] == 1


@pytest.mark.asyncio
async def test_unexpected_fetch_errors_are_wrapped():
    optimizer = ResourceOptimizer(AsyncMock(side_effect=RuntimeError("socket closed")))

    with pytest.raises(LoadFailedError) as exc_info:
        await optimizer.load(Resource("r", "https://cdn.example.com/r"))

    assert isinstance(exc_info.value.cause, RuntimeError)


@pytest.mark.asyncio
async def test_failing_strategy_marks_resource_failed():
    optimizer = ResourceOptimizer(AsyncMock(return_value=b"body { }"))

    async def broken(resource, data):
        raise KeyError("missing rule")

    optimizer.register_strategy(ResourceType.STYLE, broken)

    with pytest.raises(LoadFailedError) as exc_info:
        await optimizer.load(Resource("css", "https://cdn.example.com/site.css", ResourceType.STYLE))

    assert isinstance(exc_info.value.cause, KeyError)
    assert optimizer.status("css") == ResourceStatus.FAILED
    assert not optimizer.is_loading("css")
    assert optimizer.stats()["failed"] == 1
    assert optimizer.stats()["loaded"] == 0


@pytest.mark.asyncio
async def test_request_retries_failing_strategy(clock, sleep):
    store = CacheStore(clock=clock)
    optimizer = ResourceOptimizer(AsyncMock(return_value=b"body { }"), store=store, load_retries=1, sleep=sleep)

    async def broken(resource, data):
        raise ValueError("bad stylesheet")

    optimizer.register_strategy(ResourceType.STYLE, broken)

    with pytest.raises(LoadFailedError) as exc_info:
        await optimizer.request(Resource("css", "https://cdn.example.com/site.css", ResourceType.STYLE))

    assert exc_info.value.resource_id == "css"
    assert sleep.delays == [1.0]
    assert "css" not in store


@pytest.mark.asyncio
async def test_request_serves_from_cache(clock):
    store = CacheStore(clock=clock)
    store.set("r", b"cached")
    fetcher = AsyncMock()
    optimizer = ResourceOptimizer(fetcher, store=store)

    assert await optimizer.request(Resource("r", "https://cdn.example.com/r")) == b"cached"
    fetcher.assert_not_called()


@pytest.mark.asyncio
async def test_request_retries_then_caches(clock, sleep):
    store = CacheStore(clock=clock)
    fetcher = AsyncMock(side_effect=[
        LoadFailedError("r", "HTTP error 503", status_code=503),
        LoadFailedError("r", "HTTP error 503", status_code=503),
        b"fresh",
    ])
    optimizer = ResourceOptimizer(fetcher, store=store, load_retries=3, retry_delay=1.0, sleep=sleep)

    assert await optimizer.request(Resource("r", "https://cdn.example.com/r")) == b"fresh"

    assert sleep.delays == [1.0, 2.0]
    assert store.get("r").value == b"fresh"


@pytest.mark.asyncio
async def test_request_raises_after_retries(sleep):
    fetcher = AsyncMock(side_effect=LoadFailedError("r", "HTTP error 503", status_code=503))
    optimizer = ResourceOptimizer(fetcher, load_retries=2, retry_delay=0.5, sleep=sleep)

    with pytest.raises(LoadFailedError) as exc_info:
        await optimizer.request(Resource("r", "https://cdn.example.com/r"))

    assert fetcher.await_count == 3
    assert exc_info.value.resource_id == "r"


# Viewport

def _observer(**kwargs):
    on_enter = MagicMock()
    observer = ProximityObserver(on_enter, margin=1000, **kwargs)
    observer.observe(Resource("top", "u"), top=0, height=200)
    observer.observe(Resource("near", "u"), top=1500, height=200)
    observer.observe(Resource("far", "u"), top=5000, height=200)
    return observer, on_enter


def _ids(resources):
    return [r.id for r in resources]


def test_resources_within_margin_trigger():
    observer, on_enter = _observer()

    assert _ids(observer.update_viewport(0, 800)) == ["top", "near"]
    assert on_enter.call_count == 2


def test_resources_trigger_once_per_entry():
    observer, on_enter = _observer()
    observer.update_viewport(0, 800)

    assert observer.update_viewport(100, 800) == []
    assert _ids(observer.update_viewport(4000, 800)) == ["far"]
    assert _ids(observer.update_viewport(0, 800)) == ["top", "near"]


def test_settled_resources_are_skipped():
    observer, on_enter = _observer(is_settled=lambda resource_id: resource_id == "top")

    assert _ids(observer.update_viewport(0, 800)) == ["near"]


def test_unobserve_and_disconnect():
    observer, on_enter = _observer()

    assert observer.unobserve("near")
    assert not observer.unobserve("near")
    assert _ids(observer.update_viewport(0, 800)) == ["top"]

    observer.disconnect()
    assert observer.observed() == []


def test_failing_callback_does_not_stop_others():
    observer = ProximityObserver(MagicMock(side_effect=RuntimeError("boom")), margin=0)
    observer.observe(Resource("a", "u"), top=0, height=10)
    observer.observe(Resource("b", "u"), top=20, height=10)

    assert _ids(observer.update_viewport(0, 100)) == ["a", "b"]
