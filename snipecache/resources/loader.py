"""
Resource Loader

HTTP fetcher backed by a lazily created aiohttp session. Every attempt is
bounded by the configured request timeout; timeouts, client errors and
non-200 responses all surface as ``LoadFailedError``.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from snipecache.common.error_handling import LoadFailedError
from snipecache.resources.models import Resource

logger = logging.getLogger(__name__)


class HttpResourceFetcher:
    """Fetches resource bytes over HTTP."""

    def __init__(self, timeout: float = 10.0, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize the fetcher.

        Args:
            timeout: Total timeout of a single request, in seconds
            session: Session to use; one is created on first fetch if omitted
        """
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._initialize_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is not None:
            return self._session

        async with self._initialize_lock:
            if self._session is None:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                )
            return self._session

    async def fetch(self, resource: Resource) -> bytes:
        """
        Fetch the raw bytes of a resource.

        Raises:
            LoadFailedError: if the request fails, times out or returns non-200
        """
        session = await self._ensure_session()

        try:
            async with session.get(
                resource.url,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    raise LoadFailedError(
                        resource.id,
                        f"HTTP error {response.status}",
                        status_code=response.status
                    )
                data = await response.read()
        except asyncio.TimeoutError as e:
            raise LoadFailedError(resource.id, f"timed out after {self.timeout}s", cause=e) from e
        except aiohttp.ClientError as e:
            raise LoadFailedError(resource.id, str(e) or type(e).__name__, cause=e) from e

        logger.debug(f"Fetched {resource.id!r} ({len(data)} bytes)")
        return data

    async def __call__(self, resource: Resource) -> bytes:
        return await self.fetch(resource)

    async def close(self) -> None:
        """Close the session if this fetcher created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
