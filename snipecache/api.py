"""
HTTP API for the cache engine.

Exposes statistics, predictions and prefetch control to dashboards. The engine
is read from ``app.state.engine``, which the application lifespan sets up.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from snipecache.engine import CacheEngine
from snipecache.resources.models import Resource, ResourceType

logger = logging.getLogger(__name__)

router = APIRouter()


class APIResponse:
    """Standard API response structure"""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        return {
            "status": "success",
            "message": message,
            "data": data
        }


class PrefetchRequest(BaseModel):
    """A resource to load speculatively."""
    id: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    type: ResourceType = ResourceType.DATA
    priority: float = Field(default=0.0, ge=0)
    size: Optional[int] = Field(default=None, ge=0)
    warmable: bool = Field(default=True, description="Also make the resource eligible for predictive warming")

    def to_resource(self) -> Resource:
        return Resource(id=self.id, url=self.url, type=self.type, priority=self.priority, size=self.size)


def get_engine(request: Request) -> CacheEngine:
    """Return the running engine, or fail with 503 if there is none."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cache engine is not running"
        )
    return engine


@router.get("/cache/stats", summary="Cache store statistics")
async def cache_stats(engine: CacheEngine = Depends(get_engine)) -> Dict[str, Any]:
    return APIResponse.success(engine.cache_stats().to_dict())


@router.get("/stats", summary="Statistics of every engine component")
async def engine_stats(engine: CacheEngine = Depends(get_engine)) -> Dict[str, Any]:
    return APIResponse.success(engine.stats())


@router.get("/predictions/{key:path}", summary="Predicted next accesses")
async def predictions(
    key: str,
    threshold: Optional[float] = Query(default=None, ge=0, le=1),
    engine: CacheEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """
    Predict the accesses likely to follow ``key``.

    Args:
        key: The current key
        threshold: Optional override of the configured probability threshold
    """
    predicted = engine.predict_next(key, threshold)
    return APIResponse.success({
        "key": key,
        "predictions": [p.to_dict() for p in predicted]
    })


@router.post("/prefetch", status_code=status.HTTP_202_ACCEPTED, summary="Queue a speculative load")
async def prefetch(
    request: PrefetchRequest,
    engine: CacheEngine = Depends(get_engine)
) -> Dict[str, Any]:
    resource = request.to_resource()
    if request.warmable:
        engine.register_resource(resource)

    queued = engine.enqueue_prefetch(resource)
    logger.info(f"Prefetch requested for {resource.id!r} (queued={queued})")

    message = "Prefetch queued" if queued else "Resource is already cached or scheduled"
    return APIResponse.success({"id": resource.id, "queued": queued}, message=message)


@router.delete("/cache/{key:path}", summary="Delete a cache entry")
async def delete_entry(key: str, engine: CacheEngine = Depends(get_engine)) -> Dict[str, Any]:
    if not engine.cache_delete(key):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Cache key not found: {key}"
        )
    return APIResponse.success({"key": key}, message="Entry deleted")


@router.delete("/cache", summary="Clear the cache")
async def clear_cache(engine: CacheEngine = Depends(get_engine)) -> Dict[str, Any]:
    engine.cache_clear()
    return APIResponse.success(message="Cache cleared")
