"""
Admin / observability endpoints
===============================

GET    /api/v1/admin/health     -- simple health check
GET    /api/v1/admin/geo-cache  -- geo cache size and hit statistics
DELETE /api/v1/admin/geo-cache  -- empty the geo cache
"""

from fastapi import APIRouter, Depends, Request

from cabcore.api.dependencies import require_admin
from cabcore.api.middleware import limiter
from cabcore.api.schemas import GeoCacheStatsResponse, HealthResponse
from cabcore.domain.entities import Actor
from cabcore.services import shared

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/geo-cache",
    response_model=GeoCacheStatsResponse,
    summary="Geo cache statistics",
)
@limiter.limit("100/minute")
async def geo_cache_stats(
    request: Request,
    actor: Actor = Depends(require_admin),
):
    return GeoCacheStatsResponse(**shared.geo_cache.stats())


@router.delete(
    "/geo-cache",
    response_model=GeoCacheStatsResponse,
    summary="Clear the geo cache",
)
@limiter.limit("10/minute")
async def clear_geo_cache(
    request: Request,
    actor: Actor = Depends(require_admin),
):
    shared.geo_cache.clear()
    return GeoCacheStatsResponse(**shared.geo_cache.stats())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
