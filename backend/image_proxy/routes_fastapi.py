"""
Image Proxy API Routes

Provides endpoints for:
- Proxying allow-listed images (GET /proxy/image, GET /api/proxy)
- Cache statistics
- Cache maintenance (expired entry cleanup)

The gateway and rate limiter live on ``app.state`` (see main.create_app),
so every app instance gets its own cache.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response

from .gateway import ImageProxyGateway
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

# ============================================
# Router
# ============================================

router = APIRouter(tags=["Image Proxy"])


# ============================================
# Dependencies
# ============================================

def get_gateway(request: Request) -> ImageProxyGateway:
    return request.app.state.image_gateway


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request) -> None:
    """Reject over-quota clients before the gateway runs."""
    limiter: Optional[SlidingWindowRateLimiter] = getattr(request.app.state, "rate_limiter", None)
    if limiter is not None:
        limiter.hit(client_address(request))


# ============================================
# Endpoints
# ============================================

@router.get("/proxy/image", dependencies=[Depends(enforce_rate_limit)])
@router.get("/api/proxy", dependencies=[Depends(enforce_rate_limit)])
async def proxy_image(
    url: Optional[str] = Query(None, description="Image URL (plain or base64, per deployment)"),
    gateway: ImageProxyGateway = Depends(get_gateway),
):
    """
    Proxy an allow-listed image.

    Example:
        GET /proxy/image?url=https://i.pravatar.cc/150
    """
    image = await gateway.fetch_image(url)

    return Response(
        content=image.payload,
        media_type=image.content_type,
        headers={
            "X-Cache": "HIT" if image.cache_hit else "MISS",
            "Cache-Control": f"public, max-age={int(gateway.cache.cache_ttl_seconds)}",
            "Access-Control-Allow-Origin": "*",
            "X-Content-Type-Options": "nosniff",
        },
    )


@router.get("/api/image-proxy/stats")
async def get_cache_stats(gateway: ImageProxyGateway = Depends(get_gateway)):
    """Get cache statistics."""
    stats = gateway.cache.get_stats()
    stats["upstream_fetches"] = gateway.upstream_fetches
    return JSONResponse(content={
        "success": True,
        "stats": stats,
    })


@router.post("/api/image-proxy/cleanup")
async def cleanup_cache(gateway: ImageProxyGateway = Depends(get_gateway)):
    """
    Clean up expired cache entries.

    Reads already treat expired entries as absent; this only frees memory early.
    """
    removed = await gateway.cache.cleanup_expired()
    return JSONResponse(content={
        "success": True,
        "removed_entries": removed,
        "current_stats": gateway.cache.get_stats(),
    })


@router.get("/api/image-proxy/health")
async def health_check(gateway: ImageProxyGateway = Depends(get_gateway)):
    """Health check endpoint."""
    return JSONResponse(content={
        "status": "healthy",
        "service": "image-proxy",
        "allowed_hosts": sorted(gateway.policy.allowed_hosts),
        "cache_stats": gateway.cache.get_stats(),
    })
