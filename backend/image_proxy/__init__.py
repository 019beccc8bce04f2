"""
Image Proxy Module

Proxies avatar images from an allow-list of hosts so browsers can load
them without CORS or mixed-content issues.

Features:
- Host/scheme/length allow-list, plain or base64 `url` parameter
- In-memory TTL cache with LRU eviction
- Bounded upstream fetch (timeout, body size, TLS verified)
- Per-client sliding window rate limiting
"""

from .routes_fastapi import router
from .cache_manager import ImageCacheManager
from .config import ProxySettings
from .errors import (
    ImageProxyError,
    InvalidReference,
    Forbidden,
    UpstreamFetchFailed,
    UpstreamTooLarge,
    RateLimited,
)
from .gateway import ImageProxyGateway, FetchedImage
from .policy import AllowListPolicy
from .rate_limiter import SlidingWindowRateLimiter

__all__ = [
    "router",
    "ImageCacheManager",
    "ProxySettings",
    "ImageProxyError",
    "InvalidReference",
    "Forbidden",
    "UpstreamFetchFailed",
    "UpstreamTooLarge",
    "RateLimited",
    "ImageProxyGateway",
    "FetchedImage",
    "AllowListPolicy",
    "SlidingWindowRateLimiter",
]
