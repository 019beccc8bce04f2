"""
Shared pytest fixtures.

Upstream image hosts are replaced by ``httpx.MockTransport`` so no test
touches the network. Time is driven by ``FakeClock`` so TTL and rate
window behaviour is deterministic.
"""

import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_proxy import (
    AllowListPolicy,
    ImageCacheManager,
    ImageProxyGateway,
    ProxySettings,
    SlidingWindowRateLimiter,
)
from main import create_app
from users import UserStore


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """
    Records every upstream request and answers from a table.

    Unknown URLs get a small PNG. Register a callable to control the
    response (or raise transport errors) for a given URL.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.responses: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    @property
    def calls(self) -> int:
        return len(self.requests)

    def respond(self, url: str, handler: Callable) -> None:
        self.responses[url] = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.responses.get(str(request.url))
        if handler is None:
            return httpx.Response(200, content=PNG_BYTES, headers={"Content-Type": "image/png"})
        result = handler(request)
        if not isinstance(result, httpx.Response):
            result = await result
        return result

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def settings():
    return ProxySettings()


def build_gateway(
    upstream: FakeUpstream,
    clock: FakeClock,
    settings: Optional[ProxySettings] = None,
) -> ImageProxyGateway:
    settings = settings or ProxySettings()
    cache = ImageCacheManager(
        cache_ttl_seconds=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        max_cache_size_bytes=settings.cache_max_bytes,
        clock=clock,
    )
    return ImageProxyGateway(
        policy=AllowListPolicy.from_settings(settings),
        cache=cache,
        http_client=upstream.client(),
        fetch_timeout=settings.fetch_timeout,
        url_encoding=settings.url_encoding,
        single_flight=settings.single_flight,
    )


@pytest.fixture
def gateway(upstream, clock, settings):
    return build_gateway(upstream, clock, settings)


@pytest.fixture
def limiter(clock):
    return SlidingWindowRateLimiter(max_requests=100, window_seconds=900, clock=clock)


@pytest.fixture
def app(settings, gateway, limiter):
    return create_app(settings=settings, gateway=gateway, user_store=UserStore(), rate_limiter=limiter)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
