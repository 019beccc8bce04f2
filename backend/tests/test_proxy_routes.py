"""
Image proxy HTTP tests

    pytest tests/test_proxy_routes.py -v
"""

import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from image_proxy import ProxySettings, SlidingWindowRateLimiter
from main import create_app
from conftest import PNG_BYTES, build_gateway

AVATAR = "https://i.pravatar.cc/150"


def assert_error(response, status_code):
    assert response.status_code == status_code
    body = response.json()
    assert set(body) == {"error"}
    assert isinstance(body["error"], str) and body["error"]


class TestProxyImage:

    def test_miss_then_hit(self, client, upstream, gateway):
        first = client.get("/proxy/image", params={"url": AVATAR})

        assert first.status_code == 200
        assert first.content == PNG_BYTES
        assert first.headers["content-type"] == "image/png"
        assert first.headers["x-cache"] == "MISS"
        assert upstream.calls == 1
        assert AVATAR in gateway.cache

        second = client.get("/proxy/image", params={"url": AVATAR})

        assert second.status_code == 200
        assert second.content == first.content
        assert second.headers["x-cache"] == "HIT"
        assert upstream.calls == 1

    def test_success_headers(self, client):
        response = client.get("/proxy/image", params={"url": AVATAR})

        assert response.headers["cache-control"] == "public, max-age=3600"
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_api_proxy_alias(self, client, upstream):
        response = client.get("/api/proxy", params={"url": AVATAR})

        assert response.status_code == 200
        assert response.content == PNG_BYTES

    def test_missing_url_is_400(self, client):
        assert_error(client.get("/proxy/image"), 400)

    def test_malformed_url_is_400(self, client, upstream):
        assert_error(client.get("/proxy/image", params={"url": "definitely not a url"}), 400)
        assert upstream.calls == 0

    def test_disallowed_host_is_403_without_fetch(self, client, upstream):
        response = client.get("/proxy/image", params={"url": "https://evil.example.com/x.png"})

        assert_error(response, 403)
        assert upstream.calls == 0

    def test_disallowed_scheme_is_403(self, client, upstream):
        assert_error(client.get("/proxy/image", params={"url": "http://i.pravatar.cc/150"}), 403)
        assert upstream.calls == 0

    def test_upstream_failure_is_502_without_internal_details(self, client, upstream):
        def refuse(request):
            raise httpx.ConnectError("secret-internal-host:1234 refused", request=request)

        upstream.respond(AVATAR, refuse)
        response = client.get("/proxy/image", params={"url": AVATAR})

        assert_error(response, 502)
        assert "secret-internal-host" not in response.text

    def test_oversize_upstream_is_502(self, upstream, clock, limiter):
        settings = ProxySettings(max_response_bytes=16)
        gateway = build_gateway(upstream, clock, settings)
        upstream.respond(AVATAR, lambda request: httpx.Response(200, content=b"x" * 64))

        with TestClient(create_app(settings=settings, gateway=gateway, rate_limiter=limiter)) as client:
            response = client.get("/proxy/image", params={"url": AVATAR})

        assert_error(response, 502)
        assert len(gateway.cache) == 0

    def test_base64_deployment(self, upstream, clock, limiter):
        settings = ProxySettings(url_encoding="base64")
        gateway = build_gateway(upstream, clock, settings)
        encoded = base64.urlsafe_b64encode(AVATAR.encode()).decode()

        with TestClient(create_app(settings=settings, gateway=gateway, rate_limiter=limiter)) as client:
            response = client.get("/api/proxy", params={"url": encoded})

        assert response.status_code == 200
        assert AVATAR in gateway.cache


class TestRateLimit:

    def test_over_quota_is_429_before_gateway(self, upstream, clock, gateway, settings):
        limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60, clock=clock)
        app = create_app(settings=settings, gateway=gateway, rate_limiter=limiter)

        with TestClient(app) as client:
            assert client.get("/proxy/image", params={"url": AVATAR}).status_code == 200
            assert client.get("/proxy/image", params={"url": AVATAR}).status_code == 200
            response = client.get("/proxy/image", params={"url": "https://evil.example.com/x"})

        assert_error(response, 429)
        assert int(response.headers["retry-after"]) >= 1
        assert upstream.calls == 1

    def test_window_reset_allows_again(self, upstream, clock, gateway, settings):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        app = create_app(settings=settings, gateway=gateway, rate_limiter=limiter)

        with TestClient(app) as client:
            client.get("/proxy/image", params={"url": AVATAR})
            assert client.get("/proxy/image", params={"url": AVATAR}).status_code == 429
            clock.advance(61)
            assert client.get("/proxy/image", params={"url": AVATAR}).status_code == 200

    def test_other_routes_are_not_rate_limited(self, clock, gateway, settings):
        limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60, clock=clock)
        app = create_app(settings=settings, gateway=gateway, rate_limiter=limiter)

        with TestClient(app) as client:
            for _ in range(3):
                assert client.get("/health").status_code == 200


class TestCacheAdmin:

    def test_stats(self, client):
        client.get("/proxy/image", params={"url": AVATAR})
        client.get("/proxy/image", params={"url": AVATAR})

        stats = client.get("/api/image-proxy/stats").json()["stats"]

        assert stats["total_entries"] == 1
        assert stats["hits"] == 1
        assert stats["upstream_fetches"] == 1

    def test_cleanup_removes_only_expired(self, client, clock):
        client.get("/proxy/image", params={"url": AVATAR})
        clock.advance(1800)
        client.get("/proxy/image", params={"url": "https://www.gravatar.com/avatar/abc"})
        clock.advance(1800)

        body = client.post("/api/image-proxy/cleanup").json()

        assert body["removed_entries"] == 1
        assert body["current_stats"]["total_entries"] == 1

    def test_health(self, client):
        body = client.get("/api/image-proxy/health").json()

        assert body["status"] == "healthy"
        assert "i.pravatar.cc" in body["allowed_hosts"]


class TestAppRoutes:

    def test_index_is_plain_text(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")

    def test_security_headers_on_every_response(self, client):
        response = client.get("/health")

        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "DENY"

    def test_unknown_route_uses_error_shape(self, client):
        assert_error(client.get("/no/such/route"), 404)

    def test_cors_preflight_for_allowed_origin(self, client):
        response = client.options(
            "/api/users",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_control_character_in_url_is_400(client, upstream):
    response = client.get("/proxy/image", params={"url": "https://i.pravatar.cc/a\x7fb"})

    assert_error(response, 400)
    assert upstream.calls == 0
