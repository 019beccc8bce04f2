"""
Image Proxy Gateway

Resolves a client image reference to image bytes:

1. Decode and validate the reference against the allow-list
2. Serve from cache when fresh
3. Otherwise fetch from upstream (bounded by timeout and body size)
4. Cache successful fetches, never failures

Concurrent misses on the same key share one upstream request when
single-flight is enabled.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import httpx

from .cache_manager import ImageCacheManager
from .config import ProxySettings
from .errors import InvalidReference, UpstreamFetchFailed, UpstreamTooLarge
from .policy import AllowListPolicy, decode_reference

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"

REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; avatar-proxy/1.0)",
    "Accept": "image/avif,image/webp,image/*,*/*;q=0.8",
}


@dataclass
class FetchedImage:
    """Gateway result handed to the route layer."""
    payload: bytes
    content_type: str
    cache_key: str
    cache_hit: bool


def build_http_client(fetch_timeout: float = 5.0) -> httpx.AsyncClient:
    """
    HTTP client for upstream fetches.

    Certificates are always verified and redirects are not followed,
    since a redirect target could be outside the allow-list.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(fetch_timeout),
        verify=True,
        follow_redirects=False,
        headers=REQUEST_HEADERS,
    )


def _parse_content_type(raw: Optional[str]) -> str:
    content_type = (raw or "").split(";")[0].strip().lower()
    return content_type or DEFAULT_CONTENT_TYPE


class ImageProxyGateway:
    """
    Usage:
        gateway = ImageProxyGateway.from_settings(ProxySettings.from_env())
        image = await gateway.fetch_image("https://i.pravatar.cc/150")
        await gateway.aclose()
    """

    def __init__(
        self,
        policy: AllowListPolicy,
        cache: ImageCacheManager,
        http_client: Optional[httpx.AsyncClient] = None,
        fetch_timeout: float = 5.0,
        url_encoding: str = "plain",
        single_flight: bool = True,
    ):
        self.policy = policy
        self.cache = cache
        self.fetch_timeout = fetch_timeout
        self.url_encoding = url_encoding
        self.single_flight = single_flight

        self._owns_client = http_client is None
        self.http_client = http_client or build_http_client(fetch_timeout)
        self._inflight: Dict[str, "asyncio.Task[Tuple[bytes, str]]"] = {}

        self.upstream_fetches = 0

    @classmethod
    def from_settings(
        cls,
        settings: ProxySettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ImageProxyGateway":
        cache = ImageCacheManager(
            cache_ttl_seconds=settings.cache_ttl_seconds,
            max_entries=settings.cache_max_entries,
            max_cache_size_bytes=settings.cache_max_bytes,
        )
        return cls(
            policy=AllowListPolicy.from_settings(settings),
            cache=cache,
            http_client=http_client,
            fetch_timeout=settings.fetch_timeout,
            url_encoding=settings.url_encoding,
            single_flight=settings.single_flight,
        )

    async def aclose(self) -> None:
        """Cancel in-flight fetches, then close the HTTP client if the gateway created it."""
        pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        if pending:
            logger.info(f"[ImageProxy] Cancelling {len(pending)} in-flight fetches")
            await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()
        if self._owns_client:
            await self.http_client.aclose()

    def resolve(self, raw_reference: Optional[str]) -> Tuple[str, str]:
        """
        Decode and validate a reference.

        Returns:
            Tuple of (decoded_url, cache_key).
        """
        url = decode_reference(raw_reference, self.url_encoding)
        return url, self.policy.validate(url)

    async def fetch_image(self, raw_reference: Optional[str]) -> FetchedImage:
        """
        Resolve a client reference to image bytes.

        Raises:
            InvalidReference, Forbidden: the reference failed validation.
            UpstreamFetchFailed: the upstream fetch failed (incl. UpstreamTooLarge).
        """
        _, key = self.resolve(raw_reference)

        cached = await self.cache.get(key)
        if cached is not None:
            payload, content_type = cached
            logger.debug(f"[ImageProxy] Cache hit: {key[:60]}")
            return FetchedImage(payload, content_type, key, cache_hit=True)

        if self.single_flight:
            payload, content_type = await self._fetch_shared(key)
        else:
            payload, content_type = await self._fetch_and_store(key)
        return FetchedImage(payload, content_type, key, cache_hit=False)

    async def _fetch_shared(self, key: str) -> Tuple[bytes, str]:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_and_store(key))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"[ImageProxy] Joining in-flight fetch: {key[:60]}")
        # shield: one cancelled waiter must not cancel the fetch for the others
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Task") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # mark the exception as retrieved even if every waiter went away
            task.exception()

    async def _fetch_and_store(self, key: str) -> Tuple[bytes, str]:
        payload, content_type = await self._fetch_upstream(key)
        await self.cache.put(key, payload, content_type)
        logger.info(f"[ImageProxy] Proxied: {key[:60]} ({len(payload)} bytes)")
        return payload, content_type

    async def _fetch_upstream(self, url: str) -> Tuple[bytes, str]:
        self.upstream_fetches += 1
        logger.info(f"[ImageProxy] Fetching: {url[:80]}")
        try:
            return await asyncio.wait_for(self._download(url), timeout=self.fetch_timeout)
        except UpstreamFetchFailed as e:
            logger.error(f"[ImageProxy] {e}: {url[:60]}")
            raise
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.error(f"[ImageProxy] Timeout after {self.fetch_timeout}s: {url[:60]}")
            raise UpstreamFetchFailed(detail="timeout")
        except httpx.InvalidURL as e:
            logger.warning(f"[ImageProxy] Rejected by HTTP client: {e}")
            raise InvalidReference(detail=str(e))
        except httpx.HTTPError as e:
            logger.error(f"[ImageProxy] Fetch error: {e!r} for {url[:60]}")
            raise UpstreamFetchFailed(detail=type(e).__name__)

    async def _download(self, url: str) -> Tuple[bytes, str]:
        limit = self.policy.max_response_bytes

        async with self.http_client.stream("GET", url) as response:
            if not response.is_success:
                raise UpstreamFetchFailed(detail=f"upstream status {response.status_code}")

            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > limit:
                raise UpstreamTooLarge(detail=f"declared {declared} bytes > {limit}")

            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > limit:
                    raise UpstreamTooLarge(detail=f"body exceeded {limit} bytes")
                chunks.append(chunk)

            return b"".join(chunks), _parse_content_type(response.headers.get("content-type"))
