"""
Image Proxy Configuration

All settings come from environment variables so a deployment can pick its
own allow-list and limits without code changes:

    IMAGE_PROXY_ALLOWED_HOSTS     comma separated hostnames
    IMAGE_PROXY_URL_ENCODING      "plain" or "base64"
    IMAGE_PROXY_MAX_URL_LENGTH    max decoded URL length (chars)
    IMAGE_MAX_SIZE_MB             max upstream body size
    IMAGE_FETCH_TIMEOUT_SECONDS   upstream connect/read deadline
    IMAGE_CACHE_TTL_SECONDS       cache entry lifetime
    IMAGE_CACHE_MAX_ENTRIES       LRU entry bound
    IMAGE_CACHE_MAX_SIZE_MB       LRU byte bound
    IMAGE_PROXY_SINGLE_FLIGHT     share one fetch between concurrent misses
    RATE_LIMIT_MAX_REQUESTS       requests per client per window
    RATE_LIMIT_WINDOW_SECONDS     window length
    CORS_ALLOWED_ORIGINS          comma separated origins for the CORS layer
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

DEFAULT_ALLOWED_HOSTS = ("i.pravatar.cc", "www.gravatar.com", "secure.gravatar.com")
DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://localhost:5173")

URL_ENCODINGS = ("plain", "base64")

MB = 1024 * 1024


def _split_csv(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {raw!r}")


@dataclass(frozen=True)
class ProxySettings:
    """Process-wide configuration, read once at startup."""

    allowed_hosts: Tuple[str, ...] = DEFAULT_ALLOWED_HOSTS
    url_encoding: str = "plain"
    max_url_length: int = 512
    max_response_bytes: int = 5 * MB
    fetch_timeout: float = 5.0

    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 500
    cache_max_bytes: int = 100 * MB
    single_flight: bool = True

    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 15 * 60

    cors_allowed_origins: Tuple[str, ...] = field(default=DEFAULT_CORS_ORIGINS)

    def __post_init__(self):
        if self.url_encoding not in URL_ENCODINGS:
            raise ValueError(
                f"url_encoding must be one of {URL_ENCODINGS}, got {self.url_encoding!r}"
            )
        if not self.allowed_hosts:
            raise ValueError("allowed_hosts must not be empty")
        positive = {
            "max_url_length": self.max_url_length,
            "max_response_bytes": self.max_response_bytes,
            "fetch_timeout": self.fetch_timeout,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "cache_max_entries": self.cache_max_entries,
            "cache_max_bytes": self.cache_max_bytes,
            "rate_limit_max_requests": self.rate_limit_max_requests,
            "rate_limit_window_seconds": self.rate_limit_window_seconds,
        }
        for name, value in positive.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProxySettings":
        env = os.environ if environ is None else environ

        def get(name: str, default):
            raw = env.get(name)
            return default if raw is None or raw.strip() == "" else raw

        return cls(
            allowed_hosts=_split_csv(get("IMAGE_PROXY_ALLOWED_HOSTS", ",".join(DEFAULT_ALLOWED_HOSTS))),
            url_encoding=get("IMAGE_PROXY_URL_ENCODING", "plain").strip().lower(),
            max_url_length=int(get("IMAGE_PROXY_MAX_URL_LENGTH", "512")),
            max_response_bytes=int(float(get("IMAGE_MAX_SIZE_MB", "5")) * MB),
            fetch_timeout=float(get("IMAGE_FETCH_TIMEOUT_SECONDS", "5")),
            cache_ttl_seconds=int(get("IMAGE_CACHE_TTL_SECONDS", "3600")),
            cache_max_entries=int(get("IMAGE_CACHE_MAX_ENTRIES", "500")),
            cache_max_bytes=int(float(get("IMAGE_CACHE_MAX_SIZE_MB", "100")) * MB),
            single_flight=_parse_bool(get("IMAGE_PROXY_SINGLE_FLIGHT", "true")),
            rate_limit_max_requests=int(get("RATE_LIMIT_MAX_REQUESTS", "100")),
            rate_limit_window_seconds=int(get("RATE_LIMIT_WINDOW_SECONDS", "900")),
            cors_allowed_origins=_split_csv(get("CORS_ALLOWED_ORIGINS", ",".join(DEFAULT_CORS_ORIGINS))),
        )
