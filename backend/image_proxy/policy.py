"""
URL allow-list policy for the image proxy.

Decodes the client-supplied reference, checks it against the configured
scheme/host/length rules and produces the normalized URL used as cache key.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import FrozenSet, Iterable
from urllib.parse import SplitResult, urlsplit, urlunsplit

from .config import ProxySettings
from .errors import Forbidden, InvalidReference

ALLOWED_SCHEME = "https"
DEFAULT_PORTS = {"https": 443}


@dataclass(frozen=True)
class AllowListPolicy:
    """Immutable validation rules, built once at startup."""

    allowed_hosts: FrozenSet[str]
    max_url_length: int = 512
    max_response_bytes: int = 5 * 1024 * 1024
    scheme: str = ALLOWED_SCHEME

    @classmethod
    def build(
        cls,
        hosts: Iterable[str],
        max_url_length: int = 512,
        max_response_bytes: int = 5 * 1024 * 1024,
    ) -> "AllowListPolicy":
        return cls(
            allowed_hosts=frozenset(h.strip().lower() for h in hosts if h.strip()),
            max_url_length=max_url_length,
            max_response_bytes=max_response_bytes,
        )

    @classmethod
    def from_settings(cls, settings: ProxySettings) -> "AllowListPolicy":
        return cls.build(
            settings.allowed_hosts,
            max_url_length=settings.max_url_length,
            max_response_bytes=settings.max_response_bytes,
        )

    def is_allowed_host(self, host: str) -> bool:
        return host.lower() in self.allowed_hosts

    def validate(self, url: str) -> str:
        """
        Validate a decoded URL and return its normalized form.

        Raises:
            InvalidReference: not an absolute URL, or longer than allowed.
            Forbidden: wrong scheme, host outside the allow-list, or userinfo present.
        """
        parsed = parse_absolute_url(url)

        if parsed.scheme.lower() != self.scheme:
            raise Forbidden(detail=f"scheme {parsed.scheme!r}")
        host = parsed.hostname or ""
        if not self.is_allowed_host(host):
            raise Forbidden(detail=f"host {host!r}")
        if parsed.username is not None or parsed.password is not None:
            raise Forbidden(detail="credentials in URL")

        if len(url) > self.max_url_length:
            raise InvalidReference(detail=f"length {len(url)} > {self.max_url_length}")

        return normalize_url(parsed)


def decode_reference(raw: str, encoding: str = "plain") -> str:
    """Turn the raw ``url`` query value into a URL string."""
    if raw is None or not raw.strip():
        raise InvalidReference(detail="empty reference")
    if encoding == "plain":
        return raw.strip()
    if encoding != "base64":
        raise ValueError(f"Unknown reference encoding: {encoding!r}")

    # '+' arrives as ' ' when the client forgot to percent-encode it
    text = raw.strip().replace(" ", "+").replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        decoded = base64.b64decode(text, validate=True)
        return decoded.decode("utf-8").strip()
    except (binascii.Error, ValueError) as e:
        raise InvalidReference(detail=f"base64 decode failed: {e}")


def parse_absolute_url(url: str) -> SplitResult:
    if not url or any(ch.isspace() or (ch.isascii() and not ch.isprintable()) for ch in url):
        raise InvalidReference(detail="empty URL, whitespace or control character in URL")
    try:
        parsed = urlsplit(url)
        # .port validates the port component lazily
        parsed.port
    except ValueError as e:
        raise InvalidReference(detail=str(e))
    if not parsed.scheme or not parsed.netloc or not parsed.hostname:
        raise InvalidReference(detail="not an absolute URL")
    return parsed


def normalize_url(parsed: SplitResult) -> str:
    """Canonical form: lowercase scheme/host, no default port, no fragment."""
    scheme = parsed.scheme.lower()
    host = parsed.hostname.lower()
    port = parsed.port
    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"
    path = parsed.path or "/"
    return urlunsplit((scheme, netloc, path, parsed.query, ""))
