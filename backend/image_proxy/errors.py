"""
Image Proxy Errors

Every failure of the gateway is raised as one of these exceptions.
The route layer turns them into ``{"error": <message>}`` JSON bodies,
so ``message`` must never contain internal details. Use ``detail`` for
anything that should only reach the logs.
"""

from typing import Optional


class ImageProxyError(Exception):
    """Base class for proxy failures."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class InvalidReference(ImageProxyError):
    """Malformed, undecodable, or over-length URL."""

    status_code = 400
    message = "Invalid or missing URL"


class Forbidden(ImageProxyError):
    """Scheme or host not on the allow-list."""

    status_code = 403
    message = "URL host or scheme is not allowed"


class UpstreamFetchFailed(ImageProxyError):
    """Network error, timeout or non-success response from the upstream."""

    status_code = 502
    message = "Failed to fetch image"


class UpstreamTooLarge(UpstreamFetchFailed):
    """Upstream body exceeded the configured byte limit."""

    message = "Upstream image exceeds size limit"


class RateLimited(ImageProxyError):
    """Raised by the boundary layer before the gateway is invoked."""

    status_code = 429
    message = "Too many requests, please try again later."

    def __init__(self, retry_after: int = 1, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = max(int(retry_after), 1)
