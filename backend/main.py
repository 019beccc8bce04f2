"""
Avatar Proxy API

FastAPI application wiring:
- Image proxy routes (allow-listed, cached, rate limited)
- In-memory user directory routes
- CORS + security headers
- JSON error bodies of the form {"error": "<message>"}

Run:
    cd backend
    python main.py
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from image_proxy import (
    ImageProxyError,
    ImageProxyGateway,
    ProxySettings,
    RateLimited,
    SlidingWindowRateLimiter,
    router as image_proxy_router,
)
from users import UserStore, users_router

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def _error(status_code: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RateLimited)
    async def handle_rate_limited(request: Request, exc: RateLimited):
        return _error(exc.status_code, exc.message, {"Retry-After": str(exc.retry_after)})

    @app.exception_handler(ImageProxyError)
    async def handle_proxy_error(request: Request, exc: ImageProxyError):
        logger.warning(f"[ImageProxy] {request.url.path} -> {exc.status_code}: {exc}")
        return _error(exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return _error(exc.status_code, message, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
            message = first.get("msg", "Invalid request")
            message = f"{field}: {message}" if field else message
        else:
            message = "Invalid request"
        return _error(400, message)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return _error(500, "Internal server error")


def create_app(
    settings: Optional[ProxySettings] = None,
    gateway: Optional[ImageProxyGateway] = None,
    user_store: Optional[UserStore] = None,
    rate_limiter: Optional[SlidingWindowRateLimiter] = None,
) -> FastAPI:
    """
    Build the application. Tests pass their own gateway / store / limiter.
    """
    settings = settings or ProxySettings.from_env()
    gateway = gateway or ImageProxyGateway.from_settings(settings)
    rate_limiter = rate_limiter or SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"[ImageProxy] Allowed hosts: {', '.join(sorted(gateway.policy.allowed_hosts))}, "
            f"url encoding: {gateway.url_encoding}"
        )
        yield
        await gateway.aclose()

    app = FastAPI(title="Avatar Proxy API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.image_gateway = gateway
    app.state.rate_limiter = rate_limiter
    app.state.user_store = user_store if user_store is not None else UserStore()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allowed_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    register_error_handlers(app)

    app.include_router(image_proxy_router)
    app.include_router(users_router)

    @app.get("/", response_class=PlainTextResponse)
    async def index():
        return "Avatar Proxy API is running"

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "avatar-proxy"}

    return app


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3000"))
    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
