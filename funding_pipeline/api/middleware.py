"""
Custom middleware for the FastAPI application.
Provides rate limiting, request logging, and security headers.
"""

import time
from typing import Callable, Dict, List

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

import structlog

from funding_pipeline.api.schemas.common import serialize_utc
from funding_pipeline.core.config import Settings
from funding_pipeline.models import utcnow


logger = structlog.get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        logger.debug(
            "Request started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.perf_counter() - start_time
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                process_time=process_time,
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": "INTERNAL_SERVER_ERROR",
                    "message": "An internal server error occurred",
                    "timestamp": serialize_utc(utcnow())
                }
            )

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.6f}"

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=process_time,
        )
        return response


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiting per client IP, in memory."""

    def __init__(
        self,
        app: FastAPI,
        max_requests: int = 100,
        window_seconds: int = 900,
        path_prefix: str = "/api"
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.path_prefix = path_prefix
        self.requests: Dict[str, List[float]] = {}

    def _get_client_key(self, request: Request) -> str:
        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _prune(self, client_key: str, now: float) -> List[float]:
        window_start = now - self.window_seconds
        recent = [t for t in self.requests.get(client_key, []) if t > window_start]
        if recent:
            self.requests[client_key] = recent
        else:
            self.requests.pop(client_key, None)
        return recent

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_key = self._get_client_key(request)
        now = time.time()
        recent = self._prune(client_key, now)

        if len(recent) >= self.max_requests:
            logger.warning(
                "Rate limit exceeded",
                client_key=client_key,
                path=request.url.path,
                method=request.method
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "RATE_LIMIT_EXCEEDED",
                    "message": f"Rate limit exceeded. Max {self.max_requests} requests per {self.window_seconds} seconds",
                    "timestamp": serialize_utc(utcnow())
                },
                headers={
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Window": str(self.window_seconds),
                    "Retry-After": str(int(self.window_seconds - (now - recent[0])) + 1)
                }
            )

        self.requests.setdefault(client_key, []).append(now)
        response = await call_next(request)

        remaining = self.max_requests - len(self.requests.get(client_key, []))
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, remaining))
        response.headers["X-RateLimit-Window"] = str(self.window_seconds)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers."""

    def __init__(self, app: FastAPI, api_version: str = "0.1.0"):
        super().__init__(app)
        self.api_version = api_version

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-API-Version"] = self.api_version
        return response


def add_middleware(app: FastAPI, settings: Settings) -> None:
    """Add all middleware to the FastAPI app."""
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Last added runs first
    app.add_middleware(SecurityHeadersMiddleware, api_version=settings.app_version)

    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitingMiddleware,
            max_requests=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window,
            path_prefix=settings.api_prefix
        )

    app.add_middleware(LoggingMiddleware)

    logger.debug("Middleware configured")
