"""
Custom middleware for security headers and request logging.
"""
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .logging_config import api_logger


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON API, nothing to embed
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its status and duration."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        api_logger.info(
            f"{request.method} {request.url.path}",
            status_code=response.status_code,
            duration_ms=round(process_time * 1000, 2),
            workspace_id=request.headers.get("x-workspace-id"),
        )

        response.headers["X-Process-Time"] = str(process_time)
        return response
