"""Security middleware for the API.

This module provides rate limiting and security headers.
"""

from typing import Callable

from fastapi import FastAPI, Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from floworx.core.config import settings
from floworx.core.errors import error_response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Add security headers to the response."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=()"
        )

        # JSON API only, nothing here should ever be framed or execute scripts
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # HSTS - only in production (requires HTTPS)
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        # Auth responses carry session tokens
        if request.url.path.startswith("/api/auth") or request.url.path.startswith("/api/password-reset"):
            response.headers["Cache-Control"] = "no-store"

        return response


# Route decorators need the limiter at import time, so it lives at module level.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
    headers_enabled=False,
)

# Limits per endpoint (slowapi syntax)
LOGIN_RATE_LIMIT = "10/minute"
REGISTER_RATE_LIMIT = "5/minute"
PASSWORD_RESET_RATE_LIMIT = "3/15minutes"


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """429 in the standard error shape."""
    return error_response(
        429,
        {"code": "RATE_LIMITED", "message": "Too many attempts. Please wait and try again."},
    )


def configure_rate_limiting(app: FastAPI) -> Limiter:
    """
    Attach the limiter to the application.

    Args:
        app: The FastAPI application instance

    Returns:
        The configured Limiter instance
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    return limiter


def add_security_headers(app: FastAPI) -> None:
    """
    Add security headers middleware to the application.

    Args:
        app: The FastAPI application instance
    """
    app.add_middleware(SecurityHeadersMiddleware)
