"""
Application error taxonomy and FastAPI exception handlers.

Every error response has the same shape:

    {"success": false, "error": {"code": "...", "message": "..."}}

Services raise the FloWorxError subclasses below; routes never build error
responses by hand. Anything unrecognized becomes a generic 500 so raw
exception text never reaches the client.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class FloWorxError(Exception):
    """Base class for errors that map to a structured HTTP response."""

    status_code = 500
    code = "INTERNAL"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class ValidationError(FloWorxError):
    """Malformed or missing input (400)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class WeakPasswordError(ValidationError):
    code = "WEAK_PASSWORD"


class InvalidTokenError(ValidationError):
    """Password reset token unknown or already used."""

    code = "INVALID_TOKEN"


class ExpiredTokenError(ValidationError):
    code = "TOKEN_EXPIRED"


class AuthenticationError(FloWorxError):
    """Bad credentials, or missing/expired/invalid session token (401)."""

    status_code = 401
    code = "UNAUTHORIZED"


class NotFoundError(FloWorxError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(FloWorxError):
    """Duplicate email, duplicate category, or delete blocked by dependents (409)."""

    status_code = 409
    code = "CONFLICT"


class ProviderError(FloWorxError):
    """
    Upstream mailbox or OAuth provider failure.

    Retryable failures (timeouts, rate limits, 5xx) map to 503 so the client
    knows to try again; everything else maps to 502.
    """

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
        provider: Optional[str] = None,
    ):
        super().__init__(
            message,
            code=code,
            status_code=503 if retryable else 502,
            extra={"retryable": retryable},
        )
        self.retryable = retryable
        self.provider = provider


class ProviderNotImplementedError(FloWorxError):
    """Requested capability is not available for this provider (501)."""

    status_code = 501
    code = "NOT_IMPLEMENTED"

    def __init__(self, provider: str, operation: str):
        super().__init__(
            f"{operation} is not supported for {provider} yet",
            extra={"status": "not_implemented", "provider": provider, "operation": operation},
        )
        self.provider = provider
        self.operation = operation


def error_response(status_code: int, error: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": jsonable_encoder(error)},
    )


async def floworx_error_handler(request: Request, exc: FloWorxError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
            extra={"code": exc.code, "path": request.url.path},
        )
    return error_response(exc.status_code, exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Turn FastAPI/pydantic validation failures into a 400 with a readable message."""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        msg = str(first.get("msg", "")).removeprefix("Value error, ")
        message = f"{field}: {msg}" if field else msg

    details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors]
    return error_response(400, {"code": "VALIDATION_ERROR", "message": message, "details": details})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}.get(
        exc.status_code, "HTTP_ERROR"
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": {"code": code, "message": str(exc.detail)}},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}",
        extra={"path": request.url.path},
        exc_info=exc,
    )
    return error_response(500, {"code": "INTERNAL", "message": GENERIC_ERROR_MESSAGE})


def register_error_handlers(app: FastAPI) -> None:
    """
    Register the structured error handlers on the application.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(FloWorxError, floworx_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
