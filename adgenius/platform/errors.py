"""
Error shapes for the licensing API.

Every failure a client sees has the body
    {"error": {"code": ..., "message": ..., "details": {...}}}
and an X-Correlation-ID header that matches the server log line. Stack
traces and exception text from unexpected failures stay in the log.

Status codes in use:
- 400: malformed request values (negative credit cost)
- 401: missing or invalid bearer token; forged IPN (internal only)
- 402: feature or credits need an upgrade
- 404: license stats for an account without licenses
- 422: unknown catalog product
- 500: anything unexpected
- 503: storage unavailable; safe to retry
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class AppError(Exception):
    """
    Base for every error that maps onto an HTTP response.

    code is the stable machine-readable identifier clients switch on;
    message is safe to show to the end user.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return error_body(self.code, self.message, self.details)


class ValidationError(AppError):
    """Request value the licensing rules reject (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthenticationError(AppError):
    """Bearer token missing, malformed, expired or without a user claim (401)."""

    def __init__(self, message: str = "Authentication required", details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="AUTHENTICATION_ERROR",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


def error_body(code: str, message: str, details: Optional[dict[str, Any]] = None) -> dict:
    return {"error": {"code": code, "message": message, "details": details or {}}}


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """Caller-supplied header wins, then the id stamped by the middleware, then a new one."""
    correlation_id = request.headers.get(CORRELATION_HEADER)
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


def app_error_response(error: AppError, correlation_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content=error.to_dict(),
        headers={CORRELATION_HEADER: correlation_id},
    )


def _request_context(request: Request, correlation_id: str) -> dict[str, Any]:
    return {
        "correlation_id": correlation_id,
        "path": request.url.path,
        "method": request.method,
    }


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Outermost guard for the licensing routes.

    Stamps a correlation id on every response. Licensing and auth errors
    keep their code and status; HTTPExceptions become HTTP_ERROR; anything
    else is logged with its traceback and answered with a bare 500.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response

        except AppError as e:
            logger.warning(
                "Licensing API error",
                extra={
                    **_request_context(request, correlation_id),
                    "error_code": e.code,
                    "status_code": e.status_code,
                },
            )
            return app_error_response(e, correlation_id)

        except HTTPException as e:
            logger.warning(
                "HTTP exception",
                extra={
                    **_request_context(request, correlation_id),
                    "status_code": e.status_code,
                    "detail": e.detail,
                },
            )
            return JSONResponse(
                status_code=e.status_code,
                content=error_body("HTTP_ERROR", str(e.detail)),
                headers={CORRELATION_HEADER: correlation_id},
            )

        except Exception as e:
            logger.exception(
                "Unhandled exception in licensing API",
                extra={**_request_context(request, correlation_id), "error_type": type(e).__name__},
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=error_body(
                    "INTERNAL_ERROR",
                    "An unexpected error occurred",
                    {"correlation_id": correlation_id},
                ),
                headers={CORRELATION_HEADER: correlation_id},
            )
