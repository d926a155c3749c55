"""Error taxonomy for the write path.

Every error carries a stable ``kind`` string that clients can branch on, an
HTTP status and a human-readable message. Handlers registered in
``install_error_handlers`` render them as ``{"error": {"kind", "message"}}``;
internal details (tracebacks, SQL) are logged, never returned.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from math import ceil
from typing import Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Invoice not found"


class AppError(Exception):
    kind = "app_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def headers(self) -> Dict[str, str]:
        return {}

    def body(self) -> dict:
        payload = {"kind": self.kind, "message": self.message}
        if self.retryable:
            payload["retryable"] = True
        return {"error": payload}


class ValidationError(AppError):
    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class AuthenticationError(AppError):
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized. Please log in."

    def headers(self) -> Dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class NotFoundError(AppError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class AuthorizationError(NotFoundError):
    """Ownership failure rendered exactly like a missing resource."""

    default_message = NOT_FOUND_MESSAGE


class CsrfRejectedError(AppError):
    kind = "csrf_rejected"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Invalid request origin"


class RateLimitedError(AppError):
    kind = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later."

    def __init__(self, reset_at: datetime, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at

    def headers(self) -> Dict[str, str]:
        remaining = (self.reset_at - datetime.now(timezone.utc)).total_seconds()
        return {
            "Retry-After": str(max(0, ceil(remaining))),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }

    def body(self) -> dict:
        payload = super().body()
        payload["error"]["reset_at"] = self.reset_at.isoformat()
        return payload


class OverpaymentError(AppError):
    kind = "overpayment"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Payment exceeds the remaining balance"


class InvalidStateError(AppError):
    kind = "invalid_state"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Action not allowed for the invoice's current status"


class FileRejectedError(AppError):
    kind = "file_rejected"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "File rejected"

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason

    def body(self) -> dict:
        payload = super().body()
        if self.reason:
            payload["error"]["reason"] = self.reason
        return payload


class FileTooLargeError(FileRejectedError):
    kind = "file_too_large"
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    default_message = "File is too large"


class StorageError(AppError):
    kind = "storage_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "Storage is temporarily unavailable, please retry"


class ExternalServiceError(AppError):
    kind = "external_service_error"
    status_code = status.HTTP_502_BAD_GATEWAY
    retryable = True
    default_message = "An external service failed, please retry"


class LedgerIntegrityError(AppError):
    kind = "ledger_integrity"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Ledger consistency check failed"


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationError.default_message
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("app_error kind=%s path=%s message=%s", exc.kind, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=exc.headers())

    @app.exception_handler(RequestValidationError)
    async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError(_validation_message(exc))
        return JSONResponse(status_code=error.status_code, content=error.body())

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error path=%s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": {"kind": "internal_error", "message": "Internal server error"}},
        )
