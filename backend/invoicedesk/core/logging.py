from __future__ import annotations

import json
import logging
import re
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware

from invoicedesk.core.security import token_user_id

CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "client_ip",
    "invoice_id",
    "path",
    "method",
    "status_code",
    "latency_ms",
)

# Denials worth a line on the security logger, keyed by response status.
SECURITY_STATUSES = {
    403: "origin_rejected",
    404: "invoice_hidden_or_missing",
    429: "throttled",
}

_INVOICE_PATH = re.compile(r"^/api/invoices/(\d+)")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler], force=True)


def _token_user_id(request: Request) -> Optional[int]:
    """Best-effort user id for log lines; never raises and never authenticates."""
    auth_header = request.headers.get("authorization") or ""
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        return token_user_id(token.strip())
    except (JWTError, ValueError, TypeError):
        return None


def _invoice_id(path: str) -> Optional[int]:
    match = _INVOICE_PATH.match(path)
    return int(match.group(1)) if match else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One JSON line per request, tagged with ``X-Request-Id`` (generated when absent)."""

    def __init__(self, app, logger_name: str = "request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)
        self.security_logger = logging.getLogger("security")

    def _context(self, request: Request, request_id: str, started: float) -> dict[str, Any]:
        client = request.client.host if request.client else None
        return {
            "request_id": request_id,
            "user_id": _token_user_id(request),
            "client_ip": client,
            "invoice_id": _invoice_id(request.url.path),
            "path": request.url.path,
            "method": request.method,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self.logger.exception("unhandled_exception", extra=self._context(request, request_id, started))
            raise

        context = self._context(request, request_id, started)
        context["status_code"] = response.status_code
        self.logger.info("request", extra=context)

        event = SECURITY_STATUSES.get(response.status_code)
        if event and (response.status_code != 404 or context["invoice_id"] is not None):
            self.security_logger.info(event, extra=context)

        response.headers["X-Request-Id"] = request_id
        return response
