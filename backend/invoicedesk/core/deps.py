from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session

from invoicedesk.core.errors import AuthenticationError
from invoicedesk.core.rate_limit import RateLimiter, SqlRateLimitStore
from invoicedesk.core.security import token_user_id
from invoicedesk.db.session import SessionLocal, get_db
from invoicedesk.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)
logger = logging.getLogger("security")

_default_rate_limiter: Optional[RateLimiter] = None


@dataclass(frozen=True)
class ClientContext:
    ip_address: str
    user_agent: Optional[str]
    request_id: Optional[str]


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=request.headers.get("x-request-id") or getattr(request.state, "request_id", None),
    )


def log_security_event(event: str, *, request: Request, user_id: Optional[int] = None, extra: Optional[dict] = None) -> None:
    payload = {
        "event": event,
        "user_id": user_id,
        "request_id": request.headers.get("x-request-id"),
        "path": request.url.path,
        "method": request.method,
        "client": client_ip(request),
    }
    if extra:
        payload.update(extra)
    logger.info(json.dumps(payload, default=str))


def get_rate_limiter() -> RateLimiter:
    global _default_rate_limiter
    if _default_rate_limiter is None:
        _default_rate_limiter = RateLimiter(SqlRateLimitStore(SessionLocal))
    return _default_rate_limiter


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    if not token:
        raise AuthenticationError()
    try:
        user_id = token_user_id(token)
    except (JWTError, ValueError, TypeError):
        log_security_event("token_invalid", request=request)
        raise AuthenticationError()

    user = db.get(User, user_id)
    if not user or not user.is_active:
        log_security_event("user_inactive_or_missing", request=request, extra={"user_id": user_id})
        raise AuthenticationError()
    return user
