from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from invoicedesk.core.deps import client_ip, get_client_context, get_rate_limiter
from invoicedesk.core.errors import AuthenticationError, ValidationError
from invoicedesk.core.guards import enforce_rate_limit
from invoicedesk.core.rate_limit import RateLimiter
from invoicedesk.core.security import hash_password, issue_access_token, verify_password
from invoicedesk.db.base import utcnow
from invoicedesk.db.session import get_db
from invoicedesk.models.user import User
from invoicedesk.schemas.auth import LoginRequest, RegisterRequest, Token, UserRead
from invoicedesk.services import audit

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger("security")


def _log_auth_event(event: str, *, request: Request, extra: dict | None = None) -> None:
    payload = {
        "event": event,
        "request_id": request.headers.get("x-request-id"),
        "path": request.url.path,
        "method": request.method,
        "client": client_ip(request),
    }
    if extra:
        payload.update(extra)
    logger.info(json.dumps(payload, default=str))


def email_taken(db: Session, email: str) -> bool:
    return db.execute(select(User.id).where(User.email == email)).scalar_one_or_none() is not None


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> UserRead:
    enforce_rate_limit(limiter, request=request, action="auth:register", actor=client_ip(request))
    if email_taken(db, payload.email):
        raise ValidationError("Email already registered")

    user = User(
        email=payload.email,
        hashed_password=hash_password(payload.password),
        full_name=payload.full_name,
        business_name=payload.business_name,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent registration won the unique email index.
        db.rollback()
        raise ValidationError("Email already registered")
    db.refresh(user)
    audit.record_audit(
        db,
        actor_user_id=user.id,
        action="user.registered",
        entity_type="user",
        entity_id=user.id,
        client=get_client_context(request),
    )
    return UserRead.model_validate(user)


@router.post("/login", response_model=Token)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Token:
    enforce_rate_limit(limiter, request=request, action="auth:login", actor=client_ip(request))
    user = db.execute(select(User).where(User.email == payload.email)).scalar_one_or_none()
    if user is None or not user.is_active or not verify_password(payload.password, user.hashed_password):
        _log_auth_event("login_failed", request=request, extra={"email": payload.email})
        raise AuthenticationError("Invalid email or password")

    user.last_login_at = utcnow()
    db.commit()
    _log_auth_event("login_success", request=request, extra={"user_id": user.id})
    return Token(access_token=issue_access_token(user.id))
