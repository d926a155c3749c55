"""Password hashing and bearer tokens.

Access tokens are signed JWTs carrying the user id as a string ``sub`` claim
plus ``iat``/``exp``. Nothing else about the user is put in the token; the
row is loaded on every request so deactivation takes effect immediately.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt
from passlib.context import CryptContext

from invoicedesk.core.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

DEFAULT_TOKEN_LIFETIME = timedelta(minutes=60)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def token_lifetime() -> timedelta:
    minutes = settings.access_token_expire_minutes
    return timedelta(minutes=minutes) if minutes > 0 else DEFAULT_TOKEN_LIFETIME


def issue_access_token(user_id: int, *, lifetime: Optional[timedelta] = None) -> str:
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + (lifetime or token_lifetime()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.algorithm])


def token_user_id(token: str) -> int:
    """User id from a bearer token.

    Raises ``JWTError`` for a bad signature or an expired token and
    ``ValueError`` when ``sub`` is missing or not an integer.
    """
    subject = decode_token(token).get("sub")
    if subject is None:
        raise ValueError("token has no subject")
    return int(subject)
