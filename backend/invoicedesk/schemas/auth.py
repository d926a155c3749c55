from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from invoicedesk.schemas.base import ORMModel


def normalize_email(value: str) -> str:
    value = value.strip()
    if "@" not in value:
        raise ValueError("Invalid email address")
    local, _, domain = value.partition("@")
    if not local or not domain:
        raise ValueError("Invalid email address")
    if "." not in domain and not domain.endswith(".local"):
        raise ValueError("Invalid email domain")
    return value.lower()


class RegisterRequest(ORMModel):
    email: str
    password: str = Field(..., min_length=8, max_length=128)
    full_name: Optional[str] = Field(default=None, max_length=255)
    business_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class LoginRequest(ORMModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class Token(ORMModel):
    access_token: str
    token_type: str = "bearer"


class UserRead(ORMModel):
    id: int
    email: str
    full_name: Optional[str] = None
    business_name: Optional[str] = None
    currency: str
    invoice_prefix: str
    default_due_days: int
    is_active: bool
    created_at: datetime
