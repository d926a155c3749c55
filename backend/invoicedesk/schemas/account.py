from __future__ import annotations

import re
from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from invoicedesk.schemas.auth import normalize_email
from invoicedesk.schemas.base import ORMModel

_PREFIX = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,19}$")


class AccountSettingsRead(ORMModel):
    email: str
    full_name: Optional[str] = None
    business_name: Optional[str] = None
    business_email: Optional[str] = None
    business_phone: Optional[str] = None
    business_address: Optional[str] = None
    payment_notes: Optional[str] = None
    currency: str
    invoice_prefix: str
    default_due_days: int


class AccountSettingsUpdate(ORMModel):
    """Partial update: only the fields present in the body are written."""

    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(default=None, max_length=255)
    business_name: Optional[str] = Field(default=None, max_length=255)
    business_email: Optional[str] = None
    business_phone: Optional[str] = Field(default=None, max_length=50)
    business_address: Optional[str] = Field(default=None, max_length=2000)
    payment_notes: Optional[str] = Field(default=None, max_length=2000)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    invoice_prefix: str = Field(default="INV", min_length=1, max_length=20)
    default_due_days: int = Field(default=30, ge=0, le=365)

    @field_validator("business_email")
    @classmethod
    def validate_business_email(cls, value: Optional[str]) -> Optional[str]:
        return normalize_email(value) if value else None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("Currency must be a three-letter code")
        return value.upper()

    @field_validator("invoice_prefix")
    @classmethod
    def validate_prefix(cls, value: str) -> str:
        value = value.strip()
        if not _PREFIX.match(value):
            raise ValueError("Prefix may only contain letters, digits, '-' and '_'")
        return value
