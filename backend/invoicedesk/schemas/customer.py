from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from invoicedesk.schemas.auth import normalize_email
from invoicedesk.schemas.base import ORMModel


class CustomerWrite(ORMModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str
    business_name: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = Field(default=None, max_length=2000)
    phone: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)


class CustomerRead(ORMModel):
    id: int
    name: str
    email: str
    business_name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
