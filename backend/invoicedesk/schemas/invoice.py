from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from invoicedesk.models.enums import (
    MANUAL_PAYMENT_METHODS,
    AttachmentType,
    DisplayStatus,
    InvoiceStatus,
    PaymentMethod,
)
from invoicedesk.schemas.auth import normalize_email
from invoicedesk.schemas.base import ORMModel


def _manual_method(value: Optional[PaymentMethod]) -> Optional[PaymentMethod]:
    if value is not None and value not in MANUAL_PAYMENT_METHODS:
        raise ValueError("Payment method is reserved for online payments")
    return value


class InvoiceItemCreate(ORMModel):
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(default=Decimal("1.00"), ge=Decimal("1"), max_digits=10, decimal_places=2)
    unit_price: Decimal = Field(default=Decimal("0.00"), ge=Decimal("0.00"), max_digits=12, decimal_places=2)


class InvoiceItemRead(ORMModel):
    id: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    order_index: int


class InvoiceCreate(ORMModel):
    client_name: str = Field(..., min_length=1, max_length=255)
    client_email: str
    client_address: Optional[str] = None
    description: str = Field(..., min_length=1, max_length=500)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    tax: Decimal = Field(default=Decimal("0.00"), ge=Decimal("0.00"), max_digits=12, decimal_places=2)
    due_date: Optional[date] = None
    items: List[InvoiceItemCreate] = Field(..., min_length=1)

    @field_validator("client_email")
    @classmethod
    def validate_client_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class InvoiceUpdate(InvoiceCreate):
    """Replacement of the editable fields. Status, number and ledger fields are not accepted."""

    model_config = ConfigDict(extra="forbid")


class PaymentCreate(ORMModel):
    amount: Decimal = Field(..., gt=Decimal("0.00"), max_digits=12, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=2000)
    paid_at: Optional[datetime] = None

    @field_validator("payment_method")
    @classmethod
    def validate_method(cls, value: Optional[PaymentMethod]) -> Optional[PaymentMethod]:
        return _manual_method(value)


class MarkPaidRequest(ORMModel):
    payment_method: PaymentMethod = PaymentMethod.OTHER
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("payment_method")
    @classmethod
    def validate_method(cls, value: PaymentMethod) -> PaymentMethod:
        return _manual_method(value)


class PaymentRead(ORMModel):
    id: int
    invoice_id: int
    amount: Decimal
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    paid_at: datetime
    created_at: datetime


class PaymentRecorded(ORMModel):
    payment: PaymentRead
    is_paid_in_full: bool
    amount_paid: Decimal


class PaymentRemoved(ORMModel):
    success: bool = True
    amount_paid: Decimal
    status: InvoiceStatus


class StatusHistoryRead(ORMModel):
    id: int
    status: InvoiceStatus
    changed_at: datetime
    notes: Optional[str] = None


class AttachmentRead(ORMModel):
    id: int
    invoice_id: int
    filename: str
    mime_type: str
    size: int
    attachment_type: AttachmentType
    created_at: datetime


class InvoiceRead(ORMModel):
    id: int
    invoice_number: str
    client_name: str
    client_email: str
    client_address: Optional[str] = None
    description: str
    currency: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    status: InvoiceStatus
    display_status: Optional[DisplayStatus] = None
    due_date: Optional[date] = None
    email_sent_at: Optional[datetime] = None
    email_sent_to: Optional[str] = None
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    view_token: Optional[str] = None
    view_count: int = 0
    last_viewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class InvoiceDetail(InvoiceRead):
    items: List[InvoiceItemRead] = Field(default_factory=list)
    payments: List[PaymentRead] = Field(default_factory=list)
    attachments: List[AttachmentRead] = Field(default_factory=list)
    status_history: List[StatusHistoryRead] = Field(default_factory=list)


class AuditLogRead(ORMModel):
    id: int
    actor_user_id: Optional[int] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details_json: Optional[dict] = None
    created_at: datetime


class PublicItem(ORMModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal


class PublicBusiness(ORMModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class PublicInvoice(ORMModel):
    """What a client holding a view or payment link may see."""

    invoice_number: str
    client_name: str
    client_email: str
    client_address: Optional[str] = None
    description: str
    currency: str
    items: List[PublicItem]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    status: DisplayStatus
    due_date: Optional[date] = None
    created_at: datetime
    business: PublicBusiness
    payment_instructions: Optional[str] = None
    pay_url: Optional[str] = None
