from __future__ import annotations

import enum


class InvoiceStatus(str, enum.Enum):
    """Persisted invoice statuses. ``paid`` and ``cancelled`` are terminal."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


class DisplayStatus(str, enum.Enum):
    """Read-time statuses, never stored."""

    DRAFT = "draft"
    SENT = "sent"
    DUE = "due"
    OVERDUE = "overdue"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    OTHER = "other"
    PROVIDER = "provider"
    PROVIDER_ACH = "provider_ach"


MANUAL_PAYMENT_METHODS = (
    PaymentMethod.CASH,
    PaymentMethod.CHECK,
    PaymentMethod.BANK_TRANSFER,
    PaymentMethod.CREDIT_CARD,
    PaymentMethod.OTHER,
)


class AttachmentType(str, enum.Enum):
    RECEIPT = "receipt"
    CONTRACT = "contract"
    QUOTE = "quote"
    SUPPORTING_DOCUMENT = "supporting_document"
    PHOTO = "photo"
    OTHER = "other"
