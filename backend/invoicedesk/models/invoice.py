from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

from invoicedesk.db.base import Base, IDMixin, TimestampMixin, UTCDateTime, utcnow
from invoicedesk.models.enums import AttachmentType, InvoiceStatus

# Older rows persisted display-only statuses; they are folded back on read.
LEGACY_STATUS_ALIASES = {
    "partial": InvoiceStatus.SENT,
    "due": InvoiceStatus.SENT,
    "overdue": InvoiceStatus.SENT,
}


def normalize_status(raw: str | InvoiceStatus | None) -> InvoiceStatus:
    if isinstance(raw, InvoiceStatus):
        return raw
    value = (raw or InvoiceStatus.DRAFT.value).strip().lower()
    if value in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[value]
    return InvoiceStatus(value)


class InvoiceStatusType(TypeDecorator):
    """Stores the four canonical statuses as plain strings."""

    impl = String(20)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return normalize_status(value).value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return normalize_status(value)


class Invoice(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("amount_paid >= 0", name="amount_paid_non_negative"),
        CheckConstraint("amount_paid <= total", name="amount_paid_within_total"),
        CheckConstraint("total >= 0", name="total_non_negative"),
        UniqueConstraint("owner_id", "invoice_number", name="uq_invoices_owner_number"),
    )

    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_email: Mapped[str] = mapped_column(String(255), nullable=False)
    client_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    tax: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        InvoiceStatusType(),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )

    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    email_sent_to: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)
    provider_payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    view_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    last_viewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    owner: Mapped["User"] = relationship(back_populates="invoices")
    items: Mapped[List["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: InvoiceItem.order_index.asc(),
    )
    payments: Mapped[List["Payment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: Payment.paid_at.desc(),
    )
    attachments: Mapped[List["Attachment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: Attachment.created_at.asc(),
    )
    status_history: Mapped[List["StatusHistory"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by=lambda: StatusHistory.changed_at.desc(),
    )

    @property
    def balance_due(self) -> Decimal:
        remaining = Decimal(self.total or 0) - Decimal(self.amount_paid or 0)
        return remaining if remaining > Decimal("0.00") else Decimal("0.00")


class InvoiceItem(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_items"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1.00"), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="items")


class Payment(IDMixin, TimestampMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (CheckConstraint("amount > 0", name="amount_positive"),)

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow, index=True)
    created_by_user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")


class Attachment(IDMixin, TimestampMixin, Base):
    __tablename__ = "attachments"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    uploaded_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(String(500), nullable=False, unique=True)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    attachment_type: Mapped[str] = mapped_column(
        String(50),
        default=AttachmentType.RECEIPT.value,
        nullable=False,
        index=True,
    )

    invoice: Mapped[Invoice] = relationship(back_populates="attachments")


class StatusHistory(IDMixin, TimestampMixin, Base):
    __tablename__ = "status_history"

    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[InvoiceStatus] = mapped_column(InvoiceStatusType(), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    invoice: Mapped[Invoice] = relationship(back_populates="status_history")


class InvoiceSequence(IDMixin, TimestampMixin, Base):
    __tablename__ = "invoice_sequences"
    __table_args__ = (UniqueConstraint("owner_id", name="uq_invoice_sequences_owner"),)

    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    last_number: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
