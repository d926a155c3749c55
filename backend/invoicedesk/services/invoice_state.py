from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from invoicedesk.core.errors import InvalidStateError
from invoicedesk.db.base import utcnow
from invoicedesk.models.enums import DisplayStatus, InvoiceStatus
from invoicedesk.models.invoice import Invoice, StatusHistory

TERMINAL_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})

# Payments move an invoice to PAID through the ledger; removing a payment
# can move PAID back to SENT or DRAFT.
ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.SENT: frozenset({InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.SENT, InvoiceStatus.DRAFT}),
    InvoiceStatus.CANCELLED: frozenset(),
}


def can_transition(current: InvoiceStatus, new: InvoiceStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def send_error(current: InvoiceStatus) -> Optional[InvalidStateError]:
    if current == InvoiceStatus.CANCELLED:
        return InvalidStateError("Cannot send a cancelled invoice")
    if current == InvoiceStatus.PAID:
        return InvalidStateError("Invoice is already paid")
    return None


def cancel_error(current: InvoiceStatus) -> Optional[InvalidStateError]:
    if current == InvoiceStatus.PAID:
        return InvalidStateError("Cannot cancel a paid invoice")
    if current == InvoiceStatus.CANCELLED:
        return InvalidStateError("Invoice is already cancelled")
    return None


def edit_error(current: InvoiceStatus) -> Optional[InvalidStateError]:
    if current == InvoiceStatus.PAID:
        return InvalidStateError("Cannot edit a paid invoice")
    if current == InvoiceStatus.CANCELLED:
        return InvalidStateError("Cannot edit a cancelled invoice")
    return None


def payment_error(current: InvoiceStatus) -> Optional[InvalidStateError]:
    if current == InvoiceStatus.CANCELLED:
        return InvalidStateError("Cannot record a payment on a cancelled invoice")
    return None


def status_after_refund(*, email_sent_at: Optional[datetime]) -> InvoiceStatus:
    """Status a paid invoice falls back to once it is no longer fully paid."""
    return InvoiceStatus.SENT if email_sent_at else InvoiceStatus.DRAFT


def transition(db: Session, invoice: Invoice, new_status: InvoiceStatus, *, notes: Optional[str] = None) -> bool:
    """Move ``invoice`` to ``new_status`` and append a history row.

    Returns False (and changes nothing) when the move is not allowed. Moving
    to the current status is a no-op that still returns True.
    """
    current = invoice.status
    if current == new_status:
        return True
    if not can_transition(current, new_status):
        return False
    invoice.status = new_status
    db.add(StatusHistory(invoice_id=invoice.id, status=new_status, changed_at=utcnow(), notes=notes))
    return True


def derive_display_status(
    stored_status: InvoiceStatus,
    due_date: Optional[date],
    amount_paid: Decimal,
    total: Decimal,
    now: datetime,
) -> DisplayStatus:
    """Compute the status shown to users. Pure; never persisted.

    - ``cancelled`` and ``paid`` show as stored
    - a draft shows as ``draft`` until money is received, then ``partial``
    - a sent invoice past its due date (end of that day) is ``overdue``
    - otherwise a sent invoice with some money received is ``partial``
    - otherwise ``due`` when it has a due date, else ``sent``
    """
    if stored_status == InvoiceStatus.CANCELLED:
        return DisplayStatus.CANCELLED
    if stored_status == InvoiceStatus.PAID:
        return DisplayStatus.PAID

    paid = Decimal(amount_paid or 0)
    if stored_status == InvoiceStatus.DRAFT:
        return DisplayStatus.PARTIAL if paid > 0 else DisplayStatus.DRAFT
    if Decimal(total or 0) > 0 and paid >= Decimal(total):
        return DisplayStatus.PAID
    if due_date is not None and now.date() > due_date:
        return DisplayStatus.OVERDUE
    if paid > 0:
        return DisplayStatus.PARTIAL
    if due_date is not None:
        return DisplayStatus.DUE
    return DisplayStatus.SENT


def display_status_for(invoice: Invoice, now: Optional[datetime] = None) -> DisplayStatus:
    return derive_display_status(
        invoice.status,
        invoice.due_date,
        invoice.amount_paid,
        invoice.total,
        now or utcnow(),
    )
