"""Payment ledger for a single invoice.

Every mutation runs inside ``run_in_transaction`` and follows the same steps:

1. lock the invoice row (``SELECT ... FOR UPDATE``)
2. validate the request against the locked balance
3. move ``amount_paid`` with a guarded ``UPDATE`` so that a stale read can
   never push it past ``total``
4. insert or delete the payment row and move the status
5. re-check the ledger invariants before commit

The invariants checked in step 5 are ``0 <= amount_paid <= total``,
``paid_at`` set iff the invoice is paid, every payment positive, and the sum
of the invoice's payments equal to ``amount_paid``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session

from invoicedesk.core.errors import (
    NOT_FOUND_MESSAGE,
    InvalidStateError,
    LedgerIntegrityError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from invoicedesk.core.observability import ledger_mutations_total
from invoicedesk.db.base import utcnow
from invoicedesk.db.transaction import Err, Ok, Result, run_in_transaction
from invoicedesk.models.enums import InvoiceStatus
from invoicedesk.models.invoice import Invoice, Payment
from invoicedesk.services.invoice_state import payment_error, status_after_refund, transition
from invoicedesk.services.money import ZERO, quantize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentOutcome:
    invoice: Invoice
    payment: Optional[Payment]
    is_paid_in_full: bool


@dataclass(frozen=True)
class RemovalOutcome:
    invoice: Invoice
    amount: Decimal


def lock_invoice(db: Session, invoice_id: int) -> Optional[Invoice]:
    stmt = (
        select(Invoice)
        .where(Invoice.id == invoice_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def ledger_total(db: Session, invoice_id: int) -> Decimal:
    value = db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.invoice_id == invoice_id)
    ).scalar_one()
    return quantize(value)


def ledger_consistency_errors(db: Session, invoice: Invoice) -> List[str]:
    errors: List[str] = []
    amount_paid = quantize(invoice.amount_paid)
    total = quantize(invoice.total)

    if amount_paid < ZERO:
        errors.append(f"amount_paid {amount_paid} is negative")
    if amount_paid > total:
        errors.append(f"amount_paid {amount_paid} exceeds total {total}")
    if (invoice.status == InvoiceStatus.PAID) != (invoice.paid_at is not None):
        errors.append(f"paid_at does not match status {invoice.status.value}")

    non_positive = db.execute(
        select(func.count(Payment.id)).where(Payment.invoice_id == invoice.id, Payment.amount <= 0)
    ).scalar_one()
    if non_positive:
        errors.append(f"{non_positive} payment(s) with a non-positive amount")

    recorded = ledger_total(db, invoice.id)
    if recorded != amount_paid:
        errors.append(f"ledger sum {recorded} does not match amount_paid {amount_paid}")
    return errors


def _integrity_error(db: Session, invoice: Invoice) -> Optional[LedgerIntegrityError]:
    db.flush()
    errors = ledger_consistency_errors(db, invoice)
    if not errors:
        return None
    logger.error("ledger_integrity_violation invoice_id=%s errors=%s", invoice.id, errors)
    return LedgerIntegrityError()


def _increase_amount_paid(db: Session, invoice_id: int, amount: Decimal) -> bool:
    """Add ``amount`` only if the result stays within ``total``."""
    result = db.execute(
        update(Invoice)
        .where(Invoice.id == invoice_id, Invoice.amount_paid + amount <= Invoice.total)
        .values(amount_paid=Invoice.amount_paid + amount)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _decrease_amount_paid(db: Session, invoice_id: int, amount: Decimal) -> None:
    reduced = Invoice.amount_paid - amount
    db.execute(
        update(Invoice)
        .where(Invoice.id == invoice_id)
        .values(amount_paid=case((reduced < 0, 0), else_=reduced))
        .execution_options(synchronize_session=False)
    )


def _mark_paid_in_full(db: Session, invoice: Invoice, *, payment_method: Optional[str], notes: str) -> None:
    transition(db, invoice, InvoiceStatus.PAID, notes=notes)
    invoice.paid_at = utcnow()
    invoice.payment_method = payment_method


def _apply_payment(
    db: Session,
    invoice: Invoice,
    *,
    amount: Decimal,
    payment_method: Optional[str],
    reference: Optional[str],
    notes: Optional[str],
    paid_at: Optional[datetime],
    actor_user_id: Optional[int],
) -> Result[PaymentOutcome]:
    remaining = quantize(invoice.total) - quantize(invoice.amount_paid)
    if amount > remaining:
        return Err(OverpaymentError(f"Payment amount exceeds the remaining balance of {remaining}"))
    if not _increase_amount_paid(db, invoice.id, amount):
        # The locked snapshot was stale; the balance moved underneath us.
        return Err(OverpaymentError("Payment amount exceeds the remaining balance"))
    db.refresh(invoice)

    payment = Payment(
        invoice_id=invoice.id,
        amount=amount,
        payment_method=payment_method,
        reference=reference,
        notes=notes,
        paid_at=paid_at or utcnow(),
        created_by_user_id=actor_user_id,
    )
    db.add(payment)

    if quantize(invoice.amount_paid) >= quantize(invoice.total):
        _mark_paid_in_full(db, invoice, payment_method=payment_method, notes="Paid in full")

    integrity = _integrity_error(db, invoice)
    if integrity is not None:
        return Err(integrity)
    db.expire(invoice, ["payments", "status_history"])
    return Ok(PaymentOutcome(invoice=invoice, payment=payment, is_paid_in_full=invoice.status == InvoiceStatus.PAID))


def record_success(operation: str, invoice_id: int, **fields) -> None:
    ledger_mutations_total.labels(operation=operation).inc()
    details = " ".join(f"{key}={value}" for key, value in fields.items())
    logger.info("%s invoice_id=%s %s", operation, invoice_id, details)


def add_payment(
    db: Session,
    *,
    invoice_id: int,
    amount: Decimal,
    payment_method: Optional[str] = None,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    paid_at: Optional[datetime] = None,
    actor_user_id: Optional[int] = None,
) -> Result[PaymentOutcome]:
    amount = quantize(amount)
    if amount <= ZERO:
        return Err(ValidationError("Payment amount must be greater than zero"))

    def body(session: Session) -> Result[PaymentOutcome]:
        invoice = lock_invoice(session, invoice_id)
        if invoice is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        error = payment_error(invoice.status)
        if error is not None:
            return Err(error)
        return _apply_payment(
            session,
            invoice,
            amount=amount,
            payment_method=payment_method,
            reference=reference,
            notes=notes,
            paid_at=paid_at,
            actor_user_id=actor_user_id,
        )

    result = run_in_transaction(db, body, name="add_payment")
    if result.ok:
        record_success("add_payment", invoice_id, amount=amount, paid_in_full=result.value.is_paid_in_full)
    return result


def delete_payment(db: Session, *, invoice_id: int, payment_id: int) -> Result[RemovalOutcome]:
    def body(session: Session) -> Result[RemovalOutcome]:
        invoice = lock_invoice(session, invoice_id)
        if invoice is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))

        raw_amount = session.execute(
            select(Payment.amount).where(Payment.id == payment_id, Payment.invoice_id == invoice_id)
        ).scalar_one_or_none()
        if raw_amount is None:
            return Err(NotFoundError("Payment not found"))
        amount = quantize(raw_amount)

        deleted = session.execute(
            delete(Payment).where(Payment.id == payment_id, Payment.invoice_id == invoice_id)
        ).rowcount
        if deleted != 1:
            return Err(NotFoundError("Payment not found"))

        _decrease_amount_paid(session, invoice_id, amount)
        session.refresh(invoice)

        if invoice.status == InvoiceStatus.PAID and quantize(invoice.amount_paid) < quantize(invoice.total):
            transition(
                session,
                invoice,
                status_after_refund(email_sent_at=invoice.email_sent_at),
                notes="Payment removed",
            )
        if invoice.status != InvoiceStatus.PAID:
            invoice.paid_at = None
            invoice.payment_method = None

        integrity = _integrity_error(session, invoice)
        if integrity is not None:
            return Err(integrity)
        session.expire(invoice, ["payments", "status_history"])
        return Ok(RemovalOutcome(invoice=invoice, amount=amount))

    result = run_in_transaction(db, body, name="delete_payment")
    if result.ok:
        record_success("delete_payment", invoice_id, payment_id=payment_id, amount=result.value.amount)
    return result


def mark_paid(
    db: Session,
    *,
    invoice_id: int,
    payment_method: str,
    actor_user_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> Result[PaymentOutcome]:
    """Settle the remaining balance with one ledger payment."""

    def body(session: Session) -> Result[PaymentOutcome]:
        invoice = lock_invoice(session, invoice_id)
        if invoice is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        if invoice.status == InvoiceStatus.PAID:
            return Err(InvalidStateError("Invoice is already paid"))
        error = payment_error(invoice.status)
        if error is not None:
            return Err(error)

        remaining = quantize(invoice.total) - quantize(invoice.amount_paid)
        if remaining <= ZERO:
            _mark_paid_in_full(session, invoice, payment_method=payment_method, notes="Marked paid")
            integrity = _integrity_error(session, invoice)
            if integrity is not None:
                return Err(integrity)
            session.expire(invoice, ["payments", "status_history"])
            return Ok(PaymentOutcome(invoice=invoice, payment=None, is_paid_in_full=True))

        return _apply_payment(
            session,
            invoice,
            amount=remaining,
            payment_method=payment_method,
            reference=None,
            notes=notes or "Marked paid",
            paid_at=None,
            actor_user_id=actor_user_id,
        )

    result = run_in_transaction(db, body, name="mark_paid")
    if result.ok:
        record_success("mark_paid", invoice_id, payment_method=payment_method)
    return result


def apply_external_confirmation(
    db: Session,
    *,
    invoice_id: int,
    reference: Optional[str],
    payment_method: str,
) -> Result[str]:
    """Transaction-body step settling an invoice from a provider confirmation.

    Returns the outcome label: ``paid``, ``already_paid`` or
    ``invoice_cancelled``. Callers run it inside their own transaction.
    """
    invoice = lock_invoice(db, invoice_id)
    if invoice is None:
        return Err(NotFoundError(NOT_FOUND_MESSAGE))
    if invoice.status == InvoiceStatus.PAID:
        return Ok("already_paid")
    if invoice.status == InvoiceStatus.CANCELLED:
        logger.warning("external_payment_for_cancelled_invoice invoice_id=%s reference=%s", invoice_id, reference)
        return Ok("invoice_cancelled")

    remaining = quantize(invoice.total) - quantize(invoice.amount_paid)
    if remaining > ZERO:
        applied = _apply_payment(
            db,
            invoice,
            amount=remaining,
            payment_method=payment_method,
            reference=reference,
            notes="Paid online",
            paid_at=None,
            actor_user_id=None,
        )
        if isinstance(applied, Err):
            return applied
    else:
        _mark_paid_in_full(db, invoice, payment_method=payment_method, notes="Paid online")
        integrity = _integrity_error(db, invoice)
        if integrity is not None:
            return Err(integrity)

    invoice.provider_payment_reference = reference
    return Ok("paid")
