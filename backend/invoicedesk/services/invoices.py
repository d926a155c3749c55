from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from invoicedesk.core.errors import (
    NOT_FOUND_MESSAGE,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from invoicedesk.core.settings import settings
from invoicedesk.db.base import utcnow
from invoicedesk.db.transaction import Err, Ok, Result, run_in_transaction
from invoicedesk.models.enums import InvoiceStatus
from invoicedesk.models.invoice import Invoice, InvoiceItem, InvoiceSequence, StatusHistory
from invoicedesk.models.user import User
from invoicedesk.schemas.invoice import InvoiceCreate, InvoiceUpdate
from invoicedesk.services import storage
from invoicedesk.services.email import Mailer, payment_link, render_invoice_email
from invoicedesk.services.invoice_state import cancel_error, edit_error, send_error, transition
from invoicedesk.services.ledger import lock_invoice, record_success
from invoicedesk.services.money import ZERO, quantize

logger = logging.getLogger(__name__)

# Payment and view links both carry 32 random bytes, hex encoded.
PUBLIC_TOKEN = re.compile(r"^[0-9a-f]{64}$")


def new_public_token() -> str:
    return secrets.token_hex(32)


def _line_total(quantity: Decimal, unit_price: Decimal) -> Decimal:
    return quantize(quantity * unit_price)


def generate_invoice_number(db: Session, *, owner: User) -> str:
    sequence = (
        db.query(InvoiceSequence)
        .filter(InvoiceSequence.owner_id == owner.id)
        .with_for_update()
        .first()
    )
    if not sequence:
        sequence = InvoiceSequence(owner_id=owner.id, last_number=0)
        db.add(sequence)
        db.flush()
    sequence.last_number += 1
    db.add(sequence)
    db.flush()
    prefix = owner.invoice_prefix or "INV"
    return f"{prefix}-{sequence.last_number:05d}"


def build_items(items_payload: Iterable) -> List[InvoiceItem]:
    items: List[InvoiceItem] = []
    for idx, item in enumerate(items_payload):
        quantity = Decimal(item.quantity)
        unit_price = Decimal(item.unit_price)
        items.append(
            InvoiceItem(
                description=item.description,
                quantity=quantity,
                unit_price=unit_price,
                line_total=_line_total(quantity, unit_price),
                order_index=idx,
            )
        )
    return items


def compute_totals(items: Iterable[InvoiceItem], tax: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    subtotal = quantize(sum((item.line_total for item in items), start=ZERO))
    tax = quantize(tax)
    return subtotal, tax, quantize(subtotal + tax)


def create_invoice(db: Session, *, owner: User, payload: InvoiceCreate) -> Result[Invoice]:
    def body(session: Session) -> Result[Invoice]:
        items = build_items(payload.items)
        subtotal, tax, total = compute_totals(items, payload.tax)
        due_date: Optional[date] = payload.due_date or (utcnow().date() + timedelta(days=owner.default_due_days))
        invoice = Invoice(
            owner_id=owner.id,
            invoice_number=generate_invoice_number(session, owner=owner),
            client_name=payload.client_name.strip(),
            client_email=payload.client_email,
            client_address=payload.client_address,
            description=payload.description.strip(),
            currency=payload.currency or owner.currency,
            subtotal=subtotal,
            tax=tax,
            total=total,
            amount_paid=ZERO,
            status=InvoiceStatus.DRAFT,
            due_date=due_date,
            view_token=new_public_token(),
        )
        invoice.items = items
        session.add(invoice)
        session.flush()
        session.add(StatusHistory(invoice_id=invoice.id, status=InvoiceStatus.DRAFT, changed_at=utcnow(), notes="Created"))
        return Ok(invoice)

    result = run_in_transaction(db, body, name="create_invoice")
    if result.ok:
        record_success("create_invoice", result.value.id, total=result.value.total)
    return result


def list_invoices(db: Session, *, owner_id: int, status: Optional[InvoiceStatus] = None) -> List[Invoice]:
    stmt = select(Invoice).where(Invoice.owner_id == owner_id)
    if status is not None:
        stmt = stmt.where(Invoice.status == status)
    stmt = stmt.order_by(Invoice.created_at.desc(), Invoice.id.desc())
    return list(db.execute(stmt).scalars().all())


def get_invoice_detail(db: Session, *, invoice_id: int, owner_id: int) -> Invoice:
    invoice = db.execute(
        select(Invoice)
        .where(Invoice.id == invoice_id, Invoice.owner_id == owner_id)
        .options(
            selectinload(Invoice.items),
            selectinload(Invoice.payments),
            selectinload(Invoice.attachments),
            selectinload(Invoice.status_history),
        )
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError(NOT_FOUND_MESSAGE)
    return invoice


def send_invoice(db: Session, *, invoice_id: int, owner: User, mailer: Mailer) -> Result[Invoice]:
    """Email the invoice, then record the send.

    The email goes out before the transaction so a provider failure leaves
    the invoice untouched. The status is re-checked under the row lock.
    """
    invoice = db.get(Invoice, invoice_id)
    if invoice is None:
        return Err(NotFoundError(NOT_FOUND_MESSAGE))
    error = send_error(invoice.status)
    if error is not None:
        return Err(error)

    token = invoice.payment_token
    if token is None and settings.external_payments_enabled:
        token = new_public_token()

    recipient = invoice.client_email
    subject, html, text = render_invoice_email(invoice, owner, pay_url=payment_link(token))
    try:
        mailer(to_address=recipient, subject=subject, html=html, text=text)
    except ExternalServiceError as exc:
        logger.warning("invoice_email_failed invoice_id=%s error=%s", invoice_id, exc.message)
        return Err(exc)

    def body(session: Session) -> Result[Invoice]:
        locked = lock_invoice(session, invoice_id)
        if locked is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        state_error = send_error(locked.status)
        if state_error is not None:
            return Err(state_error)
        transition(session, locked, InvoiceStatus.SENT, notes=f"Emailed to {recipient}")
        locked.email_sent_at = utcnow()
        locked.email_sent_to = recipient
        if locked.payment_token is None and token is not None:
            locked.payment_token = token
        session.flush()
        session.expire(locked, ["status_history"])
        return Ok(locked)

    result = run_in_transaction(db, body, name="send_invoice")
    if result.ok:
        record_success("send_invoice", invoice_id, recipient=recipient)
    return result


def cancel_invoice(db: Session, *, invoice_id: int, notes: Optional[str] = None) -> Result[Invoice]:
    def body(session: Session) -> Result[Invoice]:
        invoice = lock_invoice(session, invoice_id)
        if invoice is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        error = cancel_error(invoice.status)
        if error is not None:
            return Err(error)
        transition(session, invoice, InvoiceStatus.CANCELLED, notes=notes or "Cancelled")
        session.flush()
        session.expire(invoice, ["status_history"])
        return Ok(invoice)

    result = run_in_transaction(db, body, name="cancel_invoice")
    if result.ok:
        record_success("cancel_invoice", invoice_id)
    return result


def update_invoice(db: Session, *, invoice_id: int, payload: InvoiceUpdate) -> Result[Invoice]:
    """Replace the client details and line items of a draft or sent invoice.

    Status and the ledger are untouched. The new total has to stay above
    whatever has been paid so far; an omitted due date or currency keeps the
    current one.
    """

    def body(session: Session) -> Result[Invoice]:
        invoice = lock_invoice(session, invoice_id)
        if invoice is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        error = edit_error(invoice.status)
        if error is not None:
            return Err(error)

        items = build_items(payload.items)
        subtotal, tax, total = compute_totals(items, payload.tax)
        paid = quantize(invoice.amount_paid)
        if paid > ZERO and total <= paid:
            return Err(ValidationError(f"Total must be greater than the {paid} already paid"))

        invoice.client_name = payload.client_name.strip()
        invoice.client_email = payload.client_email
        invoice.client_address = payload.client_address
        invoice.description = payload.description.strip()
        if payload.currency:
            invoice.currency = payload.currency
        if payload.due_date is not None:
            invoice.due_date = payload.due_date
        invoice.subtotal = subtotal
        invoice.tax = tax
        invoice.total = total
        invoice.items = items
        session.flush()
        return Ok(invoice)

    result = run_in_transaction(db, body, name="update_invoice")
    if result.ok:
        record_success("update_invoice", invoice_id, total=result.value.total)
    return result


@dataclass(frozen=True)
class DeletedInvoice:
    invoice_number: str
    storage_paths: List[str]


def delete_invoice(db: Session, *, invoice_id: int) -> Result[DeletedInvoice]:
    """Delete an unpaid invoice with its items, history and attachments.

    Invoices with money on the ledger are refused; cancel those instead.
    Attachment bytes are removed once the rows are gone.
    """

    def body(session: Session) -> Result[DeletedInvoice]:
        invoice = lock_invoice(session, invoice_id)
        if invoice is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        if invoice.status == InvoiceStatus.PAID or quantize(invoice.amount_paid) > ZERO:
            return Err(InvalidStateError("Cannot delete an invoice with recorded payments"))
        deleted = DeletedInvoice(
            invoice_number=invoice.invoice_number,
            storage_paths=[attachment.storage_path for attachment in invoice.attachments],
        )
        session.delete(invoice)
        session.flush()
        return Ok(deleted)

    result = run_in_transaction(db, body, name="delete_invoice")
    if result.ok:
        for storage_path in result.value.storage_paths:
            storage.remove_attachment_bytes(storage_path)
        record_success("delete_invoice", invoice_id, invoice_number=result.value.invoice_number)
    return result


def _public_invoice(db: Session, *criteria) -> Optional[Invoice]:
    return db.execute(
        select(Invoice)
        .where(*criteria)
        .options(selectinload(Invoice.items), selectinload(Invoice.owner))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def find_by_payment_token(db: Session, *, token: str) -> Invoice:
    if not PUBLIC_TOKEN.match(token):
        raise ValidationError("Invalid payment token")
    invoice = _public_invoice(db, Invoice.payment_token == token)
    if invoice is None:
        raise NotFoundError("Invoice not found or payment link has expired")
    return invoice


def record_public_view(db: Session, *, token: str) -> Result[Invoice]:
    """Resolve a view link and count the visit in one transaction."""
    if not PUBLIC_TOKEN.match(token):
        return Err(ValidationError("Invalid view token"))

    def body(session: Session) -> Result[Invoice]:
        counted = session.execute(
            update(Invoice)
            .where(Invoice.view_token == token)
            .values(view_count=Invoice.view_count + 1, last_viewed_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
        if counted != 1:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        return Ok(_public_invoice(session, Invoice.view_token == token))

    return run_in_transaction(db, body, name="record_public_view")
