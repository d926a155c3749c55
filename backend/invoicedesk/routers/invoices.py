from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from invoicedesk.core.authz import require_invoice_owner
from invoicedesk.core.deps import get_client_context, get_current_user
from invoicedesk.core.guards import write_guard
from invoicedesk.db.session import get_db
from invoicedesk.models.audit import AuditLog
from invoicedesk.models.enums import InvoiceStatus
from invoicedesk.models.invoice import Invoice, Payment, StatusHistory
from invoicedesk.models.user import User
from invoicedesk.schemas.invoice import (
    AuditLogRead,
    InvoiceCreate,
    InvoiceDetail,
    InvoiceRead,
    InvoiceUpdate,
    MarkPaidRequest,
    PaymentCreate,
    PaymentRead,
    PaymentRecorded,
    PaymentRemoved,
    StatusHistoryRead,
)
from invoicedesk.services import audit, invoices, ledger
from invoicedesk.services.email import Mailer, get_mailer
from invoicedesk.services.invoice_state import display_status_for

router = APIRouter(prefix="/api/invoices", tags=["invoices"])
logger = logging.getLogger(__name__)


def _serialize(invoice: Invoice, schema: type[InvoiceRead] = InvoiceRead) -> InvoiceRead:
    data = schema.model_validate(invoice)
    return data.model_copy(update={"display_status": display_status_for(invoice)})


def _audit(db: Session, request: Request, user: User, action: str, invoice_id: int, details: Optional[dict] = None) -> None:
    audit.record_audit(
        db,
        actor_user_id=user.id,
        action=action,
        entity_type="invoice",
        entity_id=invoice_id,
        details=details,
        client=get_client_context(request),
    )


@router.get("", response_model=List[InvoiceRead])
def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[InvoiceRead]:
    rows = invoices.list_invoices(db, owner_id=current_user.id, status=status_filter)
    return [_serialize(invoice) for invoice in rows]


@router.post("", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:create")),
) -> InvoiceRead:
    invoice = invoices.create_invoice(db, owner=current_user, payload=payload).unwrap()
    _audit(
        db,
        request,
        current_user,
        "invoice.created",
        invoice.id,
        {"invoice_number": invoice.invoice_number, "total": invoice.total},
    )
    detail = invoices.get_invoice_detail(db, invoice_id=invoice.id, owner_id=current_user.id)
    return _serialize(detail, InvoiceDetail)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> InvoiceRead:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    invoice = invoices.get_invoice_detail(db, invoice_id=invoice_id, owner_id=current_user.id)
    return _serialize(invoice, InvoiceDetail)


@router.put("/{invoice_id}", response_model=InvoiceDetail)
def update_invoice(
    invoice_id: int,
    payload: InvoiceUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:update")),
) -> InvoiceRead:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    invoice = invoices.update_invoice(db, invoice_id=invoice_id, payload=payload).unwrap()
    _audit(db, request, current_user, "invoice.updated", invoice_id, {"total": invoice.total})
    detail = invoices.get_invoice_detail(db, invoice_id=invoice_id, owner_id=current_user.id)
    return _serialize(detail, InvoiceDetail)


@router.delete("/{invoice_id}", response_model=dict)
def delete_invoice(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:delete")),
) -> dict:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    deleted = invoices.delete_invoice(db, invoice_id=invoice_id).unwrap()
    _audit(db, request, current_user, "invoice.deleted", invoice_id, {"invoice_number": deleted.invoice_number})
    return {"success": True}


@router.post("/{invoice_id}/send", response_model=InvoiceRead)
def send_invoice(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:send")),
    mailer: Mailer = Depends(get_mailer),
) -> InvoiceRead:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    invoice = invoices.send_invoice(db, invoice_id=invoice_id, owner=current_user, mailer=mailer).unwrap()
    _audit(db, request, current_user, "invoice.sent", invoice_id, {"email_sent_to": invoice.email_sent_to})
    return _serialize(invoice)


@router.post("/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel_invoice(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:cancel")),
) -> InvoiceRead:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    invoice = invoices.cancel_invoice(db, invoice_id=invoice_id).unwrap()
    _audit(db, request, current_user, "invoice.cancelled", invoice_id)
    return _serialize(invoice)


@router.post("/{invoice_id}/pay", response_model=InvoiceRead)
def mark_paid(
    invoice_id: int,
    request: Request,
    payload: Optional[MarkPaidRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:pay")),
) -> InvoiceRead:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    payload = payload or MarkPaidRequest()
    outcome = ledger.mark_paid(
        db,
        invoice_id=invoice_id,
        payment_method=payload.payment_method.value,
        actor_user_id=current_user.id,
        notes=payload.notes,
    ).unwrap()
    _audit(
        db,
        request,
        current_user,
        "invoice.marked_paid",
        invoice_id,
        {
            "payment_method": payload.payment_method,
            "payment_id": outcome.payment.id if outcome.payment else None,
            "amount": outcome.payment.amount if outcome.payment else None,
        },
    )
    return _serialize(outcome.invoice)


@router.get("/{invoice_id}/payments", response_model=List[PaymentRead])
def list_payments(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[PaymentRead]:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    payments = db.execute(
        select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.paid_at.desc(), Payment.id.desc())
    ).scalars()
    return [PaymentRead.model_validate(payment) for payment in payments]


@router.post("/{invoice_id}/payments", response_model=PaymentRecorded, status_code=status.HTTP_201_CREATED)
def add_payment(
    invoice_id: int,
    payload: PaymentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:payment")),
) -> PaymentRecorded:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    outcome = ledger.add_payment(
        db,
        invoice_id=invoice_id,
        amount=payload.amount,
        payment_method=payload.payment_method.value if payload.payment_method else None,
        reference=payload.reference,
        notes=payload.notes,
        paid_at=payload.paid_at,
        actor_user_id=current_user.id,
    ).unwrap()
    _audit(
        db,
        request,
        current_user,
        "payment.recorded",
        invoice_id,
        {
            "payment_id": outcome.payment.id,
            "amount": outcome.payment.amount,
            "payment_method": outcome.payment.payment_method,
            "is_paid_in_full": outcome.is_paid_in_full,
        },
    )
    return PaymentRecorded(
        payment=PaymentRead.model_validate(outcome.payment),
        is_paid_in_full=outcome.is_paid_in_full,
        amount_paid=outcome.invoice.amount_paid,
    )


@router.delete("/{invoice_id}/payments", response_model=PaymentRemoved)
def delete_payment(
    invoice_id: int,
    request: Request,
    payment_id: int = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:payment")),
) -> PaymentRemoved:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    outcome = ledger.delete_payment(db, invoice_id=invoice_id, payment_id=payment_id).unwrap()
    _audit(
        db,
        request,
        current_user,
        "payment.deleted",
        invoice_id,
        {"payment_id": payment_id, "amount": outcome.amount},
    )
    return PaymentRemoved(amount_paid=outcome.invoice.amount_paid, status=outcome.invoice.status)


@router.get("/{invoice_id}/status-history", response_model=List[StatusHistoryRead])
def list_status_history(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[StatusHistoryRead]:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    rows = db.execute(
        select(StatusHistory)
        .where(StatusHistory.invoice_id == invoice_id)
        .order_by(StatusHistory.changed_at.desc(), StatusHistory.id.desc())
    ).scalars()
    return [StatusHistoryRead.model_validate(row) for row in rows]


@router.get("/{invoice_id}/audit", response_model=List[AuditLogRead])
def list_audit_entries(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[AuditLogRead]:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    rows = db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == "invoice", AuditLog.entity_id == str(invoice_id))
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    ).scalars()
    return [AuditLogRead.model_validate(row) for row in rows]
