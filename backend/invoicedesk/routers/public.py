"""Unauthenticated invoice lookups by payment link or view link.

Both tokens are 64 hex characters. Lookups are rate limited per client IP
and expose only what the client already received by email: no internal ids,
ledger rows or owner account details.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from invoicedesk.core.deps import client_ip, get_rate_limiter
from invoicedesk.core.guards import enforce_rate_limit
from invoicedesk.core.rate_limit import RateLimiter
from invoicedesk.core.settings import settings
from invoicedesk.db.session import get_db
from invoicedesk.models.invoice import Invoice
from invoicedesk.schemas.invoice import PublicBusiness, PublicInvoice, PublicItem
from invoicedesk.services import invoices
from invoicedesk.services.email import payment_link
from invoicedesk.services.invoice_state import TERMINAL_STATUSES, display_status_for

router = APIRouter(prefix="/api", tags=["public"])


def public_view(invoice: Invoice) -> PublicInvoice:
    owner = invoice.owner
    payable = settings.external_payments_enabled and invoice.status not in TERMINAL_STATUSES
    return PublicInvoice(
        invoice_number=invoice.invoice_number,
        client_name=invoice.client_name,
        client_email=invoice.client_email,
        client_address=invoice.client_address,
        description=invoice.description,
        currency=invoice.currency,
        items=[PublicItem.model_validate(item) for item in invoice.items],
        subtotal=invoice.subtotal,
        tax=invoice.tax,
        total=invoice.total,
        amount_paid=invoice.amount_paid,
        balance_due=invoice.balance_due,
        status=display_status_for(invoice),
        due_date=invoice.due_date,
        created_at=invoice.created_at,
        business=PublicBusiness(
            name=owner.business_name or owner.full_name,
            email=owner.business_email,
            phone=owner.business_phone,
            address=owner.business_address,
        ),
        payment_instructions=owner.payment_notes,
        pay_url=payment_link(invoice.payment_token) if payable else None,
    )


def _throttle(request: Request, limiter: RateLimiter) -> None:
    enforce_rate_limit(limiter, request=request, action="public:view", actor=client_ip(request))


@router.get("/pay/{token}", response_model=PublicInvoice)
def invoice_for_payment(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> PublicInvoice:
    _throttle(request, limiter)
    return public_view(invoices.find_by_payment_token(db, token=token))


@router.get("/public/invoice/{token}", response_model=PublicInvoice)
def invoice_for_viewer(
    token: str,
    request: Request,
    db: Session = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> PublicInvoice:
    _throttle(request, limiter)
    invoice = invoices.record_public_view(db, token=token).unwrap()
    return public_view(invoice)
