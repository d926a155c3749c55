from __future__ import annotations

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from invoicedesk.core.deps import log_security_event
from invoicedesk.core.errors import AuthorizationError
from invoicedesk.models.invoice import Invoice


def is_owner(db: Session, invoice_id: int, actor_id: int) -> bool:
    """One query for existence and ownership so callers cannot tell the two apart."""
    found = db.execute(
        select(Invoice.id).where(Invoice.id == invoice_id, Invoice.owner_id == actor_id)
    ).scalar_one_or_none()
    return found is not None


def require_invoice_owner(db: Session, *, invoice_id: int, actor_id: int, request: Request | None = None) -> None:
    if is_owner(db, invoice_id, actor_id):
        return
    if request is not None:
        log_security_event(
            "invoice_access_denied",
            request=request,
            user_id=actor_id,
            extra={"invoice_id": invoice_id},
        )
    raise AuthorizationError()
