from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from invoicedesk.core.errors import NOT_FOUND_MESSAGE, FileRejectedError, FileTooLargeError, NotFoundError
from invoicedesk.core.observability import file_rejections_total
from invoicedesk.db.transaction import Err, Ok, Result, run_in_transaction
from invoicedesk.models.enums import AttachmentType
from invoicedesk.models.invoice import Attachment, Invoice
from invoicedesk.services import storage
from invoicedesk.services.file_validation import AcceptedFile, RejectedFile, RejectReason, validate_upload

logger = logging.getLogger(__name__)


def check_upload(content: bytes, declared_mime_type: Optional[str], filename: Optional[str], *, max_size: int) -> AcceptedFile:
    """Run the content validator and raise the matching error on rejection."""
    outcome = validate_upload(content, declared_mime_type, filename, max_size=max_size)
    if isinstance(outcome, RejectedFile):
        file_rejections_total.labels(reason=outcome.reason).inc()
        if outcome.reason == RejectReason.TOO_LARGE:
            raise FileTooLargeError(outcome.message, reason=outcome.reason)
        raise FileRejectedError(outcome.message, reason=outcome.reason)
    return outcome


def list_attachments(db: Session, *, invoice_id: int) -> List[Attachment]:
    return list(
        db.execute(
            select(Attachment).where(Attachment.invoice_id == invoice_id).order_by(Attachment.created_at.asc())
        ).scalars()
    )


def get_attachment(db: Session, *, invoice_id: int, attachment_id: int) -> Attachment:
    attachment = db.execute(
        select(Attachment).where(Attachment.id == attachment_id, Attachment.invoice_id == invoice_id)
    ).scalar_one_or_none()
    if attachment is None:
        raise NotFoundError("Attachment not found")
    return attachment


def store_attachment(
    db: Session,
    *,
    invoice_id: int,
    accepted: AcceptedFile,
    content: bytes,
    attachment_type: AttachmentType,
    actor_user_id: int,
) -> Result[Attachment]:
    """Write the bytes, then the row. A failed row write removes the bytes again."""
    storage_path = storage.save_attachment_bytes(invoice_id=invoice_id, extension=accepted.extension, content=content)

    def body(session: Session) -> Result[Attachment]:
        if session.get(Invoice, invoice_id) is None:
            return Err(NotFoundError(NOT_FOUND_MESSAGE))
        attachment = Attachment(
            invoice_id=invoice_id,
            uploaded_by_user_id=actor_user_id,
            filename=accepted.filename,
            storage_path=storage_path,
            mime_type=accepted.mime_type,
            size=accepted.size,
            attachment_type=attachment_type.value,
        )
        session.add(attachment)
        session.flush()
        return Ok(attachment)

    result = run_in_transaction(db, body, name="store_attachment")
    if not result.ok:
        storage.remove_attachment_bytes(storage_path)
    return result


def delete_attachment(db: Session, *, invoice_id: int, attachment_id: int) -> Result[Attachment]:
    def body(session: Session) -> Result[Attachment]:
        attachment = session.execute(
            select(Attachment).where(Attachment.id == attachment_id, Attachment.invoice_id == invoice_id)
        ).scalar_one_or_none()
        if attachment is None:
            return Err(NotFoundError("Attachment not found"))
        session.delete(attachment)
        session.flush()
        return Ok(attachment)

    result = run_in_transaction(db, body, name="delete_attachment")
    if result.ok:
        storage.remove_attachment_bytes(result.value.storage_path)
    return result
