from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from invoicedesk.core.authz import require_invoice_owner
from invoicedesk.core.deps import get_client_context, get_current_user, log_security_event
from invoicedesk.core.errors import FileRejectedError
from invoicedesk.core.guards import write_guard
from invoicedesk.core.settings import settings
from invoicedesk.db.session import get_db
from invoicedesk.models.enums import AttachmentType
from invoicedesk.models.user import User
from invoicedesk.schemas.invoice import AttachmentRead
from invoicedesk.services import attachments, audit, storage

router = APIRouter(prefix="/api/invoices", tags=["attachments"])


@router.get("/{invoice_id}/attachments", response_model=List[AttachmentRead])
def list_invoice_attachments(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[AttachmentRead]:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    return [AttachmentRead.model_validate(row) for row in attachments.list_attachments(db, invoice_id=invoice_id)]


@router.post("/{invoice_id}/attachments", response_model=AttachmentRead, status_code=status.HTTP_201_CREATED)
@router.post("/{invoice_id}/receipts", response_model=AttachmentRead, status_code=status.HTTP_201_CREATED)
def upload_invoice_attachment(
    invoice_id: int,
    request: Request,
    file: UploadFile = File(...),
    attachment_type: AttachmentType = Form(default=AttachmentType.RECEIPT),
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:upload")),
) -> AttachmentRead:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)

    # One byte past the limit is enough to reject without buffering the rest.
    content = file.file.read(settings.max_upload_bytes + 1)
    try:
        accepted = attachments.check_upload(
            content,
            file.content_type,
            file.filename,
            max_size=settings.max_upload_bytes,
        )
    except FileRejectedError as exc:
        log_security_event(
            "file_rejected",
            request=request,
            user_id=current_user.id,
            extra={"invoice_id": invoice_id, "reason": exc.reason, "declared_type": file.content_type},
        )
        raise

    attachment = attachments.store_attachment(
        db,
        invoice_id=invoice_id,
        accepted=accepted,
        content=content,
        attachment_type=attachment_type,
        actor_user_id=current_user.id,
    ).unwrap()
    audit.record_audit(
        db,
        actor_user_id=current_user.id,
        action="attachment.uploaded",
        entity_type="invoice",
        entity_id=invoice_id,
        details={
            "attachment_id": attachment.id,
            "filename": attachment.filename,
            "mime_type": attachment.mime_type,
            "size": attachment.size,
        },
        client=get_client_context(request),
    )
    return AttachmentRead.model_validate(attachment)


@router.get("/{invoice_id}/attachments/{attachment_id}/download")
def download_invoice_attachment(
    invoice_id: int,
    attachment_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    attachment = attachments.get_attachment(db, invoice_id=invoice_id, attachment_id=attachment_id)
    path = storage.attachment_file(attachment.storage_path)
    return FileResponse(path=path, filename=attachment.filename, media_type=attachment.mime_type)


@router.delete("/{invoice_id}/attachments/{attachment_id}", response_model=dict)
def delete_invoice_attachment(
    invoice_id: int,
    attachment_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("invoice:upload")),
) -> dict:
    require_invoice_owner(db, invoice_id=invoice_id, actor_id=current_user.id, request=request)
    removed = attachments.delete_attachment(db, invoice_id=invoice_id, attachment_id=attachment_id).unwrap()
    audit.record_audit(
        db,
        actor_user_id=current_user.id,
        action="attachment.deleted",
        entity_type="invoice",
        entity_id=invoice_id,
        details={"attachment_id": attachment_id, "filename": removed.filename},
        client=get_client_context(request),
    )
    return {"status": "ok", "attachment_id": attachment_id}
