from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from invoicedesk.core.deps import log_security_event
from invoicedesk.core.errors import ValidationError
from invoicedesk.core.settings import settings
from invoicedesk.db.session import get_db
from invoicedesk.services.payment_provider import (
    SIGNATURE_HEADER,
    WebhookNotConfiguredError,
    WebhookSignatureError,
    handle_event,
    verify_signature,
)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/payments")
async def payment_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    secret = settings.payment_webhook_secret
    if not secret:
        raise WebhookNotConfiguredError()

    payload = await request.body()
    try:
        verify_signature(
            payload,
            request.headers.get(SIGNATURE_HEADER),
            secret,
            tolerance_seconds=settings.payment_webhook_tolerance_seconds,
        )
    except WebhookSignatureError as exc:
        log_security_event("webhook_signature_invalid", request=request, extra={"detail": exc.message})
        raise

    try:
        event = json.loads(payload)
    except ValueError:
        raise ValidationError("Malformed webhook payload")
    if not isinstance(event, dict):
        raise ValidationError("Malformed webhook payload")

    outcome = await run_in_threadpool(handle_event, db, event)
    return {"received": True, "outcome": outcome.outcome}
