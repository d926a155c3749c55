"""Signed webhook events from the hosted checkout provider.

Signatures use the ``t=<unix>,v1=<hex>`` header scheme: ``v1`` is the
HMAC-SHA256 of ``"<t>.<raw body>"`` under the shared webhook secret. Each
event id is recorded in ``processed_webhook_events`` inside the same
transaction as its effect, so a replayed event is acknowledged without
touching the ledger again.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import status
from sqlalchemy import select
from sqlalchemy.orm import Session

from invoicedesk.core.errors import AppError, NotFoundError, ValidationError
from invoicedesk.db.transaction import Err, Ok, Result, run_in_transaction
from invoicedesk.models.enums import PaymentMethod
from invoicedesk.models.webhook_event import ProcessedWebhookEvent
from invoicedesk.services.ledger import apply_external_confirmation, record_success

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"

CHECKOUT_COMPLETED = "checkout.session.completed"
ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
ASYNC_FAILED = "checkout.session.async_payment_failed"
SESSION_EXPIRED = "checkout.session.expired"

CONFIRMATION_METHODS = {
    CHECKOUT_COMPLETED: PaymentMethod.PROVIDER.value,
    ASYNC_SUCCEEDED: PaymentMethod.PROVIDER_ACH.value,
}

# Outcomes that mean the invoice row exists and may be referenced.
_INVOICE_OUTCOMES = {"paid", "already_paid", "invoice_cancelled"}


class WebhookSignatureError(ValidationError):
    kind = "invalid_signature"
    default_message = "Invalid webhook signature"


class WebhookNotConfiguredError(AppError):
    kind = "webhook_not_configured"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Online payments are not configured"


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    outcome: str
    invoice_id: Optional[int] = None


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def signature_header(payload: bytes, secret: str, timestamp: int) -> str:
    return f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    *,
    tolerance_seconds: int,
    now: Optional[float] = None,
) -> None:
    if not header:
        raise WebhookSignatureError("Missing signature")

    timestamp: Optional[int] = None
    candidates = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError()
        elif key == "v1" and value:
            candidates.append(value)
    if timestamp is None or not candidates:
        raise WebhookSignatureError()

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        raise WebhookSignatureError("Webhook timestamp outside the tolerance window")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise WebhookSignatureError()


def _invoice_id(data_object: dict) -> Optional[int]:
    metadata = data_object.get("metadata") or {}
    raw = metadata.get("invoice_id") or metadata.get("invoiceId")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def handle_event(db: Session, event: dict) -> WebhookOutcome:
    event_id = event.get("id")
    event_type = event.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
        raise ValidationError("Malformed webhook event")
    data_object = (event.get("data") or {}).get("object") or {}
    invoice_id = _invoice_id(data_object)

    def body(session: Session) -> Result[str]:
        seen = session.execute(
            select(ProcessedWebhookEvent.id).where(ProcessedWebhookEvent.event_id == event_id)
        ).scalar_one_or_none()
        if seen is not None:
            return Ok("duplicate")

        outcome = "ignored"
        if event_type in CONFIRMATION_METHODS:
            if event_type == CHECKOUT_COMPLETED and data_object.get("payment_status") != "paid":
                outcome = "awaiting_payment"
            elif invoice_id is None:
                outcome = "missing_invoice"
            else:
                applied = apply_external_confirmation(
                    session,
                    invoice_id=invoice_id,
                    reference=data_object.get("payment_intent"),
                    payment_method=CONFIRMATION_METHODS[event_type],
                )
                if isinstance(applied, Err):
                    if not isinstance(applied.error, NotFoundError):
                        return applied
                    outcome = "unknown_invoice"
                else:
                    outcome = applied.value
        elif event_type == ASYNC_FAILED:
            outcome = "payment_failed"
        elif event_type == SESSION_EXPIRED:
            outcome = "session_expired"

        session.add(
            ProcessedWebhookEvent(
                event_id=event_id,
                event_type=event_type,
                invoice_id=invoice_id if outcome in _INVOICE_OUTCOMES else None,
                outcome=outcome,
            )
        )
        return Ok(outcome)

    outcome = run_in_transaction(db, body, name="payment_webhook").unwrap()
    logger.info(
        "payment_webhook event_id=%s type=%s invoice_id=%s outcome=%s",
        event_id,
        event_type,
        invoice_id,
        outcome,
    )
    if outcome == "paid":
        record_success("external_confirmation", invoice_id, event_id=event_id)
    return WebhookOutcome(event_id=event_id, event_type=event_type, outcome=outcome, invoice_id=invoice_id)
