from __future__ import annotations

import json
import time
from decimal import Decimal

import pytest

from invoicedesk.core.settings import settings
from invoicedesk.models.enums import InvoiceStatus
from invoicedesk.models.invoice import Payment
from invoicedesk.models.webhook_event import ProcessedWebhookEvent
from invoicedesk.services.ledger import add_payment
from invoicedesk.services.payment_provider import (
    WebhookSignatureError,
    signature_header,
    verify_signature,
)

from conftest import make_invoice

SECRET = "whsec_test"
URL = "/api/webhooks/payments"


@pytest.fixture()
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "payment_webhook_secret", SECRET)
    return SECRET


def completed_event(invoice_id: int, event_id: str = "evt_1", payment_status: str = "paid") -> dict:
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "payment_status": payment_status,
                "payment_intent": "pi_123",
                "metadata": {"invoice_id": str(invoice_id)},
            }
        },
    }


def deliver(api, event: dict, *, secret: str = SECRET, timestamp: int | None = None):
    body = json.dumps(event).encode()
    header = signature_header(body, secret, timestamp or int(time.time()))
    return api.post(URL, content=body, headers={"stripe-signature": header, "content-type": "application/json"})


def test_verify_signature_checks_secret_and_timestamp():
    body = b'{"id": "evt"}'
    verify_signature(body, signature_header(body, SECRET, 1000), SECRET, tolerance_seconds=300, now=1100)

    with pytest.raises(WebhookSignatureError):
        verify_signature(body, signature_header(body, "other", 1000), SECRET, tolerance_seconds=300, now=1100)
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, signature_header(body, SECRET, 1000), SECRET, tolerance_seconds=300, now=2000)
    with pytest.raises(WebhookSignatureError):
        verify_signature(body + b" ", signature_header(body, SECRET, 1000), SECRET, tolerance_seconds=300, now=1100)
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, None, SECRET, tolerance_seconds=300, now=1100)
    with pytest.raises(WebhookSignatureError):
        verify_signature(body, "t=abc,v1=00", SECRET, tolerance_seconds=300, now=1100)


def test_missing_secret_is_service_unavailable(api, monkeypatch):
    monkeypatch.setattr(settings, "payment_webhook_secret", None)
    response = api.post(URL, content=b"{}", headers={"stripe-signature": "t=1,v1=00"})
    assert response.status_code == 503
    assert response.json()["error"]["kind"] == "webhook_not_configured"


def test_bad_signature_is_rejected(api, db, owner, webhook_secret):
    invoice = make_invoice(db, owner)
    response = deliver(api, completed_event(invoice.id), secret="wrong")
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "invalid_signature"

    db.refresh(invoice)
    assert invoice.status == InvoiceStatus.SENT


def test_confirmed_checkout_pays_the_invoice_once(api, db, owner, webhook_secret):
    invoice = make_invoice(db, owner)
    add_payment(db, invoice_id=invoice.id, amount=Decimal("40.00"))

    first = deliver(api, completed_event(invoice.id))
    assert first.status_code == 200
    assert first.json() == {"received": True, "outcome": "paid"}

    db.refresh(invoice)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.amount_paid == Decimal("100.00")
    assert invoice.payment_method == "provider"
    assert invoice.provider_payment_reference == "pi_123"

    replay = deliver(api, completed_event(invoice.id))
    assert replay.json()["outcome"] == "duplicate"

    payments = db.query(Payment).filter(Payment.invoice_id == invoice.id).all()
    assert sorted(payment.amount for payment in payments) == [Decimal("40.00"), Decimal("60.00")]
    assert db.query(ProcessedWebhookEvent).count() == 1


def test_second_event_for_paid_invoice_is_acknowledged(api, db, owner, webhook_secret):
    invoice = make_invoice(db, owner)
    deliver(api, completed_event(invoice.id, event_id="evt_a"))

    response = deliver(api, completed_event(invoice.id, event_id="evt_b"))
    assert response.json()["outcome"] == "already_paid"
    assert db.query(Payment).filter(Payment.invoice_id == invoice.id).count() == 1


def test_cancelled_invoice_is_left_untouched(api, db, owner, webhook_secret):
    invoice = make_invoice(db, owner, status=InvoiceStatus.CANCELLED)

    response = deliver(api, completed_event(invoice.id))
    assert response.json()["outcome"] == "invoice_cancelled"

    db.refresh(invoice)
    assert invoice.status == InvoiceStatus.CANCELLED
    assert invoice.amount_paid == Decimal("0.00")


@pytest.mark.parametrize(
    "event, outcome",
    [
        (completed_event(1, event_id="evt_unpaid", payment_status="unpaid"), "awaiting_payment"),
        ({"id": "evt_x", "type": "checkout.session.expired", "data": {"object": {}}}, "session_expired"),
        ({"id": "evt_y", "type": "customer.created", "data": {"object": {}}}, "ignored"),
        (
            {"id": "evt_z", "type": "checkout.session.completed", "data": {"object": {"payment_status": "paid"}}},
            "missing_invoice",
        ),
        (completed_event(9999, event_id="evt_unknown"), "unknown_invoice"),
    ],
)
def test_other_events_are_recorded_without_ledger_changes(api, db, webhook_secret, event, outcome):
    response = deliver(api, event)
    assert response.status_code == 200
    assert response.json()["outcome"] == outcome
    assert db.query(Payment).count() == 0


def test_malformed_event_is_rejected(api, webhook_secret):
    response = deliver(api, {"type": "checkout.session.completed"})
    assert response.status_code == 400
