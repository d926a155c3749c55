from __future__ import annotations

from decimal import Decimal

from invoicedesk.core.settings import settings
from invoicedesk.models.enums import InvoiceStatus
from invoicedesk.models.invoice import Invoice

from conftest import make_invoice

PAY_TOKEN = "a" * 64
VIEW_TOKEN = "b" * 64


def linked_invoice(db, owner, **overrides) -> Invoice:
    fields = dict(payment_token=PAY_TOKEN, view_token=VIEW_TOKEN, amount_paid=Decimal("40.00"))
    fields.update(overrides)
    return make_invoice(db, owner, **fields)


def test_payment_link_shows_public_fields_only(api, db, owner):
    owner.payment_notes = "Bank transfer to 12-34-56"
    owner.business_email = "hello@owner.example"
    db.commit()
    linked_invoice(db, owner)

    response = api.get(f"/api/pay/{PAY_TOKEN}")
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["invoice_number"] == "INV-00001"
    assert body["status"] == "partial"
    assert body["balance_due"] == "60.00"
    assert body["business"] == {
        "name": "Owner Studio",
        "email": "hello@owner.example",
        "phone": None,
        "address": None,
    }
    assert body["payment_instructions"] == "Bank transfer to 12-34-56"
    assert body["pay_url"] is None
    for hidden in ("id", "owner_id", "payment_token", "view_token", "payments"):
        assert hidden not in body


def test_payment_link_offers_checkout_only_while_payable(api, db, owner, monkeypatch):
    monkeypatch.setattr(settings, "payment_provider_secret_key", "sk_test")
    monkeypatch.setattr(settings, "app_base_url", "https://app.example")
    invoice = linked_invoice(db, owner)

    assert api.get(f"/api/pay/{PAY_TOKEN}").json()["pay_url"] == f"https://app.example/pay/{PAY_TOKEN}"

    invoice.status = InvoiceStatus.CANCELLED
    db.commit()
    cancelled = api.get(f"/api/pay/{PAY_TOKEN}").json()
    assert cancelled["status"] == "cancelled"
    assert cancelled["pay_url"] is None


def test_malformed_and_unknown_payment_tokens(api, db, owner):
    linked_invoice(db, owner)

    short = api.get("/api/pay/abc123")
    assert short.status_code == 400
    assert short.json()["error"] == {"kind": "validation_error", "message": "Invalid payment token"}

    unknown = api.get(f"/api/pay/{'c' * 64}")
    assert unknown.status_code == 404
    assert unknown.json()["error"]["message"] == "Invoice not found or payment link has expired"

    # The view token is not a payment token.
    assert api.get(f"/api/pay/{VIEW_TOKEN}").status_code == 404


def test_view_link_counts_each_visit(api, db, owner):
    invoice = linked_invoice(db, owner)
    assert invoice.view_count == 0
    assert invoice.last_viewed_at is None

    first = api.get(f"/api/public/invoice/{VIEW_TOKEN}")
    assert first.status_code == 200, first.text
    assert first.json()["invoice_number"] == invoice.invoice_number
    assert api.get(f"/api/public/invoice/{VIEW_TOKEN}").status_code == 200

    db.refresh(invoice)
    assert invoice.view_count == 2
    assert invoice.last_viewed_at is not None
    assert invoice.last_viewed_at.utcoffset().total_seconds() == 0


def test_bad_view_tokens_count_nothing(api, db, owner):
    invoice = linked_invoice(db, owner)

    malformed = api.get("/api/public/invoice/not-hex")
    assert malformed.status_code == 400
    assert malformed.json()["error"]["message"] == "Invalid view token"

    assert api.get(f"/api/public/invoice/{PAY_TOKEN}").status_code == 404

    db.refresh(invoice)
    assert invoice.view_count == 0


def test_public_lookups_are_rate_limited_per_client(api, db, owner, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_view_max", 2)
    linked_invoice(db, owner)

    assert api.get(f"/api/pay/{PAY_TOKEN}").status_code == 200
    assert api.get(f"/api/public/invoice/{VIEW_TOKEN}").status_code == 200

    limited = api.get(f"/api/pay/{PAY_TOKEN}")
    assert limited.status_code == 429
    assert limited.json()["error"]["kind"] == "rate_limited"

    other_client = api.get(f"/api/pay/{PAY_TOKEN}", headers={"X-Forwarded-For": "203.0.113.9"})
    assert other_client.status_code == 200
