from __future__ import annotations

from invoicedesk.models.audit import AuditLog

INVOICE_PAYLOAD = {
    "client_name": "Acme Ltd",
    "client_email": "billing@acme.example",
    "description": "Retainer",
    "items": [{"description": "Support", "unit_price": "90.00"}],
}


def test_read_settings(api, db, owner):
    response = api.get("/api/settings")
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == owner.email
    assert body["business_name"] == "Owner Studio"
    assert body["invoice_prefix"] == "INV"
    assert body["currency"] == "USD"
    assert body["default_due_days"] == 30
    assert "hashed_password" not in body


def test_partial_update_changes_only_given_fields(api, db, owner):
    response = api.put(
        "/api/settings",
        json={"invoice_prefix": "ACME", "currency": "eur", "business_email": "Hello@Owner.Example"},
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["invoice_prefix"] == "ACME"
    assert body["currency"] == "EUR"
    assert body["business_email"] == "hello@owner.example"
    assert body["business_name"] == "Owner Studio"
    assert body["default_due_days"] == 30

    created = api.post("/api/invoices", json=INVOICE_PAYLOAD).json()
    assert created["invoice_number"] == "ACME-00001"
    assert created["currency"] == "EUR"

    entry = db.query(AuditLog).filter(AuditLog.action == "settings.updated").one()
    assert entry.entity_type == "user"
    assert entry.details_json == {"fields": ["business_email", "currency", "invoice_prefix"]}


def test_invalid_settings_are_rejected(api, db, owner):
    for body in (
        {"invoice_prefix": "INV 2024"},
        {"invoice_prefix": ""},
        {"currency": "E1R"},
        {"default_due_days": 400},
        {"email": "new@example.com"},
    ):
        response = api.put("/api/settings", json=body)
        assert response.status_code == 400, body
        assert response.json()["error"]["kind"] == "validation_error"

    db.refresh(owner)
    assert owner.invoice_prefix == "INV"
    assert owner.email == "owner@example.com"


def test_cross_origin_settings_update_is_rejected(api, db, owner):
    response = api.put("/api/settings", json={"business_name": "Evil"}, headers={"Origin": "https://evil.example"})
    assert response.status_code == 403
    db.refresh(owner)
    assert owner.business_name == "Owner Studio"
