from __future__ import annotations

from decimal import Decimal

from prometheus_client import REGISTRY
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from invoicedesk.core.deps import ClientContext
from invoicedesk.models.audit import AuditLog
from invoicedesk.services import audit
from invoicedesk.services.audit import record_audit

from conftest import make_invoice


def failures() -> float:
    return REGISTRY.get_sample_value("invoicedesk_audit_write_failures_total") or 0.0


class FailingSession:
    def __init__(self) -> None:
        self.rolled_back = False

    def add(self, entry) -> None:
        pass

    def commit(self) -> None:
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk full"))

    def rollback(self) -> None:
        self.rolled_back = True


def test_entry_is_written_with_client_context(db, owner):
    client = ClientContext(ip_address="203.0.113.9", user_agent="pytest", request_id="req-1")
    entry = record_audit(
        db,
        actor_user_id=owner.id,
        action="payment.recorded",
        entity_type="invoice",
        entity_id=7,
        details={"amount": Decimal("60.00")},
        client=client,
    )
    assert entry is not None
    stored = db.query(AuditLog).one()
    assert stored.entity_id == "7"
    assert stored.details_json == {"amount": "60.00"}
    assert stored.ip_address == "203.0.113.9"


def test_commit_failure_is_logged_and_swallowed():
    session = FailingSession()
    before = failures()

    entry = record_audit(session, actor_user_id=1, action="invoice.sent", entity_type="invoice", entity_id=1)

    assert entry is None
    assert session.rolled_back
    assert failures() == before + 1


def test_audit_failure_does_not_fail_the_request(api, db, owner, monkeypatch):
    invoice = make_invoice(db, owner)

    def broken(**kwargs):
        raise SQLAlchemyError("audit table unavailable")

    monkeypatch.setattr(audit, "AuditLog", broken)

    response = api.post(f"/api/invoices/{invoice.id}/payments", json={"amount": "25.00", "payment_method": "cash"})
    assert response.status_code == 201
    assert response.json()["amount_paid"] == "25.00"
    assert db.query(AuditLog).count() == 0
