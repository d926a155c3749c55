from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal
from typing import List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from invoicedesk.core.deps import get_current_user, get_rate_limiter
from invoicedesk.core.rate_limit import InMemoryRateLimitStore, RateLimiter
from invoicedesk.core.settings import settings
from invoicedesk.db.base import Base
from invoicedesk.db.session import get_db, make_session_factory
from invoicedesk.main import app
from invoicedesk.models.enums import InvoiceStatus
from invoicedesk.models.invoice import Invoice
from invoicedesk.models.user import User
from invoicedesk.services.email import EmailSendResult, get_mailer


class FakeMailer:
    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.error: Exception | None = None

    def __call__(self, *, to_address: str, subject: str, html: str, text: str | None = None) -> EmailSendResult:
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to_address, "subject": subject, "text": text})
        return EmailSendResult(provider="fake", message_id=str(len(self.sent)))


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def make_user(db, email: str = "owner@example.com", **overrides) -> User:
    user = User(
        email=email,
        hashed_password="not-used",
        full_name="Owner",
        business_name="Owner Studio",
        is_active=True,
        **overrides,
    )
    db.add(user)
    db.commit()
    return user


def make_invoice(db, owner: User, *, total: str = "100.00", status: InvoiceStatus = InvoiceStatus.SENT, **overrides) -> Invoice:
    amount = Decimal(total)
    sequence = db.query(Invoice).filter(Invoice.owner_id == owner.id).count() + 1
    fields = dict(
        owner_id=owner.id,
        invoice_number=f"INV-{sequence:05d}",
        client_name="Client Co",
        client_email="billing@client.example",
        description="Consulting",
        subtotal=amount,
        tax=Decimal("0.00"),
        total=amount,
        amount_paid=Decimal("0.00"),
        status=status,
    )
    fields.update(overrides)
    invoice = Invoice(**fields)
    db.add(invoice)
    db.commit()
    return invoice


@pytest.fixture()
def owner(db) -> User:
    return make_user(db)


@pytest.fixture()
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture()
def limiter() -> RateLimiter:
    return RateLimiter(InMemoryRateLimitStore())


@pytest.fixture()
def uploads_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "uploads_dir", str(tmp_path / "uploads"))
    return tmp_path / "uploads"


@pytest.fixture()
def api(db, owner, mailer, limiter, uploads_dir):
    """TestClient acting as ``owner``; set ``api.state["user"]`` to switch actor."""
    state = {"user": owner}

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: state["user"]
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_mailer] = lambda: mailer

    client_instance = TestClient(app)
    client_instance.state = state
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()
