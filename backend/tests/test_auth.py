from __future__ import annotations

from invoicedesk.core.deps import get_current_user
from invoicedesk.core.settings import settings
from invoicedesk.main import app
from invoicedesk.models.user import User
from invoicedesk.routers import auth as auth_router


def register(api, email="new@example.com", password="correct-horse"):
    return api.post("/api/auth/register", json={"email": email, "password": password, "full_name": "New User"})


def test_register_login_and_use_token(api):
    app.dependency_overrides.pop(get_current_user)

    created = register(api, email="New@Example.com")
    assert created.status_code == 201
    assert created.json()["email"] == "new@example.com"
    assert "hashed_password" not in created.json()

    login = api.post("/api/auth/login", json={"email": "new@example.com", "password": "correct-horse"})
    assert login.status_code == 200
    token = login.json()["access_token"]
    assert login.json()["token_type"] == "bearer"

    listing = api.get("/api/invoices", headers={"Authorization": f"Bearer {token}"})
    assert listing.status_code == 200
    assert listing.json() == []


def test_duplicate_registration_is_rejected(api):
    assert register(api).status_code == 201
    duplicate = register(api)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"]["message"] == "Email already registered"


def test_registration_losing_unique_email_race_is_rejected(api, db, owner, monkeypatch):
    # Both requests pass the lookup; the unique index decides.
    monkeypatch.setattr(auth_router, "email_taken", lambda db, email: False)

    response = register(api, email=owner.email)

    assert response.status_code == 400
    assert response.json()["error"] == {"kind": "validation_error", "message": "Email already registered"}
    assert db.query(User).filter(User.email == owner.email).count() == 1


def test_short_password_is_rejected(api):
    assert register(api, password="short").status_code == 400


def test_wrong_password_is_unauthenticated(api):
    register(api)
    response = api.post("/api/auth/login", json={"email": "new@example.com", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid email or password"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_login_attempts_are_rate_limited(api, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_login_max", 2)
    for _ in range(2):
        assert api.post("/api/auth/login", json={"email": "nobody@example.com", "password": "x"}).status_code == 401

    limited = api.post("/api/auth/login", json={"email": "nobody@example.com", "password": "x"})
    assert limited.status_code == 429
    assert "Retry-After" in limited.headers


def test_healthcheck(api):
    response = api.get("/healthz")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
