from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from invoicedesk.core.errors import StorageError, ValidationError
from invoicedesk.db.transaction import Err, Ok, run_in_transaction
from invoicedesk.models.user import User


def new_user(email: str) -> User:
    return User(email=email, hashed_password="x", is_active=True)


def find(db, email: str):
    return db.query(User).filter(User.email == email).one_or_none()


def test_ok_result_commits(db):
    def body(session):
        user = new_user("kept@example.com")
        session.add(user)
        return Ok(user)

    result = run_in_transaction(db, body)
    assert result.ok
    db.rollback()
    assert find(db, "kept@example.com") is not None


def test_err_result_rolls_back(db):
    def body(session):
        session.add(new_user("dropped@example.com"))
        session.flush()
        return Err(ValidationError("nope"))

    result = run_in_transaction(db, body)
    assert not result.ok
    assert result.error.message == "nope"
    assert find(db, "dropped@example.com") is None


def test_store_error_becomes_storage_error(db):
    db.add(new_user("dup@example.com"))
    db.commit()

    def body(session):
        session.add(new_user("dup@example.com"))
        session.flush()
        return Ok(None)

    result = run_in_transaction(db, body)
    assert isinstance(result.error, StorageError)
    assert result.error.status_code == 503
    assert result.error.retryable
    assert db.query(User).count() == 1


def test_operational_error_asks_for_retry(db):
    def body(session):
        raise OperationalError("UPDATE invoices", {}, Exception("database is locked"))

    result = run_in_transaction(db, body)
    assert isinstance(result.error, StorageError)
    assert "retry" in result.error.message


def test_unexpected_exception_rolls_back_and_propagates(db):
    def body(session):
        session.add(new_user("boom@example.com"))
        session.flush()
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        run_in_transaction(db, body)
    assert find(db, "boom@example.com") is None
