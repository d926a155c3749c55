"""Atomic commit/rollback boundary for ledger and status mutations.

Transaction bodies do not raise to abort. They return ``Ok(value)`` to commit
or ``Err(error)`` to roll back, so the outcome is an ordinary value rather
than an exception travelling across the store boundary::

    def body(db: Session) -> Result[Invoice]:
        invoice = lock_invoice(db, invoice_id)
        if invoice is None:
            return Err(NotFoundError("Invoice not found"))
        ...
        return Ok(invoice)

    invoice = run_in_transaction(db, body).unwrap()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, NoReturn, TypeVar, Union

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from invoicedesk.core.errors import AppError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: AppError

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> NoReturn:
        raise self.error


Result = Union[Ok[T], Err]


def _rollback_quietly(db: Session) -> None:
    try:
        db.rollback()
    except SQLAlchemyError:
        logger.exception("transaction_rollback_failed")


def _storage_error(exc: SQLAlchemyError) -> StorageError:
    if isinstance(exc, OperationalError):
        return StorageError("Database unavailable or timed out, please retry")
    return StorageError()


def run_in_transaction(db: Session, body: Callable[[Session], Result[T]], *, name: str = "transaction") -> Result[T]:
    """Run ``body`` inside one transaction on ``db``.

    Commits when the body returns ``Ok``; rolls back when it returns ``Err``,
    when the store raises, or when the body raises unexpectedly (the
    exception is re-raised after the rollback).
    """
    if db.in_transaction():
        # Close the read-only transaction opened by earlier gate checks so the
        # body's locking reads start from committed state.
        db.commit()

    try:
        result = body(db)
    except SQLAlchemyError as exc:
        logger.warning("%s_store_failure: %s", name, exc.__class__.__name__)
        _rollback_quietly(db)
        return Err(_storage_error(exc))
    except Exception:
        _rollback_quietly(db)
        raise

    if isinstance(result, Err):
        _rollback_quietly(db)
        return result

    try:
        db.commit()
    except SQLAlchemyError as exc:
        logger.warning("%s_commit_failed: %s", name, exc.__class__.__name__)
        _rollback_quietly(db)
        return Err(_storage_error(exc))
    return result
