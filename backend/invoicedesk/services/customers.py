from __future__ import annotations

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from invoicedesk.core.errors import NotFoundError
from invoicedesk.db.transaction import Err, Ok, Result, run_in_transaction
from invoicedesk.models.customer import Customer
from invoicedesk.schemas.customer import CustomerWrite

logger = logging.getLogger(__name__)

CUSTOMER_NOT_FOUND = "Customer not found"


def list_customers(db: Session, *, owner_id: int) -> List[Customer]:
    return list(
        db.execute(
            select(Customer).where(Customer.owner_id == owner_id).order_by(Customer.name.asc(), Customer.id.asc())
        ).scalars()
    )


def _owned(session: Session, customer_id: int, owner_id: int) -> Customer | None:
    # Someone else's customer looks exactly like a missing one.
    return session.execute(
        select(Customer).where(Customer.id == customer_id, Customer.owner_id == owner_id)
    ).scalar_one_or_none()


def create_customer(db: Session, *, owner_id: int, payload: CustomerWrite) -> Result[Customer]:
    def body(session: Session) -> Result[Customer]:
        customer = Customer(owner_id=owner_id, **payload.model_dump())
        session.add(customer)
        session.flush()
        return Ok(customer)

    result = run_in_transaction(db, body, name="create_customer")
    if result.ok:
        logger.info("customer_created customer_id=%s owner_id=%s", result.value.id, owner_id)
    return result


def update_customer(db: Session, *, owner_id: int, customer_id: int, payload: CustomerWrite) -> Result[Customer]:
    def body(session: Session) -> Result[Customer]:
        customer = _owned(session, customer_id, owner_id)
        if customer is None:
            return Err(NotFoundError(CUSTOMER_NOT_FOUND))
        for field, value in payload.model_dump().items():
            setattr(customer, field, value)
        session.flush()
        return Ok(customer)

    return run_in_transaction(db, body, name="update_customer")


def delete_customer(db: Session, *, owner_id: int, customer_id: int) -> Result[int]:
    def body(session: Session) -> Result[int]:
        customer = _owned(session, customer_id, owner_id)
        if customer is None:
            return Err(NotFoundError(CUSTOMER_NOT_FOUND))
        session.delete(customer)
        session.flush()
        return Ok(customer_id)

    return run_in_transaction(db, body, name="delete_customer")
