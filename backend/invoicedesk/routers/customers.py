from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from invoicedesk.core.deps import get_client_context, get_current_user
from invoicedesk.core.guards import write_guard
from invoicedesk.db.session import get_db
from invoicedesk.models.user import User
from invoicedesk.schemas.customer import CustomerRead, CustomerWrite
from invoicedesk.services import audit, customers

router = APIRouter(prefix="/api/customers", tags=["customers"])


def _audit(db: Session, request: Request, user: User, action: str, customer_id: int) -> None:
    audit.record_audit(
        db,
        actor_user_id=user.id,
        action=action,
        entity_type="customer",
        entity_id=customer_id,
        client=get_client_context(request),
    )


@router.get("", response_model=List[CustomerRead])
def list_customers(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[CustomerRead]:
    return [CustomerRead.model_validate(row) for row in customers.list_customers(db, owner_id=current_user.id)]


@router.post("", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerWrite,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("customer:create")),
) -> CustomerRead:
    customer = customers.create_customer(db, owner_id=current_user.id, payload=payload).unwrap()
    _audit(db, request, current_user, "customer.created", customer.id)
    return CustomerRead.model_validate(customer)


@router.put("/{customer_id}", response_model=CustomerRead)
def update_customer(
    customer_id: int,
    payload: CustomerWrite,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("customer:update")),
) -> CustomerRead:
    customer = customers.update_customer(
        db, owner_id=current_user.id, customer_id=customer_id, payload=payload
    ).unwrap()
    _audit(db, request, current_user, "customer.updated", customer_id)
    return CustomerRead.model_validate(customer)


@router.delete("/{customer_id}", response_model=dict)
def delete_customer(
    customer_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("customer:delete")),
) -> dict:
    customers.delete_customer(db, owner_id=current_user.id, customer_id=customer_id).unwrap()
    _audit(db, request, current_user, "customer.deleted", customer_id)
    return {"success": True}
