from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from invoicedesk.core.deps import get_client_context, get_current_user
from invoicedesk.core.guards import write_guard
from invoicedesk.db.session import get_db
from invoicedesk.db.transaction import Ok, Result, run_in_transaction
from invoicedesk.models.user import User
from invoicedesk.schemas.account import AccountSettingsRead, AccountSettingsUpdate
from invoicedesk.services import audit

router = APIRouter(prefix="/api/settings", tags=["settings"])
logger = logging.getLogger(__name__)


@router.get("", response_model=AccountSettingsRead)
def read_settings(current_user: User = Depends(get_current_user)) -> AccountSettingsRead:
    return AccountSettingsRead.model_validate(current_user)


@router.put("", response_model=AccountSettingsRead)
def update_settings(
    payload: AccountSettingsUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(write_guard("settings:update")),
) -> AccountSettingsRead:
    changes = payload.model_dump(exclude_unset=True)

    def body(session: Session) -> Result[User]:
        user = session.get(User, current_user.id)
        for field, value in changes.items():
            setattr(user, field, value)
        session.flush()
        return Ok(user)

    user = run_in_transaction(db, body, name="update_settings").unwrap()
    logger.info("settings_updated user_id=%s fields=%s", user.id, ",".join(sorted(changes)))
    audit.record_audit(
        db,
        actor_user_id=user.id,
        action="settings.updated",
        entity_type="user",
        entity_id=user.id,
        details={"fields": sorted(changes)},
        client=get_client_context(request),
    )
    return AccountSettingsRead.model_validate(user)
