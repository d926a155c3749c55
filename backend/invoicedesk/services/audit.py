from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from invoicedesk.core.deps import ClientContext
from invoicedesk.core.observability import audit_write_failures_total
from invoicedesk.models.audit import AuditLog

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def record_audit(
    db: Session,
    *,
    actor_user_id: Optional[int],
    action: str,
    entity_type: str,
    entity_id: Optional[int | str],
    details: Optional[dict] = None,
    client: Optional[ClientContext] = None,
) -> Optional[AuditLog]:
    """Append an audit entry in its own transaction.

    Called after the business change has committed. A failed write is
    logged and counted, never raised, so it cannot undo or fail the change.
    """
    try:
        entry = AuditLog(
            actor_user_id=actor_user_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            details_json=_jsonable(details) if details else None,
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        )
        db.add(entry)
        db.commit()
        return entry
    except SQLAlchemyError:
        audit_write_failures_total.inc()
        logger.exception("audit_write_failed action=%s entity_type=%s entity_id=%s", action, entity_type, entity_id)
        try:
            db.rollback()
        except SQLAlchemyError:
            logger.exception("audit_rollback_failed")
        return None
