import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.core.observability import get_request_id
from app.models.audit_log import AuditLog


def log_audit_event(
    db: Session,
    *,
    platform_id: str,
    actor_user_id: str | None,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction.

    ``actor_user_id`` is None for actions no dashboard user performed, such as
    storefront checkouts or wallet callbacks. The current request id is kept
    so a row can be matched to its structured log lines.
    """
    request_id = get_request_id()
    event = AuditLog(
        id=str(uuid.uuid4()),
        platform_id=platform_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json,
        request_id=request_id if request_id != "-" else None,
    )
    db.add(event)
    return event
