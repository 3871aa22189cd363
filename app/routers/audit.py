from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import MANAGER_ROLES, require_platform_roles
from app.core.security_current import PlatformAccess
from app.models.audit_log import AuditLog
from app.schemas.audit import AuditLogListOut, AuditLogOut
from app.schemas.common import PaginationMeta

router = APIRouter(prefix="/audit", tags=["audit"])


def _audit_log_out(row: AuditLog) -> AuditLogOut:
    return AuditLogOut(
        id=row.id,
        actor_user_id=row.actor_user_id,
        is_system=row.actor_user_id is None,
        action=row.action,
        target_type=row.target_type,
        target_id=row.target_id,
        metadata_json=row.metadata_json,
        request_id=row.request_id,
        created_at=row.created_at,
    )


@router.get(
    "",
    response_model=AuditLogListOut,
    summary="List audit logs",
    description=(
        "Sensitive writes on this platform, newest first. Rows without an actor were recorded "
        "by the system (storefront checkouts, payment callbacks)."
    ),
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def list_audit_logs(
    action: str | None = Query(default=None, max_length=100),
    target_type: str | None = Query(default=None, max_length=100),
    target_id: str | None = Query(default=None, max_length=36),
    actor_user_id: str | None = Query(default=None, max_length=36),
    system_only: bool = Query(default=False),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date cannot be before start_date")
    if system_only and actor_user_id:
        raise HTTPException(status_code=400, detail="system_only cannot be combined with actor_user_id")

    filters = [AuditLog.platform_id == access.platform.id]
    if action:
        filters.append(AuditLog.action == action.strip())
    if target_type:
        filters.append(AuditLog.target_type == target_type.strip())
    if target_id:
        filters.append(AuditLog.target_id == target_id)
    if actor_user_id:
        filters.append(AuditLog.actor_user_id == actor_user_id)
    if system_only:
        filters.append(AuditLog.actor_user_id.is_(None))
    if start_date:
        filters.append(func.date(AuditLog.created_at) >= start_date)
    if end_date:
        filters.append(func.date(AuditLog.created_at) <= end_date)

    total = int(db.execute(select(func.count(AuditLog.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(AuditLog).where(*filters).order_by(AuditLog.created_at.desc(), AuditLog.id.asc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [_audit_log_out(row) for row in rows]
    count = len(items)
    return AuditLogListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        action=action.strip() if action else None,
        target_type=target_type.strip() if target_type else None,
    )
