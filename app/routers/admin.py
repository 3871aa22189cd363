from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.security_current import require_super_admin
from app.models.platform import PLATFORM_STATUSES, SUBSCRIPTION_PLANS, Platform
from app.models.user import User
from app.routers.platforms import platform_out
from app.schemas.common import PaginationMeta
from app.schemas.platform import AdminExtendIn, AdminPlatformListOut, PlatformOut
from app.services.audit_service import log_audit_event
from app.services.subscription_service import renew_subscription

router = APIRouter(prefix="/admin/platforms", tags=["admin"])


def _get_platform(db: Session, platform_id: str) -> Platform:
    platform = db.execute(select(Platform).where(Platform.id == platform_id)).scalar_one_or_none()
    if not platform:
        raise HTTPException(status_code=404, detail="Platform not found")
    return platform


@router.get(
    "",
    response_model=AdminPlatformListOut,
    summary="List platforms",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_platforms(
    status: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_super_admin),
):
    normalized_status = status.strip().lower() if status else None
    if normalized_status and normalized_status not in PLATFORM_STATUSES:
        allowed = ", ".join(PLATFORM_STATUSES)
        raise HTTPException(status_code=400, detail=f"Invalid status. Allowed: {allowed}")

    count_stmt = select(func.count(Platform.id))
    data_stmt = select(Platform)
    if normalized_status:
        count_stmt = count_stmt.where(Platform.subscription_status == normalized_status)
        data_stmt = data_stmt.where(Platform.subscription_status == normalized_status)

    total_count = int(db.execute(count_stmt).scalar_one())
    rows = db.execute(
        data_stmt.order_by(Platform.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()
    items = [platform_out(row) for row in rows]
    count = len(items)
    return AdminPlatformListOut(
        items=items,
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
        status=normalized_status,
    )


def _set_status(db: Session, platform_id: str, next_status: str, admin: User) -> PlatformOut:
    platform = _get_platform(db, platform_id)
    previous_status = platform.subscription_status
    platform.subscription_status = next_status
    log_audit_event(
        db,
        platform_id=platform.id,
        actor_user_id=admin.id,
        action=f"admin.platform.{'suspend' if next_status == 'suspended' else 'activate'}",
        target_type="platform",
        target_id=platform.id,
        metadata_json={"from_status": previous_status, "to_status": next_status},
    )
    db.commit()
    db.refresh(platform)
    return platform_out(platform)


@router.post(
    "/{platform_id}/suspend",
    response_model=PlatformOut,
    summary="Suspend platform",
    responses=error_responses(401, 403, 404, 500),
)
def suspend_platform(
    platform_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    return _set_status(db, platform_id, "suspended", admin)


@router.post(
    "/{platform_id}/activate",
    response_model=PlatformOut,
    summary="Activate platform",
    description="Sets the status back to active. An elapsed end date still expires the platform; use extend.",
    responses=error_responses(401, 403, 404, 500),
)
def activate_platform(
    platform_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    return _set_status(db, platform_id, "active", admin)


@router.post(
    "/{platform_id}/extend",
    response_model=PlatformOut,
    summary="Extend subscription",
    description="Extends from the later of now and the current end date; the platform becomes active.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def extend_platform_subscription(
    platform_id: str,
    payload: AdminExtendIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_super_admin),
):
    plan = payload.plan.strip().lower() if payload.plan else None
    if plan and plan not in SUBSCRIPTION_PLANS:
        raise HTTPException(status_code=400, detail=f"Unknown subscription plan '{payload.plan}'")

    platform = _get_platform(db, platform_id)
    previous_end = platform.subscription_end_date
    new_end = renew_subscription(platform, plan=plan, days=payload.days)
    log_audit_event(
        db,
        platform_id=platform.id,
        actor_user_id=admin.id,
        action="admin.platform.extend",
        target_type="platform",
        target_id=platform.id,
        metadata_json={
            "days": payload.days,
            "plan": platform.subscription_plan,
            "previous_end_date": previous_end.isoformat() if previous_end else None,
            "new_end_date": new_end.isoformat(),
        },
    )
    db.commit()
    db.refresh(platform)
    return platform_out(platform)
