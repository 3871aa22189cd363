import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import ALL_ROLES, MANAGER_ROLES, require_platform_roles
from app.core.security import hash_password
from app.core.security_current import PlatformAccess, get_current_user
from app.models.platform import PlatformMembership
from app.models.user import User
from app.routers.auth import revoke_user_refresh_tokens
from app.schemas.common import PaginationMeta
from app.schemas.team import EmployeeCreateIn, EmployeeListOut, EmployeeOut
from app.services.audit_service import log_audit_event

router = APIRouter(prefix="/team", tags=["team"])


def _employee_out(membership: PlatformMembership, user: User) -> EmployeeOut:
    return EmployeeOut(
        membership_id=membership.id,
        user_id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        phone_number=user.phone_number,
        role=membership.role,
        is_active=membership.is_active,
        created_at=membership.created_at,
    )


@router.post(
    "/employees",
    response_model=EmployeeOut,
    status_code=201,
    summary="Create employee",
    responses=error_responses(401, 402, 403, 404, 409, 422, 500),
)
def create_employee(
    payload: EmployeeCreateIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    if payload.role == "admin" and access.role != "owner":
        raise HTTPException(status_code=403, detail="Only the owner can create admins")

    normalized_email = payload.email.lower()
    if db.execute(select(User.id).where(func.lower(User.email) == normalized_email)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Email already registered")
    if db.execute(
        select(User.id).where(func.lower(User.username) == payload.username.lower())
    ).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Username already taken")

    user = User(
        email=normalized_email,
        username=payload.username,
        full_name=payload.full_name,
        phone_number=payload.phone_number,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.flush()
    membership = PlatformMembership(
        id=str(uuid.uuid4()),
        platform_id=access.platform.id,
        user_id=user.id,
        role=payload.role,
        is_active=True,
    )
    db.add(membership)
    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="team.employee.create",
        target_type="platform_membership",
        target_id=membership.id,
        metadata_json={"role": payload.role, "user_id": user.id},
    )
    db.commit()
    db.refresh(membership)
    db.refresh(user)
    return _employee_out(membership, user)


@router.get(
    "/employees",
    response_model=EmployeeListOut,
    summary="List employees",
    responses=error_responses(401, 402, 403, 404, 422, 500),
)
def list_employees(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
):
    total_count = int(
        db.execute(
            select(func.count(PlatformMembership.id)).where(PlatformMembership.platform_id == access.platform.id)
        ).scalar_one()
    )
    rows = db.execute(
        select(PlatformMembership, User)
        .join(User, User.id == PlatformMembership.user_id)
        .where(PlatformMembership.platform_id == access.platform.id)
        .order_by(PlatformMembership.created_at.asc())
        .offset(offset)
        .limit(limit)
    ).all()
    items = [_employee_out(membership, user) for membership, user in rows]
    count = len(items)
    return EmployeeListOut(
        items=items,
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
    )


@router.post(
    "/employees/{membership_id}/deactivate",
    response_model=EmployeeOut,
    summary="Deactivate employee",
    responses=error_responses(400, 401, 402, 403, 404, 500),
)
def deactivate_employee(
    membership_id: str,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles("owner")),
    actor: User = Depends(get_current_user),
):
    row = db.execute(
        select(PlatformMembership, User)
        .join(User, User.id == PlatformMembership.user_id)
        .where(
            PlatformMembership.id == membership_id,
            PlatformMembership.platform_id == access.platform.id,
        )
    ).first()
    if not row:
        raise HTTPException(status_code=404, detail="Employee not found")

    membership, user = row
    if membership.role == "owner":
        raise HTTPException(status_code=400, detail="The owner membership cannot be deactivated")

    membership.is_active = False
    revoked = revoke_user_refresh_tokens(db, user.id, reason="deactivated")
    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="team.employee.deactivate",
        target_type="platform_membership",
        target_id=membership.id,
        metadata_json={"user_id": user.id, "role": membership.role, "revoked_sessions": revoked},
    )
    db.commit()
    db.refresh(membership)
    return _employee_out(membership, user)
