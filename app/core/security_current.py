from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import case, select
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.core.security import TokenValidationError, decode_token
from app.models.platform import Platform, PlatformMembership
from app.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


@dataclass(frozen=True)
class PlatformAccess:
    platform: Platform
    role: str
    membership_id: str


def _membership_role_rank():
    return case(
        (PlatformMembership.role == "owner", 0),
        (PlatformMembership.role == "admin", 1),
        (PlatformMembership.role == "staff", 2),
        else_=3,
    )


def resolve_platform_access(db: Session, user_id: str) -> PlatformAccess | None:
    row = db.execute(
        select(PlatformMembership, Platform)
        .join(Platform, Platform.id == PlatformMembership.platform_id)
        .where(
            PlatformMembership.user_id == user_id,
            PlatformMembership.is_active.is_(True),
        )
        .order_by(_membership_role_rank(), PlatformMembership.created_at.asc())
        .limit(1)
    ).first()
    if not row:
        return None

    membership, platform = row
    role = (membership.role or "staff").lower()
    return PlatformAccess(platform=platform, role=role, membership_id=membership.id)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user_id = payload.get("sub")
    user = db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_platform_access(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> PlatformAccess:
    access = resolve_platform_access(db, user.id)
    if not access:
        raise HTTPException(status_code=404, detail="Platform not found")
    return access


def get_current_platform(access: PlatformAccess = Depends(get_current_platform_access)) -> Platform:
    return access.platform


def require_super_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_super_admin:
        raise HTTPException(status_code=403, detail="Super admin access required")
    return user
