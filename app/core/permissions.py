from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from app.core.security_current import PlatformAccess, get_current_platform_access
from app.core.subscription_gate import require_active_subscription


def _normalize_roles(allowed_roles: tuple[str, ...]) -> set[str]:
    normalized_allowed = {role.strip().lower() for role in allowed_roles if role.strip()}
    if not normalized_allowed:
        raise ValueError("At least one allowed role is required")
    return normalized_allowed


def _ensure_role(access: PlatformAccess, allowed: set[str]) -> PlatformAccess:
    current_role = (access.role or "").lower()
    if current_role not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient role for this action",
        )
    return access


def require_platform_roles(*allowed_roles: str) -> Callable[[PlatformAccess], PlatformAccess]:
    """Role check behind the active-subscription gate (dashboard routes)."""
    normalized_allowed = _normalize_roles(allowed_roles)

    def dependency(access: PlatformAccess = Depends(require_active_subscription)) -> PlatformAccess:
        return _ensure_role(access, normalized_allowed)

    return dependency


def require_platform_roles_any_status(*allowed_roles: str) -> Callable[[PlatformAccess], PlatformAccess]:
    """Role check that stays reachable while the subscription is expired (renewal, status)."""
    normalized_allowed = _normalize_roles(allowed_roles)

    def dependency(access: PlatformAccess = Depends(get_current_platform_access)) -> PlatformAccess:
        return _ensure_role(access, normalized_allowed)

    return dependency


ALL_ROLES = ("owner", "admin", "staff")
MANAGER_ROLES = ("owner", "admin")
