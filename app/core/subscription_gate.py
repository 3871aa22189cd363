from collections.abc import Callable

from fastapi import Depends, HTTPException, Path, Response, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.deps import get_db
from app.core.observability import log_event
from app.core.security_current import PlatformAccess, get_current_platform_access
from app.models.platform import Platform
from app.services.subscription_service import (
    PLAN_HIERARCHY,
    evaluate_subscription,
    mark_expired_if_needed,
    plan_rank,
)

SUBSCRIPTION_WARNING_HEADER = "X-Subscription-Days-Remaining"


def require_active_subscription(
    response: Response,
    access: PlatformAccess = Depends(get_current_platform_access),
    db: Session = Depends(get_db),
) -> PlatformAccess:
    platform = access.platform
    state = evaluate_subscription(platform)

    if platform.subscription_status == "suspended":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Platform suspended",
                "status": "suspended",
                "platform_name": platform.name,
            },
        )

    if state.is_expired:
        if mark_expired_if_needed(platform, state):
            db.commit()
            log_event("subscription.expired", platform_id=platform.id)
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Subscription expired",
                "redirect_to": "/subscription-expired",
                "renewal_required": True,
                "status": "expired",
                "subscription_end_date": state.end_date.isoformat(),
                "days_expired": state.days_expired,
            },
        )

    if platform.subscription_status != "active":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Subscription inactive",
                "status": platform.subscription_status,
                "renewal_required": True,
            },
        )

    if state.is_expiring_soon:
        response.headers[SUBSCRIPTION_WARNING_HEADER] = str(state.days_remaining)
    return access


def get_storefront_platform(
    subdomain: str = Path(min_length=1, max_length=40),
    db: Session = Depends(get_db),
) -> Platform:
    platform = db.execute(
        select(Platform).where(func.lower(Platform.subdomain) == subdomain.strip().lower())
    ).scalar_one_or_none()
    if not platform:
        raise HTTPException(status_code=404, detail="Platform not found")

    state = evaluate_subscription(platform)
    if state.is_expired and mark_expired_if_needed(platform, state):
        db.commit()
        log_event("subscription.expired", platform_id=platform.id)

    if platform.subscription_status != "active" or state.is_expired:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Platform access denied",
                "status": "expired" if platform.subscription_status == "active" else platform.subscription_status,
                "platform_name": platform.name,
                "expired_at": state.end_date.isoformat(),
            },
        )
    return platform


def require_plan(required_plan: str) -> Callable[[PlatformAccess], PlatformAccess]:
    normalized_required = required_plan.strip().lower()
    if normalized_required not in PLAN_HIERARCHY:
        raise ValueError(f"Unknown subscription plan '{required_plan}'")

    def dependency(access: PlatformAccess = Depends(require_active_subscription)) -> PlatformAccess:
        current_plan = access.platform.subscription_plan or "free"
        if plan_rank(current_plan) < plan_rank(normalized_required):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "message": "Feature not available in your plan",
                    "current_plan": current_plan,
                    "required_plan": normalized_required,
                    "upgrade_required": True,
                },
            )
        return access

    return dependency
