import uuid
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.config import settings
from app.core.deps import get_db
from app.core.permissions import MANAGER_ROLES, require_platform_roles
from app.core.rate_limit import enforce_storefront_rate_limit
from app.core.security import hash_password
from app.core.security_current import PlatformAccess, get_current_platform_access, get_current_user
from app.core.subscription_gate import get_storefront_platform
from app.models.platform import Platform, PlatformMembership
from app.models.user import User
from app.routers.auth import issue_token_pair
from app.schemas.platform import (
    PlatformMeOut,
    PlatformOut,
    PlatformPublicOut,
    PlatformRegisterIn,
    PlatformRegisterOut,
    PlatformUpdateIn,
    SubscriptionOut,
)
from app.services.audit_service import log_audit_event
from app.services.subscription_service import evaluate_subscription

router = APIRouter(prefix="/platforms", tags=["platforms"])


def platform_out(platform: Platform) -> PlatformOut:
    return PlatformOut(
        id=platform.id,
        name=platform.name,
        subdomain=platform.subdomain,
        business_type=platform.business_type,
        owner_name=platform.owner_name,
        phone_number=platform.phone_number,
        whatsapp_number=platform.whatsapp_number,
        contact_email=platform.contact_email,
        logo_url=platform.logo_url,
        subscription_plan=platform.subscription_plan,
        subscription_status=platform.subscription_status,
        subscription_start_date=platform.subscription_start_date,
        subscription_end_date=platform.subscription_end_date,
        created_at=platform.created_at,
        updated_at=platform.updated_at,
    )


def subscription_out(platform: Platform) -> SubscriptionOut:
    state = evaluate_subscription(platform)
    return SubscriptionOut(
        plan=state.plan,
        status=state.status,
        start_date=platform.subscription_start_date,
        end_date=state.end_date,
        days_remaining=state.days_remaining,
        days_expired=state.days_expired,
        is_expired=state.is_expired,
        is_expiring_soon=state.is_expiring_soon,
    )


@router.post(
    "/register",
    response_model=PlatformRegisterOut,
    status_code=201,
    summary="Register a platform",
    description=(
        "Creates the owner account, the platform and the owner membership on the free plan, "
        "then returns access + refresh tokens."
    ),
    responses=error_responses(400, 409, 422, 500),
)
def register_platform(payload: PlatformRegisterIn, request: Request, db: Session = Depends(get_db)):
    normalized_email = payload.email.lower()
    if db.execute(select(User.id).where(func.lower(User.email) == normalized_email)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Email already registered")
    if db.execute(
        select(User.id).where(func.lower(User.username) == payload.username.lower())
    ).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Username already taken")
    if db.execute(select(Platform.id).where(Platform.subdomain == payload.subdomain)).scalar_one_or_none():
        raise HTTPException(status_code=409, detail="Subdomain already taken")

    user = User(
        email=normalized_email,
        username=payload.username,
        full_name=payload.owner_name,
        phone_number=payload.phone_number,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    db.flush()

    now = datetime.now(timezone.utc)
    platform = Platform(
        id=str(uuid.uuid4()),
        owner_user_id=user.id,
        name=payload.platform_name,
        subdomain=payload.subdomain,
        business_type=payload.business_type,
        owner_name=payload.owner_name,
        phone_number=payload.phone_number,
        whatsapp_number=payload.whatsapp_number or payload.phone_number,
        contact_email=normalized_email,
        subscription_plan="free",
        subscription_status="active",
        subscription_start_date=now,
        subscription_end_date=now + timedelta(days=settings.subscription_period_days),
    )
    db.add(platform)
    db.flush()
    db.add(
        PlatformMembership(
            id=str(uuid.uuid4()),
            platform_id=platform.id,
            user_id=user.id,
            role="owner",
            is_active=True,
        )
    )
    log_audit_event(
        db,
        platform_id=platform.id,
        actor_user_id=user.id,
        action="platform.register",
        target_type="platform",
        target_id=platform.id,
        metadata_json={"subdomain": platform.subdomain, "plan": platform.subscription_plan},
    )
    token_pair, _ = issue_token_pair(db, user_id=user.id, request=request)
    db.commit()
    db.refresh(platform)
    return PlatformRegisterOut(platform=platform_out(platform), tokens=token_pair)


@router.get(
    "/me",
    response_model=PlatformMeOut,
    summary="Get my platform",
    description="Platform profile, caller role and subscription snapshot. Reachable while expired.",
    responses=error_responses(401, 404, 500),
)
def get_my_platform(access: PlatformAccess = Depends(get_current_platform_access)):
    return PlatformMeOut(
        platform=platform_out(access.platform),
        role=access.role,
        subscription=subscription_out(access.platform),
    )


@router.patch(
    "/me",
    response_model=PlatformOut,
    summary="Update my platform",
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def update_my_platform(
    payload: PlatformUpdateIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    platform = access.platform
    changes = payload.model_dump(exclude_unset=True)
    for field_name in ("name", "owner_name", "phone_number"):
        if field_name in changes and changes[field_name] is None:
            raise HTTPException(status_code=400, detail=f"{field_name} cannot be empty")
    for field_name, value in changes.items():
        setattr(platform, field_name, value)

    log_audit_event(
        db,
        platform_id=platform.id,
        actor_user_id=actor.id,
        action="platform.update",
        target_type="platform",
        target_id=platform.id,
        metadata_json={"fields": sorted(changes)},
    )
    db.commit()
    db.refresh(platform)
    return platform_out(platform)


@router.get(
    "/public/{subdomain}",
    response_model=PlatformPublicOut,
    summary="Public storefront profile",
    responses=error_responses(403, 404, 429, 500),
    dependencies=[Depends(enforce_storefront_rate_limit)],
)
def get_public_platform(platform: Platform = Depends(get_storefront_platform)):
    return PlatformPublicOut(
        name=platform.name,
        subdomain=platform.subdomain,
        business_type=platform.business_type,
        logo_url=platform.logo_url,
        whatsapp_number=platform.whatsapp_number,
    )
