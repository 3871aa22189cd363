from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import MANAGER_ROLES, require_platform_roles
from app.core.security_current import PlatformAccess, get_current_user
from app.models.ad_settings import AdPlatformSettings
from app.models.user import User
from app.schemas.ad_settings import AdSettingsOut, AdSettingsUpsertIn
from app.services.ad_settings_service import get_ad_settings, upsert_ad_settings
from app.services.audit_service import log_audit_event

router = APIRouter(prefix="/ad-settings", tags=["ad-settings"])


def _ad_settings_out(row: AdPlatformSettings | None) -> AdSettingsOut:
    if row is None:
        return AdSettingsOut(has_facebook_token=False, has_tiktok_token=False, is_active=False)
    return AdSettingsOut(
        facebook_pixel_id=row.facebook_pixel_id,
        has_facebook_token=bool(row.facebook_access_token_encrypted),
        tiktok_pixel_id=row.tiktok_pixel_id,
        has_tiktok_token=bool(row.tiktok_access_token_encrypted),
        is_active=row.is_active,
        last_sync_at=row.last_sync_at,
        updated_at=row.updated_at,
    )


@router.get(
    "",
    response_model=AdSettingsOut,
    summary="Get ad platform settings",
    description="Pixel ids and whether access tokens are stored. Tokens are never returned.",
    responses=error_responses(401, 402, 403, 404, 500),
)
def read_ad_settings(
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    return _ad_settings_out(get_ad_settings(db, access.platform.id))


@router.put(
    "",
    response_model=AdSettingsOut,
    summary="Save ad platform settings",
    description="A blank or omitted token keeps the stored one.",
    responses=error_responses(401, 402, 403, 404, 422, 500),
)
def save_ad_settings(
    payload: AdSettingsUpsertIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    row = upsert_ad_settings(
        db,
        platform_id=access.platform.id,
        facebook_pixel_id=payload.facebook_pixel_id,
        facebook_access_token=payload.facebook_access_token,
        tiktok_pixel_id=payload.tiktok_pixel_id,
        tiktok_access_token=payload.tiktok_access_token,
        is_active=payload.is_active,
        fields_set=set(payload.model_fields_set),
    )
    db.flush()
    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="ad_settings.update",
        target_type="ad_platform_settings",
        target_id=row.id,
        metadata_json={
            "fields": sorted(payload.model_fields_set),
            "facebook_token_updated": bool(payload.facebook_access_token and payload.facebook_access_token.strip()),
            "tiktok_token_updated": bool(payload.tiktok_access_token and payload.tiktok_access_token.strip()),
        },
    )
    db.commit()
    db.refresh(row)
    return _ad_settings_out(row)
