import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import decrypt_credential, encrypt_credential
from app.models.ad_settings import AdPlatformSettings


@dataclass(frozen=True)
class AdCredentials:
    """Decrypted per-platform credentials, kept in memory only."""

    facebook_pixel_id: str | None
    facebook_access_token: str | None
    tiktok_pixel_id: str | None
    tiktok_access_token: str | None

    @property
    def facebook_enabled(self) -> bool:
        return bool(self.facebook_pixel_id and self.facebook_access_token)

    @property
    def tiktok_enabled(self) -> bool:
        return bool(self.tiktok_pixel_id and self.tiktok_access_token)


def get_ad_settings(db: Session, platform_id: str) -> AdPlatformSettings | None:
    return db.execute(
        select(AdPlatformSettings).where(AdPlatformSettings.platform_id == platform_id)
    ).scalar_one_or_none()


def upsert_ad_settings(
    db: Session,
    *,
    platform_id: str,
    facebook_pixel_id: str | None = None,
    facebook_access_token: str | None = None,
    tiktok_pixel_id: str | None = None,
    tiktok_access_token: str | None = None,
    is_active: bool | None = None,
    fields_set: set[str] | None = None,
) -> AdPlatformSettings:
    row = get_ad_settings(db, platform_id)
    if row is None:
        row = AdPlatformSettings(id=str(uuid.uuid4()), platform_id=platform_id, is_active=True)
        db.add(row)

    provided = fields_set if fields_set is not None else {
        "facebook_pixel_id",
        "tiktok_pixel_id",
        "is_active",
    }
    if "facebook_pixel_id" in provided:
        row.facebook_pixel_id = (facebook_pixel_id or "").strip() or None
    if "tiktok_pixel_id" in provided:
        row.tiktok_pixel_id = (tiktok_pixel_id or "").strip() or None
    if "is_active" in provided and is_active is not None:
        row.is_active = is_active

    # Blank tokens keep the stored value.
    if facebook_access_token and facebook_access_token.strip():
        row.facebook_access_token_encrypted = encrypt_credential(facebook_access_token.strip())
    if tiktok_access_token and tiktok_access_token.strip():
        row.tiktok_access_token_encrypted = encrypt_credential(tiktok_access_token.strip())
    return row


def load_ad_credentials(db: Session, platform_id: str) -> AdCredentials | None:
    row = get_ad_settings(db, platform_id)
    if row is None or not row.is_active:
        return None
    return AdCredentials(
        facebook_pixel_id=row.facebook_pixel_id,
        facebook_access_token=(
            decrypt_credential(row.facebook_access_token_encrypted) if row.facebook_access_token_encrypted else None
        ),
        tiktok_pixel_id=row.tiktok_pixel_id,
        tiktok_access_token=(
            decrypt_credential(row.tiktok_access_token_encrypted) if row.tiktok_access_token_encrypted else None
        ),
    )
