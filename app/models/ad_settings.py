from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AdPlatformSettings(Base):
    __tablename__ = "ad_platform_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    platform_id: Mapped[str] = mapped_column(String(36), ForeignKey("platforms.id"), index=True, unique=True)

    facebook_pixel_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    facebook_access_token_encrypted: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    tiktok_pixel_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    tiktok_access_token_encrypted: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
