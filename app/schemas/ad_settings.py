from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AdSettingsUpsertIn(BaseModel):
    facebook_pixel_id: Optional[str] = Field(default=None, max_length=40)
    facebook_access_token: Optional[str] = Field(default=None, max_length=1000)
    tiktok_pixel_id: Optional[str] = Field(default=None, max_length=40)
    tiktok_access_token: Optional[str] = Field(default=None, max_length=1000)
    is_active: Optional[bool] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "facebook_pixel_id": "123456789012345",
                "facebook_access_token": "EAAB...",
                "tiktok_pixel_id": "C4ABCDEF123",
                "tiktok_access_token": "",
                "is_active": True,
            }
        }
    )


class AdSettingsOut(BaseModel):
    facebook_pixel_id: str | None = None
    has_facebook_token: bool
    tiktok_pixel_id: str | None = None
    has_tiktok_token: bool
    is_active: bool
    last_sync_at: datetime | None = None
    updated_at: datetime | None = None
