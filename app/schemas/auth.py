from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, field_validator
from typing import Optional


class LoginIn(BaseModel):
    identifier: str
    password: str

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("identifier is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "identifier": "owner@example.com",
                "password": "password123",
            }
        }
    )


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshIn(BaseModel):
    refresh_token: str

    @field_validator("refresh_token")
    @classmethod
    def validate_refresh_token(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("refresh_token is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"refresh_token": "paste-refresh-token-here"}
        }
    )


class LogoutIn(RefreshIn):
    pass


class UserProfileOut(BaseModel):
    id: str
    email: EmailStr
    username: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    is_super_admin: bool
    last_login_at: Optional[datetime] = None
    platform_id: Optional[str] = None
    platform_role: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "abc123",
                "email": "owner@example.com",
                "username": "ali_store",
                "full_name": "Ali Hassan",
                "phone_number": "07701234567",
                "is_super_admin": False,
                "platform_id": "platform-id-here",
                "platform_role": "owner",
                "created_at": "2026-02-01T12:00:00Z",
                "updated_at": "2026-02-01T12:00:00Z",
            }
        }
    )


class SessionOut(BaseModel):
    id: str
    created_at: datetime
    expires_at: datetime
    created_by_ip: Optional[str] = None
    user_agent: Optional[str] = None


class SessionListOut(BaseModel):
    items: list[SessionOut]


class LogoutAllOut(BaseModel):
    revoked: int
