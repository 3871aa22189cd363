import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from app.schemas.auth import TokenOut
from app.schemas.common import PaginationMeta

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?$")
RESERVED_SUBDOMAINS = {"www", "api", "admin", "app"}


def _strip_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class PlatformRegisterIn(BaseModel):
    platform_name: str = Field(min_length=2, max_length=255)
    subdomain: str = Field(min_length=3, max_length=40)
    business_type: Optional[str] = Field(default=None, max_length=80)
    owner_name: str = Field(min_length=2, max_length=120)
    phone_number: str = Field(min_length=7, max_length=40)
    whatsapp_number: Optional[str] = Field(default=None, max_length=40)
    email: EmailStr
    username: str = Field(min_length=3, max_length=50)
    password: str

    @field_validator("platform_name", "owner_name", "phone_number", "username")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned

    @field_validator("subdomain")
    @classmethod
    def validate_subdomain(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not SUBDOMAIN_PATTERN.match(cleaned):
            raise ValueError("subdomain may only contain lowercase letters, digits and hyphens")
        if cleaned in RESERVED_SUBDOMAINS:
            raise ValueError("subdomain is reserved")
        return cleaned

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @field_validator("business_type", "whatsapp_number")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return _strip_optional(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "platform_name": "متجر علي",
                "subdomain": "ali-store",
                "business_type": "clothing",
                "owner_name": "Ali Hassan",
                "phone_number": "07701234567",
                "whatsapp_number": "07701234567",
                "email": "owner@example.com",
                "username": "ali_store",
                "password": "password123",
            }
        }
    )


class SubscriptionOut(BaseModel):
    plan: str
    status: str
    start_date: datetime | None = None
    end_date: datetime
    days_remaining: int
    days_expired: int
    is_expired: bool
    is_expiring_soon: bool


class SubscriptionStatusOut(SubscriptionOut):
    renewal_prices_iqd: dict[str, int]


class PlatformOut(BaseModel):
    id: str
    name: str
    subdomain: str
    business_type: str | None = None
    owner_name: str
    phone_number: str
    whatsapp_number: str | None = None
    contact_email: str | None = None
    logo_url: str | None = None
    subscription_plan: str
    subscription_status: str
    subscription_start_date: datetime | None = None
    subscription_end_date: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PlatformMeOut(BaseModel):
    platform: PlatformOut
    role: str
    subscription: SubscriptionOut


class PlatformRegisterOut(BaseModel):
    platform: PlatformOut
    tokens: TokenOut


class PlatformPublicOut(BaseModel):
    name: str
    subdomain: str
    business_type: str | None = None
    logo_url: str | None = None
    whatsapp_number: str | None = None


class PlatformUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    business_type: Optional[str] = Field(default=None, max_length=80)
    owner_name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    phone_number: Optional[str] = Field(default=None, min_length=7, max_length=40)
    whatsapp_number: Optional[str] = Field(default=None, max_length=40)
    contact_email: Optional[EmailStr] = None
    logo_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("name", "business_type", "owner_name", "phone_number", "whatsapp_number", "logo_url")
    @classmethod
    def normalize_optional(cls, value: Optional[str]) -> Optional[str]:
        return _strip_optional(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "PlatformUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class AdminPlatformListOut(BaseModel):
    items: list[PlatformOut]
    pagination: PaginationMeta
    status: str | None = None


class AdminExtendIn(BaseModel):
    days: int = Field(ge=1, le=3650)
    plan: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={"example": {"days": 30, "plan": "premium"}})
