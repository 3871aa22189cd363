from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class TrackingEventIn(BaseModel):
    event_name: str = Field(min_length=1, max_length=60)
    event_id: Optional[str] = Field(default=None, max_length=120)
    event_time: Optional[float] = Field(default=None, ge=0)
    event_source_url: Optional[str] = Field(default=None, max_length=2000)
    action_source: str = "website"
    referrer: Optional[str] = Field(default=None, max_length=2000)

    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = Field(default=None, max_length=40)
    customer_first_name: Optional[str] = Field(default=None, max_length=100)
    customer_last_name: Optional[str] = Field(default=None, max_length=100)
    customer_city: Optional[str] = Field(default=None, max_length=120)
    customer_state: Optional[str] = Field(default=None, max_length=120)
    customer_country: Optional[str] = Field(default=None, max_length=2)
    external_id: Optional[str] = Field(default=None, max_length=255)
    login_id: Optional[str] = Field(default=None, max_length=255)

    fbc: Optional[str] = Field(default=None, max_length=500)
    fbp: Optional[str] = Field(default=None, max_length=255)
    fbclid: Optional[str] = Field(default=None, max_length=500)
    fbclid_timestamp: Optional[int] = Field(default=None, ge=0)
    ttclid: Optional[str] = Field(default=None, max_length=500)

    value: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    content_ids: Optional[list[str]] = Field(default=None, max_length=100)
    content_id: Optional[str] = Field(default=None, max_length=120)
    content_name: Optional[str] = Field(default=None, max_length=255)
    content_category: Optional[str] = Field(default=None, max_length=120)
    content_type: Optional[str] = Field(default=None, max_length=40)
    product_id: Optional[str] = Field(default=None, max_length=120)
    quantity: Optional[int] = Field(default=None, ge=0)
    order_id: Optional[str] = Field(default=None, max_length=120)

    client_ip_address: Optional[str] = Field(default=None, max_length=64)
    client_user_agent: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("event_name", "action_source")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "event_name": "ViewContent",
                "event_id": "1718000000000_k3j9x0a1b",
                "event_source_url": "https://ali-store.sanadi.pro/product/1",
                "fbp": "fb.1.1718000000000.123456789",
                "fbclid": "IwAR0abc",
                "value": 25000,
                "currency": "IQD",
                "content_ids": ["product-id-here"],
                "content_name": "قميص قطني",
            }
        }
    )


class ProviderOutcomeOut(BaseModel):
    provider: str
    status: str
    error: str | None = None


class TrackingResultOut(BaseModel):
    event_id: str | None = None
    fbc_outcome: str | None = None
    providers: list[ProviderOutcomeOut]


class ClientPixelEventIn(BaseModel):
    provider: str = "facebook"
    event_type: str = Field(min_length=1, max_length=60)
    event_id: Optional[str] = Field(default=None, max_length=120)
    external_id: Optional[str] = Field(default=None, max_length=255)
    success: bool
    error: Optional[str] = Field(default=None, max_length=500)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        provider = value.strip().lower()
        if provider not in {"facebook", "tiktok"}:
            raise ValueError("provider must be one of: facebook, tiktok")
        return provider


class ClientPixelEventsIn(BaseModel):
    events: list[ClientPixelEventIn] = Field(min_length=1, max_length=50)


class ClientPixelEventsOut(BaseModel):
    recorded: int
