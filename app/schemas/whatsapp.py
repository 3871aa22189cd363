from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import PaginationMeta


class WhatsAppSessionCreateIn(BaseModel):
    phone_number: str = Field(min_length=7, max_length=40)
    business_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("phone_number is required")
        return cleaned

    model_config = ConfigDict(
        json_schema_extra={"example": {"phone_number": "07701234567", "business_name": "متجر علي"}}
    )


class WhatsAppSessionConfirmIn(BaseModel):
    session_id: str = Field(min_length=1, max_length=120)


class WhatsAppSessionOut(BaseModel):
    status: str
    is_connected: bool
    provider: str | None = None
    phone_number: str | None = None
    business_name: str | None = None
    qr_code: str | None = None
    session_id: str | None = None
    connected_at: datetime | None = None
    last_error: str | None = None


class WhatsAppMessageIn(BaseModel):
    phone_number: str = Field(min_length=7, max_length=40)
    content: str = Field(min_length=1, max_length=2000)

    model_config = ConfigDict(
        json_schema_extra={"example": {"phone_number": "07701234567", "content": "طلبك قيد التجهيز"}}
    )


class WhatsAppInboundIn(BaseModel):
    sender: str = Field(min_length=7, max_length=60)
    body: str = Field(min_length=1, max_length=4000)

    model_config = ConfigDict(
        json_schema_extra={"example": {"sender": "9647701234567@c.us", "body": "تم"}}
    )


class WhatsAppInboundOut(BaseModel):
    is_confirmation: bool
    confirmed_order_numbers: list[str]


class OutboundMessageOut(BaseModel):
    id: str
    provider: str
    recipient: str
    content: str
    status: str
    external_message_id: str | None = None
    error_message: str | None = None
    created_at: datetime


class OutboundMessageListOut(BaseModel):
    items: list[OutboundMessageOut]
    pagination: PaginationMeta
