from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.common import PaginationMeta
from app.schemas.tracking import TrackingResultOut


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(gt=0, le=1000)


class CustomerIn(BaseModel):
    customer_name: str = Field(min_length=2, max_length=120)
    customer_phone: str = Field(min_length=7, max_length=40)
    customer_email: Optional[EmailStr] = None
    customer_city: Optional[str] = Field(default=None, max_length=120)
    customer_address: Optional[str] = Field(default=None, max_length=500)

    @field_validator("customer_name", "customer_phone")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned

    @field_validator("customer_phone")
    @classmethod
    def validate_phone_digits(cls, value: str) -> str:
        if sum(char.isdigit() for char in value) < 7:
            raise ValueError("customer_phone must contain at least 7 digits")
        return value


class OrderCreate(CustomerIn):
    notes: Optional[str] = Field(default=None, max_length=500)
    items: list[OrderItemIn] = Field(min_length=1)


class AttributionIn(BaseModel):
    fbc: Optional[str] = Field(default=None, max_length=500)
    fbp: Optional[str] = Field(default=None, max_length=255)
    fbclid: Optional[str] = Field(default=None, max_length=500)
    fbclid_timestamp: Optional[int] = Field(default=None, ge=0)
    ttclid: Optional[str] = Field(default=None, max_length=500)
    event_id: Optional[str] = Field(default=None, max_length=120)
    event_source_url: Optional[str] = Field(default=None, max_length=2000)


class StorefrontOrderCreate(CustomerIn):
    source: str = "storefront"
    notes: Optional[str] = Field(default=None, max_length=500)
    items: list[OrderItemIn] = Field(min_length=1)
    attribution: AttributionIn = Field(default_factory=AttributionIn)

    @field_validator("source")
    @classmethod
    def validate_source(cls, value: str) -> str:
        source = value.strip().lower()
        if source not in {"storefront", "landing_page"}:
            raise ValueError("source must be one of: storefront, landing_page")
        return source

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer_name": "أحمد علي",
                "customer_phone": "07701234567",
                "customer_city": "بغداد",
                "customer_address": "الكرادة، شارع 62",
                "items": [{"product_id": "product-id-here", "quantity": 2}],
                "attribution": {
                    "fbp": "fb.1.1718000000000.123456789",
                    "fbclid": "IwAR0abc",
                    "fbclid_timestamp": 1718000000000,
                    "event_id": "1718000000000_k3j9x0a1b",
                    "event_source_url": "https://ali-store.sanadi.pro/product/1",
                },
            }
        }
    )


class OrderStatusUpdateIn(BaseModel):
    status: str
    note: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "confirmed",
                "note": "Confirmed by phone",
            }
        }
    )


class OrderItemOut(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: float
    line_total: float


class OrderOut(BaseModel):
    id: str
    order_number: str
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    customer_city: str | None = None
    customer_address: str | None = None
    status: str
    source: str
    total_amount: float
    currency: str
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class OrderDetailOut(OrderOut):
    items: list[OrderItemOut]


class StorefrontOrderOut(BaseModel):
    id: str
    order_number: str
    status: str
    total_amount: float
    currency: str
    tracking: TrackingResultOut
    whatsapp_message_status: str | None = None


class OrderListOut(BaseModel):
    pagination: PaginationMeta
    status: str | None = None
    items: list[OrderOut]
