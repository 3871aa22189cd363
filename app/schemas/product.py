from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.schemas.common import PaginationMeta


def _strip_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class ProductCreate(BaseModel):
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    category: Optional[str] = Field(default=None, max_length=100)
    sku: Optional[str] = Field(default=None, max_length=100)
    image_url: Optional[str] = Field(default=None, max_length=500)
    price: Decimal = Field(gt=0)
    currency: str = Field(default="IQD", min_length=3, max_length=3)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("description", "category", "sku", "image_url")
    @classmethod
    def normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip_optional(value)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.strip().upper()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "قميص قطني",
                "description": "قميص رجالي قطن 100%",
                "category": "clothing",
                "sku": "SHIRT-001",
                "price": 25000,
                "currency": "IQD",
            }
        }
    )


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    category: Optional[str] = Field(default=None, max_length=100)
    sku: Optional[str] = Field(default=None, max_length=100)
    image_url: Optional[str] = Field(default=None, max_length=500)
    price: Optional[Decimal] = Field(default=None, gt=0)
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @field_validator("description", "category", "sku", "image_url")
    @classmethod
    def normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        return _strip_optional(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "ProductUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ProductOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    image_url: Optional[str] = None
    price: float
    currency: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PublicProductOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    price: float
    currency: str


class ProductListOut(BaseModel):
    items: list[ProductOut]
    pagination: PaginationMeta
    q: Optional[str] = None
    category: Optional[str] = None
    is_active: Optional[bool] = None


class PublicProductListOut(BaseModel):
    items: list[PublicProductOut]
    pagination: PaginationMeta
