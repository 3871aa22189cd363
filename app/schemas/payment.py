from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PAYABLE_PLANS = {"basic", "premium", "enterprise"}


class SubscriptionPaymentIn(BaseModel):
    plan: str
    customer_name: Optional[str] = Field(default=None, max_length=120)
    customer_phone: Optional[str] = Field(default=None, max_length=40)
    customer_email: Optional[EmailStr] = None

    @field_validator("plan")
    @classmethod
    def validate_plan(cls, value: str) -> str:
        plan = value.strip().lower()
        if plan not in PAYABLE_PLANS:
            raise ValueError("plan must be one of: basic, premium, enterprise")
        return plan

    model_config = ConfigDict(json_schema_extra={"example": {"plan": "premium"}})


class ZainCashPaymentOut(BaseModel):
    order_id: str
    amount: int
    service_type: str
    subscription_plan: str
    transaction_id: str | None = None
    payment_status: str
    payment_url: str | None = None
    simulated: bool
    paid_at: datetime | None = None
    expires_at: datetime | None = None
    created_at: datetime


class ZainCashCallbackOut(BaseModel):
    order_id: str
    payment_status: str
    subscription_plan: str
    subscription_end_date: datetime | None = None
