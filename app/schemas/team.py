from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.schemas.common import PaginationMeta

EMPLOYEE_ROLES = {"admin", "staff"}


class EmployeeCreateIn(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=50)
    full_name: str = Field(min_length=2, max_length=100)
    phone_number: str | None = Field(default=None, max_length=40)
    password: str
    role: str = "staff"

    @field_validator("username", "full_name")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value is required")
        return cleaned

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < 8:
            raise ValueError("password must be at least 8 characters")
        return value

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        role = value.strip().lower()
        if role not in EMPLOYEE_ROLES:
            raise ValueError("role must be one of: admin, staff")
        return role

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "staff@example.com",
                "username": "sara_staff",
                "full_name": "Sara Ahmed",
                "phone_number": "07801234567",
                "password": "password123",
                "role": "staff",
            }
        }
    )


class EmployeeOut(BaseModel):
    membership_id: str
    user_id: str
    email: EmailStr
    username: str
    full_name: str | None = None
    phone_number: str | None = None
    role: str
    is_active: bool
    created_at: datetime


class EmployeeListOut(BaseModel):
    items: list[EmployeeOut]
    pagination: PaginationMeta
