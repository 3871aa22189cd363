from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

SUBSCRIPTION_PLANS = ("free", "basic", "premium", "enterprise")
PLATFORM_STATUSES = (
    "active",
    "suspended",
    "pending_verification",
    "pending_payment",
    "cancelled",
    "expired",
)
MEMBERSHIP_ROLES = ("owner", "admin", "staff")


class Platform(Base):
    __tablename__ = "platforms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subdomain: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    business_type: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    owner_name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(40), nullable=False)
    whatsapp_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    next_order_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")

    subscription_plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free", server_default="free")
    subscription_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="active",
        server_default="active",
    )
    subscription_start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_platforms_subdomain", "subdomain"),
        Index("ix_platforms_status_end_date", "subscription_status", "subscription_end_date"),
    )


class PlatformMembership(Base):
    __tablename__ = "platform_memberships"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    platform_id: Mapped[str] = mapped_column(String(36), ForeignKey("platforms.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="owner", server_default="owner")
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ux_platform_memberships_platform_user", "platform_id", "user_id", unique=True),
        Index(
            "ix_platform_memberships_user_active_created_at",
            "user_id",
            "is_active",
            "created_at",
        ),
    )
