from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

PAYMENT_STATUSES = ("pending", "success", "completed", "failed", "cancelled")


class ZainCashPayment(Base):
    __tablename__ = "zain_cash_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    platform_id: Mapped[str] = mapped_column(String(36), ForeignKey("platforms.id"), index=True)
    order_id: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    service_type: Mapped[str] = mapped_column(String(120), nullable=False)
    subscription_plan: Mapped[str] = mapped_column(String(20), nullable=False)

    transaction_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", server_default="pending")
    payment_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(40), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    response_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    redirect_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_zain_cash_payments_platform_created_at", "platform_id", "created_at"),
    )
