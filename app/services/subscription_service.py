import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from app.core.config import settings
from app.models.platform import Platform

PLAN_HIERARCHY: dict[str, int] = {
    "free": 0,
    "basic": 1,
    "premium": 2,
    "enterprise": 3,
}
PAID_PLANS = ("basic", "premium", "enterprise")

_SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class SubscriptionState:
    status: str
    plan: str
    end_date: datetime
    days_remaining: int
    days_expired: int
    is_expired: bool
    is_expiring_soon: bool


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def plan_rank(plan: str | None) -> int:
    return PLAN_HIERARCHY.get((plan or "").strip().lower(), 0)


def effective_end_date(platform: Platform, now: datetime | None = None) -> datetime:
    if platform.subscription_end_date is not None:
        return as_utc(platform.subscription_end_date)
    start = platform.subscription_start_date or platform.created_at or now or datetime.now(timezone.utc)
    return as_utc(start) + timedelta(days=settings.subscription_period_days)


def evaluate_subscription(platform: Platform, now: datetime | None = None) -> SubscriptionState:
    current = as_utc(now or datetime.now(timezone.utc))
    end_date = effective_end_date(platform, current)
    delta_seconds = (end_date - current).total_seconds()
    is_expired = current > end_date

    days_remaining = max(math.floor(delta_seconds / _SECONDS_PER_DAY), 0)
    days_expired = math.floor(-delta_seconds / _SECONDS_PER_DAY) if is_expired else 0
    is_expiring_soon = not is_expired and 0 < days_remaining <= settings.subscription_warning_days

    status = platform.subscription_status or "active"
    if is_expired and status == "active":
        status = "expired"

    return SubscriptionState(
        status=status,
        plan=platform.subscription_plan or "free",
        end_date=end_date,
        days_remaining=days_remaining,
        days_expired=days_expired,
        is_expired=is_expired,
        is_expiring_soon=is_expiring_soon,
    )


def mark_expired_if_needed(platform: Platform, state: SubscriptionState) -> bool:
    """Persist the expired status on the row; the caller commits."""
    if state.is_expired and platform.subscription_status == "active":
        platform.subscription_status = "expired"
        return True
    return False


def renew_subscription(platform: Platform, *, plan: str | None = None, days: int | None = None, now: datetime | None = None) -> datetime:
    current = as_utc(now or datetime.now(timezone.utc))
    period = timedelta(days=days or settings.subscription_period_days)
    current_end = effective_end_date(platform, current)
    base = current_end if current_end > current else current

    if plan:
        platform.subscription_plan = plan
    if platform.subscription_start_date is None or current_end <= current:
        platform.subscription_start_date = current
    platform.subscription_end_date = base + period
    platform.subscription_status = "active"
    return platform.subscription_end_date
