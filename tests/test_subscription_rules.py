from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient

from app.core.config import settings
from app.core.observability import http_exception_handler
from app.core.security_current import PlatformAccess
from app.core.subscription_gate import require_active_subscription, require_plan
from app.models.platform import Platform
from app.services.subscription_service import (
    evaluate_subscription,
    mark_expired_if_needed,
    plan_rank,
    renew_subscription,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _platform(**overrides) -> Platform:
    values = {
        "name": "Ali Store",
        "subdomain": "ali-store",
        "subscription_plan": "free",
        "subscription_status": "active",
        "subscription_start_date": NOW - timedelta(days=10),
        "subscription_end_date": NOW + timedelta(days=20),
    }
    values.update(overrides)
    return Platform(**values)


def test_active_subscription_counts_whole_days():
    state = evaluate_subscription(_platform(), NOW)
    assert state.days_remaining == 20
    assert state.is_expired is False
    assert state.is_expiring_soon is False


def test_expiring_soon_inside_warning_window():
    state = evaluate_subscription(_platform(subscription_end_date=NOW + timedelta(days=5, hours=2)), NOW)
    assert state.days_remaining == 5
    assert state.is_expiring_soon is True

    last_hours = evaluate_subscription(_platform(subscription_end_date=NOW + timedelta(hours=6)), NOW)
    assert last_hours.days_remaining == 0
    assert last_hours.is_expiring_soon is False


def test_expired_subscription_reports_days_expired():
    platform = _platform(subscription_end_date=NOW - timedelta(days=4, hours=3))
    state = evaluate_subscription(platform, NOW)
    assert state.is_expired is True
    assert state.days_expired == 4
    assert state.status == "expired"

    assert mark_expired_if_needed(platform, state) is True
    assert platform.subscription_status == "expired"
    assert mark_expired_if_needed(platform, state) is False


def test_missing_end_date_falls_back_to_start_plus_period():
    platform = _platform(subscription_end_date=None)
    state = evaluate_subscription(platform, NOW)
    assert state.end_date == NOW - timedelta(days=10) + timedelta(days=settings.subscription_period_days)


def test_naive_end_dates_are_treated_as_utc():
    naive_end = (NOW + timedelta(days=2)).replace(tzinfo=None)
    state = evaluate_subscription(_platform(subscription_end_date=naive_end), NOW)
    assert state.days_remaining == 2


def test_renewal_extends_from_later_of_now_and_end_date():
    active = _platform()
    renew_subscription(active, plan="basic", now=NOW)
    assert active.subscription_end_date == NOW + timedelta(days=20 + settings.subscription_period_days)
    assert active.subscription_plan == "basic"

    lapsed = _platform(subscription_end_date=NOW - timedelta(days=3), subscription_status="expired")
    renew_subscription(lapsed, days=10, now=NOW)
    assert lapsed.subscription_end_date == NOW + timedelta(days=10)
    assert lapsed.subscription_start_date == NOW
    assert lapsed.subscription_status == "active"


def test_plan_rank_orders_known_plans():
    assert plan_rank("free") < plan_rank("basic") < plan_rank("premium") < plan_rank("enterprise")
    assert plan_rank("Premium ") == plan_rank("premium")
    assert plan_rank("gold") == 0
    assert plan_rank(None) == 0


def test_require_plan_blocks_lower_plans():
    dependency = require_plan("premium")

    basic = PlatformAccess(platform=_platform(subscription_plan="basic"), role="owner", membership_id="m-1")
    with pytest.raises(HTTPException) as exc_info:
        dependency(access=basic)
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["current_plan"] == "basic"
    assert exc_info.value.detail["required_plan"] == "premium"
    assert exc_info.value.detail["upgrade_required"] is True

    enterprise = PlatformAccess(platform=_platform(subscription_plan="enterprise"), role="owner", membership_id="m-1")
    assert dependency(access=enterprise) is enterprise


def test_require_plan_rejects_unknown_plan_names():
    with pytest.raises(ValueError):
        require_plan("platinum")


def test_plan_guard_on_a_route_returns_error_envelope():
    plan_app = FastAPI()
    plan_app.add_exception_handler(HTTPException, http_exception_handler)

    @plan_app.get("/reports/advanced")
    def advanced_reports(access: PlatformAccess = Depends(require_plan("premium"))):
        return {"plan": access.platform.subscription_plan}

    current = {"plan": "basic"}
    plan_app.dependency_overrides[require_active_subscription] = lambda: PlatformAccess(
        platform=_platform(subscription_plan=current["plan"]),
        role="owner",
        membership_id="m-1",
    )

    with TestClient(plan_app) as client:
        blocked = client.get("/reports/advanced")
        assert blocked.status_code == 403
        assert blocked.json()["error"]["code"] == "forbidden"
        assert blocked.json()["error"]["message"] == "Feature not available in your plan"
        assert blocked.json()["error"]["details"] == {
            "current_plan": "basic",
            "required_plan": "premium",
            "upgrade_required": True,
        }

        current["plan"] = "premium"
        allowed = client.get("/reports/advanced")
        assert allowed.status_code == 200
        assert allowed.json() == {"plan": "premium"}
