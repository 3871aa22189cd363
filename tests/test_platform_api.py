import json
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from app.core.config import settings
from app.models.audit_log import AuditLog
from app.models.platform import Platform, PlatformMembership
from app.models.refresh_token import RefreshToken
from app.models.user import User


def _register(client, *, subdomain: str = "ali-store", email: str = "owner@example.com", username: str = "ali_owner"):
    return client.post(
        "/platforms/register",
        json={
            "platform_name": "Ali Store",
            "subdomain": subdomain,
            "business_type": "clothing",
            "owner_name": "Ali Hassan",
            "phone_number": "07701234567",
            "email": email,
            "username": username,
            "password": "password123",
        },
    )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _owner_token(client, **kwargs) -> str:
    res = _register(client, **kwargs)
    assert res.status_code == 201, res.text
    return res.json()["tokens"]["access_token"]


def _set_end_date(session_local, subdomain: str, end_date: datetime, status: str | None = None) -> None:
    db = session_local()
    try:
        values = {"subscription_end_date": end_date}
        if status:
            values["subscription_status"] = status
        db.execute(update(Platform).where(Platform.subdomain == subdomain).values(**values))
        db.commit()
    finally:
        db.close()


def test_register_platform_creates_owner_and_free_plan(test_context):
    client, session_local = test_context

    res = _register(client)
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["platform"]["subdomain"] == "ali-store"
    assert body["platform"]["subscription_plan"] == "free"
    assert body["platform"]["subscription_status"] == "active"
    assert body["tokens"]["token_type"] == "bearer"
    assert body["tokens"]["refresh_token"]

    db = session_local()
    try:
        user = db.execute(select(User).where(User.email == "owner@example.com")).scalar_one()
        membership = db.execute(select(PlatformMembership).where(PlatformMembership.user_id == user.id)).scalar_one()
        audit = db.execute(select(AuditLog).where(AuditLog.action == "platform.register")).scalar_one()
    finally:
        db.close()

    assert membership.role == "owner"
    assert audit.platform_id == body["platform"]["id"]


def test_register_rejects_duplicates_and_reserved_subdomains(test_context):
    client, _ = test_context
    assert _register(client).status_code == 201

    duplicate_subdomain = _register(client, email="other@example.com", username="other_owner")
    assert duplicate_subdomain.status_code == 409
    assert duplicate_subdomain.json()["error"]["message"] == "Subdomain already taken"

    duplicate_email = _register(client, subdomain="other-store", username="other_owner")
    assert duplicate_email.status_code == 409

    reserved = _register(client, subdomain="admin", email="x@example.com", username="x_owner")
    assert reserved.status_code == 422
    assert reserved.json()["error"]["code"] == "validation_error"


def test_login_by_email_or_username_and_me(test_context):
    client, _ = test_context
    _owner_token(client)

    by_email = client.post("/auth/login", json={"identifier": "OWNER@example.com", "password": "password123"})
    assert by_email.status_code == 200, by_email.text
    by_username = client.post("/auth/login", json={"identifier": "ali_owner", "password": "password123"})
    assert by_username.status_code == 200, by_username.text

    me = client.get("/auth/me", headers=_auth_headers(by_email.json()["access_token"]))
    assert me.status_code == 200, me.text
    assert me.json()["platform_role"] == "owner"
    assert me.json()["is_super_admin"] is False
    assert me.json()["last_login_at"] is not None

    bad = client.post("/auth/login", json={"identifier": "ali_owner", "password": "wrong-password"})
    assert bad.status_code == 401
    assert bad.json()["error"]["code"] == "unauthorized"


def test_refresh_rotates_and_logout_revokes(test_context):
    client, _ = test_context
    res = _register(client)
    refresh_token = res.json()["tokens"]["refresh_token"]

    rotated = client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert rotated.status_code == 200, rotated.text
    new_refresh = rotated.json()["refresh_token"]
    assert new_refresh != refresh_token

    reused = client.post("/auth/refresh", json={"refresh_token": refresh_token})
    assert reused.status_code == 401

    logout = client.post("/auth/logout", json={"refresh_token": new_refresh})
    assert logout.status_code in {200, 204}
    assert client.post("/auth/refresh", json={"refresh_token": new_refresh}).status_code == 401


def test_sessions_list_and_logout_all(test_context):
    client, _ = test_context
    _owner_token(client)
    first = client.post(
        "/auth/login",
        json={"identifier": "ali_owner", "password": "password123"},
        headers={"User-Agent": "storefront-dashboard/1.0"},
    ).json()

    sessions = client.get("/auth/sessions", headers=_auth_headers(first["access_token"]))
    assert sessions.status_code == 200, sessions.text
    items = sessions.json()["items"]
    # Registration and login each opened one.
    assert len(items) == 2
    assert "storefront-dashboard/1.0" in {item["user_agent"] for item in items}

    revoked = client.post("/auth/logout-all", headers=_auth_headers(first["access_token"]))
    assert revoked.json() == {"revoked": 2}
    assert client.post("/auth/refresh", json={"refresh_token": first["refresh_token"]}).status_code == 401
    assert client.get("/auth/sessions", headers=_auth_headers(first["access_token"])).json()["items"] == []


def test_platform_me_and_update(test_context):
    client, _ = test_context
    token = _owner_token(client)

    me = client.get("/platforms/me", headers=_auth_headers(token))
    assert me.status_code == 200, me.text
    body = me.json()
    assert body["role"] == "owner"
    assert body["subscription"]["plan"] == "free"
    assert body["subscription"]["is_expired"] is False
    assert body["subscription"]["days_remaining"] >= settings.subscription_period_days - 1

    updated = client.patch(
        "/platforms/me",
        json={"name": "Ali Fashion", "logo_url": "https://cdn.example.com/logo.png"},
        headers=_auth_headers(token),
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["name"] == "Ali Fashion"
    assert updated.json()["subdomain"] == "ali-store"


def test_public_platform_profile(test_context):
    client, _ = test_context
    _owner_token(client)

    res = client.get("/platforms/public/ali-store")
    assert res.status_code == 200, res.text
    assert res.json()["name"] == "Ali Store"
    assert "phone_number" not in res.json()

    assert client.get("/platforms/public/missing-store").status_code == 404


def test_expiring_soon_sets_warning_header(test_context):
    client, session_local = test_context
    token = _owner_token(client)
    _set_end_date(session_local, "ali-store", datetime.now(timezone.utc) + timedelta(days=3, hours=1))

    res = client.get("/products", headers=_auth_headers(token))
    assert res.status_code == 200, res.text
    assert res.headers["X-Subscription-Days-Remaining"] == "3"


def test_expired_subscription_blocks_dashboard_but_not_status(test_context):
    client, session_local = test_context
    token = _owner_token(client)
    _set_end_date(session_local, "ali-store", datetime.now(timezone.utc) - timedelta(days=2, hours=1))

    blocked = client.get("/products", headers=_auth_headers(token))
    assert blocked.status_code == 402, blocked.text
    error = blocked.json()["error"]
    assert error["code"] == "payment_required"
    assert error["message"] == "Subscription expired"
    assert error["details"]["renewal_required"] is True
    assert error["details"]["days_expired"] == 2

    status_res = client.get("/subscription/status", headers=_auth_headers(token))
    assert status_res.status_code == 200, status_res.text
    status_body = status_res.json()
    assert status_body["status"] == "expired"
    assert status_body["is_expired"] is True
    assert status_body["renewal_prices_iqd"]["premium"] == settings.subscription_price_premium_iqd

    db = session_local()
    try:
        platform = db.execute(select(Platform).where(Platform.subdomain == "ali-store")).scalar_one()
    finally:
        db.close()
    assert platform.subscription_status == "expired"


def test_storefront_gate_blocks_expired_and_suspended_platforms(test_context):
    client, session_local = test_context
    _owner_token(client)
    _owner_token(client, subdomain="second-store", email="second@example.com", username="second_owner")

    _set_end_date(session_local, "ali-store", datetime.now(timezone.utc) - timedelta(days=1))
    expired = client.get("/storefront/ali-store/products")
    assert expired.status_code == 403
    assert expired.json()["error"]["details"]["status"] == "expired"

    _set_end_date(
        session_local,
        "second-store",
        datetime.now(timezone.utc) + timedelta(days=10),
        status="suspended",
    )
    suspended = client.get("/storefront/second-store/products")
    assert suspended.status_code == 403
    assert suspended.json()["error"]["details"]["status"] == "suspended"


def test_storefront_rate_limit(test_context, monkeypatch):
    from app.core.rate_limit import storefront_rate_limiter

    client, _ = test_context
    _owner_token(client)
    monkeypatch.setattr(storefront_rate_limiter, "max_requests", 2)

    assert client.get("/storefront/ali-store/products").status_code == 200
    assert client.get("/storefront/ali-store/products").status_code == 200
    limited = client.get("/storefront/ali-store/products")
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1


def test_admin_can_suspend_activate_and_extend(test_context):
    client, session_local = test_context
    _owner_token(client)
    admin_token = _owner_token(client, subdomain="admin-store", email="root@example.com", username="root_admin")

    db = session_local()
    try:
        db.execute(update(User).where(User.email == "root@example.com").values(is_super_admin=True))
        db.commit()
        platform_id = db.execute(select(Platform.id).where(Platform.subdomain == "ali-store")).scalar_one()
    finally:
        db.close()

    owner_token = client.post(
        "/auth/login", json={"identifier": "ali_owner", "password": "password123"}
    ).json()["access_token"]
    assert client.get("/admin/platforms", headers=_auth_headers(owner_token)).status_code == 403

    listing = client.get("/admin/platforms", headers=_auth_headers(admin_token))
    assert listing.status_code == 200, listing.text
    assert listing.json()["pagination"]["total"] == 2

    suspended = client.post(f"/admin/platforms/{platform_id}/suspend", headers=_auth_headers(admin_token))
    assert suspended.json()["subscription_status"] == "suspended"
    assert client.get("/products", headers=_auth_headers(owner_token)).status_code == 403

    activated = client.post(f"/admin/platforms/{platform_id}/activate", headers=_auth_headers(admin_token))
    assert activated.json()["subscription_status"] == "active"

    _set_end_date(session_local, "ali-store", datetime.now(timezone.utc) - timedelta(days=5))
    extended = client.post(
        f"/admin/platforms/{platform_id}/extend",
        json={"days": 30, "plan": "premium"},
        headers=_auth_headers(admin_token),
    )
    assert extended.status_code == 200, extended.text
    body = extended.json()
    assert body["subscription_plan"] == "premium"
    assert body["subscription_status"] == "active"
    new_end = datetime.fromisoformat(body["subscription_end_date"])
    if new_end.tzinfo is None:
        new_end = new_end.replace(tzinfo=timezone.utc)
    assert new_end > datetime.now(timezone.utc) + timedelta(days=29)


def test_team_employee_lifecycle(test_context):
    client, session_local = test_context
    token = _owner_token(client)

    created = client.post(
        "/team/employees",
        json={
            "email": "staff@example.com",
            "username": "ali_staff",
            "full_name": "Staff Member",
            "password": "password123",
            "role": "staff",
        },
        headers=_auth_headers(token),
    )
    assert created.status_code == 201, created.text
    membership_id = created.json()["membership_id"]

    staff_login = client.post("/auth/login", json={"identifier": "ali_staff", "password": "password123"})
    staff_token = staff_login.json()["access_token"]
    assert client.get("/products", headers=_auth_headers(staff_token)).status_code == 200
    assert client.get("/ad-settings", headers=_auth_headers(staff_token)).status_code == 403

    listing = client.get("/team/employees", headers=_auth_headers(token))
    assert listing.json()["pagination"]["total"] == 2

    deactivated = client.post(f"/team/employees/{membership_id}/deactivate", headers=_auth_headers(token))
    assert deactivated.status_code == 200, deactivated.text
    assert deactivated.json()["is_active"] is False
    assert client.get("/products", headers=_auth_headers(staff_token)).status_code == 404
    assert client.post("/auth/refresh", json={"refresh_token": staff_login.json()["refresh_token"]}).status_code == 401

    db = session_local()
    try:
        reasons = db.execute(select(RefreshToken.revoked_reason)).scalars().all()
    finally:
        db.close()
    assert "deactivated" in reasons


def test_log_event_redacts_customer_pii(monkeypatch):
    from app.core import observability

    records = []
    monkeypatch.setattr(observability.logger, "log", lambda level, message: records.append(json.loads(message)))
    observability.log_event("whatsapp.send", platform_id="p-1", recipient="9647701234567@c.us", phone="", success=True)

    assert records[0]["event"] == "whatsapp.send"
    assert records[0]["platform_id"] == "p-1"
    assert records[0]["recipient"] == "[redacted]"
    assert records[0]["phone"] == ""


def test_responses_carry_request_id(test_context):
    client, _ = test_context
    res = client.get("/platforms/public/missing-store", headers={"X-Request-ID": "req-123"})
    assert res.status_code == 404
    assert res.headers["X-Request-ID"] == "req-123"
    assert res.json()["error"]["request_id"] == "req-123"


def test_health_and_readiness(test_context):
    client, _ = test_context
    assert client.get("/health").json() == {"ok": True}

    ready = client.get("/ready")
    assert ready.status_code == 200, ready.text
    assert ready.json()["database"] == "ok"
    assert ready.json()["zaincash_mode"] == "simulation"
    assert ready.json()["messaging_provider"] == "whatsapp_stub"


def test_audit_log_filters(test_context):
    client, _ = test_context
    token = _owner_token(client)
    owner_id = client.get("/auth/me", headers=_auth_headers(token)).json()["id"]
    today = datetime.now(timezone.utc).date()

    reversed_range = client.get(
        "/audit",
        params={"start_date": str(today), "end_date": str(today - timedelta(days=3))},
        headers=_auth_headers(token),
    )
    assert reversed_range.status_code == 400
    assert reversed_range.json()["error"]["message"] == "end_date cannot be before start_date"

    conflicting = client.get(
        "/audit",
        params={"system_only": True, "actor_user_id": owner_id},
        headers=_auth_headers(token),
    )
    assert conflicting.status_code == 400
    assert conflicting.json()["error"]["message"] == "system_only cannot be combined with actor_user_id"

    by_actor = client.get("/audit", params={"actor_user_id": owner_id}, headers=_auth_headers(token))
    assert by_actor.status_code == 200, by_actor.text
    assert "platform.register" in [item["action"] for item in by_actor.json()["items"]]
    assert all(item["actor_user_id"] == owner_id for item in by_actor.json()["items"])

    in_range = client.get(
        "/audit",
        params={"start_date": str(today - timedelta(days=1)), "end_date": str(today + timedelta(days=1))},
        headers=_auth_headers(token),
    )
    assert in_range.json()["pagination"]["total"] >= 1

    future = client.get(
        "/audit",
        params={"start_date": str(today + timedelta(days=2)), "end_date": str(today + timedelta(days=5))},
        headers=_auth_headers(token),
    )
    assert future.json()["pagination"]["total"] == 0
