import hashlib
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import event, select, update

from app.core.config import settings
from app.core.security import TokenValidationError, decrypt_credential, encrypt_credential
from app.models.ad_settings import AdPlatformSettings
from app.models.integration import IntegrationDeliveryAttempt, IntegrationOutboxEvent
from app.models.order import Order
from app.models.pixel import PixelEventLog
from app.models.platform import Platform
from app.services.facebook_conversions import hash_value
from app.services.order_service import next_order_number


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _owner_token(client, subdomain: str = "ali-store") -> str:
    res = client.post(
        "/platforms/register",
        json={
            "platform_name": "Ali Store",
            "subdomain": subdomain,
            "owner_name": "Ali Hassan",
            "phone_number": "07701234567",
            "email": f"owner@{subdomain}.example.com",
            "username": f"{subdomain.replace('-', '_')}_owner",
            "password": "password123",
        },
    )
    assert res.status_code == 201, res.text
    return res.json()["tokens"]["access_token"]


def _create_product(client, token: str, **overrides) -> dict:
    payload = {"name": "Cotton Shirt", "category": "clothing", "sku": "SHIRT-001", "price": 25000}
    payload.update(overrides)
    res = client.post("/products", json=payload, headers=_auth_headers(token))
    assert res.status_code == 201, res.text
    return res.json()


def _configure_ads(client, token: str, *, tiktok: bool = True) -> None:
    payload = {"facebook_pixel_id": "1234567890", "facebook_access_token": "fb-secret-token"}
    if tiktok:
        payload.update({"tiktok_pixel_id": "TTPIXEL1", "tiktok_access_token": "tt-secret-token"})
    res = client.put("/ad-settings", json=payload, headers=_auth_headers(token))
    assert res.status_code == 200, res.text


def _place_order(client, product_id: str, **overrides):
    payload = {
        "customer_name": "Ahmed Ali",
        "customer_phone": "07701234567",
        "customer_city": "Baghdad",
        "items": [{"product_id": product_id, "quantity": 2}],
        "attribution": {"fbp": "fb.1.1718000000000.123456789", "event_source_url": "https://ali-store.sanadi.pro/p/1"},
    }
    payload.update(overrides)
    return client.post(
        "/storefront/ali-store/orders",
        json=payload,
        headers={"user-agent": "Mozilla/5.0 (Test)", "x-forwarded-host": "ali-store.sanadi.pro"},
    )


def test_products_crud_and_duplicate_sku(test_context):
    client, _ = test_context
    token = _owner_token(client)

    product = _create_product(client, token)
    assert product["price"] == 25000
    assert product["currency"] == "IQD"

    duplicate = client.post(
        "/products",
        json={"name": "Other Shirt", "sku": "SHIRT-001", "price": 1000},
        headers=_auth_headers(token),
    )
    assert duplicate.status_code == 409

    _create_product(client, token, name="Wool Scarf", sku="SCARF-1", category="accessories", price=12000)
    search = client.get("/products", params={"q": "scarf"}, headers=_auth_headers(token))
    assert [item["name"] for item in search.json()["items"]] == ["Wool Scarf"]

    updated = client.patch(
        f"/products/{product['id']}",
        json={"price": 27000, "is_active": False},
        headers=_auth_headers(token),
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["price"] == 27000

    public = client.get("/storefront/ali-store/products")
    assert public.status_code == 200
    assert [item["name"] for item in public.json()["items"]] == ["Wool Scarf"]


def test_ad_settings_never_return_tokens(test_context):
    client, session_local = test_context
    token = _owner_token(client)

    empty = client.get("/ad-settings", headers=_auth_headers(token))
    assert empty.json()["is_active"] is False
    assert empty.json()["has_facebook_token"] is False

    _configure_ads(client, token, tiktok=False)
    res = client.get("/ad-settings", headers=_auth_headers(token))
    body = res.json()
    assert body["facebook_pixel_id"] == "1234567890"
    assert body["has_facebook_token"] is True
    assert body["has_tiktok_token"] is False
    assert "fb-secret-token" not in res.text

    # A blank token keeps the stored one.
    kept = client.put(
        "/ad-settings",
        json={"facebook_pixel_id": "999", "facebook_access_token": ""},
        headers=_auth_headers(token),
    )
    assert kept.json()["has_facebook_token"] is True
    assert kept.json()["facebook_pixel_id"] == "999"

    db = session_local()
    try:
        row = db.execute(select(AdPlatformSettings)).scalar_one()
    finally:
        db.close()
    assert row.facebook_access_token_encrypted != "fb-secret-token"
    assert row.facebook_access_token_encrypted.startswith("v2:")
    assert decrypt_credential(row.facebook_access_token_encrypted) == "fb-secret-token"


def test_storefront_order_without_ad_settings_skips_tracking(test_context, mock_http):
    client, session_local = test_context
    token = _owner_token(client)
    product = _create_product(client, token)

    first = _place_order(client, product["id"])
    second = _place_order(client, product["id"])
    assert first.status_code == 201, first.text
    body = first.json()
    assert body["order_number"] == "ORD-000001"
    assert second.json()["order_number"] == "ORD-000002"
    assert body["status"] == "pending"
    assert body["total_amount"] == 50000
    assert [provider["status"] for provider in body["tracking"]["providers"]] == ["skipped", "skipped"]
    assert body["whatsapp_message_status"] is None
    assert len(mock_http) == 0

    db = session_local()
    try:
        order = db.execute(select(Order).where(Order.id == body["id"])).scalar_one()
    finally:
        db.close()
    assert order.source == "storefront"
    assert order.attribution_json["client_user_agent"] == "Mozilla/5.0 (Test)"
    assert order.attribution_json["host"] == "ali-store.sanadi.pro"


def test_storefront_order_reports_purchase_to_both_providers(test_context, mock_http, monkeypatch):
    client, session_local = test_context
    monkeypatch.setattr(settings, "iqd_to_usd_rate", 1250.0)
    monkeypatch.setattr(settings, "facebook_test_event_code", None)
    token = _owner_token(client)
    product = _create_product(client, token)
    _configure_ads(client, token)

    res = _place_order(client, product["id"])
    assert res.status_code == 201, res.text
    tracking = res.json()["tracking"]
    assert {item["provider"]: item["status"] for item in tracking["providers"]} == {
        "facebook": "sent",
        "tiktok": "sent",
    }

    facebook_body = mock_http.bodies("graph.facebook.com")[0]
    assert facebook_body["access_token"] == "fb-secret-token"
    event = facebook_body["data"][0]
    assert event["event_name"] == "Purchase"
    assert event["event_id"] == tracking["event_id"]
    assert event["custom_data"]["value"] == 40.0
    assert event["custom_data"]["currency"] == "USD"
    assert event["custom_data"]["order_id"] == "ORD-000001"
    assert event["custom_data"]["num_items"] == 2
    assert event["user_data"]["ph"] == hashlib.sha256(b"9647701234567").hexdigest()
    assert event["user_data"]["client_user_agent"] == "Mozilla/5.0 (Test)"

    tiktok_request = [request for request in mock_http if "business-api.tiktok.com" in str(request.url)][0]
    assert tiktok_request.headers["Access-Token"] == "tt-secret-token"
    tiktok_event = mock_http.bodies("business-api.tiktok.com")[0]["data"][0]
    assert tiktok_event["event"] == "CompletePayment"
    assert tiktok_event["event_id"] == tracking["event_id"]
    assert tiktok_event["properties"]["value"] == 40.0

    db = session_local()
    try:
        logs = db.execute(select(PixelEventLog)).scalars().all()
    finally:
        db.close()
    assert sorted(log.provider for log in logs) == ["facebook", "tiktok"]
    assert all(log.success for log in logs)
    assert all(log.external_id != "07701234567" for log in logs)


def test_failed_delivery_is_queued_and_redelivered(test_context, mock_http):
    client, session_local = test_context
    token = _owner_token(client)
    product = _create_product(client, token)
    _configure_ads(client, token)

    mock_http.responder = lambda request: httpx.Response(503, json={"error": {"message": "Service unavailable"}})
    res = _place_order(client, product["id"])
    assert res.status_code == 201, res.text
    statuses = {item["provider"]: item["status"] for item in res.json()["tracking"]["providers"]}
    assert statuses == {"facebook": "failed", "tiktok": "failed"}

    outbox = client.get("/integrations/outbox", headers=_auth_headers(token))
    assert outbox.status_code == 200, outbox.text
    items = outbox.json()["items"]
    assert sorted(item["target"] for item in items) == ["facebook_capi", "tiktok_events"]
    assert all(item["status"] == "pending" for item in items)

    # Nothing is due until the retry delay elapses.
    not_due = client.post("/integrations/outbox/dispatch", headers=_auth_headers(token))
    assert not_due.json()["processed"] == 0

    db = session_local()
    try:
        db.execute(
            update(IntegrationOutboxEvent).values(next_attempt_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        db.commit()
    finally:
        db.close()

    mock_http.responder = lambda request: httpx.Response(200, json={"events_received": 1, "code": 0})
    dispatched = client.post("/integrations/outbox/dispatch", headers=_auth_headers(token))
    assert dispatched.status_code == 200, dispatched.text
    assert dispatched.json() == {"processed": 2, "delivered": 2, "failed": 0, "dead_lettered": 0}

    delivered = client.get("/integrations/outbox", params={"status": "delivered"}, headers=_auth_headers(token))
    assert delivered.json()["pagination"]["total"] == 2

    db = session_local()
    try:
        attempts = db.execute(select(IntegrationDeliveryAttempt)).scalars().all()
        logs = db.execute(select(PixelEventLog).order_by(PixelEventLog.created_at.asc())).scalars().all()
        ad_settings = db.execute(select(AdPlatformSettings)).scalar_one()
    finally:
        db.close()
    assert [attempt.status for attempt in attempts] == ["delivered", "delivered"]
    assert len(logs) == 4
    assert sum(1 for log in logs if log.success) == 2
    assert ad_settings.last_sync_at is not None

    # Retried deliveries reuse the original event ids.
    facebook_ids = {body["data"][0]["event_id"] for body in mock_http.bodies("graph.facebook.com")}
    assert len(facebook_ids) == 1


def test_outbox_dead_letters_after_max_attempts(test_context, mock_http, monkeypatch):
    client, session_local = test_context
    monkeypatch.setattr(settings, "integration_outbox_max_attempts", 1)
    token = _owner_token(client)
    product = _create_product(client, token)
    _configure_ads(client, token, tiktok=False)

    mock_http.responder = lambda request: httpx.Response(500, json={"error": {"message": "boom"}})
    _place_order(client, product["id"])

    db = session_local()
    try:
        db.execute(
            update(IntegrationOutboxEvent).values(next_attempt_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        db.commit()
    finally:
        db.close()

    dispatched = client.post("/integrations/outbox/dispatch", headers=_auth_headers(token))
    assert dispatched.json()["dead_lettered"] == 1

    listing = client.get("/integrations/outbox", params={"status": "dead_letter"}, headers=_auth_headers(token))
    assert listing.json()["items"][0]["last_error"] == "boom"
    event_id = listing.json()["items"][0]["id"]

    detail = client.get(f"/integrations/outbox/{event_id}", headers=_auth_headers(token))
    assert detail.status_code == 200, detail.text
    assert [attempt["status"] for attempt in detail.json()["attempts"]] == ["dead_letter"]
    assert detail.json()["attempts"][0]["response_code"] == 500
    assert len(detail.json()["event_ids"]) == 1

    retried = client.post(f"/integrations/outbox/{event_id}/retry", headers=_auth_headers(token))
    assert retried.status_code == 200, retried.text
    assert retried.json()["status"] == "pending"
    assert retried.json()["max_attempts"] == 2

    mock_http.responder = lambda request: httpx.Response(200, json={"events_received": 1})
    redelivered = client.post("/integrations/outbox/dispatch", headers=_auth_headers(token))
    assert redelivered.json()["delivered"] == 1

    again = client.post(f"/integrations/outbox/{event_id}/retry", headers=_auth_headers(token))
    assert again.status_code == 400
    assert client.get("/integrations/outbox", params={"status": "lost"}, headers=_auth_headers(token)).status_code == 400
    assert client.get("/integrations/outbox/missing", headers=_auth_headers(token)).status_code == 404


def test_storefront_order_rejects_unknown_or_foreign_products(test_context, mock_http):
    client, _ = test_context
    token = _owner_token(client)
    other_token = _owner_token(client, subdomain="other-store")
    foreign = _create_product(client, other_token)
    _create_product(client, token)

    missing = _place_order(client, foreign["id"])
    assert missing.status_code == 404

    bad_source = _place_order(client, foreign["id"], source="carrier")
    assert bad_source.status_code == 422


def test_order_management_and_status_transitions(test_context):
    client, _ = test_context
    token = _owner_token(client)
    product = _create_product(client, token)

    created = client.post(
        "/orders",
        json={
            "customer_name": "Sara Ahmed",
            "customer_phone": "07801234567",
            "items": [{"product_id": product["id"], "quantity": 1}],
        },
        headers=_auth_headers(token),
    )
    assert created.status_code == 201, created.text
    order_id = created.json()["id"]
    assert created.json()["source"] == "manual"

    detail = client.get(f"/orders/{order_id}", headers=_auth_headers(token))
    assert detail.json()["items"][0]["unit_price"] == 25000

    confirmed = client.patch(
        f"/orders/{order_id}/status",
        json={"status": "confirmed", "note": "Confirmed by phone"},
        headers=_auth_headers(token),
    )
    assert confirmed.status_code == 200, confirmed.text
    assert confirmed.json()["status"] == "confirmed"
    assert "Confirmed by phone" in confirmed.json()["notes"]

    skipped = client.patch(f"/orders/{order_id}/status", json={"status": "delivered"}, headers=_auth_headers(token))
    assert skipped.status_code == 400

    invalid = client.patch(f"/orders/{order_id}/status", json={"status": "teleported"}, headers=_auth_headers(token))
    assert invalid.status_code == 400

    listing = client.get("/orders", params={"status": "confirmed"}, headers=_auth_headers(token))
    assert listing.json()["pagination"]["total"] == 1


def test_tracking_event_without_settings_is_skipped(test_context, mock_http):
    client, _ = test_context
    _owner_token(client)

    res = client.post("/tracking/ali-store/events", json={"event_name": "PageView"})
    assert res.status_code == 200, res.text
    assert [item["status"] for item in res.json()["providers"]] == ["skipped", "skipped"]
    assert len(mock_http) == 0


def test_tracking_event_builds_fbc_from_click_id(test_context, mock_http):
    client, _ = test_context
    token = _owner_token(client)
    _configure_ads(client, token, tiktok=False)

    res = client.post(
        "/tracking/ali-store/events",
        json={
            "event_name": "ViewContent",
            "fbclid": "IwAR0abc",
            "content_ids": ["p-1"],
            "value": 25000,
            "currency": "IQD",
        },
        headers={"x-forwarded-host": "ali-store.sanadi.pro:443", "user-agent": "Mozilla/5.0"},
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["fbc_outcome"] == "generated"
    assert {item["provider"]: item["status"] for item in body["providers"]} == {
        "facebook": "sent",
        "tiktok": "skipped",
    }

    event = mock_http.bodies("graph.facebook.com")[0]["data"][0]
    assert event["user_data"]["fbc"].startswith("fb.2.")
    assert event["user_data"]["fbc"].endswith(".IwAR0abc")
    assert event["user_data"]["client_user_agent"] == "Mozilla/5.0"
    assert event["event_id"] == body["event_id"]


def test_tracking_event_with_bad_time_is_rejected_and_logged(test_context, mock_http):
    client, session_local = test_context
    token = _owner_token(client)
    _configure_ads(client, token, tiktok=False)

    future = int(datetime.now(timezone.utc).timestamp()) + 3600
    res = client.post("/tracking/ali-store/events", json={"event_name": "Lead", "event_time": future})
    assert res.status_code == 200, res.text
    facebook = res.json()["providers"][0]
    assert facebook["status"] == "rejected"
    assert facebook["error"]
    assert len(mock_http) == 0

    db = session_local()
    try:
        log = db.execute(select(PixelEventLog)).scalar_one()
    finally:
        db.close()
    assert log.success is False


def test_client_events_feed_diagnostics(test_context):
    client, _ = test_context
    token = _owner_token(client)

    recorded = client.post(
        "/tracking/ali-store/client-events",
        json={
            "events": [
                {"event_type": "PageView", "event_id": "e-1", "external_id": "user-1", "success": True},
                {"event_type": "PageView", "event_id": "e-1", "external_id": "user-1", "success": True},
                {"event_type": "Purchase", "event_id": "e-2", "external_id": "user-2", "success": False, "error": "blocked"},
                {"provider": "tiktok", "event_type": "ViewContent", "event_id": "e-3", "success": True},
            ]
        },
    )
    assert recorded.status_code == 200, recorded.text
    assert recorded.json() == {"recorded": 4}

    summary = client.get("/pixel-diagnostics/summary", params={"provider": "facebook"}, headers=_auth_headers(token))
    assert summary.status_code == 200, summary.text
    body = summary.json()
    assert body["events"]["total_events"] == 3
    assert body["events"]["successful_events"] == 2
    assert body["events"]["success_rate"] == 66.67
    assert body["events"]["deduplication_rate"] == 66.67
    assert body["events"]["events_by_type"]["PageView"] == {"total": 2, "successful": 2}
    assert body["external_ids"]["unique_external_ids"] == 2
    assert len(body["external_ids"]["duplicate_external_ids"]) == 1
    assert "user-1" not in body["external_ids"]["duplicate_external_ids"]

    report = client.get("/pixel-diagnostics/report", headers=_auth_headers(token))
    assert report.status_code == 200
    assert report.headers["content-type"].startswith("text/plain")
    assert report.text.startswith("=== Pixel Diagnostic Report ===")
    assert "- Total Events: 4" in report.text
    assert "- PageView: 2/2 (100.0%)" in report.text

    invalid = client.get("/pixel-diagnostics/summary", params={"provider": "snapchat"}, headers=_auth_headers(token))
    assert invalid.status_code == 400


def test_order_numbers_reserve_counter_before_reading(test_context):
    client, session_local = test_context
    _owner_token(client)

    statements: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement.split()[0].upper())

    db = session_local()
    engine = db.get_bind()
    try:
        platform = db.execute(select(Platform).where(Platform.subdomain == "ali-store")).scalar_one()
        event.listen(engine, "before_cursor_execute", record)
        try:
            first = next_order_number(db, platform.id)
            second = next_order_number(db, platform.id)
        finally:
            event.remove(engine, "before_cursor_execute", record)
        db.commit()
        counter = db.execute(select(Platform.next_order_number).where(Platform.id == platform.id)).scalar_one()
    finally:
        db.close()

    assert (first, second) == ("ORD-000001", "ORD-000002")
    assert counter == 3
    # The increment takes the row lock before the value is read back.
    assert statements[0] == "UPDATE"
    assert statements.index("UPDATE") < statements.index("SELECT")


def test_tiktok_receives_the_same_event_time_as_meta(test_context, mock_http):
    client, _ = test_context
    token = _owner_token(client)
    _configure_ads(client, token)

    ten_minutes_ago = int(datetime.now(timezone.utc).timestamp()) - 600
    res = client.post(
        "/tracking/ali-store/events",
        json={"event_name": "AddToCart", "event_time": ten_minutes_ago * 1000, "content_ids": ["p-1"]},
    )
    assert res.status_code == 200, res.text
    assert {item["provider"]: item["status"] for item in res.json()["providers"]} == {
        "facebook": "sent",
        "tiktok": "sent",
    }

    meta_event = mock_http.bodies("graph.facebook.com")[0]["data"][0]
    tiktok_event = mock_http.bodies("business-api.tiktok.com")[0]["data"][0]
    assert meta_event["event_time"] == ten_minutes_ago
    assert tiktok_event["event_time"] == ten_minutes_ago
    assert tiktok_event["timestamp"] == str(ten_minutes_ago)
    assert tiktok_event["event_id"] == meta_event["event_id"]


def test_tracking_event_accepts_fractional_event_time(test_context, mock_http):
    client, _ = test_context
    token = _owner_token(client)
    _configure_ads(client, token)

    two_minutes_ago = datetime.now(timezone.utc).timestamp() - 120.75
    res = client.post("/tracking/ali-store/events", json={"event_name": "ViewContent", "event_time": two_minutes_ago})
    assert res.status_code == 200, res.text

    meta_event = mock_http.bodies("graph.facebook.com")[0]["data"][0]
    tiktok_event = mock_http.bodies("business-api.tiktok.com")[0]["data"][0]
    assert meta_event["event_time"] == int(two_minutes_ago)
    assert tiktok_event["event_time"] == int(two_minutes_ago)


def test_outbox_event_detail_shows_attempts_without_payload(test_context, mock_http):
    client, session_local = test_context
    token = _owner_token(client)
    product = _create_product(client, token)
    _configure_ads(client, token, tiktok=False)

    mock_http.responder = lambda request: httpx.Response(503, json={"error": {"message": "Service unavailable"}})
    placed = _place_order(client, product["id"])
    tracking_event_id = placed.json()["tracking"]["event_id"]
    outbox_id = client.get("/integrations/outbox", headers=_auth_headers(token)).json()["items"][0]["id"]

    queued = client.get(f"/integrations/outbox/{outbox_id}", headers=_auth_headers(token))
    assert queued.status_code == 200, queued.text
    assert queued.json()["status"] == "pending"
    assert queued.json()["attempts"] == []
    assert queued.json()["event_ids"] == [tracking_event_id]

    for responder in (
        lambda request: httpx.Response(503, json={"error": {"message": "Service unavailable"}}),
        lambda request: httpx.Response(200, json={"events_received": 1}),
    ):
        db = session_local()
        try:
            db.execute(
                update(IntegrationOutboxEvent).values(next_attempt_at=datetime.now(timezone.utc) - timedelta(seconds=1))
            )
            db.commit()
        finally:
            db.close()
        mock_http.responder = responder
        client.post("/integrations/outbox/dispatch", headers=_auth_headers(token))

    detail = client.get(f"/integrations/outbox/{outbox_id}", headers=_auth_headers(token))
    body = detail.json()
    assert body["status"] == "delivered"
    assert body["attempt_count"] == 2
    assert [(item["attempt_number"], item["status"], item["response_code"]) for item in body["attempts"]] == [
        (1, "failed", 503),
        (2, "delivered", 200),
    ]
    assert "payload_json" not in body
    assert "user_data" not in detail.text
    assert "fb-secret-token" not in detail.text


def test_outbox_list_rejects_unknown_filters(test_context):
    client, _ = test_context
    token = _owner_token(client)

    unknown_status = client.get("/integrations/outbox", params={"status": "lost"}, headers=_auth_headers(token))
    assert unknown_status.status_code == 400
    assert unknown_status.json()["error"]["message"].startswith("status must be one of:")

    unknown_target = client.get("/integrations/outbox", params={"target": "snapchat"}, headers=_auth_headers(token))
    assert unknown_target.status_code == 400
    assert unknown_target.json()["error"]["message"].startswith("target must be one of:")

    filtered = client.get(
        "/integrations/outbox",
        params={"status": "dead_letter", "target": "whatsapp"},
        headers=_auth_headers(token),
    )
    assert filtered.status_code == 200, filtered.text
    assert filtered.json()["items"] == []


def test_diagnostics_list_duplicate_external_ids(test_context):
    client, _ = test_context
    token = _owner_token(client)

    events = [
        {"event_type": "PageView", "event_id": f"e-{index}-{repeat}", "external_id": f"visitor-{index}", "success": True}
        for index in range(7)
        for repeat in range(2)
    ]
    events.append({"event_type": "PageView", "event_id": "e-single", "external_id": "visitor-single", "success": True})
    recorded = client.post("/tracking/ali-store/client-events", json={"events": events})
    assert recorded.json() == {"recorded": 15}

    summary = client.get("/pixel-diagnostics/summary", headers=_auth_headers(token)).json()
    duplicates = summary["external_ids"]["duplicate_external_ids"]
    assert sorted(duplicates) == sorted(hash_value(f"visitor-{index}") for index in range(7))
    assert hash_value("visitor-single") not in duplicates
    assert summary["external_ids"]["unique_external_ids"] == 8

    report = client.get("/pixel-diagnostics/report", headers=_auth_headers(token)).text
    assert "- Duplicate External IDs: 7" in report
    listed = report.split("Duplicate External IDs Found:\n", 1)[1].split("\n\n", 1)[0].splitlines()
    assert len(listed) == 5
    assert set(listed) <= set(duplicates)


def test_credentials_are_encrypted_and_authenticated(monkeypatch):
    first = encrypt_credential("fb-secret-token")
    second = encrypt_credential("fb-secret-token")
    assert first != second
    assert decrypt_credential(first) == decrypt_credential(second) == "fb-secret-token"

    position = len(first) // 2
    replacement = "A" if first[position] != "A" else "B"
    tampered = first[:position] + replacement + first[position + 1:]
    with pytest.raises(TokenValidationError):
        decrypt_credential(tampered)

    with pytest.raises(TokenValidationError):
        decrypt_credential("fb-secret-token")

    monkeypatch.setattr(settings, "secret_key", "another-secret-key")
    with pytest.raises(TokenValidationError):
        decrypt_credential(first)
