import hashlib
import json
import re
from datetime import datetime, timezone

import httpx

from app.services.tiktok_events import (
    TikTokEventsClient,
    build_tiktok_event,
    derive_event_id,
    extract_content_id,
    format_iraqi_phone,
    is_valid_content_id,
    normalize_tiktok_event,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


def test_normalize_tiktok_event_maps_aliases():
    assert normalize_tiktok_event("purchase") == "Purchase"
    assert normalize_tiktok_event("ON_WEB_ORDER") == "CompletePayment"
    assert normalize_tiktok_event("SUCCESSORDER_PAY") == "CompletePayment"
    assert normalize_tiktok_event("view_content") == "ViewContent"
    assert normalize_tiktok_event("lead") == "SubmitForm"
    assert normalize_tiktok_event("CustomThing") == "CustomThing"


def test_format_iraqi_phone_variants():
    assert format_iraqi_phone("07701234567") == "+9647701234567"
    assert format_iraqi_phone("7701234567") == "+9647701234567"
    assert format_iraqi_phone("9647701234567") == "+9647701234567"
    assert format_iraqi_phone("+9647701234567") == "+9647701234567"
    assert format_iraqi_phone(None) == ""


def test_content_id_extraction_prefers_explicit_ids():
    assert is_valid_content_id("abc")
    assert not is_valid_content_id("undefined")
    assert not is_valid_content_id("  ")
    assert not is_valid_content_id(None)

    assert extract_content_id({"content_id": "undefined", "content_ids": ["p-9"]}) == "p-9"
    assert extract_content_id({"product_id": 42}) == "42"
    assert extract_content_id({"order_number": "ORD-000007"}) == "ORD-000007"


def test_content_id_fallback_is_generated_from_labels():
    generated = extract_content_id({"content_name": "Cotton Shirt!"}, NOW)
    assert re.match(r"^srv_cotton_\d{8}_[a-z0-9]{4}$", generated)
    assert generated.split("_")[2] == str(NOW_MS)[-8:]

    anonymous = extract_content_id({}, NOW)
    assert anonymous.startswith("server_product_")


def test_derive_event_id_prefers_client_value():
    assert derive_event_id("Purchase", {"event_id": "client-1"}, NOW) == "client-1"
    assert derive_event_id("Purchase", {"order_number": "ORD-000001"}, NOW) == f"Purchase_ORD-000001_{str(NOW_MS)[-8:]}"
    assert derive_event_id("ViewContent", {}, NOW) == f"ViewContent_{NOW_MS}_{str(NOW_MS // 1000)[-4:]}"


def test_build_tiktok_event_hashes_user_and_reports_usd(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "iqd_to_usd_rate", 1310.0)
    event = build_tiktok_event(
        "PIXEL1",
        "purchase",
        {
            "event_id": "evt-1",
            "customer_email": "Buyer@Example.com",
            "customer_phone": "07701234567",
            "value": 13100,
            "currency": "IQD",
            "content_ids": ["p-1"],
            "ttclid": "tt-click",
            "client_ip_address": "10.0.0.1",
            "client_user_agent": "Mozilla/5.0",
            "event_source_url": "https://ali-store.sanadi.pro/p/1",
        },
        NOW,
    )

    assert event["event"] == "Purchase"
    assert event["event_id"] == "evt-1"
    assert event["pixel_code"] == "PIXEL1"
    assert event["event_time"] == int(NOW.timestamp())
    assert event["properties"]["currency"] == "USD"
    assert event["properties"]["value"] == 10.0
    assert event["properties"]["quantity"] == 1
    assert event["properties"]["content_type"] == "product"
    assert event["properties"]["content_id"] == "p-1"
    user = event["context"]["user"]
    assert user["email"] == hashlib.sha256(b"buyer@example.com").hexdigest()
    assert user["phone_number"] == hashlib.sha256(b"+9647701234567").hexdigest()
    assert event["context"]["ad"] == {"callback": "tt-click"}
    assert event["context"]["ip"] == "10.0.0.1"


def test_client_success_requires_zero_code():
    seen: list[httpx.Request] = []
    replies = iter(
        [
            httpx.Response(200, json={"code": 0, "message": "OK"}),
            httpx.Response(200, json={"code": 40001, "message": "Invalid pixel"}),
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return next(replies)

    client = TikTokEventsClient(http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    ok = client.send_event("tt-token", "PIXEL1", {"event": "Purchase", "event_id": "evt-1"})
    rejected = client.send_event("tt-token", "PIXEL1", {"event": "Purchase", "event_id": "evt-2"})

    assert ok.success is True
    assert ok.event_id == "evt-1"
    assert rejected.success is False
    assert rejected.error == "Invalid pixel"

    assert seen[0].headers["Access-Token"] == "tt-token"
    assert str(seen[0].url) == "https://business-api.tiktok.com/open_api/v1.3/event/track/"
    body = json.loads(seen[0].content)
    assert body["event_source"] == "web"
    assert body["event_source_id"] == "PIXEL1"
    assert body["data"][0]["event_id"] == "evt-1"


def test_client_captures_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = TikTokEventsClient(http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    result = client.send_event("tt-token", "PIXEL1", {"event": "Purchase", "event_id": "evt-3"})
    assert result.success is False
    assert result.error.startswith("Transport error")
