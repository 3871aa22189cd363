import hashlib
import re
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from app.services.facebook_conversions import (
    ConversionEventError,
    ConversionInput,
    FacebookConversionsClient,
    build_conversion_event,
    build_custom_data,
    build_user_data,
    hash_phone,
    hash_value,
    normalize_phone,
    resolve_event_time,
    resolve_fbc,
    subdomain_index,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def _sha(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def _ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def test_hash_value_normalizes_and_skips_empty_or_hashed_values():
    assert hash_value("  Test@Example.COM ") == _sha("test@example.com")
    assert hash_value("") == ""
    assert hash_value(None) == ""
    assert hash_value("undefined") == ""

    already_hashed = _sha("someone@example.com")
    assert hash_value(already_hashed) == already_hashed


def test_normalize_phone_defaults_to_iraq_country_code():
    assert normalize_phone("0770 123 4567") == "+9647701234567"
    assert normalize_phone("7701234567") == "+9647701234567"
    assert normalize_phone("9647701234567") == "+9647701234567"
    assert normalize_phone("009647701234567") == "+9647701234567"
    assert normalize_phone("+14155550100") == "+14155550100"
    assert normalize_phone("") == ""


def test_hash_phone_uses_digits_without_plus():
    assert hash_phone("07701234567") == _sha("9647701234567")
    assert hash_phone(None) == ""


def test_subdomain_index_counts_host_labels():
    assert subdomain_index("localhost:3000") == 0
    assert subdomain_index("sanadi") == 0
    assert subdomain_index("sanadi.pro") == 1
    assert subdomain_index("ali-store.sanadi.pro") == 2
    assert subdomain_index(None) == 0


def test_resolve_fbc_keeps_valid_cookie():
    fbc = f"fb.1.{_ms(NOW - timedelta(days=1))}.IwAR0abc"
    resolution = resolve_fbc(fbc=fbc, fbclid=None, fbclid_timestamp=None, host=None, now=NOW)
    assert resolution.value == fbc
    assert resolution.outcome == "valid"


def test_resolve_fbc_scales_second_timestamps_to_milliseconds():
    created = NOW - timedelta(hours=3)
    fbc = f"fb.1.{int(created.timestamp())}.IwAR0abc"
    resolution = resolve_fbc(fbc=fbc, fbclid=None, fbclid_timestamp=None, host=None, now=NOW)
    assert resolution.outcome == "repaired"
    assert resolution.value == f"fb.1.{int(created.timestamp()) * 1000}.IwAR0abc"


def test_resolve_fbc_regenerates_expired_cookie_from_recent_click():
    expired = f"fb.1.{_ms(NOW - timedelta(days=10))}.OldClick"
    click_ms = _ms(NOW - timedelta(hours=1))
    resolution = resolve_fbc(
        fbc=expired,
        fbclid="NewClick",
        fbclid_timestamp=click_ms,
        host="ali-store.sanadi.pro",
        now=NOW,
    )
    assert resolution.outcome == "generated"
    assert resolution.value == f"fb.2.{click_ms}.NewClick"


def test_resolve_fbc_generates_from_click_without_timestamp():
    resolution = resolve_fbc(fbc=None, fbclid="IwAR0abc", fbclid_timestamp=None, host="sanadi.pro", now=NOW)
    assert resolution.outcome == "generated"
    assert resolution.value == f"fb.1.{_ms(NOW)}.IwAR0abc"


def test_resolve_fbc_drops_invalid_or_stale_values():
    stale = f"fb.1.{_ms(NOW - timedelta(days=8))}.IwAR0abc"
    assert resolve_fbc(fbc=stale, fbclid=None, fbclid_timestamp=None, host=None, now=NOW).outcome == "dropped"

    future = f"fb.1.{_ms(NOW + timedelta(minutes=10))}.IwAR0abc"
    dropped = resolve_fbc(fbc=future, fbclid=None, fbclid_timestamp=None, host=None, now=NOW)
    assert dropped.outcome == "dropped"
    assert dropped.value is None

    garbage = resolve_fbc(fbc="not-an-fbc", fbclid=None, fbclid_timestamp=None, host=None, now=NOW)
    assert garbage.outcome == "dropped"

    old_click = resolve_fbc(
        fbc=None,
        fbclid="IwAR0abc",
        fbclid_timestamp=_ms(NOW - timedelta(days=9)),
        host=None,
        now=NOW,
    )
    assert old_click.outcome == "absent"
    assert old_click.value is None


def test_resolve_event_time_rules():
    now_seconds = int(NOW.timestamp())
    assert resolve_event_time(None, NOW) == now_seconds
    assert resolve_event_time((now_seconds - 120) * 1000, NOW) == now_seconds - 120
    assert resolve_event_time(now_seconds + 30, NOW) == now_seconds

    with pytest.raises(ConversionEventError):
        resolve_event_time(now_seconds + 3600, NOW)
    with pytest.raises(ConversionEventError):
        resolve_event_time(now_seconds - 8 * 24 * 3600, NOW)


def test_build_user_data_hashes_pii_and_omits_empty_fields():
    data = ConversionInput(
        event_name="Purchase",
        customer_email="Buyer@Example.com",
        customer_phone="07701234567",
        customer_first_name="Ali",
        customer_city="Baghdad New",
        customer_country="IQ",
        external_id="07701234567",
        client_ip_address="10.1.2.3",
        client_user_agent="Mozilla/5.0",
        fbp="fb.1.1718000000000.123",
    )
    user_data = build_user_data(data, fbc=None)

    assert user_data["em"] == _sha("buyer@example.com")
    assert user_data["ph"] == _sha("9647701234567")
    assert user_data["fn"] == _sha("ali")
    assert user_data["ct"] == _sha("baghdadnew")
    assert user_data["country"] == _sha("iq")
    assert user_data["client_ip_address"] == "10.1.2.3"
    assert user_data["fbp"] == "fb.1.1718000000000.123"
    assert "ln" not in user_data
    assert "fbc" not in user_data
    assert "Buyer@Example.com" not in str(user_data)


def test_build_custom_data_reports_usd(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "iqd_to_usd_rate", 1310.0)
    custom_data = build_custom_data(
        ConversionInput(
            event_name="Purchase",
            value=26200,
            currency="IQD",
            content_ids=["p-1", " ", "p-2"],
            quantity=3,
            order_id="ORD-000001",
        )
    )
    assert custom_data == {
        "value": 20.0,
        "currency": "USD",
        "content_ids": ["p-1", "p-2"],
        "num_items": 3,
        "order_id": "ORD-000001",
    }
    assert build_custom_data(ConversionInput(event_name="PageView")) == {"currency": "USD"}


def test_build_conversion_event_assigns_event_id_and_fbc():
    built = build_conversion_event(
        ConversionInput(
            event_name="Purchase",
            event_source_url="https://ali-store.sanadi.pro/product/1",
            fbclid="IwAR0abc",
            host="ali-store.sanadi.pro",
            value=10,
            currency="USD",
        ),
        NOW,
    )
    payload = built.payload
    assert payload["event_name"] == "Purchase"
    assert payload["event_time"] == int(NOW.timestamp())
    assert payload["action_source"] == "website"
    assert re.match(r"^\d{13}_[a-z0-9]{9}$", payload["event_id"])
    assert payload["user_data"]["fbc"] == f"fb.2.{_ms(NOW)}.IwAR0abc"
    assert built.fbc.outcome == "generated"
    assert built.event_id == payload["event_id"]


def test_build_conversion_event_rejects_bad_action_source():
    with pytest.raises(ConversionEventError):
        build_conversion_event(ConversionInput(event_name="Lead", action_source="carrier_pigeon"), NOW)


def test_client_posts_batch_and_reads_response():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"events_received": 1, "fbtrace_id": "trace-1"})

    client = FacebookConversionsClient(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        api_version="v18.0",
        test_event_code="TEST123",
    )
    result = client.send_batch("1234", "token-abc", [{"event_name": "Purchase"}])

    assert result.success is True
    assert result.events_received == 1
    assert result.fbtrace_id == "trace-1"
    assert str(seen[0].url) == "https://graph.facebook.com/v18.0/1234/events"
    body = httpx.Response(200, content=seen[0].content).json()
    assert body["access_token"] == "token-abc"
    assert body["test_event_code"] == "TEST123"


def test_client_captures_api_and_transport_errors():
    def error_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": {"message": "Invalid parameter", "fbtrace_id": "trace-err"}},
        )

    client = FacebookConversionsClient(http_client=httpx.Client(transport=httpx.MockTransport(error_handler)))
    result = client.send_batch("1234", "token", [{"event_name": "Purchase"}])
    assert result.success is False
    assert result.status_code == 400
    assert result.error == "Invalid parameter"
    assert result.fbtrace_id == "trace-err"

    def broken_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = FacebookConversionsClient(http_client=httpx.Client(transport=httpx.MockTransport(broken_handler)))
    result = client.send_batch("1234", "token", [{"event_name": "Purchase"}])
    assert result.success is False
    assert result.error.startswith("Transport error")


def test_send_events_splits_into_batches():
    sizes: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        count = len(httpx.Response(200, content=request.content).json()["data"])
        sizes.append(count)
        return httpx.Response(200, json={"events_received": count})

    client = FacebookConversionsClient(
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        batch_size=2,
        test_event_code="",
    )
    summary = client.send_events("1234", "token", [{"event_name": "Lead", "n": index} for index in range(5)])

    assert sizes == [2, 2, 1]
    assert summary.sent == 5
    assert summary.failed == 0
    with pytest.raises(ValueError):
        client.send_batch("1234", "token", [{}, {}, {}])
