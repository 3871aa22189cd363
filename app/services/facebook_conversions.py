"""Meta Conversions API adapter.

Builds server-side events from storefront/order attribution data, hashes the
customer fields Meta expects hashed, validates the two timestamp-derived
values Meta is strict about (``fbc`` and ``event_time``) and POSTs batches to
the Graph API ``/<pixel_id>/events`` edge.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from app.core import http
from app.core.config import settings
from app.core.id_utils import generate_base36_token
from app.core.money import AD_PLATFORM_CURRENCY, convert_to_usd
from app.core.observability import log_event

ACTION_SOURCES = {
    "website",
    "email",
    "app",
    "phone_call",
    "chat",
    "physical_store",
    "system_generated",
    "other",
}

FBC_PATTERN = re.compile(r"^fb\.(\d)\.(\d{10,13})\.(\S+)$")
FBC_CLICK_WINDOW = timedelta(days=7)
FBC_FUTURE_TOLERANCE = timedelta(minutes=5)
EVENT_TIME_MAX_AGE = timedelta(days=7)
EVENT_TIME_FUTURE_TOLERANCE = timedelta(seconds=60)

_SHA256_HEX = re.compile(r"^[a-f0-9]{64}$")
_MS_THRESHOLD = 10**11
_PLACEHOLDER_VALUES = {"undefined", "null", "none"}


class ConversionEventError(ValueError):
    pass


@dataclass
class ConversionInput:
    event_name: str
    event_id: str | None = None
    event_time: int | float | None = None
    event_source_url: str | None = None
    action_source: str = "website"
    referrer: str | None = None

    customer_email: str | None = None
    customer_phone: str | None = None
    customer_first_name: str | None = None
    customer_last_name: str | None = None
    customer_city: str | None = None
    customer_state: str | None = None
    customer_country: str | None = None
    external_id: str | None = None
    login_id: str | None = None

    fbc: str | None = None
    fbp: str | None = None
    fbclid: str | None = None
    fbclid_timestamp: int | None = None
    ttclid: str | None = None

    value: float | None = None
    currency: str | None = None
    content_ids: list[str] | None = None
    content_id: str | None = None
    content_name: str | None = None
    content_category: str | None = None
    content_type: str | None = None
    product_id: str | None = None
    quantity: int | None = None
    order_id: str | None = None

    client_ip_address: str | None = None
    client_user_agent: str | None = None
    host: str | None = None


@dataclass(frozen=True)
class FbcResolution:
    value: str | None
    outcome: str


@dataclass(frozen=True)
class BuiltEvent:
    payload: dict[str, Any]
    fbc: FbcResolution

    @property
    def event_id(self) -> str:
        return self.payload["event_id"]


@dataclass(frozen=True)
class BatchResult:
    success: bool
    events_received: int = 0
    fbtrace_id: str | None = None
    status_code: int | None = None
    error: str | None = None


@dataclass
class SendSummary:
    batches: list[tuple[list[dict[str, Any]], BatchResult]] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(len(events) for events, result in self.batches if result.success)

    @property
    def failed(self) -> int:
        return sum(len(events) for events, result in self.batches if not result.success)


def _clean(value: Any) -> str:
    if value is None:
        return ""
    cleaned = str(value).strip()
    if cleaned.lower() in _PLACEHOLDER_VALUES:
        return ""
    return cleaned


def hash_value(value: Any) -> str:
    cleaned = _clean(value).lower()
    if not cleaned:
        return ""
    if _SHA256_HEX.match(cleaned):
        # Already hashed upstream (browser pixel helpers do this).
        return cleaned
    return hashlib.sha256(cleaned.encode("utf-8")).hexdigest()


def normalize_phone(phone: Any, country_code: str | None = None) -> str:
    """Return the phone in E.164 form, defaulting to the local country code."""
    cleaned = re.sub(r"[^\d+]", "", _clean(phone))
    if not cleaned or cleaned == "+":
        return ""
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]
    if cleaned.startswith("+"):
        return cleaned

    code = country_code or settings.default_phone_country_code
    if cleaned.startswith(code) and len(cleaned) - len(code) >= 10:
        return f"+{cleaned}"
    if cleaned.startswith("0"):
        cleaned = cleaned[1:]
    return f"+{code}{cleaned}"


def hash_phone(phone: Any) -> str:
    # Meta matches on digits only: country code included, no "+".
    normalized = normalize_phone(phone)
    if not normalized:
        return ""
    return hash_value(normalized.lstrip("+"))


def _hash_city(value: Any) -> str:
    return hash_value(re.sub(r"\s+", "", _clean(value)))


def _to_milliseconds(timestamp: int | float) -> int:
    value = int(timestamp)
    if value < _MS_THRESHOLD:
        return value * 1000
    return value


def _within_click_window(created_ms: int, now: datetime) -> bool:
    created_at = datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc)
    return now - FBC_CLICK_WINDOW <= created_at <= now + FBC_FUTURE_TOLERANCE


def subdomain_index(host: str | None) -> int:
    hostname = (host or "").split(":")[0].strip().lower()
    labels = [label for label in hostname.split(".") if label]
    if hostname == "localhost" or len(labels) <= 1:
        return 0
    if len(labels) == 2:
        return 1
    return 2


def resolve_fbc(
    *,
    fbc: str | None,
    fbclid: str | None,
    fbclid_timestamp: int | None,
    host: str | None,
    now: datetime,
) -> FbcResolution:
    candidate = _clean(fbc)
    if candidate:
        match = FBC_PATTERN.match(candidate)
        if match and int(match.group(1)) <= 2:
            created_raw = match.group(2)
            created_ms = _to_milliseconds(int(created_raw))
            if _within_click_window(created_ms, now):
                value = f"fb.{match.group(1)}.{created_ms}.{match.group(3)}"
                outcome = "valid" if value == candidate else "repaired"
                return FbcResolution(value=value, outcome=outcome)

    click_id = _clean(fbclid)
    if click_id:
        click_ms = (
            _to_milliseconds(fbclid_timestamp)
            if fbclid_timestamp
            else int(now.timestamp() * 1000)
        )
        if _within_click_window(click_ms, now):
            return FbcResolution(
                value=f"fb.{subdomain_index(host)}.{click_ms}.{click_id}",
                outcome="generated",
            )

    if candidate:
        return FbcResolution(value=None, outcome="dropped")
    return FbcResolution(value=None, outcome="absent")


def resolve_event_time(event_time: int | float | None, now: datetime) -> int:
    now_seconds = int(now.timestamp())
    if event_time is None:
        return now_seconds

    seconds = int(event_time)
    if seconds >= _MS_THRESHOLD:
        seconds //= 1000

    if seconds > now_seconds:
        if seconds - now_seconds <= EVENT_TIME_FUTURE_TOLERANCE.total_seconds():
            return now_seconds
        raise ConversionEventError("event_time is in the future")
    if now_seconds - seconds > EVENT_TIME_MAX_AGE.total_seconds():
        raise ConversionEventError("event_time is older than 7 days")
    return seconds


def generate_event_id(now: datetime) -> str:
    return f"{int(now.timestamp() * 1000)}_{generate_base36_token(9)}"


def build_user_data(data: ConversionInput, *, fbc: str | None = None) -> dict[str, str]:
    hashed = {
        "em": hash_value(data.customer_email),
        "ph": hash_phone(data.customer_phone),
        "fn": hash_value(data.customer_first_name),
        "ln": hash_value(data.customer_last_name),
        "ct": _hash_city(data.customer_city),
        "st": hash_value(data.customer_state),
        "country": hash_value(data.customer_country),
        "external_id": hash_value(data.external_id),
        "login_id": hash_value(data.login_id),
    }
    passthrough = {
        "client_ip_address": _clean(data.client_ip_address),
        "client_user_agent": _clean(data.client_user_agent),
        "fbc": _clean(fbc),
        "fbp": _clean(data.fbp),
    }
    user_data = {key: value for key, value in hashed.items() if value}
    user_data.update({key: value for key, value in passthrough.items() if value})
    return user_data


def build_custom_data(data: ConversionInput) -> dict[str, Any]:
    custom_data: dict[str, Any] = {}
    if data.value is not None:
        custom_data["value"] = convert_to_usd(data.value, data.currency)
    custom_data["currency"] = AD_PLATFORM_CURRENCY

    content_ids = [str(item).strip() for item in (data.content_ids or []) if str(item).strip()]
    if content_ids:
        custom_data["content_ids"] = content_ids
    if _clean(data.content_name):
        custom_data["content_name"] = _clean(data.content_name)
    if _clean(data.content_category):
        custom_data["content_category"] = _clean(data.content_category)
    if data.quantity:
        custom_data["num_items"] = int(data.quantity)
    if _clean(data.order_id):
        custom_data["order_id"] = _clean(data.order_id)
    return custom_data


def build_conversion_event(data: ConversionInput, now: datetime | None = None) -> BuiltEvent:
    current = now or datetime.now(timezone.utc)
    event_name = _clean(data.event_name)
    if not event_name:
        raise ConversionEventError("event_name is required")

    action_source = (data.action_source or "website").strip().lower()
    if action_source not in ACTION_SOURCES:
        raise ConversionEventError(f"Unsupported action_source '{data.action_source}'")

    event_time = resolve_event_time(data.event_time, current)
    fbc = resolve_fbc(
        fbc=data.fbc,
        fbclid=data.fbclid,
        fbclid_timestamp=data.fbclid_timestamp,
        host=data.host,
        now=current,
    )

    payload: dict[str, Any] = {
        "event_name": event_name,
        "event_time": event_time,
        "event_id": _clean(data.event_id) or generate_event_id(current),
        "action_source": action_source,
        "user_data": build_user_data(data, fbc=fbc.value),
        "custom_data": build_custom_data(data),
    }
    if _clean(data.event_source_url):
        payload["event_source_url"] = _clean(data.event_source_url)
    return BuiltEvent(payload=payload, fbc=fbc)


class FacebookConversionsClient:
    def __init__(
        self,
        *,
        http_client: httpx.Client | None = None,
        base_url: str | None = None,
        api_version: str | None = None,
        test_event_code: str | None = None,
        batch_size: int | None = None,
    ):
        self._http_client = http_client
        self.base_url = (base_url or settings.facebook_graph_base_url).rstrip("/")
        self.api_version = api_version or settings.facebook_graph_api_version
        self.test_event_code = test_event_code if test_event_code is not None else settings.facebook_test_event_code
        self.batch_size = batch_size or settings.facebook_capi_batch_size

    def events_url(self, pixel_id: str) -> str:
        return f"{self.base_url}/{self.api_version}/{pixel_id}/events"

    def _post_json(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        if self._http_client is not None:
            return self._http_client.post(url, json=payload)
        with http.build_http_client() as client:
            return client.post(url, json=payload)

    def send_batch(self, pixel_id: str, access_token: str, events: list[dict[str, Any]]) -> BatchResult:
        if not events:
            return BatchResult(success=True)
        if len(events) > self.batch_size:
            raise ValueError(f"A batch holds at most {self.batch_size} events")

        payload: dict[str, Any] = {"data": events, "access_token": access_token}
        if self.test_event_code:
            payload["test_event_code"] = self.test_event_code

        try:
            response = self._post_json(self.events_url(pixel_id), payload)
        except httpx.HTTPError as exc:
            result = BatchResult(success=False, error=f"Transport error: {exc}"[:255])
            self._log(pixel_id, events, result)
            return result

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_success:
            result = BatchResult(
                success=True,
                events_received=int(body.get("events_received", len(events))),
                fbtrace_id=body.get("fbtrace_id"),
                status_code=response.status_code,
            )
        else:
            error = body.get("error") if isinstance(body.get("error"), dict) else {}
            message = error.get("message") or response.text[:200] or "Conversions API error"
            result = BatchResult(
                success=False,
                fbtrace_id=error.get("fbtrace_id"),
                status_code=response.status_code,
                error=str(message)[:255],
            )
        self._log(pixel_id, events, result)
        return result

    def send_events(self, pixel_id: str, access_token: str, events: list[dict[str, Any]]) -> SendSummary:
        summary = SendSummary()
        for start in range(0, len(events), self.batch_size):
            chunk = events[start:start + self.batch_size]
            summary.batches.append((chunk, self.send_batch(pixel_id, access_token, chunk)))
        return summary

    def _log(self, pixel_id: str, events: list[dict[str, Any]], result: BatchResult) -> None:
        log_event(
            "facebook_capi.batch",
            level=logging.INFO if result.success else logging.WARNING,
            pixel_id=pixel_id,
            event_count=len(events),
            success=result.success,
            status_code=result.status_code,
            events_received=result.events_received,
            fbtrace_id=result.fbtrace_id,
            error=result.error,
            test_mode=bool(self.test_event_code),
        )
