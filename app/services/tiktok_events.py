import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from app.core import http
from app.core.config import settings
from app.core.id_utils import generate_base36_token
from app.core.money import AD_PLATFORM_CURRENCY, convert_to_usd
from app.core.observability import log_event
from app.services.facebook_conversions import hash_value

TIKTOK_EVENT_MAP: dict[str, str] = {
    "CompletePayment": "CompletePayment",
    "Purchase": "Purchase",
    "purchase": "Purchase",
    "PlaceAnOrder": "PlaceAnOrder",
    "ON_WEB_ORDER": "CompletePayment",
    "SUCCESSORDER_PAY": "CompletePayment",
    "ViewContent": "ViewContent",
    "view_content": "ViewContent",
    "AddToCart": "AddToCart",
    "add_to_cart": "AddToCart",
    "InitiateCheckout": "InitiateCheckout",
    "initiate_checkout": "InitiateCheckout",
    "SubmitForm": "SubmitForm",
    "lead": "SubmitForm",
    "ClickButton": "ClickButton",
}

CONTENT_ID_FIELDS = (
    "content_id",
    "content_ids",
    "product_id",
    "sku",
    "item_id",
    "id",
    "landing_page_id",
    "transaction_id",
    "order_number",
    "order_id",
)
EVENT_ID_BASE_FIELDS = ("transaction_id", "order_number", "content_id", "product_id", "landing_page_id")


@dataclass(frozen=True)
class TikTokResult:
    success: bool
    event_id: str
    status_code: int | None = None
    error: str | None = None


def normalize_tiktok_event(event_name: str) -> str:
    return TIKTOK_EVENT_MAP.get(event_name, event_name)


def format_iraqi_phone(phone: Any) -> str:
    if phone is None:
        return ""
    digits = re.sub(r"[^\d+]", "", str(phone).strip())
    if not digits:
        return ""
    if digits.startswith("07"):
        return "+964" + digits[1:]
    if digits.startswith("7"):
        return "+964" + digits
    if digits.startswith("9647"):
        return "+" + digits
    if not digits.startswith("+964") and len(digits) >= 10:
        return "+964" + digits
    return digits


def is_valid_content_id(content_id: Any) -> bool:
    if not isinstance(content_id, str):
        return False
    stripped = content_id.strip()
    return bool(stripped) and stripped not in {"undefined", "null"}


def _fallback_content_id(data: Mapping[str, Any], now: datetime) -> str:
    label = (
        data.get("content_name")
        or data.get("product_name")
        or data.get("content_category")
        or data.get("product_category")
    )
    prefix = "server_product"
    if label:
        prefix = "srv_" + re.sub(r"[^a-z0-9]", "", str(label).lower())[:6]
    millis = str(int(now.timestamp() * 1000))
    suffix = generate_base36_token(4)
    return f"{prefix}_{millis[-8:]}_{suffix}"


def extract_content_id(data: Mapping[str, Any], now: datetime | None = None) -> str:
    for field_name in CONTENT_ID_FIELDS:
        candidate = data.get(field_name)
        if field_name == "content_ids":
            candidate = candidate[0] if isinstance(candidate, (list, tuple)) and candidate else None
        if isinstance(candidate, bool):
            continue
        if isinstance(candidate, (int, float)):
            return str(candidate)
        if is_valid_content_id(candidate):
            return candidate.strip()
    return _fallback_content_id(data, now or datetime.now(timezone.utc))


def derive_event_id(event_name: str, data: Mapping[str, Any], now: datetime | None = None) -> str:
    if data.get("event_id"):
        return str(data["event_id"])

    current = now or datetime.now(timezone.utc)
    timestamp = data.get("timestamp")
    millis = int(timestamp) * 1000 if timestamp else int(current.timestamp() * 1000)
    base_id = next((data[key] for key in EVENT_ID_BASE_FIELDS if data.get(key)), None)
    if base_id:
        return f"{event_name}_{base_id}_{str(millis)[-8:]}"
    return f"{event_name}_{millis}_{str(millis // 1000)[-4:]}"


def build_tiktok_event(
    pixel_code: str,
    event_name: str,
    data: Mapping[str, Any],
    now: datetime | None = None,
) -> dict[str, Any]:
    current = now or datetime.now(timezone.utc)
    event_id = derive_event_id(event_name, data, current)

    user: dict[str, str] = {}
    email = data.get("customer_email") or data.get("email")
    if email:
        user["email"] = hash_value(email)
    phone = format_iraqi_phone(data.get("customer_phone") or data.get("phone_number"))
    if phone:
        user["phone_number"] = hash_value(phone)
    if data.get("external_id"):
        user["external_id"] = hash_value(data["external_id"])

    properties: dict[str, Any] = {
        "content_type": data.get("content_type") or "product",
        "currency": AD_PLATFORM_CURRENCY,
        "value": convert_to_usd(data.get("value") or 0, data.get("currency")),
        "quantity": data.get("quantity") or 1,
        "content_id": extract_content_id(data, current),
    }
    if data.get("content_name"):
        properties["content_name"] = data["content_name"]
    if data.get("content_category"):
        properties["content_category"] = data["content_category"]
    order_id = data.get("order_id") or data.get("transaction_id")
    if order_id:
        properties["order_id"] = str(order_id)

    event_time = int(data.get("timestamp") or current.timestamp())
    context: dict[str, Any] = {
        "user_agent": data.get("client_user_agent"),
        "ip": data.get("client_ip_address"),
        "page": {
            "url": data.get("event_source_url"),
            "referrer": data.get("referrer"),
        },
    }
    if user:
        context["user"] = user
    if data.get("ttclid"):
        context["ad"] = {"callback": data["ttclid"]}

    return {
        "pixel_code": pixel_code,
        "event": normalize_tiktok_event(event_name),
        "event_id": event_id,
        "event_time": event_time,
        "timestamp": str(event_time),
        "context": context,
        "properties": properties,
    }


class TikTokEventsClient:
    def __init__(self, *, http_client: httpx.Client | None = None, events_url: str | None = None):
        self._http_client = http_client
        self.events_url = events_url or settings.tiktok_events_url

    def _post_json(self, payload: dict[str, Any], access_token: str) -> httpx.Response:
        headers = {"Access-Token": access_token}
        if self._http_client is not None:
            return self._http_client.post(self.events_url, json=payload, headers=headers)
        with http.build_http_client() as client:
            return client.post(self.events_url, json=payload, headers=headers)

    def send_event(self, access_token: str, pixel_code: str, event: dict[str, Any]) -> TikTokResult:
        body = {
            "event_source": "web",
            "event_source_id": pixel_code,
            "data": [event],
        }
        event_id = event.get("event_id", "unknown")

        try:
            response = self._post_json(body, access_token)
        except httpx.HTTPError as exc:
            result = TikTokResult(success=False, event_id=event_id, error=f"Transport error: {exc}"[:255])
            self._log(pixel_code, event, result)
            return result

        try:
            parsed = response.json()
        except ValueError:
            parsed = {}
        if not isinstance(parsed, dict):
            parsed = {}

        if response.is_success and parsed.get("code") == 0:
            result = TikTokResult(success=True, event_id=event_id, status_code=response.status_code)
        else:
            result = TikTokResult(
                success=False,
                event_id=event_id,
                status_code=response.status_code,
                error=str(parsed.get("message") or "Unknown error")[:255],
            )
        self._log(pixel_code, event, result)
        return result

    def _log(self, pixel_code: str, event: dict[str, Any], result: TikTokResult) -> None:
        log_event(
            "tiktok_events.send",
            level=logging.INFO if result.success else logging.WARNING,
            pixel_code=pixel_code,
            event_name=event.get("event"),
            event_id=result.event_id,
            success=result.success,
            status_code=result.status_code,
            error=result.error,
        )
