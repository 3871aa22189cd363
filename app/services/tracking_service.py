"""Server-side conversion reporting shared by the tracking endpoint and orders.

Every event handed to an ad platform leaves exactly one diagnostics row per
attempt, whatever the outcome. Failed deliveries are staged in the
integration outbox for retry; nothing here raises to the storefront caller.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.order import Order, OrderItem
from app.services.ad_settings_service import AdCredentials, load_ad_credentials
from app.services.facebook_conversions import (
    BuiltEvent,
    ConversionEventError,
    ConversionInput,
    FacebookConversionsClient,
    build_conversion_event,
    resolve_event_time,
)
from app.services.integration_service import queue_outbox_event
from app.services.pixel_diagnostics_service import log_pixel_event
from app.services.tiktok_events import TikTokEventsClient, TikTokResult, build_tiktok_event

ORDER_FACEBOOK_EVENT = "Purchase"
ORDER_TIKTOK_EVENT = "CompletePayment"


@dataclass(frozen=True)
class ProviderOutcome:
    provider: str
    status: str
    error: str | None = None


@dataclass
class ConversionReport:
    built: list[BuiltEvent] = field(default_factory=list)
    rejected: list[tuple[ConversionInput, str]] = field(default_factory=list)
    sent: int = 0
    failed: int = 0
    queued_for_retry: int = 0


@dataclass(frozen=True)
class TrackingResult:
    event_id: str | None
    fbc_outcome: str | None
    providers: list[ProviderOutcome]


def report_conversions(
    db: Session,
    platform_id: str,
    inputs: list[ConversionInput],
    *,
    credentials: AdCredentials,
    http_client: httpx.Client | None = None,
    now: datetime | None = None,
) -> ConversionReport:
    current = now or datetime.now(timezone.utc)
    report = ConversionReport()

    for item in inputs:
        try:
            report.built.append(build_conversion_event(item, current))
        except ConversionEventError as exc:
            report.rejected.append((item, str(exc)))
            log_pixel_event(
                db,
                platform_id=platform_id,
                provider="facebook",
                source="server",
                event_type=item.event_name or "unknown",
                event_id=item.event_id,
                external_id=item.external_id,
                success=False,
                error=str(exc),
            )

    if not report.built:
        return report

    client = FacebookConversionsClient(http_client=http_client)
    summary = client.send_events(
        credentials.facebook_pixel_id,
        credentials.facebook_access_token,
        [event.payload for event in report.built],
    )
    for events, result in summary.batches:
        for event in events:
            log_pixel_event(
                db,
                platform_id=platform_id,
                provider="facebook",
                source="server",
                event_type=event["event_name"],
                event_id=event["event_id"],
                external_id=event["user_data"].get("external_id"),
                success=result.success,
                error=result.error,
            )
        if not result.success:
            queue_outbox_event(
                db,
                platform_id=platform_id,
                event_type="facebook.conversions",
                target="facebook_capi",
                payload_json={"pixel_id": credentials.facebook_pixel_id, "events": events},
                last_error=result.error,
                delay_seconds=settings.integration_outbox_retry_seconds,
            )
            report.queued_for_retry += len(events)

    report.sent = summary.sent
    report.failed = summary.failed
    return report


def report_tiktok_event(
    db: Session,
    platform_id: str,
    event_name: str,
    data: dict[str, Any],
    *,
    credentials: AdCredentials,
    http_client: httpx.Client | None = None,
    now: datetime | None = None,
) -> TikTokResult:
    event = build_tiktok_event(credentials.tiktok_pixel_id, event_name, data, now)
    client = TikTokEventsClient(http_client=http_client)
    result = client.send_event(credentials.tiktok_access_token, credentials.tiktok_pixel_id, event)

    log_pixel_event(
        db,
        platform_id=platform_id,
        provider="tiktok",
        source="server",
        event_type=event["event"],
        event_id=result.event_id,
        external_id=data.get("external_id"),
        success=result.success,
        error=result.error,
    )
    if not result.success:
        queue_outbox_event(
            db,
            platform_id=platform_id,
            event_type="tiktok.event",
            target="tiktok_events",
            payload_json={"pixel_code": credentials.tiktok_pixel_id, "event": event},
            last_error=result.error,
            delay_seconds=settings.integration_outbox_retry_seconds,
        )
    return result


def _tiktok_event_time(event_time: int | float | None, now: datetime) -> int:
    # Same seconds/milliseconds handling as Meta; an out-of-window time falls back to now.
    try:
        return resolve_event_time(event_time, now)
    except ConversionEventError:
        return int(now.timestamp())


def track_event(
    db: Session,
    platform_id: str,
    data: ConversionInput,
    *,
    tiktok_event_name: str | None = None,
    extra_tiktok_fields: dict[str, Any] | None = None,
    http_client: httpx.Client | None = None,
    now: datetime | None = None,
) -> TrackingResult:
    current = now or datetime.now(timezone.utc)
    credentials = load_ad_credentials(db, platform_id)
    outcomes: list[ProviderOutcome] = []
    event_id = data.event_id
    event_time = None
    fbc_outcome = None

    if credentials is None or not credentials.facebook_enabled:
        outcomes.append(ProviderOutcome(provider="facebook", status="skipped"))
    else:
        report = report_conversions(
            db,
            platform_id,
            [data],
            credentials=credentials,
            http_client=http_client,
            now=current,
        )
        if report.rejected:
            outcomes.append(ProviderOutcome(provider="facebook", status="rejected", error=report.rejected[0][1]))
        else:
            built = report.built[0]
            event_id = built.event_id
            event_time = built.payload["event_time"]
            fbc_outcome = built.fbc.outcome
            if report.sent:
                outcomes.append(ProviderOutcome(provider="facebook", status="sent"))
            else:
                outcomes.append(ProviderOutcome(provider="facebook", status="failed", error="Queued for retry"))

    if credentials is None or not credentials.tiktok_enabled:
        outcomes.append(ProviderOutcome(provider="tiktok", status="skipped"))
    else:
        tiktok_data = asdict(data)
        # Share the server event id so browser and server events deduplicate.
        tiktok_data["event_id"] = event_id
        tiktok_data["timestamp"] = event_time or _tiktok_event_time(data.event_time, current)
        tiktok_data.update(extra_tiktok_fields or {})
        result = report_tiktok_event(
            db,
            platform_id,
            tiktok_event_name or data.event_name,
            tiktok_data,
            credentials=credentials,
            http_client=http_client,
            now=current,
        )
        event_id = event_id or result.event_id
        outcomes.append(
            ProviderOutcome(
                provider="tiktok",
                status="sent" if result.success else "failed",
                error=result.error,
            )
        )

    return TrackingResult(event_id=event_id, fbc_outcome=fbc_outcome, providers=outcomes)


def _split_name(full_name: str | None) -> tuple[str | None, str | None]:
    parts = (full_name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def conversion_input_from_order(order: Order, items: list[OrderItem]) -> ConversionInput:
    attribution = order.attribution_json or {}
    first_name, last_name = _split_name(order.customer_name)
    return ConversionInput(
        event_name=ORDER_FACEBOOK_EVENT,
        event_id=attribution.get("event_id"),
        event_source_url=attribution.get("event_source_url"),
        customer_email=order.customer_email,
        customer_phone=order.customer_phone,
        customer_first_name=first_name,
        customer_last_name=last_name,
        customer_city=order.customer_city,
        customer_country="iq",
        external_id=order.customer_phone,
        fbc=attribution.get("fbc"),
        fbp=attribution.get("fbp"),
        fbclid=attribution.get("fbclid"),
        fbclid_timestamp=attribution.get("fbclid_timestamp"),
        ttclid=attribution.get("ttclid"),
        value=float(order.total_amount),
        currency=order.currency,
        content_ids=[item.product_id for item in items],
        content_name=items[0].product_name if items else None,
        content_type="product",
        quantity=sum(item.quantity for item in items),
        order_id=order.order_number,
        client_ip_address=attribution.get("client_ip_address"),
        client_user_agent=attribution.get("client_user_agent"),
        host=attribution.get("host"),
    )


def report_order_purchase(
    db: Session,
    platform_id: str,
    order: Order,
    items: list[OrderItem],
    *,
    http_client: httpx.Client | None = None,
) -> TrackingResult:
    return track_event(
        db,
        platform_id,
        conversion_input_from_order(order, items),
        tiktok_event_name=ORDER_TIKTOK_EVENT,
        extra_tiktok_fields={"order_number": order.order_number, "transaction_id": order.order_number},
        http_client=http_client,
    )
