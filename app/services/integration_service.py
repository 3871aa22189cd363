import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.observability import log_event
from app.core.security import decrypt_credential
from app.models.ad_settings import AdPlatformSettings
from app.models.integration import (
    IntegrationDeliveryAttempt,
    IntegrationOutboxEvent,
    OutboundMessage,
    WhatsAppSession,
)
from app.services.facebook_conversions import FacebookConversionsClient
from app.services.messaging_provider import (
    MessageSendRequest,
    MessagingProviderError,
    get_messaging_provider,
)
from app.services.pixel_diagnostics_service import log_pixel_event
from app.services.tiktok_events import TikTokEventsClient


def queue_outbox_event(
    db: Session,
    *,
    platform_id: str,
    event_type: str,
    target: str,
    payload_json: dict[str, Any] | None = None,
    max_attempts: int | None = None,
    last_error: str | None = None,
    delay_seconds: int = 0,
) -> IntegrationOutboxEvent:
    """Stage a delivery for retry; the caller commits.

    Payloads never carry credentials, they are reloaded at dispatch time.
    """
    event = IntegrationOutboxEvent(
        id=str(uuid.uuid4()),
        platform_id=platform_id,
        event_type=event_type,
        target=target,
        payload_json=payload_json,
        status="pending",
        attempt_count=0,
        max_attempts=max_attempts or settings.integration_outbox_max_attempts,
        next_attempt_at=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
        last_error=last_error[:255] if last_error else None,
    )
    db.add(event)
    return event


@dataclass(frozen=True)
class DispatchSummary:
    processed: int
    delivered: int
    failed: int
    dead_lettered: int


@dataclass(frozen=True)
class DeliveryOutcome:
    delivered: bool
    response_code: int | None = None
    response_body: str | None = None


def _active_ad_settings(db: Session, platform_id: str) -> AdPlatformSettings | None:
    return db.execute(
        select(AdPlatformSettings).where(
            AdPlatformSettings.platform_id == platform_id,
            AdPlatformSettings.is_active.is_(True),
        )
    ).scalar_one_or_none()


def _deliver_facebook(db: Session, event: IntegrationOutboxEvent, http_client: httpx.Client | None) -> DeliveryOutcome:
    payload = event.payload_json or {}
    ad_settings = _active_ad_settings(db, event.platform_id)
    if not ad_settings or not ad_settings.facebook_access_token_encrypted:
        return DeliveryOutcome(delivered=False, response_code=409, response_body="Facebook credentials not configured")

    pixel_id = payload.get("pixel_id") or ad_settings.facebook_pixel_id
    events = payload.get("events") or []
    client = FacebookConversionsClient(http_client=http_client)
    result = client.send_batch(pixel_id, decrypt_credential(ad_settings.facebook_access_token_encrypted), events)

    for item in events:
        log_pixel_event(
            db,
            platform_id=event.platform_id,
            provider="facebook",
            source="server",
            event_type=item.get("event_name", "unknown"),
            event_id=item.get("event_id"),
            external_id=(item.get("user_data") or {}).get("external_id"),
            success=result.success,
            error=result.error,
        )
    if result.success:
        ad_settings.last_sync_at = datetime.now(timezone.utc)
        return DeliveryOutcome(delivered=True, response_code=result.status_code, response_body=f"events_received={result.events_received}")
    return DeliveryOutcome(delivered=False, response_code=result.status_code, response_body=result.error)


def _deliver_tiktok(db: Session, event: IntegrationOutboxEvent, http_client: httpx.Client | None) -> DeliveryOutcome:
    payload = event.payload_json or {}
    ad_settings = _active_ad_settings(db, event.platform_id)
    if not ad_settings or not ad_settings.tiktok_access_token_encrypted:
        return DeliveryOutcome(delivered=False, response_code=409, response_body="TikTok credentials not configured")

    tiktok_event = payload.get("event") or {}
    pixel_code = payload.get("pixel_code") or ad_settings.tiktok_pixel_id
    client = TikTokEventsClient(http_client=http_client)
    result = client.send_event(decrypt_credential(ad_settings.tiktok_access_token_encrypted), pixel_code, tiktok_event)

    log_pixel_event(
        db,
        platform_id=event.platform_id,
        provider="tiktok",
        source="server",
        event_type=tiktok_event.get("event", "unknown"),
        event_id=result.event_id,
        external_id=((tiktok_event.get("context") or {}).get("user") or {}).get("external_id"),
        success=result.success,
        error=result.error,
    )
    return DeliveryOutcome(delivered=result.success, response_code=result.status_code, response_body=result.error or "ok")


def _deliver_whatsapp(db: Session, event: IntegrationOutboxEvent, http_client: httpx.Client | None) -> DeliveryOutcome:
    payload = event.payload_json or {}
    message = db.execute(
        select(OutboundMessage).where(
            OutboundMessage.id == payload.get("message_id"),
            OutboundMessage.platform_id == event.platform_id,
        )
    ).scalar_one_or_none()
    if not message:
        return DeliveryOutcome(delivered=False, response_code=404, response_body="Outbound message not found")
    if message.status == "sent":
        return DeliveryOutcome(delivered=True, response_code=200, response_body="already sent")

    session = db.execute(
        select(WhatsAppSession).where(WhatsAppSession.platform_id == event.platform_id)
    ).scalar_one_or_none()
    if not session or session.status != "connected":
        return DeliveryOutcome(delivered=False, response_code=409, response_body="WhatsApp session not connected")

    try:
        provider = get_messaging_provider(session.provider)
        result = provider.send_message(
            MessageSendRequest(
                platform_id=event.platform_id,
                session_id=session.external_session_id,
                recipient=message.recipient,
                content=message.content,
            )
        )
    except (MessagingProviderError, ValueError) as exc:
        message.status = "failed"
        message.error_message = str(exc)[:255]
        return DeliveryOutcome(delivered=False, response_code=502, response_body=str(exc))

    message.status = result.status
    message.external_message_id = result.message_id
    message.error_message = None
    return DeliveryOutcome(delivered=True, response_code=200, response_body=result.message_id)


_DELIVERY_HANDLERS: dict[str, Callable[[Session, IntegrationOutboxEvent, httpx.Client | None], DeliveryOutcome]] = {
    "facebook_capi": _deliver_facebook,
    "tiktok_events": _deliver_tiktok,
    "whatsapp": _deliver_whatsapp,
}


def dispatch_due_outbox_events(
    db: Session,
    *,
    platform_id: str | None = None,
    limit: int = 100,
    http_client: httpx.Client | None = None,
) -> DispatchSummary:
    now = datetime.now(timezone.utc)
    stmt = select(IntegrationOutboxEvent).where(
        and_(
            IntegrationOutboxEvent.status.in_(["pending", "failed"]),
            IntegrationOutboxEvent.next_attempt_at <= now,
        )
    )
    if platform_id:
        stmt = stmt.where(IntegrationOutboxEvent.platform_id == platform_id)

    events = db.execute(stmt.order_by(IntegrationOutboxEvent.created_at.asc()).limit(limit)).scalars().all()
    processed = 0
    delivered = 0
    failed = 0
    dead_lettered = 0

    for event in events:
        processed += 1
        event.attempt_count += 1

        handler = _DELIVERY_HANDLERS.get(event.target)
        if handler is None:
            outcome = DeliveryOutcome(delivered=False, response_code=400, response_body=f"Unknown target '{event.target}'")
        else:
            outcome = handler(db, event, http_client)

        if outcome.delivered:
            event.status = "delivered"
            event.last_error = None
            delivered += 1
            delivery_status = "delivered"
        else:
            event.last_error = (outcome.response_body or "Delivery failed")[:255]
            if event.attempt_count >= event.max_attempts:
                event.status = "dead_letter"
                dead_lettered += 1
                delivery_status = "dead_letter"
            else:
                event.status = "failed"
                event.next_attempt_at = now + timedelta(seconds=settings.integration_outbox_retry_seconds)
                failed += 1
                delivery_status = "failed"

        db.add(
            IntegrationDeliveryAttempt(
                id=str(uuid.uuid4()),
                outbox_event_id=event.id,
                attempt_number=event.attempt_count,
                status=delivery_status,
                response_code=outcome.response_code,
                response_body=(outcome.response_body or "")[:500] or None,
            )
        )

    summary = DispatchSummary(
        processed=processed,
        delivered=delivered,
        failed=failed,
        dead_lettered=dead_lettered,
    )
    if processed:
        log_event(
            "outbox.dispatch",
            platform_id=platform_id,
            processed=processed,
            delivered=delivered,
            failed=failed,
            dead_lettered=dead_lettered,
        )
    return summary


class OutboxRetryError(ValueError):
    pass


def requeue_outbox_event(event: IntegrationOutboxEvent, *, now: datetime | None = None) -> IntegrationOutboxEvent:
    """Give a failed or dead-lettered event a fresh attempt budget, due immediately."""
    if event.status not in ("failed", "dead_letter"):
        raise OutboxRetryError(f"Cannot retry an event in status '{event.status}'")
    event.status = "pending"
    event.max_attempts = event.attempt_count + settings.integration_outbox_max_attempts
    event.next_attempt_at = now or datetime.now(timezone.utc)
    return event


def outbox_event_ids(event: IntegrationOutboxEvent) -> list[str]:
    payload = event.payload_json or {}
    if event.target == "facebook_capi":
        candidates = [item.get("event_id") for item in payload.get("events") or []]
    elif event.target == "tiktok_events":
        candidates = [(payload.get("event") or {}).get("event_id")]
    else:
        candidates = [payload.get("message_id")]
    return [str(value) for value in candidates if value]
