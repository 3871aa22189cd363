import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.observability import log_event
from app.models.integration import OutboundMessage, WhatsAppSession
from app.models.order import Order, OrderItem
from app.models.platform import Platform
from app.services.audit_service import log_audit_event
from app.services.integration_service import queue_outbox_event
from app.services.messaging_provider import (
    MessageSendRequest,
    MessagingProviderError,
    get_messaging_provider,
)

CHAT_ID_SUFFIX = "@c.us"
CONFIRMATION_WORDS = ("تم", "اكد", "أكد", "تاكيد", "تأكيد", "موافق", "نعم", "اوكى", "اوكي", "ok")


class WhatsAppSessionError(RuntimeError):
    pass


@dataclass(frozen=True)
class InboundResult:
    is_confirmation: bool
    confirmed_order_numbers: list[str]


def format_chat_id(phone_number: str) -> str:
    digits = re.sub(r"\D", "", phone_number or "")
    if digits.startswith("964"):
        digits = digits[3:]
    if digits.startswith("0"):
        digits = digits[1:]
    if not digits:
        raise WhatsAppSessionError("Invalid phone number provided")
    return f"964{digits}{CHAT_ID_SUFFIX}"


def get_session(db: Session, platform_id: str) -> WhatsAppSession | None:
    return db.execute(
        select(WhatsAppSession).where(WhatsAppSession.platform_id == platform_id)
    ).scalar_one_or_none()


def create_session(db: Session, *, platform_id: str, phone_number: str, business_name: str) -> WhatsAppSession:
    session = get_session(db, platform_id)
    if session and session.status == "connected":
        raise WhatsAppSessionError("WhatsApp session already connected")

    provider = get_messaging_provider(settings.messaging_provider_default)
    started = provider.start_session(platform_id, phone_number)

    if session is None:
        session = WhatsAppSession(id=str(uuid.uuid4()), platform_id=platform_id)
        db.add(session)
    session.provider = provider.name
    session.phone_number = phone_number
    session.business_name = business_name
    session.status = started.status
    session.qr_code = started.qr_code
    session.external_session_id = started.external_session_id
    session.connected_at = None
    session.last_error = None
    return session


def confirm_session(db: Session, platform_id: str, external_session_id: str) -> WhatsAppSession:
    session = get_session(db, platform_id)
    if not session or session.status == "disconnected":
        raise WhatsAppSessionError("No pending WhatsApp session")
    if session.external_session_id != external_session_id:
        raise WhatsAppSessionError("Session id mismatch")

    session.status = "connected"
    session.qr_code = None
    session.connected_at = datetime.now(timezone.utc)
    log_event("whatsapp.session_connected", platform_id=platform_id)
    return session


def destroy_session(db: Session, platform_id: str) -> WhatsAppSession | None:
    session = get_session(db, platform_id)
    if not session:
        return None
    if session.external_session_id:
        get_messaging_provider(session.provider).end_session(session.external_session_id)
    session.status = "disconnected"
    session.qr_code = None
    session.external_session_id = None
    session.connected_at = None
    return session


def send_message(db: Session, *, platform_id: str, phone_number: str, content: str) -> OutboundMessage:
    session = get_session(db, platform_id)
    if not session or session.status != "connected":
        raise WhatsAppSessionError("WhatsApp client not ready")

    recipient = format_chat_id(phone_number)
    message = OutboundMessage(
        id=str(uuid.uuid4()),
        platform_id=platform_id,
        provider=session.provider,
        recipient=recipient,
        content=content[:2000],
        status="queued",
    )
    db.add(message)

    try:
        result = get_messaging_provider(session.provider).send_message(
            MessageSendRequest(
                platform_id=platform_id,
                session_id=session.external_session_id,
                recipient=recipient,
                content=message.content,
            )
        )
    except MessagingProviderError as exc:
        message.status = "failed"
        message.error_message = str(exc)[:255]
        db.flush()
        queue_outbox_event(
            db,
            platform_id=platform_id,
            event_type="whatsapp.message",
            target="whatsapp",
            payload_json={"message_id": message.id},
            last_error=message.error_message,
            delay_seconds=settings.integration_outbox_retry_seconds,
        )
        log_event("whatsapp.send", level=logging.WARNING, platform_id=platform_id, success=False, error=message.error_message)
        return message

    message.status = result.status
    message.external_message_id = result.message_id
    log_event("whatsapp.send", platform_id=platform_id, success=True, message_id=result.message_id)
    return message


def _format_amount(value: Decimal) -> str:
    return f"{int(value):,}" if value == value.to_integral_value() else f"{value:,.2f}"


def build_order_confirmation_message(order: Order, items: list[OrderItem], platform: Platform) -> str:
    lines = [
        f"مرحباً {order.customer_name}",
        f"شكراً لطلبك من {platform.name}",
        "",
        f"رقم الطلب: #{order.order_number}",
        "المنتجات:",
    ]
    for item in items:
        lines.append(f"- {item.product_name} × {item.quantity}")
    lines.append(f"المجموع: {_format_amount(order.total_amount)} {order.currency}")
    if order.customer_address or order.customer_city:
        address = "، ".join(part for part in (order.customer_city, order.customer_address) if part)
        lines.append(f"العنوان: {address}")
    lines.extend(["", "للتأكيد يرجى الرد بكلمة: تم"])
    return "\n".join(lines)


def send_order_confirmation(db: Session, platform: Platform, order: Order, items: list[OrderItem]) -> OutboundMessage | None:
    """Send the order summary when the platform has a connected session.

    Returns None when nothing was sent; a bad customer phone is logged, not raised.
    """
    session = get_session(db, platform.id)
    if not session or session.status != "connected":
        return None
    try:
        return send_message(
            db,
            platform_id=platform.id,
            phone_number=order.customer_phone,
            content=build_order_confirmation_message(order, items, platform),
        )
    except WhatsAppSessionError as exc:
        log_event(
            "whatsapp.order_confirmation_skipped",
            level=logging.WARNING,
            platform_id=platform.id,
            order_id=order.id,
            error=str(exc),
        )
        return None


def _order_chat_id(order: Order) -> str | None:
    try:
        return format_chat_id(order.customer_phone)
    except WhatsAppSessionError:
        return None


def is_confirmation_message(body: str) -> bool:
    text = (body or "").strip()
    lowered = text.lower()
    return any(word in lowered if word.isascii() else word in text for word in CONFIRMATION_WORDS)


def handle_inbound_message(db: Session, platform: Platform, sender: str, body: str) -> InboundResult:
    """Confirm the sender's pending orders when the reply is a confirmation."""
    if not is_confirmation_message(body):
        return InboundResult(is_confirmation=False, confirmed_order_numbers=[])

    chat_id = format_chat_id(sender.replace(CHAT_ID_SUFFIX, ""))
    # Stored phones keep the customer's formatting; compare on the chat id.
    pending = db.execute(
        select(Order)
        .where(Order.platform_id == platform.id, Order.status == "pending")
        .order_by(Order.created_at.asc(), Order.order_number.asc())
    ).scalars().all()

    confirmed: list[str] = []
    for order in pending:
        if _order_chat_id(order) != chat_id:
            continue
        order.status = "confirmed"
        confirmed.append(order.order_number)
        log_audit_event(
            db,
            platform_id=platform.id,
            actor_user_id=None,
            action="order.status.update",
            target_type="order",
            target_id=order.id,
            metadata_json={"from_status": "pending", "to_status": "confirmed", "via": "whatsapp"},
        )
        send_message(
            db,
            platform_id=platform.id,
            phone_number=chat_id,
            content=(
                "تم تأكيد طلبك بنجاح\n\n"
                f"رقم الطلب: #{order.order_number}\n"
                "شكراً لك! سيتم التواصل معك قريباً لترتيب التوصيل"
            ),
        )
    if confirmed:
        log_event("whatsapp.orders_confirmed", platform_id=platform.id, count=len(confirmed))
    return InboundResult(is_confirmation=True, confirmed_order_numbers=confirmed)
