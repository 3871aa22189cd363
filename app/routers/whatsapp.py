from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import ALL_ROLES, MANAGER_ROLES, require_platform_roles
from app.core.security_current import PlatformAccess, get_current_user
from app.models.integration import OutboundMessage, WhatsAppSession
from app.models.user import User
from app.schemas.common import PaginationMeta
from app.schemas.whatsapp import (
    OutboundMessageListOut,
    OutboundMessageOut,
    WhatsAppInboundIn,
    WhatsAppInboundOut,
    WhatsAppMessageIn,
    WhatsAppSessionConfirmIn,
    WhatsAppSessionCreateIn,
    WhatsAppSessionOut,
)
from app.services.audit_service import log_audit_event
from app.services.whatsapp_service import (
    WhatsAppSessionError,
    confirm_session,
    create_session,
    destroy_session,
    get_session,
    handle_inbound_message,
    send_message,
)

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


def _session_out(session: WhatsAppSession | None) -> WhatsAppSessionOut:
    if session is None:
        return WhatsAppSessionOut(status="disconnected", is_connected=False)
    return WhatsAppSessionOut(
        status=session.status,
        is_connected=session.status == "connected",
        provider=session.provider,
        phone_number=session.phone_number,
        business_name=session.business_name,
        qr_code=session.qr_code,
        session_id=session.external_session_id,
        connected_at=session.connected_at,
        last_error=session.last_error,
    )


def _message_out(message: OutboundMessage) -> OutboundMessageOut:
    return OutboundMessageOut(
        id=message.id,
        provider=message.provider,
        recipient=message.recipient,
        content=message.content,
        status=message.status,
        external_message_id=message.external_message_id,
        error_message=message.error_message,
        created_at=message.created_at,
    )


@router.post(
    "/session",
    response_model=WhatsAppSessionOut,
    status_code=201,
    summary="Start WhatsApp session",
    description="Starts pairing with the configured provider and returns the QR/pairing code.",
    responses=error_responses(401, 402, 403, 404, 409, 422, 500),
)
def start_whatsapp_session(
    payload: WhatsAppSessionCreateIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    try:
        session = create_session(
            db,
            platform_id=access.platform.id,
            phone_number=payload.phone_number,
            business_name=payload.business_name or access.platform.name,
        )
    except WhatsAppSessionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    db.flush()
    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="whatsapp.session.create",
        target_type="whatsapp_session",
        target_id=session.id,
        metadata_json={"provider": session.provider},
    )
    db.commit()
    db.refresh(session)
    return _session_out(session)


@router.get(
    "/session",
    response_model=WhatsAppSessionOut,
    summary="WhatsApp session status",
    responses=error_responses(401, 402, 403, 404, 500),
)
def get_whatsapp_session(
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
):
    return _session_out(get_session(db, access.platform.id))


@router.post(
    "/session/confirm",
    response_model=WhatsAppSessionOut,
    summary="Confirm WhatsApp pairing",
    responses=error_responses(401, 402, 403, 404, 409, 422, 500),
)
def confirm_whatsapp_session(
    payload: WhatsAppSessionConfirmIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    try:
        session = confirm_session(db, access.platform.id, payload.session_id)
    except WhatsAppSessionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.commit()
    db.refresh(session)
    return _session_out(session)


@router.delete(
    "/session",
    response_model=WhatsAppSessionOut,
    summary="Disconnect WhatsApp session",
    responses=error_responses(401, 402, 403, 404, 500),
)
def delete_whatsapp_session(
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    session = destroy_session(db, access.platform.id)
    if session is None:
        raise HTTPException(status_code=404, detail="No WhatsApp session")
    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="whatsapp.session.destroy",
        target_type="whatsapp_session",
        target_id=session.id,
        metadata_json=None,
    )
    db.commit()
    db.refresh(session)
    return _session_out(session)


@router.post(
    "/messages",
    response_model=OutboundMessageOut,
    status_code=201,
    summary="Send WhatsApp message",
    responses=error_responses(400, 401, 402, 403, 404, 409, 422, 500),
)
def send_whatsapp_message(
    payload: WhatsAppMessageIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
):
    try:
        message = send_message(
            db,
            platform_id=access.platform.id,
            phone_number=payload.phone_number,
            content=payload.content,
        )
    except WhatsAppSessionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.commit()
    db.refresh(message)
    return _message_out(message)


@router.get(
    "/messages",
    response_model=OutboundMessageListOut,
    summary="List sent WhatsApp messages",
    responses=error_responses(401, 402, 403, 404, 422, 500),
)
def list_whatsapp_messages(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*ALL_ROLES)),
):
    total = int(
        db.execute(
            select(func.count(OutboundMessage.id)).where(OutboundMessage.platform_id == access.platform.id)
        ).scalar_one()
    )
    rows = db.execute(
        select(OutboundMessage)
        .where(OutboundMessage.platform_id == access.platform.id)
        .order_by(OutboundMessage.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_message_out(row) for row in rows]
    count = len(items)
    return OutboundMessageListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/inbound",
    response_model=WhatsAppInboundOut,
    summary="Handle an inbound customer reply",
    description="A confirmation word confirms the sender's pending orders and sends a receipt.",
    responses=error_responses(400, 401, 402, 403, 404, 409, 422, 500),
)
def receive_whatsapp_message(
    payload: WhatsAppInboundIn,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    try:
        result = handle_inbound_message(db, access.platform, payload.sender, payload.body)
    except WhatsAppSessionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    db.commit()
    return WhatsAppInboundOut(
        is_confirmation=result.is_confirmation,
        confirmed_order_numbers=result.confirmed_order_numbers,
    )
