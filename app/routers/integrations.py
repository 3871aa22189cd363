from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import MANAGER_ROLES, require_platform_roles
from app.core.security_current import PlatformAccess, get_current_user
from app.models.integration import (
    OUTBOX_STATUSES,
    OUTBOX_TARGETS,
    IntegrationDeliveryAttempt,
    IntegrationOutboxEvent,
)
from app.models.user import User
from app.schemas.common import PaginationMeta
from app.schemas.integration import (
    IntegrationDeliveryAttemptOut,
    IntegrationDispatchOut,
    IntegrationOutboxEventDetailOut,
    IntegrationOutboxEventListOut,
    IntegrationOutboxEventOut,
)
from app.services.audit_service import log_audit_event
from app.services.integration_service import (
    OutboxRetryError,
    dispatch_due_outbox_events,
    outbox_event_ids,
    requeue_outbox_event,
)

router = APIRouter(prefix="/integrations", tags=["integrations"])


def _outbox_event_out(event: IntegrationOutboxEvent) -> IntegrationOutboxEventOut:
    return IntegrationOutboxEventOut(
        id=event.id,
        event_type=event.event_type,
        target=event.target,
        status=event.status,
        attempt_count=event.attempt_count,
        max_attempts=event.max_attempts,
        next_attempt_at=event.next_attempt_at,
        last_error=event.last_error,
        created_at=event.created_at,
        updated_at=event.updated_at,
    )


@router.get(
    "/outbox",
    response_model=IntegrationOutboxEventListOut,
    summary="List outbox events",
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def list_outbox_events(
    status: str | None = Query(default=None),
    target: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    filters = [IntegrationOutboxEvent.platform_id == access.platform.id]
    if status:
        status = status.strip().lower()
        if status not in OUTBOX_STATUSES:
            raise HTTPException(status_code=400, detail=f"status must be one of: {', '.join(OUTBOX_STATUSES)}")
        filters.append(IntegrationOutboxEvent.status == status)
    if target:
        target = target.strip().lower()
        if target not in OUTBOX_TARGETS:
            raise HTTPException(status_code=400, detail=f"target must be one of: {', '.join(OUTBOX_TARGETS)}")
        filters.append(IntegrationOutboxEvent.target == target)

    total = int(db.execute(select(func.count(IntegrationOutboxEvent.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(IntegrationOutboxEvent)
        .where(*filters)
        .order_by(IntegrationOutboxEvent.created_at.desc(), IntegrationOutboxEvent.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    items = [_outbox_event_out(row) for row in rows]
    count = len(items)
    return IntegrationOutboxEventListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        status=status,
        target=target,
    )


@router.post(
    "/outbox/dispatch",
    response_model=IntegrationDispatchOut,
    summary="Dispatch due outbox events",
    description="Re-sends due Meta, TikTok and WhatsApp deliveries for this platform.",
    responses=error_responses(401, 402, 403, 404, 500),
)
def dispatch_outbox(
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    summary = dispatch_due_outbox_events(db, platform_id=access.platform.id, limit=limit)
    db.commit()
    return IntegrationDispatchOut(
        processed=summary.processed,
        delivered=summary.delivered,
        failed=summary.failed,
        dead_lettered=summary.dead_lettered,
    )


def _get_platform_outbox_event(db: Session, platform_id: str, event_id: str) -> IntegrationOutboxEvent:
    event = db.execute(
        select(IntegrationOutboxEvent).where(
            IntegrationOutboxEvent.id == event_id,
            IntegrationOutboxEvent.platform_id == platform_id,
        )
    ).scalar_one_or_none()
    if not event:
        raise HTTPException(status_code=404, detail="Outbox event not found")
    return event


def _outbox_event_detail_out(db: Session, event: IntegrationOutboxEvent) -> IntegrationOutboxEventDetailOut:
    attempts = db.execute(
        select(IntegrationDeliveryAttempt)
        .where(IntegrationDeliveryAttempt.outbox_event_id == event.id)
        .order_by(IntegrationDeliveryAttempt.attempt_number.asc())
    ).scalars().all()
    return IntegrationOutboxEventDetailOut(
        **_outbox_event_out(event).model_dump(),
        event_ids=outbox_event_ids(event),
        attempts=[
            IntegrationDeliveryAttemptOut(
                attempt_number=attempt.attempt_number,
                status=attempt.status,
                response_code=attempt.response_code,
                response_body=attempt.response_body,
                created_at=attempt.created_at,
            )
            for attempt in attempts
        ],
    )


@router.get(
    "/outbox/{event_id}",
    response_model=IntegrationOutboxEventDetailOut,
    summary="Get outbox event",
    description="One queued delivery with its attempt history.",
    responses=error_responses(401, 402, 403, 404, 500),
)
def get_outbox_event(
    event_id: str,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    return _outbox_event_detail_out(db, _get_platform_outbox_event(db, access.platform.id, event_id))


@router.post(
    "/outbox/{event_id}/retry",
    response_model=IntegrationOutboxEventDetailOut,
    summary="Retry outbox event",
    description="Requeues a failed or dead-lettered delivery with a fresh attempt budget. Dispatch sends it.",
    responses=error_responses(400, 401, 402, 403, 404, 500),
)
def retry_outbox_event(
    event_id: str,
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
    actor: User = Depends(get_current_user),
):
    event = _get_platform_outbox_event(db, access.platform.id, event_id)
    previous_status = event.status
    try:
        requeue_outbox_event(event)
    except OutboxRetryError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit_event(
        db,
        platform_id=access.platform.id,
        actor_user_id=actor.id,
        action="integration.outbox.retry",
        target_type="integration_outbox_event",
        target_id=event.id,
        metadata_json={"target": event.target, "previous_status": previous_status},
    )
    db.commit()
    db.refresh(event)
    return _outbox_event_detail_out(db, event)
