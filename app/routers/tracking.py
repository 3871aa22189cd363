from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.observability import log_event
from app.core.rate_limit import client_ip, enforce_storefront_rate_limit
from app.core.subscription_gate import get_storefront_platform
from app.models.platform import Platform
from app.schemas.tracking import (
    ClientPixelEventsIn,
    ClientPixelEventsOut,
    ProviderOutcomeOut,
    TrackingEventIn,
    TrackingResultOut,
)
from app.services.facebook_conversions import ConversionInput
from app.services.pixel_diagnostics_service import log_pixel_event
from app.services.tracking_service import TrackingResult, track_event

router = APIRouter(
    prefix="/tracking/{subdomain}",
    tags=["tracking"],
    dependencies=[Depends(enforce_storefront_rate_limit)],
)


def request_host(request: Request) -> str | None:
    host = request.headers.get("x-forwarded-host") or request.headers.get("host")
    if not host:
        return None
    return host.split(",")[0].strip().split(":")[0] or None


def tracking_result_out(result: TrackingResult) -> TrackingResultOut:
    return TrackingResultOut(
        event_id=result.event_id,
        fbc_outcome=result.fbc_outcome,
        providers=[
            ProviderOutcomeOut(provider=outcome.provider, status=outcome.status, error=outcome.error)
            for outcome in result.providers
        ],
    )


@router.post(
    "/events",
    response_model=TrackingResultOut,
    summary="Report a server-side conversion event",
    description=(
        "Sends one event to Meta and/or TikTok according to the platform's ad settings. "
        "Client IP and user agent default to the request's own."
    ),
    responses=error_responses(403, 404, 422, 429, 500),
)
def report_tracking_event(
    payload: TrackingEventIn,
    request: Request,
    db: Session = Depends(get_db),
    platform: Platform = Depends(get_storefront_platform),
):
    fields = payload.model_dump()
    if not fields["client_ip_address"]:
        fields["client_ip_address"] = client_ip(request)
    if not fields["client_user_agent"]:
        fields["client_user_agent"] = request.headers.get("user-agent")
    data = ConversionInput(**fields, host=request_host(request))

    result = track_event(db, platform.id, data)
    db.commit()
    log_event(
        "tracking.event",
        platform_id=platform.id,
        event_name=data.event_name,
        event_id=result.event_id,
        outcomes={outcome.provider: outcome.status for outcome in result.providers},
    )
    return tracking_result_out(result)


@router.post(
    "/client-events",
    response_model=ClientPixelEventsOut,
    summary="Record browser pixel outcomes",
    responses=error_responses(403, 404, 422, 429, 500),
)
def record_client_pixel_events(
    payload: ClientPixelEventsIn,
    db: Session = Depends(get_db),
    platform: Platform = Depends(get_storefront_platform),
):
    for event in payload.events:
        log_pixel_event(
            db,
            platform_id=platform.id,
            provider=event.provider,
            source="client",
            event_type=event.event_type,
            success=event.success,
            event_id=event.event_id,
            external_id=event.external_id,
            error=event.error,
        )
    db.commit()
    return ClientPixelEventsOut(recorded=len(payload.events))
