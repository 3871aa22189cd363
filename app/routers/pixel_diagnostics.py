from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.core.api_docs import error_responses
from app.core.deps import get_db
from app.core.permissions import MANAGER_ROLES, require_platform_roles
from app.core.security_current import PlatformAccess
from app.schemas.diagnostics import (
    EventSuccessOut,
    EventTypeStatsOut,
    ExternalIdMatchingOut,
    PixelDiagnosticsSummaryOut,
)
from app.services.pixel_diagnostics_service import (
    PIXEL_PROVIDERS,
    analyze_event_success,
    analyze_external_id_matching,
    generate_diagnostic_report,
)

router = APIRouter(prefix="/pixel-diagnostics", tags=["pixel-diagnostics"])


def _normalize_provider(provider: str | None) -> str | None:
    if not provider:
        return None
    normalized = provider.strip().lower()
    if normalized not in PIXEL_PROVIDERS:
        allowed = ", ".join(PIXEL_PROVIDERS)
        raise HTTPException(status_code=400, detail=f"Invalid provider. Allowed: {allowed}")
    return normalized


@router.get(
    "/summary",
    response_model=PixelDiagnosticsSummaryOut,
    summary="Pixel delivery summary",
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def get_pixel_summary(
    hours: int = Query(default=24, ge=1, le=720),
    provider: str | None = Query(default=None),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    normalized_provider = _normalize_provider(provider)
    success = analyze_event_success(db, access.platform.id, hours=hours, provider=normalized_provider)
    matching = analyze_external_id_matching(db, access.platform.id, hours=hours, provider=normalized_provider)
    return PixelDiagnosticsSummaryOut(
        hours=hours,
        provider=normalized_provider,
        events=EventSuccessOut(
            total_events=success.total_events,
            successful_events=success.successful_events,
            failed_events=success.failed_events,
            success_rate=round(success.success_rate, 2),
            deduplication_rate=round(success.deduplication_rate, 2),
            events_by_type={
                event_type: EventTypeStatsOut(total=stats.total, successful=stats.successful)
                for event_type, stats in success.events_by_type.items()
            },
        ),
        external_ids=ExternalIdMatchingOut(
            total_events_with_external_id=matching.total_events_with_external_id,
            unique_external_ids=matching.unique_external_ids,
            matching_rate=round(matching.matching_rate, 2),
            duplicate_external_ids=matching.duplicate_external_ids,
        ),
    )


@router.get(
    "/report",
    response_class=PlainTextResponse,
    summary="Pixel diagnostic report",
    responses=error_responses(400, 401, 402, 403, 404, 422, 500),
)
def get_pixel_report(
    hours: int = Query(default=24, ge=1, le=720),
    provider: str | None = Query(default=None),
    db: Session = Depends(get_db),
    access: PlatformAccess = Depends(require_platform_roles(*MANAGER_ROLES)),
):
    return PlainTextResponse(
        generate_diagnostic_report(db, access.platform.id, hours=hours, provider=_normalize_provider(provider))
    )
