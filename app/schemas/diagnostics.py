from pydantic import BaseModel


class EventTypeStatsOut(BaseModel):
    total: int
    successful: int


class EventSuccessOut(BaseModel):
    total_events: int
    successful_events: int
    failed_events: int
    success_rate: float
    deduplication_rate: float
    events_by_type: dict[str, EventTypeStatsOut]


class ExternalIdMatchingOut(BaseModel):
    total_events_with_external_id: int
    unique_external_ids: int
    matching_rate: float
    duplicate_external_ids: list[str]


class PixelDiagnosticsSummaryOut(BaseModel):
    hours: int
    provider: str | None = None
    events: EventSuccessOut
    external_ids: ExternalIdMatchingOut
