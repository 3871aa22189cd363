import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.pixel import PixelEventLog
from app.services.facebook_conversions import hash_value

PIXEL_PROVIDERS = ("facebook", "tiktok")
PIXEL_SOURCES = ("client", "server")
REPORT_DUPLICATE_LIMIT = 5


@dataclass(frozen=True)
class EventTypeStats:
    total: int
    successful: int


@dataclass(frozen=True)
class EventSuccessAnalysis:
    total_events: int
    successful_events: int
    failed_events: int
    success_rate: float
    deduplication_rate: float
    events_by_type: dict[str, EventTypeStats] = field(default_factory=dict)


@dataclass(frozen=True)
class ExternalIdAnalysis:
    total_events_with_external_id: int
    unique_external_ids: int
    matching_rate: float
    duplicate_external_ids: list[str] = field(default_factory=list)


def log_pixel_event(
    db: Session,
    *,
    platform_id: str,
    provider: str,
    source: str,
    event_type: str,
    success: bool,
    event_id: str | None = None,
    external_id: str | None = None,
    error: str | None = None,
) -> PixelEventLog:
    """Record one pixel/event-API delivery outcome; the caller commits.

    The external id is stored in its hashed form, the same value sent to the
    ad platforms, so the table never holds raw customer identifiers.
    """
    row = PixelEventLog(
        id=str(uuid.uuid4()),
        platform_id=platform_id,
        provider=provider,
        source=source,
        event_type=event_type[:60],
        event_id=event_id[:120] if event_id else None,
        external_id=hash_value(external_id) or None,
        success=success,
        error=error[:500] if error else None,
    )
    db.add(row)
    return row


def _recent_events(db: Session, platform_id: str, hours: int, provider: str | None) -> list[PixelEventLog]:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
    stmt = select(PixelEventLog).where(
        PixelEventLog.platform_id == platform_id,
        PixelEventLog.created_at > cutoff,
    )
    if provider:
        stmt = stmt.where(PixelEventLog.provider == provider)
    return db.execute(stmt.order_by(PixelEventLog.created_at.asc())).scalars().all()


def analyze_event_success(
    db: Session,
    platform_id: str,
    hours: int = 24,
    provider: str | None = None,
) -> EventSuccessAnalysis:
    events = _recent_events(db, platform_id, hours, provider)
    total = len(events)
    successful = sum(1 for event in events if event.success)

    totals: Counter[str] = Counter()
    successes: Counter[str] = Counter()
    for event in events:
        totals[event.event_type] += 1
        if event.success:
            successes[event.event_type] += 1

    unique_event_ids = {event.event_id for event in events if event.event_id}
    return EventSuccessAnalysis(
        total_events=total,
        successful_events=successful,
        failed_events=total - successful,
        success_rate=(successful / total * 100) if total else 0.0,
        deduplication_rate=(len(unique_event_ids) / total * 100) if total else 100.0,
        events_by_type={
            event_type: EventTypeStats(total=count, successful=successes[event_type])
            for event_type, count in totals.items()
        },
    )


def analyze_external_id_matching(
    db: Session,
    platform_id: str,
    hours: int = 24,
    provider: str | None = None,
) -> ExternalIdAnalysis:
    external_ids = [
        event.external_id for event in _recent_events(db, platform_id, hours, provider) if event.external_id
    ]
    counts = Counter(external_ids)
    total = len(external_ids)
    return ExternalIdAnalysis(
        total_events_with_external_id=total,
        unique_external_ids=len(counts),
        matching_rate=(len(counts) / total * 100) if total else 100.0,
        duplicate_external_ids=[external_id for external_id, count in counts.items() if count > 1],
    )


def generate_diagnostic_report(
    db: Session,
    platform_id: str,
    hours: int = 24,
    provider: str | None = None,
) -> str:
    success = analyze_event_success(db, platform_id, hours, provider)
    matching = analyze_external_id_matching(db, platform_id, hours, provider)

    lines = [
        "=== Pixel Diagnostic Report ===",
        f"Time Range: Last {hours} hours",
        f"Generated: {datetime.now(timezone.utc).isoformat()}",
        "",
        "Event Success Analysis:",
        f"- Total Events: {success.total_events}",
        f"- Successful Events: {success.successful_events}",
        f"- Failed Events: {success.failed_events}",
        f"- Success Rate: {success.success_rate:.2f}%",
        f"- Deduplication Rate: {success.deduplication_rate:.2f}%",
        "",
        "Events by Type:",
    ]
    for event_type, stats in sorted(success.events_by_type.items()):
        rate = stats.successful / stats.total * 100
        lines.append(f"- {event_type}: {stats.successful}/{stats.total} ({rate:.1f}%)")

    lines.extend(
        [
            "",
            "External ID Analysis:",
            f"- Events with External ID: {matching.total_events_with_external_id}",
            f"- Unique External IDs: {matching.unique_external_ids}",
            f"- Matching Rate: {matching.matching_rate:.2f}%",
            f"- Duplicate External IDs: {len(matching.duplicate_external_ids)}",
            "",
        ]
    )
    if matching.duplicate_external_ids:
        lines.append("Duplicate External IDs Found:")
        lines.extend(matching.duplicate_external_ids[:REPORT_DUPLICATE_LIMIT])
    else:
        lines.append("No duplicate External IDs found")

    lines.extend(["", "=== End Report ==="])
    return "\n".join(lines)
