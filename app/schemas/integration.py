from datetime import datetime

from pydantic import BaseModel

from app.schemas.common import PaginationMeta


class IntegrationOutboxEventOut(BaseModel):
    id: str
    event_type: str
    target: str
    status: str
    attempt_count: int
    max_attempts: int
    next_attempt_at: datetime
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class IntegrationDeliveryAttemptOut(BaseModel):
    attempt_number: int
    status: str
    response_code: int | None = None
    response_body: str | None = None
    created_at: datetime


class IntegrationOutboxEventDetailOut(IntegrationOutboxEventOut):
    # Event names and ids only; payloads hold hashed customer data.
    event_ids: list[str] = []
    attempts: list[IntegrationDeliveryAttemptOut]


class IntegrationOutboxEventListOut(BaseModel):
    items: list[IntegrationOutboxEventOut]
    pagination: PaginationMeta
    status: str | None = None
    target: str | None = None


class IntegrationDispatchOut(BaseModel):
    processed: int
    delivered: int
    failed: int
    dead_lettered: int
