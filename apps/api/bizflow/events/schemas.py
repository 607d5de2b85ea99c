from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


EventType = Literal["BUSINESS_EVENT", "AI_EVENT", "SYSTEM_EVENT", "USER_EVENT"]
EventPriority = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
EventStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED", "BLOCKED"]


class EventPublishRequest(BaseModel):
    event_name: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.\-]+$")
    event_type: EventType = "BUSINESS_EVENT"
    priority: EventPriority = "MEDIUM"
    payload: dict[str, Any] = Field(default_factory=dict)
    source: str | None = Field(default=None, max_length=128)
    target: str | None = Field(default=None, max_length=128)


class EventPublishResponse(BaseModel):
    event_id: UUID
    status: EventStatus | str
    correlation_id: str


class EventHandlerExecutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    handler_name: str
    module: str
    status: str
    result: dict[str, Any] | None
    error_message: str | None
    started_at: datetime
    finished_at: datetime | None
    execution_time_ms: int | None


class EventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: UUID
    tenant_id: str
    event_name: str
    event_type: str
    priority: str
    source: str | None
    target: str | None
    payload: dict[str, Any]
    metadata: dict[str, Any] = Field(validation_alias="event_metadata")
    correlation_id: str
    status: EventStatus | str
    error_log: str | None
    created_at: datetime
    processed_at: datetime | None


class EventDetailRead(EventRead):
    handler_executions: list[EventHandlerExecutionRead] = Field(default_factory=list)


class EventListResponse(BaseModel):
    items: list[EventRead]
    total: int
    limit: int
    offset: int
