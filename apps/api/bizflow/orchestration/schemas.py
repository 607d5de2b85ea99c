from __future__ import annotations

from pydantic import BaseModel


class OrchestrationStats(BaseModel):
    total_events: int
    processed_events: int
    failed_events: int
    blocked_events: int
    avg_processing_time_ms: float
    automation_score: float
    active_workflows: int
    completed_workflows: int
    failed_workflows: int
    registered_handlers: int


class HandlerRegistrationRead(BaseModel):
    pattern: str
    name: str
    module: str
    priority: int
