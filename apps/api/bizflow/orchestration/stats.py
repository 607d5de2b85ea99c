from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bizflow.events.models import Event
from bizflow.orchestration.schemas import OrchestrationStats
from bizflow.workflows.models import WorkflowExecution


PROCESSING_TIME_WINDOW = timedelta(hours=24)


def _count_by_status(session: Session, model: type[Event] | type[WorkflowExecution], tenant_id: str) -> dict[str, int]:
    rows = session.execute(
        select(model.status, func.count()).where(model.tenant_id == tenant_id).group_by(model.status)
    )
    return {status_value: int(count) for status_value, count in rows}


def average_processing_time_ms(session: Session, tenant_id: str, now: datetime | None = None) -> float:
    window_start = (now or datetime.now(timezone.utc)) - PROCESSING_TIME_WINDOW
    rows = session.execute(
        select(Event.created_at, Event.processed_at).where(
            Event.tenant_id == tenant_id,
            Event.processed_at.is_not(None),
            Event.created_at >= window_start,
        )
    ).all()
    if not rows:
        return 0.0
    total_ms = sum((processed_at - created_at).total_seconds() * 1000 for created_at, processed_at in rows)
    return round(total_ms / len(rows), 2)


def compute_orchestration_stats(
    session: Session,
    tenant_id: str,
    *,
    automation_level: float,
    registered_handlers: int,
) -> OrchestrationStats:
    events = _count_by_status(session, Event, tenant_id)
    executions = _count_by_status(session, WorkflowExecution, tenant_id)
    return OrchestrationStats(
        total_events=sum(events.values()),
        processed_events=events.get("COMPLETED", 0),
        failed_events=events.get("FAILED", 0),
        blocked_events=events.get("BLOCKED", 0),
        avg_processing_time_ms=average_processing_time_ms(session, tenant_id),
        automation_score=automation_level,
        active_workflows=executions.get("RUNNING", 0),
        completed_workflows=executions.get("COMPLETED", 0),
        failed_workflows=executions.get("FAILED", 0),
        registered_handlers=registered_handlers,
    )
