from __future__ import annotations

import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from bizflow.events.models import Event
from bizflow.events.schemas import EventDetailRead, EventListResponse, EventRead


@dataclass(slots=True)
class EventQueryService:
    def list_events(
        self,
        session: Session,
        tenant_id: str,
        *,
        event_name: str | None = None,
        event_status: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> EventListResponse:
        conditions = [Event.tenant_id == tenant_id]
        if event_name:
            conditions.append(Event.event_name == event_name)
        if event_status:
            conditions.append(Event.status == event_status)
        if event_type:
            conditions.append(Event.event_type == event_type)

        total = session.scalar(select(func.count()).select_from(Event).where(*conditions)) or 0
        rows = session.scalars(
            select(Event).where(*conditions).order_by(Event.created_at.desc()).limit(limit).offset(offset)
        )
        return EventListResponse(
            items=[EventRead.model_validate(row) for row in rows],
            total=int(total),
            limit=limit,
            offset=offset,
        )

    def get_event(self, session: Session, tenant_id: str, event_id: uuid.UUID) -> EventDetailRead:
        event = session.scalar(
            select(Event)
            .where(Event.id == event_id, Event.tenant_id == tenant_id)
            .options(selectinload(Event.handler_executions))
        )
        if event is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="event not found")
        return EventDetailRead.model_validate(event)


event_query_service = EventQueryService()
