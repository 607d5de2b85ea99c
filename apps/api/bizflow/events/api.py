from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bizflow.api.deps import (
    ActorUser,
    error_response,
    get_current_user,
    get_orchestrator,
    orchestration_error_response,
    require_permission,
)
from bizflow.core.database import get_db
from bizflow.events.models import Event
from bizflow.events.schemas import EventDetailRead, EventListResponse, EventPublishRequest, EventPublishResponse
from bizflow.events.service import event_query_service
from bizflow.orchestration.errors import OrchestrationError
from bizflow.orchestration.orchestrator import Orchestrator


router = APIRouter(prefix="/api/events", tags=["events"])


@router.post("", response_model=EventPublishResponse, status_code=status.HTTP_201_CREATED)
def publish_event(
    request: Request,
    dto: EventPublishRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> EventPublishResponse | JSONResponse:
    try:
        require_permission(user, "orchestration.events.publish")
        event_id = orchestrator.publish_event(
            db,
            dto.event_name,
            dto.event_type,
            dto.payload,
            {"tenantId": user.tenant_id, "userId": user.user_id, "source": dto.source or "api"},
            priority=dto.priority,
            target=dto.target,
            correlation_id=user.correlation_id,
        )
        event = db.get(Event, event_id)
        if event is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="event not found")
        return EventPublishResponse(event_id=event_id, status=event.status, correlation_id=event.correlation_id)
    except OrchestrationError as exc:
        return orchestration_error_response(request, exc)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="event_publish_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("", response_model=EventListResponse)
def list_events(
    request: Request,
    event_name: str | None = Query(default=None),
    event_status: str | None = Query(default=None, alias="status"),
    event_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EventListResponse | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return event_query_service.list_events(
            db,
            user.tenant_id,
            event_name=event_name,
            event_status=event_status,
            event_type=event_type,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="event_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/{event_id}", response_model=EventDetailRead)
def get_event(
    request: Request,
    event_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> EventDetailRead | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return event_query_service.get_event(db, user.tenant_id, event_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="event_read_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
