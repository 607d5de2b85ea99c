from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bizflow.api.deps import ActorUser, error_response, get_current_user, require_permission
from bizflow.core.database import get_db
from bizflow.insights.schemas import InsightRead, NotificationRead
from bizflow.insights.service import insight_service


router = APIRouter(prefix="/api", tags=["insights"])


@router.get("/insights", response_model=list[InsightRead])
def list_insights(
    request: Request,
    category: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[InsightRead] | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return insight_service.list_insights(db, user.tenant_id, category=category, limit=limit, offset=offset)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="insight_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/notifications", response_model=list[NotificationRead])
def list_notifications(
    request: Request,
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[NotificationRead] | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return insight_service.list_notifications(
            db,
            user.tenant_id,
            unread_only=unread_only,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="notification_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.post("/notifications/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    request: Request,
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> NotificationRead | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return insight_service.mark_notification_read(db, user.tenant_id, notification_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="notification_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
