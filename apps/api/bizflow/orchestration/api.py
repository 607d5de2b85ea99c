from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from bizflow.api.deps import ActorUser, error_response, get_current_user, get_orchestrator, require_permission
from bizflow.core.database import get_db
from bizflow.orchestration.orchestrator import Orchestrator
from bizflow.orchestration.schemas import HandlerRegistrationRead, OrchestrationStats


router = APIRouter(prefix="/api/orchestration", tags=["orchestration"])


@router.get("/stats", response_model=OrchestrationStats)
def get_orchestration_stats(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> OrchestrationStats | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return orchestrator.get_orchestration_stats(db, user.tenant_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="orchestration_stats_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/handlers", response_model=list[HandlerRegistrationRead])
def list_handlers(
    request: Request,
    user: ActorUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> list[HandlerRegistrationRead] | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return orchestrator.list_handlers()
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="orchestration_handlers_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
