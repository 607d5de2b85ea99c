from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
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
from bizflow.orchestration.errors import OrchestrationError
from bizflow.orchestration.orchestrator import Orchestrator
from bizflow.workflows.models import WorkflowExecution
from bizflow.workflows.schemas import (
    WorkflowDefinitionCreate,
    WorkflowDefinitionRead,
    WorkflowDefinitionUpdate,
    WorkflowExecutionDetailRead,
    WorkflowExecutionListResponse,
    WorkflowExecutionStartRequest,
    WorkflowExecutionStartResponse,
)
from bizflow.workflows.service import workflow_definition_service, workflow_execution_query_service


router = APIRouter(prefix="/api/workflows", tags=["workflows"])


@router.post("/definitions", response_model=WorkflowDefinitionRead, status_code=status.HTTP_201_CREATED)
def create_workflow_definition(
    request: Request,
    dto: WorkflowDefinitionCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowDefinitionRead | JSONResponse:
    try:
        require_permission(user, "orchestration.workflows.manage")
        return workflow_definition_service.create_definition(db, user.tenant_id, user.user_id, dto)
    except IntegrityError:
        db.rollback()
        return error_response(
            request,
            status_code=status.HTTP_409_CONFLICT,
            code="workflow_definition_conflict",
            message="workflow definition version already exists",
            details={"name": dto.name},
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="workflow_definition_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/definitions", response_model=list[WorkflowDefinitionRead])
def list_workflow_definitions(
    request: Request,
    name: str | None = Query(default=None),
    active_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[WorkflowDefinitionRead] | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return workflow_definition_service.list_definitions(db, user.tenant_id, name=name, active_only=active_only)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="workflow_definition_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.patch("/definitions/{definition_id}", response_model=WorkflowDefinitionRead)
def update_workflow_definition(
    request: Request,
    definition_id: uuid.UUID,
    dto: WorkflowDefinitionUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowDefinitionRead | JSONResponse:
    try:
        require_permission(user, "orchestration.workflows.manage")
        return workflow_definition_service.update_definition(db, user.tenant_id, user.user_id, definition_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="workflow_definition_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.post("/executions", response_model=WorkflowExecutionStartResponse, status_code=status.HTTP_202_ACCEPTED)
def start_workflow_execution(
    request: Request,
    dto: WorkflowExecutionStartRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> WorkflowExecutionStartResponse | JSONResponse:
    try:
        require_permission(user, "orchestration.workflows.execute")
        execution_id = orchestrator.start_workflow(
            db,
            dto.workflow_name,
            dto.input_data,
            {"tenantId": user.tenant_id, "userId": user.user_id, "correlationId": user.correlation_id},
        )
        execution = db.get(WorkflowExecution, execution_id)
        return WorkflowExecutionStartResponse(
            execution_id=execution_id,
            status=execution.status if execution is not None else "RUNNING",
        )
    except OrchestrationError as exc:
        return orchestration_error_response(request, exc)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="workflow_execution_start_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/executions", response_model=WorkflowExecutionListResponse)
def list_workflow_executions(
    request: Request,
    execution_status: str | None = Query(default=None, alias="status"),
    workflow_name: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowExecutionListResponse | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return workflow_execution_query_service.list_executions(
            db,
            user.tenant_id,
            execution_status=execution_status,
            workflow_name=workflow_name,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="workflow_execution_list_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/executions/{execution_id}", response_model=WorkflowExecutionDetailRead)
def get_workflow_execution(
    request: Request,
    execution_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> WorkflowExecutionDetailRead | JSONResponse:
    try:
        require_permission(user, "orchestration.read")
        return workflow_execution_query_service.get_execution(db, user.tenant_id, execution_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="workflow_execution_read_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
