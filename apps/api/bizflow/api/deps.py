from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from bizflow.context import get_correlation_id
from bizflow.core.auth import AuthUser, get_current_user as get_auth_user
from bizflow.orchestration.errors import (
    OrchestrationError,
    UnsupportedMutationError,
    WorkflowCapacityExceededError,
    WorkflowDefinitionNotFoundError,
)
from bizflow.orchestration.orchestrator import Orchestrator


@dataclass
class ActorUser:
    user_id: str
    tenant_id: str
    permissions: set[str] = field(default_factory=set)
    correlation_id: str | None = None


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


_ERROR_STATUS: dict[type[OrchestrationError], int] = {
    WorkflowDefinitionNotFoundError: status.HTTP_404_NOT_FOUND,
    WorkflowCapacityExceededError: status.HTTP_429_TOO_MANY_REQUESTS,
    UnsupportedMutationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    context = getattr(request.state, "context", None)
    tenant_id = auth_user.tenant_id or getattr(context, "tenant_id", None) or "default"
    return ActorUser(
        user_id=auth_user.sub,
        tenant_id=tenant_id,
        permissions=set(auth_user.roles),
        correlation_id=get_correlation_id() or getattr(context, "correlation_id", None),
    )


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def require_permission(user: ActorUser, permission: str) -> None:
    if permission not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(code=code, message=message, details=details, correlation_id=correlation_id)
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def orchestration_error_response(request: Request, exc: OrchestrationError) -> JSONResponse:
    return error_response(
        request,
        status_code=_ERROR_STATUS.get(type(exc), status.HTTP_409_CONFLICT),
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )
