from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from bizflow.core.auth import AuthUser, get_current_user
from bizflow.core.config import get_settings
from bizflow.events.api import router as events_router
from bizflow.insights.api import router as insights_router
from bizflow.metrics import generate_metrics_payload, metrics_content_type
from bizflow.orchestration.api import router as orchestration_router
from bizflow.workflows.api import router as workflows_router

METRICS_ROLE = "system.metrics.read"

router = APIRouter()
for domain_router in (events_router, workflows_router, orchestration_router, insights_router):
    router.include_router(domain_router)


@router.get("/health", tags=["system"])
def health(request: Request) -> dict[str, str | bool | int]:
    settings = get_settings()
    orchestrator = getattr(request.app.state, "orchestrator", None)
    return {
        "status": "ok" if orchestrator is not None else "starting",
        "service": settings.app_name,
        "environment": settings.app_env,
        "ai_enabled": settings.ai_enabled,
        "registered_handlers": len(orchestrator.list_handlers()) if orchestrator is not None else 0,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str] | None]:
    return {"sub": user.sub, "roles": user.roles, "tenant_id": user.tenant_id}


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    if not get_settings().metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if METRICS_ROLE not in user.roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {METRICS_ROLE}")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
