from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from bizflow.api.routes import router as api_router
from bizflow.core.config import get_settings
from bizflow.core.database import SessionLocal
from bizflow.logging import configure_logging
from bizflow.middleware.rate_limit import EventPublishRateLimitMiddleware
from bizflow.middleware.request_context import RequestContextMiddleware
from bizflow.middleware.request_logging import RequestLoggingMiddleware
from bizflow.orchestration.orchestrator import build_orchestrator
from bizflow.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("bizflow.lifecycle")


def _resume_interrupted_workflows(app: FastAPI) -> None:
    session = SessionLocal()
    try:
        resumed = app.state.orchestrator.runner.resume_interrupted_executions(session)
    except Exception as exc:
        logger.exception("workflow_resume_failed", extra={"error": str(exc)})
        return
    finally:
        session.close()
    logger.info("workflow_resume_finished", extra={"status": f"{len(resumed)} resumed"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    app.state.orchestrator = build_orchestrator(settings)
    logger.info(
        "orchestrator_started",
        extra={"status": "ai_enabled" if settings.ai_enabled else "ai_disabled", "max_depth": settings.event_max_depth},
    )
    if settings.workflow_resume_on_startup:
        _resume_interrupted_workflows(app)
    yield


app = FastAPI(title="BizFlow API", version="0.1.0", lifespan=lifespan)
app.add_middleware(EventPublishRateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestContextMiddleware)
app.include_router(api_router)

settings = get_settings()
if settings.otel_enabled:
    setup_otel("api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
