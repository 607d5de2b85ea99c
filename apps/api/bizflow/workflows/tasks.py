from __future__ import annotations

import logging
import uuid

from bizflow.core.celery_app import EXECUTE_WORKFLOW_TASK, RESUME_WORKFLOWS_TASK, celery_app
from bizflow.core.database import SessionLocal
from bizflow.orchestration.orchestrator import build_orchestrator
from bizflow.workflows.dispatch import InlineWorkflowDispatcher


logger = logging.getLogger("bizflow.workflows.tasks")


@celery_app.task(name=EXECUTE_WORKFLOW_TASK)
def execute_workflow_task(execution_id: str) -> dict[str, str | int]:
    orchestrator = build_orchestrator()
    session = SessionLocal()
    try:
        execution = orchestrator.runner.execute_workflow_steps(session, uuid.UUID(execution_id))
        return {"execution_id": execution_id, "status": execution.status, "current_step": execution.current_step}
    finally:
        session.close()


@celery_app.task(name=RESUME_WORKFLOWS_TASK)
def resume_interrupted_workflows_task() -> list[str]:
    # Run resumed steps inside this worker rather than fanning out again.
    orchestrator = build_orchestrator()
    orchestrator.runner.dispatcher = InlineWorkflowDispatcher(orchestrator.runner)
    session = SessionLocal()
    try:
        resumed = orchestrator.runner.resume_interrupted_executions(session)
    finally:
        session.close()
    logger.info("workflow_resume_completed", extra={"status": f"{len(resumed)} resumed"})
    return [str(execution_id) for execution_id in resumed]
