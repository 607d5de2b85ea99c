from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Protocol

from sqlalchemy.orm import Session

from bizflow.core.celery_app import EXECUTE_WORKFLOW_TASK, celery_app

if TYPE_CHECKING:
    from bizflow.workflows.runner import WorkflowRunner


logger = logging.getLogger("bizflow.workflows.dispatch")


class WorkflowDispatcher(Protocol):
    def dispatch(self, session: Session, execution_id: uuid.UUID) -> None: ...


class InlineWorkflowDispatcher:
    """Runs the steps immediately in the caller's session."""

    def __init__(self, runner: WorkflowRunner) -> None:
        self.runner = runner

    def dispatch(self, session: Session, execution_id: uuid.UUID) -> None:
        self.runner.execute_workflow_steps(session, execution_id)


class CeleryWorkflowDispatcher:
    """Hands the execution to a worker; the worker opens its own session."""

    def dispatch(self, session: Session, execution_id: uuid.UUID) -> None:
        celery_app.send_task(EXECUTE_WORKFLOW_TASK, args=[str(execution_id)])
        logger.info("workflow_execution_enqueued", extra={"execution_id": str(execution_id)})
