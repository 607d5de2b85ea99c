from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from bizflow.ai.client import PredictionClient
from bizflow.core.config import Settings
from bizflow.insights.schemas import NotificationCreate, NotificationRead
from bizflow.insights.service import InsightService
from bizflow.workflows.models import WorkflowExecution
from bizflow.workflows.mutations import MutationRegistry
from bizflow.workflows.schemas import DatabaseUpdateConfig, NotificationStepConfig


StepExecutor = Callable[[Session, WorkflowExecution, dict[str, Any]], Any]

UNSUPPORTED_STEP_RESULT = {"status": "skipped", "reason": "unsupported step type"}


class StepExecutors:
    """Per step type side effects. Exceptions propagate to the runner."""

    def __init__(
        self,
        settings: Settings,
        ai_client: PredictionClient,
        mutations: MutationRegistry,
        insight_service: InsightService,
    ) -> None:
        self.settings = settings
        self.ai_client = ai_client
        self.mutations = mutations
        self.insight_service = insight_service
        self._executors: dict[str, StepExecutor] = {
            "AI_ANALYSIS": self.execute_ai_analysis,
            "DATABASE_UPDATE": self.execute_database_update,
            "NOTIFICATION": self.execute_notification,
        }

    def execute(self, session: Session, execution: WorkflowExecution, step_type: str, config: dict[str, Any]) -> Any:
        executor = self._executors.get(step_type)
        if executor is None:
            return dict(UNSUPPORTED_STEP_RESULT)
        return executor(session, execution, config)

    def execute_ai_analysis(self, session: Session, execution: WorkflowExecution, config: dict[str, Any]) -> Any:
        if not self.settings.ai_enabled:
            return {"status": "skipped", "reason": "AI disabled"}
        return self.ai_client.perform_analysis(config)

    def execute_database_update(self, session: Session, execution: WorkflowExecution, config: dict[str, Any]) -> Any:
        update = DatabaseUpdateConfig.model_validate(config)
        return self.mutations.apply(
            session,
            execution.tenant_id,
            update.model,
            update.operation,
            update.data,
            update.where,
        )

    def execute_notification(self, session: Session, execution: WorkflowExecution, config: dict[str, Any]) -> Any:
        step = NotificationStepConfig.model_validate(config)
        notification = self.insight_service.send_notification(
            session,
            execution.tenant_id,
            NotificationCreate(
                title=step.title,
                message=step.message,
                type=step.type,
                severity=step.severity,
                data=step.data,
                user_id=step.user_id,
                is_persistent=step.is_persistent,
            ),
        )
        return NotificationRead.model_validate(notification).model_dump(mode="json")
