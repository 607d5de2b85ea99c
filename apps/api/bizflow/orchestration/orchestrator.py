from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from bizflow.ai.client import PredictionClient, build_prediction_client
from bizflow.core.config import Settings, get_settings
from bizflow.events.bus import EventBus, EventHandler, HandlerRegistration
from bizflow.events.models import Event
from bizflow.insights.service import InsightService, insight_service
from bizflow.orchestration.anomaly import AnomalyDetector
from bizflow.orchestration.handlers import (
    AnalyticsEventHandler,
    FinanceEventHandler,
    ProjectEventHandler,
    acknowledge_event,
)
from bizflow.orchestration.schemas import HandlerRegistrationRead, OrchestrationStats
from bizflow.orchestration.stats import compute_orchestration_stats
from bizflow.workflows.dispatch import CeleryWorkflowDispatcher, InlineWorkflowDispatcher, WorkflowDispatcher
from bizflow.workflows.executors import StepExecutors
from bizflow.workflows.mutations import MutationRegistry
from bizflow.workflows.runner import WorkflowRunner


logger = logging.getLogger("bizflow.orchestration")


class Orchestrator:
    """Routes published events to domain handlers and starts workflows.

    One instance per process, built by the host (the API lifespan or a Celery
    worker) and passed to whoever needs it.
    """

    def __init__(
        self,
        settings: Settings,
        event_bus: EventBus,
        runner: WorkflowRunner,
        ai_client: PredictionClient,
        insight_service: InsightService,
    ) -> None:
        self.settings = settings
        self.event_bus = event_bus
        self.runner = runner
        self.ai_client = ai_client
        self.insight_service = insight_service
        self.anomaly_detector = AnomalyDetector(settings, ai_client, insight_service, event_bus)
        self._registered = False

    def register_handlers(self) -> None:
        if self._registered:
            return
        table: list[tuple[str, str, str, int, EventHandler]] = [
            ("finance.*", "finance-orchestrator", "FINANCE", 10, FinanceEventHandler(self)),
            ("project.*", "project-orchestrator", "PROJECT", 10, ProjectEventHandler(self)),
            ("analytics.*", "analytics-orchestrator", "ANALYTICS", 10, AnalyticsEventHandler(self)),
            ("ai.*", "ai-orchestrator", "AI", 5, acknowledge_event),
            ("system.*", "system-orchestrator", "SYSTEM", 15, acknowledge_event),
        ]
        for pattern, name, module, priority, handler in table:
            self.event_bus.register_handler(
                pattern,
                HandlerRegistration(name=name, module=module, priority=priority, handler=self._logged(name, handler)),
            )
        # The detector reports its own failures as results instead of raising.
        self.event_bus.register_handler(
            "*",
            HandlerRegistration(name="anomaly-detector", module="AI", priority=100, handler=self.anomaly_detector),
        )
        self._registered = True

    def _logged(self, name: str, handler: EventHandler) -> EventHandler:
        def run(session: Session, event: Event) -> dict[str, Any] | None:
            try:
                return handler(session, event)
            except Exception as exc:
                logger.error(
                    "orchestrator_handler_failed",
                    extra={"handler": name, "event_name": event.event_name, "error": str(exc)},
                )
                raise

        return run

    def publish_event(
        self,
        session: Session,
        event_name: str,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any],
        *,
        priority: str = "MEDIUM",
        target: str | None = None,
        correlation_id: str | None = None,
    ) -> uuid.UUID:
        return self.event_bus.publish_event(
            session,
            event_name,
            event_type,
            payload,
            metadata,
            priority=priority,
            target=target,
            correlation_id=correlation_id,
        )

    def start_workflow(
        self,
        session: Session,
        workflow_name: str,
        input_data: dict[str, Any],
        metadata: dict[str, Any],
    ) -> uuid.UUID:
        return self.runner.start_workflow(session, workflow_name, input_data, metadata)

    def get_orchestration_stats(self, session: Session, tenant_id: str) -> OrchestrationStats:
        return compute_orchestration_stats(
            session,
            tenant_id,
            automation_level=self.settings.automation_level,
            registered_handlers=len(self.event_bus.registrations()),
        )

    def list_handlers(self) -> list[HandlerRegistrationRead]:
        return [
            HandlerRegistrationRead(
                pattern=pattern,
                name=registration.name,
                module=registration.module,
                priority=registration.priority,
            )
            for pattern, registration in self.event_bus.registrations()
        ]


def build_orchestrator(
    settings: Settings | None = None,
    *,
    ai_client: PredictionClient | None = None,
    dispatcher: WorkflowDispatcher | None = None,
) -> Orchestrator:
    settings = settings or get_settings()
    ai_client = ai_client or build_prediction_client(settings)
    event_bus = EventBus(max_depth=settings.event_max_depth)
    executors = StepExecutors(settings, ai_client, MutationRegistry(insight_service), insight_service)
    runner = WorkflowRunner(settings, executors)
    if dispatcher is None:
        dispatcher = InlineWorkflowDispatcher(runner) if settings.auto_run_workflow_jobs else CeleryWorkflowDispatcher()
    runner.dispatcher = dispatcher

    orchestrator = Orchestrator(settings, event_bus, runner, ai_client, insight_service)
    orchestrator.register_handlers()
    return orchestrator
