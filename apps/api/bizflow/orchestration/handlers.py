from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from bizflow.events.models import Event
from bizflow.insights.schemas import InsightCreate, NotificationCreate
from bizflow.orchestration.anomaly import ANOMALY_SOURCE

if TYPE_CHECKING:
    from bizflow.orchestration.orchestrator import Orchestrator


EventProcessor = Callable[[Session, Event], dict[str, Any]]

MILESTONE_THRESHOLDS = (25, 50, 75, 100)


def _clamp_confidence(value: Any, default: float) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return default
    return min(1.0, max(0.0, confidence))


def _follow_up_metadata(event: Event) -> dict[str, Any]:
    metadata = event.event_metadata or {}
    return {"tenantId": event.tenant_id, "userId": metadata.get("userId"), "source": event.event_name}


class DomainEventHandler:
    """Dispatch table keyed on event name, with a generic fallback."""

    domain = ""

    def __init__(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator
        self.processors: dict[str, EventProcessor] = {}

    def __call__(self, session: Session, event: Event) -> dict[str, Any]:
        processor = self.processors.get(event.event_name, self.process_generic)
        return processor(session, event)

    def process_generic(self, session: Session, event: Event) -> dict[str, Any]:
        if self.orchestrator.settings.ai_enabled:
            return self.orchestrator.ai_client.analyze_event(
                self.domain,
                {"eventName": event.event_name, "payload": event.payload, "tenantId": event.tenant_id},
            )
        return {"status": "processed"}

    def _notify(
        self,
        session: Session,
        event: Event,
        title: str,
        message: str,
        *,
        notification_type: str = "WARNING",
        severity: str = "MEDIUM",
    ) -> str:
        notification = self.orchestrator.insight_service.send_notification(
            session,
            event.tenant_id,
            NotificationCreate(
                title=title,
                message=message,
                type=notification_type,
                severity=severity,
                data={"eventId": str(event.id), "eventName": event.event_name, **(event.payload or {})},
                user_id=(event.event_metadata or {}).get("userId"),
            ),
        )
        return str(notification.id)


class FinanceEventHandler(DomainEventHandler):
    domain = "finance"

    def __init__(self, orchestrator: Orchestrator) -> None:
        super().__init__(orchestrator)
        self.processors = {
            "finance.invoice.created": self.process_invoice_created,
            "finance.transaction.created": self.process_transaction_created,
            "finance.budget.exceeded": self.process_budget_exceeded,
            "finance.payment.overdue": self.process_payment_overdue,
        }

    def process_invoice_created(self, session: Session, event: Event) -> dict[str, Any]:
        payload = event.payload or {}
        tenant_id = event.tenant_id
        execution_id = self.orchestrator.start_workflow(
            session,
            "invoice-processing",
            {
                "invoiceId": payload.get("invoiceId"),
                "customerId": payload.get("customerId"),
                "amount": payload.get("amount"),
                "tenantId": tenant_id,
            },
            {**_follow_up_metadata(event), "correlationId": event.correlation_id},
        )

        category = "auto-categorized"
        confidence = 0.8
        if self.orchestrator.settings.ai_enabled:
            categorization = self.orchestrator.ai_client.analyze_invoice(payload)
            category = str(categorization.get("category") or category)
            confidence = _clamp_confidence(categorization.get("confidence"), 0.8)
            self.orchestrator.insight_service.create_insight(
                session,
                tenant_id,
                InsightCreate(
                    category="FINANCE",
                    type="OPTIMIZATION",
                    title="Invoice Categorization",
                    description=f"Invoice automatically categorized as: {category}",
                    severity="LOW",
                    data=categorization,
                    confidence=confidence,
                    resource_type="invoice",
                    resource_id=str(payload.get("invoiceId")) if payload.get("invoiceId") is not None else None,
                    is_actionable=True,
                ),
            )
            session.commit()

        self.orchestrator.publish_event(
            session,
            "finance.invoice.categorized",
            "BUSINESS_EVENT",
            {"invoiceId": payload.get("invoiceId"), "category": category, "confidence": confidence},
            _follow_up_metadata(event),
            correlation_id=event.correlation_id,
        )
        return {"workflow_id": str(execution_id), "status": "processing"}

    def process_transaction_created(self, session: Session, event: Event) -> dict[str, Any]:
        return {"status": "processed", "action": "transaction_analyzed"}

    def process_budget_exceeded(self, session: Session, event: Event) -> dict[str, Any]:
        payload = event.payload or {}
        budget = payload.get("budgetName") or payload.get("budgetId") or "Budget"
        notification_id = self._notify(
            session,
            event,
            "Budget exceeded",
            f"{budget} exceeded its limit",
            severity="HIGH",
        )
        return {"status": "processed", "action": "budget_alert_sent", "notification_id": notification_id}

    def process_payment_overdue(self, session: Session, event: Event) -> dict[str, Any]:
        payload = event.payload or {}
        invoice = payload.get("invoiceId") or "An invoice"
        notification_id = self._notify(session, event, "Payment overdue", f"Payment for {invoice} is overdue")
        return {"status": "processed", "action": "overdue_notification_sent", "notification_id": notification_id}


class ProjectEventHandler(DomainEventHandler):
    domain = "project"

    def __init__(self, orchestrator: Orchestrator) -> None:
        super().__init__(orchestrator)
        self.processors = {
            "project.task.completed": self.process_task_completed,
            "project.milestone.reached": self.process_milestone_reached,
            "project.deadline.approaching": self.process_deadline_approaching,
            "project.resource.allocated": self.process_resource_allocated,
        }

    def process_task_completed(self, session: Session, event: Event) -> dict[str, Any]:
        payload = event.payload or {}
        project_id = payload.get("projectId")

        if self.orchestrator.settings.ai_enabled:
            optimization = self.orchestrator.ai_client.optimize_project(
                {
                    "projectId": project_id,
                    "completedTaskId": payload.get("taskId"),
                    "completionTime": payload.get("completionTime"),
                }
            )
            if optimization.get("recommendations"):
                self.orchestrator.insight_service.create_insight(
                    session,
                    event.tenant_id,
                    InsightCreate(
                        category="PROJECT",
                        type="OPTIMIZATION",
                        title="Project Optimization Recommendation",
                        description=str(optimization.get("summary") or ""),
                        severity="MEDIUM",
                        data=optimization,
                        confidence=_clamp_confidence(optimization.get("confidence"), 0.75),
                        resource_type="PROJECT",
                        resource_id=str(project_id) if project_id is not None else None,
                        is_actionable=True,
                    ),
                )
                session.commit()

        completed_tasks = int(payload.get("completedTasks") or 0)
        total_tasks = int(payload.get("totalTasks") or 0)
        progress = (completed_tasks / total_tasks) * 100 if total_tasks > 0 else 0.0
        reached = {str(item) for item in payload.get("reachedMilestones") or []}

        published: list[str] = []
        for threshold in MILESTONE_THRESHOLDS:
            milestone = f"{threshold}% Complete"
            if progress >= threshold and milestone not in reached:
                self.orchestrator.publish_event(
                    session,
                    "project.milestone.reached",
                    "BUSINESS_EVENT",
                    {
                        "projectId": project_id,
                        "milestone": milestone,
                        "progress": progress,
                        "completedTasks": completed_tasks,
                        "totalTasks": total_tasks,
                    },
                    _follow_up_metadata(event),
                    correlation_id=event.correlation_id,
                )
                published.append(milestone)

        return {"status": "processed", "progress": progress, "milestones": published}

    def process_milestone_reached(self, session: Session, event: Event) -> dict[str, Any]:
        return {"status": "processed", "action": "milestone_celebration"}

    def process_deadline_approaching(self, session: Session, event: Event) -> dict[str, Any]:
        payload = event.payload or {}
        subject = payload.get("taskName") or payload.get("projectId") or "A deadline"
        notification_id = self._notify(session, event, "Deadline approaching", f"{subject} is due soon")
        return {"status": "processed", "action": "deadline_reminder_sent", "notification_id": notification_id}

    def process_resource_allocated(self, session: Session, event: Event) -> dict[str, Any]:
        return {"status": "processed", "action": "resource_allocation_confirmed"}


class AnalyticsEventHandler(DomainEventHandler):
    domain = "analytics"

    def __init__(self, orchestrator: Orchestrator) -> None:
        super().__init__(orchestrator)
        self.processors = {
            "analytics.anomaly.detected": self.process_anomaly_detected,
            "analytics.report.generated": self.process_report_generated,
            "analytics.metric.threshold.exceeded": self.process_metric_threshold_exceeded,
        }

    def process_anomaly_detected(self, session: Session, event: Event) -> dict[str, Any]:
        result: dict[str, Any] = {"status": "processed", "action": "anomaly_investigation_triggered"}
        # The detector notifies for its own anomalies.
        if event.source != ANOMALY_SOURCE:
            payload = event.payload or {}
            result["notification_id"] = self._notify(
                session,
                event,
                "Anomaly reported",
                str(payload.get("description") or "An anomaly was reported"),
                severity="HIGH",
            )
        return result

    def process_report_generated(self, session: Session, event: Event) -> dict[str, Any]:
        return {"status": "processed", "action": "report_distributed"}

    def process_metric_threshold_exceeded(self, session: Session, event: Event) -> dict[str, Any]:
        payload = event.payload or {}
        metric = payload.get("metric") or "A metric"
        notification_id = self._notify(
            session,
            event,
            "Metric threshold exceeded",
            f"{metric} crossed {payload.get('threshold', 'its threshold')}",
        )
        return {"status": "processed", "action": "threshold_alert_sent", "notification_id": notification_id}


def acknowledge_event(session: Session, event: Event) -> dict[str, Any]:
    return {"status": "processed"}
