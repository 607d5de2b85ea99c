from __future__ import annotations

import uuid
from collections.abc import Generator
from typing import Any

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bizflow import audit
from bizflow.core.config import Settings, get_settings
from bizflow.core.database import Base
from bizflow.events import bus
from bizflow.insights.models import AIInsight, RealTimeNotification
from bizflow.orchestration.errors import WorkflowCapacityExceededError, WorkflowDefinitionNotFoundError
from bizflow.orchestration.orchestrator import Orchestrator, build_orchestrator
from bizflow.workflows.dispatch import InlineWorkflowDispatcher
from bizflow.workflows.models import WorkflowDefinition, WorkflowExecution, WorkflowStep
from bizflow.workflows.runner import lookup_path, resolve_input_references
from bizflow.workflows.schemas import StepConfig, WorkflowDefinitionCreate
from bizflow.workflows.service import workflow_definition_service, workflow_execution_query_service


class ScriptedPredictionClient:
    def __init__(self, analysis: dict[str, Any] | None = None) -> None:
        self.analysis = analysis or {"results": {"score": 0.42}, "confidence": 0.9}
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def analyze_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("analyze_invoice", invoice))
        return {"category": "software", "confidence": 0.9}

    def optimize_project(self, project: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("optimize_project", project))
        return {"recommendations": []}

    def detect_anomaly(self, context: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("detect_anomaly", context))
        return {"isAnomaly": False, "confidence": 0.0}

    def analyze_event(self, domain: str, event: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("analyze_event", event))
        return {"status": "processed"}

    def perform_analysis(self, config: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("perform_analysis", config))
        return self.analysis


class RecordingDispatcher:
    def __init__(self) -> None:
        self.dispatched: list[uuid.UUID] = []

    def dispatch(self, session: Session, execution_id: uuid.UUID) -> None:
        self.dispatched.append(execution_id)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    audit.audit_entries.clear()
    bus.published_events.clear()
    yield
    get_settings.cache_clear()
    audit.audit_entries.clear()
    bus.published_events.clear()


@pytest.fixture()
def ai_client() -> ScriptedPredictionClient:
    return ScriptedPredictionClient()


@pytest.fixture()
def orchestrator(ai_client: ScriptedPredictionClient) -> Orchestrator:
    return build_orchestrator(Settings(auto_run_workflow_jobs=True), ai_client=ai_client)


def _define(session: Session, name: str, steps: list[dict[str, Any]], tenant_id: str = "t1") -> None:
    workflow_definition_service.create_definition(
        session,
        tenant_id,
        "admin-1",
        WorkflowDefinitionCreate(name=name, steps=[StepConfig.model_validate(step) for step in steps]),
    )


INVOICE_PROCESSING_STEPS = [
    {"name": "Analyze invoice", "type": "AI_ANALYSIS", "config": {"invoiceId": "$input.invoiceId", "amount": "$input.amount"}},
    {
        "name": "Store insight",
        "type": "DATABASE_UPDATE",
        "config": {
            "model": "ai_insight",
            "operation": "create",
            "data": {
                "category": "FINANCE",
                "type": "OPTIMIZATION",
                "title": "Invoice reviewed",
                "confidence": 0.9,
                "resource_type": "invoice",
                "resource_id": "$input.invoiceId",
            },
        },
    },
    {"name": "Notify finance", "type": "NOTIFICATION", "config": {"title": "Invoice processed", "message": "done"}},
]


def test_invoice_processing_runs_every_step(
    db_session: Session,
    orchestrator: Orchestrator,
    ai_client: ScriptedPredictionClient,
) -> None:
    _define(db_session, "invoice-processing", INVOICE_PROCESSING_STEPS)

    execution_id = orchestrator.start_workflow(
        db_session,
        "invoice-processing",
        {"invoiceId": "inv_1", "amount": 500},
        {"tenantId": "t1"},
    )

    detail = workflow_execution_query_service.get_execution(db_session, "t1", execution_id)
    assert detail.status == "COMPLETED"
    assert detail.current_step == 4
    assert detail.total_steps == 3
    assert detail.workflow_name == "invoice-processing"
    assert [step.step_number for step in detail.steps] == [1, 2, 3]
    assert all(step.status == "COMPLETED" for step in detail.steps)
    assert detail.end_time is not None

    assert ai_client.calls == [("perform_analysis", {"invoiceId": "inv_1", "amount": 500})]
    assert detail.steps[1].input_data["data"]["resource_id"] == "inv_1"

    insight = db_session.scalar(select(AIInsight).where(AIInsight.tenant_id == "t1"))
    assert insight is not None
    assert insight.resource_id == "inv_1"
    assert db_session.scalar(select(func.count()).select_from(RealTimeNotification)) == 1

    started = [entry for entry in audit.audit_entries if entry["action"] == "workflow.started"]
    assert len(started) == 1
    assert started[0]["entity_id"] == str(execution_id)


def test_failing_step_stops_execution_and_keeps_earlier_side_effects(
    db_session: Session,
    orchestrator: Orchestrator,
) -> None:
    _define(
        db_session,
        "broken",
        [
            {"name": "Notify", "type": "NOTIFICATION", "config": {"title": "Started"}},
            {"name": "Delete invoice", "type": "DATABASE_UPDATE", "config": {"model": "invoice", "operation": "delete"}},
            {"name": "Never runs", "type": "NOTIFICATION", "config": {"title": "Finished"}},
        ],
    )

    execution_id = orchestrator.start_workflow(db_session, "broken", {}, {"tenantId": "t1"})

    execution = db_session.get(WorkflowExecution, execution_id)
    assert execution is not None
    assert execution.status == "FAILED"
    assert execution.current_step == 2
    assert execution.error_message == "Unsupported database update: invoice.delete"
    assert execution.end_time is not None

    steps = db_session.scalars(
        select(WorkflowStep).where(WorkflowStep.workflow_execution_id == execution_id).order_by(WorkflowStep.step_number)
    ).all()
    assert [(step.step_number, step.status) for step in steps] == [(1, "COMPLETED"), (2, "FAILED")]
    assert steps[1].error_message == execution.error_message

    notifications = db_session.scalars(select(RealTimeNotification)).all()
    assert [notification.title for notification in notifications] == ["Started"]


@pytest.mark.parametrize("is_active", [True, False])
def test_missing_or_inactive_definition_is_rejected_before_execution_row(
    db_session: Session,
    orchestrator: Orchestrator,
    is_active: bool,
) -> None:
    if not is_active:
        workflow_definition_service.create_definition(
            db_session,
            "t1",
            "admin-1",
            WorkflowDefinitionCreate(
                name="invoice-processing",
                steps=[StepConfig.model_validate(step) for step in INVOICE_PROCESSING_STEPS],
                is_active=False,
            ),
        )

    with pytest.raises(WorkflowDefinitionNotFoundError) as exc_info:
        orchestrator.start_workflow(db_session, "invoice-processing", {}, {"tenantId": "t1"})

    assert exc_info.value.code == "WORKFLOW_DEFINITION_NOT_FOUND"
    assert db_session.scalar(select(func.count()).select_from(WorkflowExecution)) == 0


def test_latest_active_version_is_used(db_session: Session, orchestrator: Orchestrator) -> None:
    _define(db_session, "versioned", [{"name": "One", "type": "NOTIFICATION", "config": {"title": "v1"}}])
    _define(
        db_session,
        "versioned",
        [
            {"name": "One", "type": "NOTIFICATION", "config": {"title": "v2"}},
            {"name": "Two", "type": "NOTIFICATION", "config": {"title": "v2 again"}},
        ],
    )

    execution_id = orchestrator.start_workflow(db_session, "versioned", {}, {"tenantId": "t1"})

    execution = db_session.get(WorkflowExecution, execution_id)
    assert execution is not None
    assert execution.total_steps == 2
    assert execution.current_step == 3


def test_definition_lookup_is_tenant_scoped(db_session: Session, orchestrator: Orchestrator) -> None:
    _define(db_session, "invoice-processing", INVOICE_PROCESSING_STEPS, tenant_id="t1")

    with pytest.raises(WorkflowDefinitionNotFoundError):
        orchestrator.start_workflow(db_session, "invoice-processing", {}, {"tenantId": "t2"})


def test_running_executions_are_capped_per_tenant(db_session: Session, ai_client: ScriptedPredictionClient) -> None:
    dispatcher = RecordingDispatcher()
    orchestrator = build_orchestrator(
        Settings(max_concurrent_workflows=1),
        ai_client=ai_client,
        dispatcher=dispatcher,
    )
    _define(db_session, "invoice-processing", INVOICE_PROCESSING_STEPS, tenant_id="t1")
    _define(db_session, "invoice-processing", INVOICE_PROCESSING_STEPS, tenant_id="t2")

    first = orchestrator.start_workflow(db_session, "invoice-processing", {}, {"tenantId": "t1"})
    assert dispatcher.dispatched == [first]

    with pytest.raises(WorkflowCapacityExceededError) as exc_info:
        orchestrator.start_workflow(db_session, "invoice-processing", {}, {"tenantId": "t1"})
    assert exc_info.value.details == {"tenant_id": "t1", "running": 1, "limit": 1}

    other_tenant = orchestrator.start_workflow(db_session, "invoice-processing", {}, {"tenantId": "t2"})
    assert dispatcher.dispatched == [first, other_tenant]


def test_detached_start_leaves_execution_running(db_session: Session, ai_client: ScriptedPredictionClient) -> None:
    dispatcher = RecordingDispatcher()
    orchestrator = build_orchestrator(Settings(), ai_client=ai_client, dispatcher=dispatcher)
    _define(db_session, "invoice-processing", INVOICE_PROCESSING_STEPS)

    execution_id = orchestrator.start_workflow(
        db_session,
        "invoice-processing",
        {"invoiceId": "inv_2"},
        {"tenantId": "t1", "correlationId": "corr-detached"},
    )

    execution = db_session.get(WorkflowExecution, execution_id)
    assert execution is not None
    assert execution.status == "RUNNING"
    assert execution.current_step == 1
    assert execution.correlation_id == "corr-detached"
    assert execution.input_data == {"invoiceId": "inv_2"}
    assert db_session.scalar(select(func.count()).select_from(WorkflowStep)) == 0


def test_resume_continues_from_current_step(db_session: Session, ai_client: ScriptedPredictionClient) -> None:
    dispatcher = RecordingDispatcher()
    orchestrator = build_orchestrator(Settings(), ai_client=ai_client, dispatcher=dispatcher)
    _define(
        db_session,
        "two-steps",
        [
            {"name": "First", "type": "NOTIFICATION", "config": {"title": "first"}},
            {"name": "Second", "type": "NOTIFICATION", "config": {"title": "second"}},
        ],
    )
    execution_id = orchestrator.start_workflow(db_session, "two-steps", {}, {"tenantId": "t1"})

    # Simulate a process that completed step 1 and died while running step 2.
    execution = db_session.get(WorkflowExecution, execution_id)
    assert execution is not None
    execution.current_step = 2
    db_session.add_all(
        [
            WorkflowStep(
                tenant_id="t1",
                workflow_execution_id=execution_id,
                step_number=1,
                step_name="First",
                step_type="NOTIFICATION",
                status="COMPLETED",
                input_data={"title": "first"},
            ),
            WorkflowStep(
                tenant_id="t1",
                workflow_execution_id=execution_id,
                step_number=2,
                step_name="Second",
                step_type="NOTIFICATION",
                status="EXECUTING",
                input_data={"title": "second"},
            ),
        ]
    )
    db_session.commit()

    runner = orchestrator.runner
    runner.dispatcher = InlineWorkflowDispatcher(runner)
    resumed = runner.resume_interrupted_executions(db_session)

    assert resumed == [execution_id]
    execution = db_session.get(WorkflowExecution, execution_id)
    assert execution is not None
    assert execution.status == "COMPLETED"
    assert execution.current_step == 3

    steps = db_session.scalars(
        select(WorkflowStep)
        .where(WorkflowStep.workflow_execution_id == execution_id)
        .order_by(WorkflowStep.step_number, WorkflowStep.start_time)
    ).all()
    assert [(step.step_number, step.status, step.error_message) for step in steps] == [
        (1, "COMPLETED", None),
        (2, "FAILED", "interrupted"),
        (2, "COMPLETED", None),
    ]
    notifications = db_session.scalars(select(RealTimeNotification)).all()
    assert [notification.title for notification in notifications] == ["second"]


def test_terminal_execution_is_not_run_again(db_session: Session, orchestrator: Orchestrator) -> None:
    _define(db_session, "invoice-processing", INVOICE_PROCESSING_STEPS)
    execution_id = orchestrator.start_workflow(db_session, "invoice-processing", {"invoiceId": "inv_1"}, {"tenantId": "t1"})

    execution = orchestrator.runner.execute_workflow_steps(db_session, execution_id)

    assert execution.status == "COMPLETED"
    assert db_session.scalar(select(func.count()).select_from(WorkflowStep)) == 3


def test_step_json_round_trips(db_session: Session) -> None:
    analysis = {
        "results": {"scores": [1, 2.5, -3], "labels": ["a", "b"], "empty": {}},
        "flags": [True, False, None],
        "text": "naïve ünïcode",
    }
    orchestrator = build_orchestrator(
        Settings(auto_run_workflow_jobs=True),
        ai_client=ScriptedPredictionClient(analysis=analysis),
    )
    config = {"prompt": "classify", "nested": {"depth": [{"level": 2}], "ratio": 0.125}, "none": None}
    _define(db_session, "round-trip", [{"name": "Analyze", "type": "AI_ANALYSIS", "config": config}])

    execution_id = orchestrator.start_workflow(db_session, "round-trip", {}, {"tenantId": "t1"})
    db_session.expire_all()

    step = db_session.scalar(select(WorkflowStep).where(WorkflowStep.workflow_execution_id == execution_id))
    assert step is not None
    assert step.input_data == config
    assert step.output_data == analysis


def test_unknown_step_type_is_skipped(db_session: Session, orchestrator: Orchestrator) -> None:
    _define(db_session, "webhook", [{"name": "Call out", "type": "WEBHOOK", "config": {"url": "https://example.test"}}])

    execution_id = orchestrator.start_workflow(db_session, "webhook", {}, {"tenantId": "t1"})

    detail = workflow_execution_query_service.get_execution(db_session, "t1", execution_id)
    assert detail.status == "COMPLETED"
    assert detail.steps[0].output_data == {"status": "skipped", "reason": "unsupported step type"}


def test_ai_step_is_skipped_when_ai_disabled(db_session: Session, ai_client: ScriptedPredictionClient) -> None:
    orchestrator = build_orchestrator(Settings(auto_run_workflow_jobs=True, ai_enabled=False), ai_client=ai_client)
    _define(db_session, "invoice-processing", INVOICE_PROCESSING_STEPS)

    execution_id = orchestrator.start_workflow(db_session, "invoice-processing", {"invoiceId": "inv_1"}, {"tenantId": "t1"})

    detail = workflow_execution_query_service.get_execution(db_session, "t1", execution_id)
    assert detail.status == "COMPLETED"
    assert detail.steps[0].output_data == {"status": "skipped", "reason": "AI disabled"}
    assert ai_client.calls == []


def test_input_references_resolve_against_input_data() -> None:
    input_data = {"invoice": {"id": "inv_9", "lines": [{"amount": 10}, {"amount": 25}]}, "tenantId": "t1"}

    resolved = resolve_input_references(
        {
            "all": "$input",
            "invoice": "$input.invoice.id",
            "second_line": "$input.invoice.lines[1].amount",
            "missing": "$input.invoice.customer",
            "literal": "input.invoice.id",
            "items": ["$input.tenantId", 3],
        },
        input_data,
    )

    assert resolved == {
        "all": input_data,
        "invoice": "inv_9",
        "second_line": 25,
        "missing": None,
        "literal": "input.invoice.id",
        "items": ["t1", 3],
    }
    assert lookup_path(input_data, "invoice.lines[5].amount") is None


def test_step_row_records_resolved_config_and_definition_keeps_raw(db_session: Session, orchestrator: Orchestrator) -> None:
    config = {"title": "Invoice $input.invoiceId", "invoiceId": "$input.invoiceId", "customer": "$input.customerId"}
    _define(db_session, "notify", [{"name": "Notify", "type": "NOTIFICATION", "config": config}])

    execution_id = orchestrator.start_workflow(db_session, "notify", {"invoiceId": "inv_7"}, {"tenantId": "t1"})
    db_session.expire_all()

    step = db_session.scalar(select(WorkflowStep).where(WorkflowStep.workflow_execution_id == execution_id))
    assert step is not None
    assert step.input_data == {"title": "Invoice $input.invoiceId", "invoiceId": "inv_7", "customer": None}

    execution = db_session.get(WorkflowExecution, execution_id)
    assert execution is not None
    definition = db_session.get(WorkflowDefinition, execution.workflow_definition_id)
    assert definition is not None
    assert definition.steps[0]["config"] == config
