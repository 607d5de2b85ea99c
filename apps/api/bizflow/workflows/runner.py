from __future__ import annotations

import logging
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bizflow import audit
from bizflow.context import correlation_scope, get_correlation_id
from bizflow.core.config import Settings
from bizflow.core.serialization import json_safe
from bizflow.metrics import observe_workflow_execution, observe_workflow_step
from bizflow.orchestration.errors import WorkflowCapacityExceededError, WorkflowDefinitionNotFoundError
from bizflow.workflows.dispatch import WorkflowDispatcher
from bizflow.workflows.executors import StepExecutors
from bizflow.workflows.models import WorkflowDefinition, WorkflowExecution, WorkflowStep
from bizflow.workflows.schemas import StepConfig


logger = logging.getLogger("bizflow.workflows")
tracer = trace.get_tracer("bizflow.workflows.runner")

INPUT_REFERENCE_PREFIX = "$input"
_PATH_PART_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def lookup_path(data: Any, path: str) -> Any:
    """Follow a dotted path such as `invoice.lines[0].amount`; missing keys give None."""
    current = data
    for key, index in _PATH_PART_RE.findall(path):
        if index:
            position = int(index)
            if not isinstance(current, list) or position >= len(current):
                return None
            current = current[position]
        else:
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
    return current


def resolve_input_references(value: Any, input_data: dict[str, Any]) -> Any:
    if isinstance(value, str):
        if value == INPUT_REFERENCE_PREFIX:
            return input_data
        if value.startswith(INPUT_REFERENCE_PREFIX + "."):
            return lookup_path(input_data, value[len(INPUT_REFERENCE_PREFIX) + 1 :])
        return value
    if isinstance(value, dict):
        return {key: resolve_input_references(item, input_data) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_input_references(item, input_data) for item in value]
    return value


class WorkflowRunner:
    """Sequential step state machine over persisted executions.

    An execution is RUNNING until every step has completed (COMPLETED) or one
    step raised (FAILED). `current_step` is 1-based, only moves forward and is
    committed after each successful step, so a resumed execution continues at
    the first step that has not completed. Steps commit independently: side
    effects of earlier steps survive a later failure.
    """

    def __init__(
        self,
        settings: Settings,
        executors: StepExecutors,
        dispatcher: WorkflowDispatcher | None = None,
    ) -> None:
        self.settings = settings
        self.executors = executors
        self.dispatcher = dispatcher

    def start_workflow(
        self,
        session: Session,
        workflow_name: str,
        input_data: dict[str, Any],
        metadata: dict[str, Any],
    ) -> uuid.UUID:
        tenant_id = str(metadata.get("tenantId") or "default")
        definition = session.scalar(
            select(WorkflowDefinition)
            .where(
                WorkflowDefinition.tenant_id == tenant_id,
                WorkflowDefinition.name == workflow_name,
                WorkflowDefinition.is_active.is_(True),
            )
            .order_by(WorkflowDefinition.version.desc())
            .limit(1)
        )
        if definition is None:
            logger.warning(
                "workflow_definition_not_found",
                extra={"tenant_id": tenant_id, "workflow_name": workflow_name},
            )
            raise WorkflowDefinitionNotFoundError(tenant_id, workflow_name)

        # Best-effort cap: count then insert, without a lock across workers.
        running = session.scalar(
            select(func.count())
            .select_from(WorkflowExecution)
            .where(WorkflowExecution.tenant_id == tenant_id, WorkflowExecution.status == "RUNNING")
        ) or 0
        if running >= self.settings.max_concurrent_workflows:
            logger.warning(
                "workflow_capacity_exceeded",
                extra={"tenant_id": tenant_id, "workflow_name": workflow_name, "reason": f"{running} running"},
            )
            raise WorkflowCapacityExceededError(tenant_id, running, self.settings.max_concurrent_workflows)

        correlation_id = str(metadata.get("correlationId") or get_correlation_id() or uuid.uuid4())
        execution = WorkflowExecution(
            tenant_id=tenant_id,
            workflow_definition_id=definition.id,
            correlation_id=correlation_id,
            status="RUNNING",
            current_step=1,
            total_steps=len(definition.steps or []),
            input_data=json_safe(input_data),
            start_time=utcnow(),
        )
        session.add(execution)
        session.commit()
        execution_id = execution.id

        audit.record(
            actor_user_id=str(metadata.get("userId") or "system"),
            tenant_id=tenant_id,
            entity_type="workflow_execution",
            entity_id=str(execution_id),
            action="workflow.started",
            before=None,
            after={"workflow_name": workflow_name, "version": definition.version, "total_steps": execution.total_steps},
            correlation_id=correlation_id,
        )
        logger.info(
            "workflow_execution_started",
            extra={"tenant_id": tenant_id, "workflow_name": workflow_name, "execution_id": str(execution_id)},
        )

        if self.dispatcher is None:
            raise RuntimeError("workflow dispatcher is not configured")
        self.dispatcher.dispatch(session, execution_id)
        return execution_id

    def execute_workflow_steps(self, session: Session, execution_id: uuid.UUID) -> WorkflowExecution:
        execution = session.get(WorkflowExecution, execution_id)
        if execution is None:
            raise LookupError(f"workflow execution {execution_id} not found")
        if execution.status != "RUNNING":
            return execution

        definition = session.get(WorkflowDefinition, execution.workflow_definition_id)
        if definition is None:
            raise LookupError(f"workflow definition {execution.workflow_definition_id} not found")
        workflow_name = definition.name
        steps = list(definition.steps or [])

        started = time.perf_counter()
        with correlation_scope(execution.correlation_id):
            for index in range(execution.current_step - 1, len(steps)):
                try:
                    self.execute_workflow_step(session, execution, index + 1, steps[index])
                except Exception as exc:
                    session.rollback()
                    execution = session.get(WorkflowExecution, execution_id)
                    execution.status = "FAILED"
                    execution.error_message = str(exc) or exc.__class__.__name__
                    execution.end_time = utcnow()
                    session.commit()
                    observe_workflow_execution(workflow_name, "FAILED", time.perf_counter() - started)
                    logger.warning(
                        "workflow_execution_failed",
                        extra={
                            "execution_id": str(execution_id),
                            "workflow_name": workflow_name,
                            "step_number": index + 1,
                            "error": execution.error_message,
                        },
                    )
                    return execution

                execution.current_step = index + 2
                session.commit()

            execution.status = "COMPLETED"
            execution.end_time = utcnow()
            session.commit()
            observe_workflow_execution(workflow_name, "COMPLETED", time.perf_counter() - started)
            logger.info(
                "workflow_execution_completed",
                extra={"execution_id": str(execution_id), "workflow_name": workflow_name, "status": "COMPLETED"},
            )
            return execution

    def execute_workflow_step(
        self,
        session: Session,
        execution: WorkflowExecution,
        step_number: int,
        step_config: dict[str, Any],
    ) -> Any:
        """Run one step under its own EXECUTING -> COMPLETED/FAILED row.

        The row's `input_data` is the config after `$input.` references are
        resolved; the unresolved text stays on the definition version the
        execution points at. A literal string beginning with `$input.` cannot
        be passed to a step.
        """
        step = StepConfig.model_validate(step_config)
        resolved_config = json_safe(resolve_input_references(step.config, execution.input_data or {}))
        execution_id = execution.id

        row = WorkflowStep(
            tenant_id=execution.tenant_id,
            workflow_execution_id=execution_id,
            step_number=step_number,
            step_name=step.name,
            step_type=step.type,
            status="EXECUTING",
            input_data=resolved_config,
            start_time=utcnow(),
        )
        session.add(row)
        session.commit()
        row_id = row.id

        started = time.perf_counter()
        with tracer.start_as_current_span("workflows.step") as span:
            span.set_attribute("execution_id", str(execution_id))
            span.set_attribute("step_number", step_number)
            span.set_attribute("step_type", step.type)
            try:
                output = json_safe(self.executors.execute(session, execution, step.type, resolved_config))
            except Exception as exc:
                duration = time.perf_counter() - started
                session.rollback()
                row = session.get(WorkflowStep, row_id)
                row.status = "FAILED"
                row.error_message = str(exc) or exc.__class__.__name__
                row.end_time = utcnow()
                row.execution_time_ms = int(duration * 1000)
                session.commit()
                observe_workflow_step(step.type, "FAILED", duration)
                logger.warning(
                    "workflow_step_failed",
                    extra={
                        "execution_id": str(execution_id),
                        "step_number": step_number,
                        "step_name": step.name,
                        "step_type": step.type,
                        "error": row.error_message,
                    },
                )
                raise

        duration = time.perf_counter() - started
        row = session.get(WorkflowStep, row_id)
        row.status = "COMPLETED"
        row.output_data = output
        row.end_time = utcnow()
        row.execution_time_ms = int(duration * 1000)
        session.commit()
        observe_workflow_step(step.type, "COMPLETED", duration)
        logger.info(
            "workflow_step_completed",
            extra={"execution_id": str(execution_id), "step_number": step_number, "step_type": step.type},
        )
        return output

    def resume_interrupted_executions(self, session: Session, tenant_id: str | None = None) -> list[uuid.UUID]:
        """Re-dispatch RUNNING executions left behind by a stopped process.

        Step rows still EXECUTING are closed as FAILED with `interrupted`; the
        execution then continues from its `current_step`, which re-runs that
        step under a new row.
        """
        stmt = select(WorkflowExecution.id).where(WorkflowExecution.status == "RUNNING")
        if tenant_id is not None:
            stmt = stmt.where(WorkflowExecution.tenant_id == tenant_id)
        execution_ids = list(session.scalars(stmt.order_by(WorkflowExecution.start_time)))

        for execution_id in execution_ids:
            interrupted = session.scalars(
                select(WorkflowStep).where(
                    WorkflowStep.workflow_execution_id == execution_id,
                    WorkflowStep.status == "EXECUTING",
                )
            ).all()
            for step in interrupted:
                step.status = "FAILED"
                step.error_message = "interrupted"
                step.end_time = utcnow()
            session.commit()

        if execution_ids and self.dispatcher is None:
            raise RuntimeError("workflow dispatcher is not configured")
        for execution_id in execution_ids:
            logger.info("workflow_execution_resumed", extra={"execution_id": str(execution_id)})
            self.dispatcher.dispatch(session, execution_id)
        return execution_ids
