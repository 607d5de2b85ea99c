from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from bizflow import audit
from bizflow.workflows.models import WorkflowDefinition, WorkflowExecution
from bizflow.workflows.schemas import (
    WorkflowDefinitionCreate,
    WorkflowDefinitionRead,
    WorkflowDefinitionUpdate,
    WorkflowExecutionDetailRead,
    WorkflowExecutionListResponse,
    WorkflowExecutionRead,
    WorkflowStepRead,
)


logger = logging.getLogger("bizflow.workflows")


@dataclass(slots=True)
class WorkflowDefinitionService:
    def create_definition(
        self,
        session: Session,
        tenant_id: str,
        actor_user_id: str,
        dto: WorkflowDefinitionCreate,
    ) -> WorkflowDefinitionRead:
        latest_version = session.scalar(
            select(func.max(WorkflowDefinition.version)).where(
                WorkflowDefinition.tenant_id == tenant_id,
                WorkflowDefinition.name == dto.name,
            )
        )
        definition = WorkflowDefinition(
            tenant_id=tenant_id,
            name=dto.name,
            description=dto.description,
            version=(latest_version or 0) + 1,
            steps=[step.model_dump(mode="json") for step in dto.steps],
            is_active=dto.is_active,
        )
        session.add(definition)
        session.commit()
        session.refresh(definition)

        result = WorkflowDefinitionRead.model_validate(definition)
        audit.record(
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            entity_type="workflow_definition",
            entity_id=str(definition.id),
            action="create",
            before=None,
            after=result.model_dump(mode="json"),
        )
        logger.info(
            "workflow_definition_created",
            extra={"tenant_id": tenant_id, "workflow_name": dto.name, "status": f"v{definition.version}"},
        )
        return result

    def list_definitions(
        self,
        session: Session,
        tenant_id: str,
        *,
        name: str | None = None,
        active_only: bool = False,
    ) -> list[WorkflowDefinitionRead]:
        stmt = select(WorkflowDefinition).where(WorkflowDefinition.tenant_id == tenant_id)
        if name:
            stmt = stmt.where(WorkflowDefinition.name == name)
        if active_only:
            stmt = stmt.where(WorkflowDefinition.is_active.is_(True))
        stmt = stmt.order_by(WorkflowDefinition.name.asc(), WorkflowDefinition.version.desc())
        return [WorkflowDefinitionRead.model_validate(row) for row in session.scalars(stmt)]

    def update_definition(
        self,
        session: Session,
        tenant_id: str,
        actor_user_id: str,
        definition_id: uuid.UUID,
        dto: WorkflowDefinitionUpdate,
    ) -> WorkflowDefinitionRead:
        definition = session.scalar(
            select(WorkflowDefinition).where(
                WorkflowDefinition.id == definition_id,
                WorkflowDefinition.tenant_id == tenant_id,
            )
        )
        if definition is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="workflow definition not found")

        before = WorkflowDefinitionRead.model_validate(definition).model_dump(mode="json")
        for field_name, value in dto.model_dump(exclude_unset=True).items():
            setattr(definition, field_name, value)
        session.add(definition)
        session.commit()
        session.refresh(definition)

        result = WorkflowDefinitionRead.model_validate(definition)
        audit.record(
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            entity_type="workflow_definition",
            entity_id=str(definition.id),
            action="update",
            before=before,
            after=result.model_dump(mode="json"),
        )
        return result


@dataclass(slots=True)
class WorkflowExecutionQueryService:
    def list_executions(
        self,
        session: Session,
        tenant_id: str,
        *,
        execution_status: str | None = None,
        workflow_name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> WorkflowExecutionListResponse:
        conditions = [WorkflowExecution.tenant_id == tenant_id]
        if execution_status:
            conditions.append(WorkflowExecution.status == execution_status)
        if workflow_name:
            conditions.append(
                WorkflowExecution.workflow_definition_id.in_(
                    select(WorkflowDefinition.id).where(
                        WorkflowDefinition.tenant_id == tenant_id,
                        WorkflowDefinition.name == workflow_name,
                    )
                )
            )

        total = session.scalar(select(func.count()).select_from(WorkflowExecution).where(*conditions)) or 0
        rows = session.scalars(
            select(WorkflowExecution)
            .where(*conditions)
            .order_by(WorkflowExecution.start_time.desc())
            .limit(limit)
            .offset(offset)
        )
        stats = {"RUNNING": 0, "COMPLETED": 0, "FAILED": 0}
        for status_value, count in session.execute(
            select(WorkflowExecution.status, func.count())
            .where(WorkflowExecution.tenant_id == tenant_id)
            .group_by(WorkflowExecution.status)
        ):
            stats[status_value] = int(count)

        return WorkflowExecutionListResponse(
            items=[WorkflowExecutionRead.model_validate(row) for row in rows],
            total=int(total),
            limit=limit,
            offset=offset,
            stats=stats,
        )

    def get_execution(self, session: Session, tenant_id: str, execution_id: uuid.UUID) -> WorkflowExecutionDetailRead:
        execution = session.scalar(
            select(WorkflowExecution)
            .where(WorkflowExecution.id == execution_id, WorkflowExecution.tenant_id == tenant_id)
            .options(selectinload(WorkflowExecution.steps), selectinload(WorkflowExecution.workflow_definition))
        )
        if execution is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="workflow execution not found")

        base = WorkflowExecutionRead.model_validate(execution).model_dump()
        return WorkflowExecutionDetailRead(
            **base,
            workflow_name=execution.workflow_definition.name,
            steps=[WorkflowStepRead.model_validate(step) for step in execution.steps],
        )


workflow_definition_service = WorkflowDefinitionService()
workflow_execution_query_service = WorkflowExecutionQueryService()
