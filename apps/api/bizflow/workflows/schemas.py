from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


ExecutionStatus = Literal["RUNNING", "COMPLETED", "FAILED"]
StepStatus = Literal["EXECUTING", "COMPLETED", "FAILED"]


class StepConfig(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    type: str = Field(min_length=1, max_length=32)
    config: dict[str, Any] = Field(default_factory=dict)


class DatabaseUpdateConfig(BaseModel):
    model: str = Field(min_length=1)
    operation: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    where: dict[str, Any] = Field(default_factory=dict)


class NotificationStepConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    message: str = ""
    type: Literal["INFO", "SUCCESS", "WARNING", "ERROR"] = "INFO"
    severity: Literal["INFO", "LOW", "MEDIUM", "HIGH", "CRITICAL"] = "INFO"
    data: dict[str, Any] | None = None
    user_id: str | None = Field(default=None, alias="userId")
    is_persistent: bool = Field(default=True, alias="isPersistent")


class WorkflowDefinitionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str | None = None
    steps: list[StepConfig] = Field(min_length=1)
    is_active: bool = True


class WorkflowDefinitionUpdate(BaseModel):
    description: str | None = None
    is_active: bool | None = None


class WorkflowDefinitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    name: str
    description: str | None
    version: int
    steps: list[StepConfig]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class WorkflowExecutionStartRequest(BaseModel):
    workflow_name: str = Field(min_length=1, max_length=128)
    input_data: dict[str, Any] = Field(default_factory=dict)


class WorkflowExecutionStartResponse(BaseModel):
    execution_id: UUID
    status: ExecutionStatus | str


class WorkflowStepRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    step_number: int
    step_name: str
    step_type: str
    status: StepStatus | str
    input_data: dict[str, Any]
    output_data: Any | None
    error_message: str | None
    start_time: datetime
    end_time: datetime | None
    execution_time_ms: int | None


class WorkflowExecutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    workflow_definition_id: UUID
    correlation_id: str
    status: ExecutionStatus | str
    current_step: int
    total_steps: int
    input_data: dict[str, Any]
    error_message: str | None
    start_time: datetime
    end_time: datetime | None


class WorkflowExecutionDetailRead(WorkflowExecutionRead):
    workflow_name: str
    steps: list[WorkflowStepRead] = Field(default_factory=list)


class WorkflowExecutionListResponse(BaseModel):
    items: list[WorkflowExecutionRead]
    total: int
    limit: int
    offset: int
    stats: dict[str, int]
