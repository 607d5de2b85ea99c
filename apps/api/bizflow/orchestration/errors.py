from __future__ import annotations

from typing import Any


class OrchestrationError(Exception):
    """Base error for event routing and workflow execution failures."""

    code = "ORCHESTRATION_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class WorkflowDefinitionNotFoundError(OrchestrationError):
    """Raised when no active definition exists for the tenant and name."""

    code = "WORKFLOW_DEFINITION_NOT_FOUND"

    def __init__(self, tenant_id: str, name: str) -> None:
        super().__init__(
            f"Workflow definition '{name}' not found",
            {"tenant_id": tenant_id, "workflow_name": name},
        )
        self.tenant_id = tenant_id
        self.name = name


class WorkflowCapacityExceededError(OrchestrationError):
    code = "WORKFLOW_CAPACITY_EXCEEDED"

    def __init__(self, tenant_id: str, running: int, limit: int) -> None:
        super().__init__(
            "Too many running workflow executions",
            {"tenant_id": tenant_id, "running": running, "limit": limit},
        )
        self.running = running
        self.limit = limit


class UnsupportedMutationError(OrchestrationError):
    code = "UNSUPPORTED_MUTATION"

    def __init__(self, model: str, operation: str) -> None:
        super().__init__(
            f"Unsupported database update: {model}.{operation}",
            {"model": model, "operation": operation},
        )
        self.model = model
        self.operation = operation


class AIPredictionError(OrchestrationError):
    code = "AI_PREDICTION_FAILED"
