from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from bizflow.insights.models import AIInsight, ConceptDrift, RealTimeNotification
from bizflow.insights.schemas import (
    ConceptDriftCreate,
    ConceptDriftRead,
    InsightCreate,
    InsightRead,
    InsightUpdate,
    NotificationCreate,
    NotificationRead,
    NotificationUpdate,
)
from bizflow.insights.service import InsightService
from bizflow.orchestration.errors import UnsupportedMutationError


MutationHandler = Callable[[Session, str, dict[str, Any], dict[str, Any]], dict[str, Any]]


class RowTarget(BaseModel):
    id: uuid.UUID


class MutationRegistry:
    """Closed table of the entity/operation pairs a DATABASE_UPDATE step may run.

    Every handler validates its data, scopes reads and writes to the execution's
    tenant and returns the JSON form of the affected row.
    """

    def __init__(self, insight_service: InsightService) -> None:
        self.insight_service = insight_service
        self._handlers: dict[tuple[str, str], MutationHandler] = {
            ("ai_insight", "create"): self._create_insight,
            ("ai_insight", "update"): self._update_insight,
            ("notification", "create"): self._create_notification,
            ("notification", "update"): self._update_notification,
            ("concept_drift", "create"): self._create_concept_drift,
        }

    def supported(self) -> list[tuple[str, str]]:
        return sorted(self._handlers)

    def apply(
        self,
        session: Session,
        tenant_id: str,
        model: str,
        operation: str,
        data: dict[str, Any],
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        handler = self._handlers.get((model, operation))
        if handler is None:
            raise UnsupportedMutationError(model, operation)
        return handler(session, tenant_id, data, where or {})

    def _create_insight(self, session: Session, tenant_id: str, data: dict[str, Any], where: dict[str, Any]) -> dict[str, Any]:
        insight = self.insight_service.create_insight(session, tenant_id, InsightCreate.model_validate(data))
        return InsightRead.model_validate(insight).model_dump(mode="json")

    def _update_insight(self, session: Session, tenant_id: str, data: dict[str, Any], where: dict[str, Any]) -> dict[str, Any]:
        target = RowTarget.model_validate(where)
        changes = InsightUpdate.model_validate(data).model_dump(exclude_unset=True)
        insight = session.scalar(select(AIInsight).where(AIInsight.id == target.id, AIInsight.tenant_id == tenant_id))
        if insight is None:
            raise LookupError(f"ai_insight {target.id} not found")
        for field_name, value in changes.items():
            setattr(insight, field_name, value)
        session.flush()
        return InsightRead.model_validate(insight).model_dump(mode="json")

    def _create_notification(self, session: Session, tenant_id: str, data: dict[str, Any], where: dict[str, Any]) -> dict[str, Any]:
        notification = self.insight_service.send_notification(session, tenant_id, NotificationCreate.model_validate(data))
        return NotificationRead.model_validate(notification).model_dump(mode="json")

    def _update_notification(self, session: Session, tenant_id: str, data: dict[str, Any], where: dict[str, Any]) -> dict[str, Any]:
        target = RowTarget.model_validate(where)
        changes = NotificationUpdate.model_validate(data).model_dump(exclude_unset=True)
        notification = session.scalar(
            select(RealTimeNotification).where(
                RealTimeNotification.id == target.id,
                RealTimeNotification.tenant_id == tenant_id,
            )
        )
        if notification is None:
            raise LookupError(f"notification {target.id} not found")
        for field_name, value in changes.items():
            setattr(notification, field_name, value)
        if changes.get("is_read") and notification.read_at is None:
            notification.read_at = datetime.now(timezone.utc)
        session.flush()
        return NotificationRead.model_validate(notification).model_dump(mode="json")

    def _create_concept_drift(self, session: Session, tenant_id: str, data: dict[str, Any], where: dict[str, Any]) -> dict[str, Any]:
        drift = ConceptDrift(tenant_id=tenant_id, **ConceptDriftCreate.model_validate(data).model_dump())
        session.add(drift)
        session.flush()
        return ConceptDriftRead.model_validate(drift).model_dump(mode="json")
