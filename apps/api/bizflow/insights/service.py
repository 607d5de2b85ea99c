from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from bizflow.insights.models import AIInsight, RealTimeNotification
from bizflow.insights.schemas import InsightCreate, InsightRead, NotificationCreate, NotificationRead


logger = logging.getLogger("bizflow.insights")


@dataclass(slots=True)
class InsightService:
    """Tenant scoped side-effect records raised by handlers and workflow steps.

    Writes are flushed, not committed; the caller owns the transaction.
    """

    def create_insight(self, session: Session, tenant_id: str, dto: InsightCreate) -> AIInsight:
        insight = AIInsight(tenant_id=tenant_id, **dto.model_dump())
        session.add(insight)
        session.flush()
        logger.info(
            "insight_created",
            extra={"tenant_id": tenant_id, "status": dto.type, "confidence": dto.confidence},
        )
        return insight

    def send_notification(self, session: Session, tenant_id: str, dto: NotificationCreate) -> RealTimeNotification:
        notification = RealTimeNotification(tenant_id=tenant_id, **dto.model_dump())
        session.add(notification)
        session.flush()
        return notification

    def list_insights(
        self,
        session: Session,
        tenant_id: str,
        *,
        category: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[InsightRead]:
        stmt = select(AIInsight).where(AIInsight.tenant_id == tenant_id)
        if category:
            stmt = stmt.where(AIInsight.category == category)
        stmt = stmt.order_by(AIInsight.created_at.desc()).limit(limit).offset(offset)
        return [InsightRead.model_validate(row) for row in session.scalars(stmt)]

    def list_notifications(
        self,
        session: Session,
        tenant_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[NotificationRead]:
        stmt = select(RealTimeNotification).where(RealTimeNotification.tenant_id == tenant_id)
        if unread_only:
            stmt = stmt.where(RealTimeNotification.is_read.is_(False))
        stmt = stmt.order_by(RealTimeNotification.created_at.desc()).limit(limit).offset(offset)
        return [NotificationRead.model_validate(row) for row in session.scalars(stmt)]

    def mark_notification_read(self, session: Session, tenant_id: str, notification_id: uuid.UUID) -> NotificationRead:
        notification = session.scalar(
            select(RealTimeNotification).where(
                RealTimeNotification.id == notification_id,
                RealTimeNotification.tenant_id == tenant_id,
            )
        )
        if notification is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="notification not found")
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
            session.add(notification)
            session.commit()
            session.refresh(notification)
        return NotificationRead.model_validate(notification)


insight_service = InsightService()
