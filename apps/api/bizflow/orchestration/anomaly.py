from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from sqlalchemy import select
from sqlalchemy.orm import Session

from bizflow.ai.client import PredictionClient
from bizflow.core.config import Settings
from bizflow.events.models import Event
from bizflow.insights.schemas import InsightCreate, NotificationCreate
from bizflow.insights.service import InsightService
from bizflow.metrics import observe_anomaly_outcome

if TYPE_CHECKING:
    from bizflow.events.bus import EventBus


logger = logging.getLogger("bizflow.orchestration.anomaly")
tracer = trace.get_tracer("bizflow.orchestration.anomaly")

ANOMALY_EVENT_NAME = "analytics.anomaly.detected"
ANOMALY_SOURCE = "ai-anomaly-detector"
_SEVERITIES = {"LOW", "MEDIUM", "HIGH", "CRITICAL"}


def _flag(value: Any) -> bool:
    """Only a JSON `true` or the string "true" counts."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def event_snapshot(event: Event) -> dict[str, Any]:
    return {
        "id": str(event.id),
        "eventName": event.event_name,
        "eventType": event.event_type,
        "priority": event.priority,
        "source": event.source,
        "payload": event.payload,
        "status": event.status,
        "createdAt": event.created_at.isoformat() if event.created_at else None,
    }


def event_patterns(events: list[Event]) -> dict[str, Any]:
    counts = Counter(event.event_name for event in events)
    return {
        "totalEvents": len(events),
        "distinctEventNames": len(counts),
        "eventNameCounts": dict(counts.most_common()),
    }


class AnomalyDetector:
    """Catch-all handler asking the AI client whether an event is unusual.

    Never raises: any failure rolls back the session and is reported as
    `{"status": "error", "error": ...}`.
    """

    def __init__(
        self,
        settings: Settings,
        ai_client: PredictionClient,
        insight_service: InsightService,
        event_bus: EventBus,
    ) -> None:
        self.settings = settings
        self.ai_client = ai_client
        self.insight_service = insight_service
        self.event_bus = event_bus

    def __call__(self, session: Session, event: Event) -> dict[str, Any]:
        return self.detect(session, event)

    def detect(self, session: Session, event: Event) -> dict[str, Any]:
        if not self.settings.ai_enabled:
            return {"status": "skipped"}

        try:
            # Its own follow-up events are never re-analysed.
            if event.event_name == ANOMALY_EVENT_NAME and event.source == ANOMALY_SOURCE:
                return {"status": "skipped", "reason": "derived anomaly event"}

            with tracer.start_as_current_span("anomaly.detect") as span:
                span.set_attribute("event_name", event.event_name)
                span.set_attribute("tenant_id", event.tenant_id)
                return self._detect(session, event)
        except Exception as exc:
            session.rollback()
            message = str(exc) or exc.__class__.__name__
            observe_anomaly_outcome("error")
            logger.exception("anomaly_detection_failed", extra={"error": message})
            return {"status": "error", "error": message}

    def _detect(self, session: Session, event: Event) -> dict[str, Any]:
        tenant_id = event.tenant_id
        window_start = datetime.now(timezone.utc) - timedelta(hours=self.settings.anomaly_history_window_hours)
        recent_events = list(
            session.scalars(
                select(Event)
                .where(Event.tenant_id == tenant_id, Event.created_at >= window_start)
                .order_by(Event.created_at.desc())
                .limit(self.settings.anomaly_history_limit)
            )
        )

        analysis = self.ai_client.detect_anomaly(
            {
                "currentEvent": event_snapshot(event),
                "recentEvents": [event_snapshot(row) for row in recent_events[: self.settings.anomaly_prompt_limit]],
                "patterns": event_patterns(recent_events),
            }
        )
        is_anomaly = _flag(analysis.get("isAnomaly"))
        confidence = float(analysis.get("confidence", 0.0) or 0.0)

        if not is_anomaly or confidence < self.settings.anomaly_threshold:
            observe_anomaly_outcome("below_threshold" if is_anomaly else "normal")
            return {"status": "analyzed", "isAnomaly": is_anomaly, "confidence": confidence}

        severity = str(analysis.get("severity") or "HIGH").upper()
        if severity not in _SEVERITIES:
            severity = "HIGH"
        description = str(analysis.get("description") or f"Unusual {event.event_name} event")
        event_id = str(event.id)
        user_id = (event.event_metadata or {}).get("userId")

        insight = self.insight_service.create_insight(
            session,
            tenant_id,
            InsightCreate(
                category="ANALYTICS",
                type="ANOMALY",
                title="Anomaly Detected",
                description=description,
                severity=severity,
                data={**analysis, "eventId": event_id, "detectionTime": datetime.now(timezone.utc).isoformat()},
                confidence=confidence,
                resource_type="event",
                resource_id=event_id,
                is_actionable=True,
            ),
        )
        self.insight_service.send_notification(
            session,
            tenant_id,
            NotificationCreate(
                title="Anomaly Detected",
                message=description,
                type="WARNING",
                severity="HIGH",
                data={"insightId": str(insight.id), "eventId": event_id, "confidence": confidence},
            ),
        )
        session.commit()

        self.event_bus.publish_event(
            session,
            ANOMALY_EVENT_NAME,
            "AI_EVENT",
            {
                "originalEventId": event_id,
                "anomalyType": analysis.get("type"),
                "confidence": confidence,
                "severity": severity,
                "description": description,
                "insightId": str(insight.id),
            },
            {"tenantId": tenant_id, "userId": user_id, "source": ANOMALY_SOURCE},
            priority="HIGH",
            correlation_id=event.correlation_id,
        )
        observe_anomaly_outcome("raised")
        logger.warning(
            "anomaly_detected",
            extra={
                "event_id": event_id,
                "event_name": event.event_name,
                "tenant_id": tenant_id,
                "confidence": confidence,
                "threshold": self.settings.anomaly_threshold,
            },
        )
        return {"status": "analyzed", "isAnomaly": True, "confidence": confidence}
