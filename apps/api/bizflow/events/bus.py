from __future__ import annotations

import fnmatch
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from sqlalchemy.orm import Session

from bizflow.context import get_correlation_id, get_dispatch_depth, nested_dispatch
from bizflow.core.serialization import json_safe
from bizflow.events.models import Event, EventHandlerExecution
from bizflow.metrics import observe_event_guardrail_block, observe_event_handler, observe_event_published


logger = logging.getLogger("bizflow.events")
tracer = trace.get_tracer("bizflow.events.bus")

EventHandler = Callable[[Session, Event], dict[str, Any] | None]

# Mirror of every published envelope, cleared by tests.
published_events: list[dict[str, Any]] = []


@dataclass(slots=True)
class HandlerRegistration:
    name: str
    module: str
    priority: int
    handler: EventHandler


def pattern_matches(pattern: str, event_name: str) -> bool:
    """Exact names, or shell-style wildcards where `*` spans dots (`finance.*`, `*`)."""
    if pattern == event_name:
        return True
    return "*" in pattern and fnmatch.fnmatchcase(event_name, pattern)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventBus:
    """Persisting in-process bus.

    Every publish is stored as an `Event` row before dispatch. Matching handlers
    run synchronously in ascending priority, each recorded as an
    `EventHandlerExecution`. Nested publishes from inside a handler run one level
    deeper, and publishes at `max_depth` or beyond are stored as BLOCKED without
    dispatch.
    """

    def __init__(self, max_depth: int = 3) -> None:
        self.max_depth = max_depth
        self._registrations: list[tuple[str, HandlerRegistration]] = []

    def register_handler(self, pattern: str, registration: HandlerRegistration) -> None:
        self._registrations.append((pattern, registration))
        logger.info(
            "event_handler_registered",
            extra={"handler": registration.name, "handler_module": registration.module, "event_name": pattern},
        )

    def registrations(self) -> list[tuple[str, HandlerRegistration]]:
        return list(self._registrations)

    def matching_handlers(self, event_name: str) -> list[HandlerRegistration]:
        matches = [registration for pattern, registration in self._registrations if pattern_matches(pattern, event_name)]
        # sorted() is stable, so equal priorities keep registration order.
        return sorted(matches, key=lambda registration: registration.priority)

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
        tenant_id = str(metadata.get("tenantId") or "default")
        resolved_correlation_id = (
            correlation_id
            or metadata.get("correlationId")
            or get_correlation_id()
            or str(uuid.uuid4())
        )
        depth = get_dispatch_depth()
        event_metadata = {
            **metadata,
            "tenantId": tenant_id,
            "correlationId": resolved_correlation_id,
            "timestamp": metadata.get("timestamp") or _utcnow().isoformat(),
            "depth": depth,
        }

        event = Event(
            tenant_id=tenant_id,
            event_name=event_name,
            event_type=event_type,
            priority=priority,
            source=metadata.get("source"),
            target=target,
            payload=json_safe(payload),
            event_metadata=json_safe(event_metadata),
            correlation_id=resolved_correlation_id,
            status="PENDING",
        )
        session.add(event)
        session.commit()
        event_id = event.id
        published_events.append(
            {
                "event_id": str(event_id),
                "event_name": event_name,
                "event_type": event_type,
                "tenant_id": tenant_id,
                "payload": event.payload,
                "metadata": event.event_metadata,
                "correlation_id": resolved_correlation_id,
            }
        )

        if depth >= self.max_depth:
            event.status = "BLOCKED"
            event.error_log = f"event depth {depth} exceeds limit {self.max_depth}"
            event.processed_at = _utcnow()
            session.commit()
            logger.warning(
                "event_guardrail_blocked",
                extra={
                    "event_id": str(event_id),
                    "event_name": event_name,
                    "tenant_id": tenant_id,
                    "event_depth": depth,
                    "max_depth": self.max_depth,
                },
            )
            observe_event_guardrail_block("MAX_DEPTH")
            observe_event_published("BLOCKED")
            return event_id

        event.status = "PROCESSING"
        session.commit()

        first_error: str | None = None
        with tracer.start_as_current_span("events.dispatch") as span:
            span.set_attribute("event_name", event_name)
            span.set_attribute("tenant_id", tenant_id)
            span.set_attribute("correlation_id", resolved_correlation_id)
            with nested_dispatch():
                for registration in self.matching_handlers(event_name):
                    error = self._invoke(session, event_id, tenant_id, registration)
                    if error is not None and first_error is None:
                        first_error = error

        event = session.get(Event, event_id)
        if event is None:
            raise LookupError(f"event {event_id} disappeared during dispatch")
        event.status = "FAILED" if first_error is not None else "COMPLETED"
        event.error_log = first_error
        event.processed_at = _utcnow()
        session.commit()
        observe_event_published(event.status)
        logger.info(
            "event_processed",
            extra={"event_id": str(event_id), "event_name": event_name, "tenant_id": tenant_id, "status": event.status},
        )
        return event_id

    def _invoke(
        self,
        session: Session,
        event_id: uuid.UUID,
        tenant_id: str,
        registration: HandlerRegistration,
    ) -> str | None:
        execution = EventHandlerExecution(
            event_id=event_id,
            tenant_id=tenant_id,
            handler_name=registration.name,
            module=registration.module,
            status="EXECUTING",
        )
        session.add(execution)
        session.commit()
        execution_id = execution.id

        started = time.perf_counter()
        error: str | None = None
        result: dict[str, Any] | None = None
        with tracer.start_as_current_span(f"events.handler.{registration.name}"):
            try:
                event = session.get(Event, event_id)
                if event is None:
                    raise LookupError(f"event {event_id} not found")
                result = registration.handler(session, event)
            except Exception as exc:
                session.rollback()
                error = str(exc) or exc.__class__.__name__
                logger.exception(
                    "event_handler_failed",
                    extra={"event_id": str(event_id), "handler": registration.name, "error": error},
                )

        execution = session.get(EventHandlerExecution, execution_id)
        if execution is None:
            raise LookupError(f"handler execution {execution_id} not found")
        execution.status = "FAILED" if error is not None else "COMPLETED"
        execution.error_message = error
        execution.result = json_safe(result) if isinstance(result, dict) else None
        execution.finished_at = _utcnow()
        execution.execution_time_ms = int((time.perf_counter() - started) * 1000)
        session.commit()
        observe_event_handler(registration.name, execution.status)
        return error
