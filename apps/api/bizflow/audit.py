from __future__ import annotations

import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from bizflow.context import get_correlation_id


MAX_AUDIT_ENTRIES = 5000

# Oldest entries fall off once the buffer is full.
audit_entries: deque[dict[str, Any]] = deque(maxlen=MAX_AUDIT_ENTRIES)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class AuditEntry:
    tenant_id: str
    actor_user_id: str
    entity_type: str
    entity_id: str
    action: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    correlation_id: str | None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: str = field(default_factory=_now)


def record(
    actor_user_id: str,
    tenant_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> AuditEntry:
    entry = AuditEntry(
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        before=before,
        after=after,
        correlation_id=correlation_id or get_correlation_id(),
    )
    audit_entries.append(asdict(entry))
    return entry


def entries_for(
    tenant_id: str,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> list[dict[str, Any]]:
    return [
        entry
        for entry in audit_entries
        if entry["tenant_id"] == tenant_id
        and (entity_type is None or entry["entity_type"] == entity_type)
        and (entity_id is None or entry["entity_id"] == entity_id)
    ]
