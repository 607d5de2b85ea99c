from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


InsightCategory = Literal["FINANCE", "PROJECT", "ANALYTICS", "OPERATIONS", "SYSTEM"]
InsightType = Literal["OPTIMIZATION", "ANOMALY", "PREDICTION", "RECOMMENDATION", "RISK"]
Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]
NotificationType = Literal["INFO", "SUCCESS", "WARNING", "ERROR"]
NotificationSeverity = Literal["INFO", "LOW", "MEDIUM", "HIGH", "CRITICAL"]
DriftType = Literal["DATA", "CONCEPT", "PERFORMANCE"]


class InsightCreate(BaseModel):
    category: InsightCategory
    type: InsightType
    title: str = Field(min_length=1)
    description: str = ""
    severity: Severity = "LOW"
    data: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(ge=0, le=1)
    resource_type: str | None = None
    resource_id: str | None = None
    is_actionable: bool = False


class InsightUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    severity: Severity | None = None
    data: dict[str, Any] | None = None
    confidence: float | None = Field(default=None, ge=0, le=1)
    is_actionable: bool | None = None


class InsightRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    category: str
    type: str
    title: str
    description: str
    severity: str
    data: dict[str, Any]
    confidence: float
    resource_type: str | None
    resource_id: str | None
    is_actionable: bool
    created_at: datetime


class NotificationCreate(BaseModel):
    title: str = Field(min_length=1)
    message: str = ""
    type: NotificationType = "INFO"
    severity: NotificationSeverity = "INFO"
    data: dict[str, Any] | None = None
    user_id: str | None = None
    is_persistent: bool = True


class NotificationUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    message: str | None = None
    severity: NotificationSeverity | None = None
    data: dict[str, Any] | None = None
    is_read: bool | None = None


class NotificationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    user_id: str | None
    title: str
    message: str
    type: str
    severity: str
    data: dict[str, Any] | None
    is_persistent: bool
    is_read: bool
    created_at: datetime
    read_at: datetime | None


class ConceptDriftCreate(BaseModel):
    model_name: str = Field(min_length=1)
    drift_type: DriftType
    drift_score: float = Field(ge=0, le=1)
    severity: Severity = "LOW"
    details: dict[str, Any] = Field(default_factory=dict)


class ConceptDriftRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    model_name: str
    drift_type: str
    drift_score: float
    severity: str
    details: dict[str, Any]
    detected_at: datetime
