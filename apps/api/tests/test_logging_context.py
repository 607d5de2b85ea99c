from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bizflow.ai.client import StubPredictionClient
from bizflow.api.deps import ActorUser, get_current_user, get_orchestrator
from bizflow.core.config import Settings, get_settings
from bizflow.core.database import Base, get_db
from bizflow.logging import JsonLogFormatter
from bizflow.main import app
from bizflow.middleware.rate_limit import reset_rate_limiter
from bizflow.orchestration.orchestrator import build_orchestrator


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    orchestrator = build_orchestrator(Settings(auto_run_workflow_jobs=True), ai_client=StubPredictionClient())

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            tenant_id="t1",
            permissions={
                "orchestration.events.publish",
                "orchestration.read",
                "orchestration.workflows.manage",
                "orchestration.workflows.execute",
            },
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    path = f"/api/events/{uuid.uuid4()}"
    response = client.get(path, headers={"X-Correlation-Id": "abc-123", "X-Tenant-Id": "t1"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "bizflow.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/events/{id}"
        and getattr(record, "status_code", None) == 404
        and getattr(record, "tenant_id", None) == "t1"
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_event_and_workflow_context(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    definition = client.post(
        "/api/workflows/definitions",
        json={"name": "notify-only", "steps": [{"name": "Notify", "type": "NOTIFICATION", "config": {"title": "Hi"}}]},
    )
    assert definition.status_code == 201

    started = client.post(
        "/api/workflows/executions",
        json={"workflow_name": "notify-only"},
        headers={"X-Correlation-Id": "abc-456"},
    )
    assert started.status_code == 202
    execution_id = started.json()["execution_id"]

    step_records = [record for record in caplog.records if record.name == "bizflow.workflows"]
    assert any(
        record.getMessage() == "workflow_step_completed"
        and getattr(record, "execution_id", None) == execution_id
        and getattr(record, "step_number", None) == 1
        and getattr(record, "correlation_id", None) == "abc-456"
        for record in step_records
    )

    published = client.post(
        "/api/events",
        json={"event_name": "finance.transaction.created", "payload": {}},
        headers={"X-Correlation-Id": "abc-789"},
    )
    assert published.status_code == 201

    event_records = [record for record in caplog.records if record.getMessage() == "event_processed"]
    assert any(
        getattr(record, "event_id", None) == published.json()["event_id"]
        and getattr(record, "status", None) == "COMPLETED"
        and getattr(record, "correlation_id", None) == "abc-789"
        for record in event_records
    )


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "bizflow.workflows",
            "levelname": "WARNING",
            "msg": "workflow_step_failed",
            "correlation_id": "corr-fmt",
            "execution_id": "exec-1",
            "step_number": 2,
            "error": "x" * 600,
            "password": "hunter2",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["logger"] == "bizflow.workflows"
    assert payload["service"] == "bizflow-api"
    assert payload["msg"] == "workflow_step_failed"
    assert payload["correlation_id"] == "corr-fmt"
    assert payload["fields"]["execution_id"] == "exec-1"
    assert payload["fields"]["step_number"] == 2
    assert len(payload["fields"]["error"]) == 500
    assert "password" not in payload["fields"]


def test_lifespan_starts_with_info_logging(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    with TestClient(app) as test_client:
        response = test_client.get("/health")

    assert response.status_code == 200
    assert response.json()["registered_handlers"] == 6
    registered = [record for record in caplog.records if record.getMessage() == "event_handler_registered"]
    assert {getattr(record, "handler_module", None) for record in registered} == {
        "FINANCE",
        "PROJECT",
        "ANALYTICS",
        "AI",
        "SYSTEM",
    }
    assert any(record.getMessage() == "orchestrator_started" for record in caplog.records)
