from __future__ import annotations

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
from bizflow.events import bus
from bizflow.main import app
from bizflow.orchestration.orchestrator import Orchestrator, build_orchestrator


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
    bus.published_events.clear()
    yield
    get_settings.cache_clear()
    bus.published_events.clear()


@pytest.fixture()
def orchestrator() -> Orchestrator:
    return build_orchestrator(
        Settings(auto_run_workflow_jobs=True, automation_level=0.9),
        ai_client=StubPredictionClient(),
    )


@pytest.fixture()
def permissions() -> set[str]:
    return {"orchestration.read", "orchestration.events.publish"}


@pytest.fixture()
def client(db_session: Session, orchestrator: Orchestrator, permissions: set[str]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            tenant_id=request.headers.get("x-tenant-id", "t1"),
            permissions=permissions,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_stats_reflect_tenant_activity(client: TestClient) -> None:
    client.post("/api/events", json={"event_name": "finance.transaction.created", "payload": {"amount": 1}})
    client.post("/api/events", json={"event_name": "system.heartbeat", "payload": {}})
    client.post("/api/events", json={"event_name": "finance.transaction.created"}, headers={"X-Tenant-Id": "t2"})

    response = client.get("/api/orchestration/stats")

    assert response.status_code == 200
    stats = response.json()
    assert stats["total_events"] == 2
    assert stats["processed_events"] == 2
    assert stats["failed_events"] == 0
    assert stats["blocked_events"] == 0
    assert stats["active_workflows"] == 0
    assert stats["registered_handlers"] == 6
    assert stats["automation_score"] == 0.9
    assert stats["avg_processing_time_ms"] >= 0.0


def test_handlers_are_listed_with_priorities(client: TestClient) -> None:
    response = client.get("/api/orchestration/handlers")

    assert response.status_code == 200
    handlers = {item["name"]: item for item in response.json()}
    assert set(handlers) == {
        "finance-orchestrator",
        "project-orchestrator",
        "analytics-orchestrator",
        "ai-orchestrator",
        "system-orchestrator",
        "anomaly-detector",
    }
    assert handlers["anomaly-detector"]["pattern"] == "*"
    assert handlers["anomaly-detector"]["priority"] == 100
    assert handlers["ai-orchestrator"]["priority"] == 5
    assert handlers["system-orchestrator"]["module"] == "SYSTEM"


@pytest.mark.parametrize("permissions", [set()])
def test_orchestration_endpoints_require_read_permission(client: TestClient) -> None:
    stats = client.get("/api/orchestration/stats")
    handlers = client.get("/api/orchestration/handlers")

    assert stats.status_code == 403
    assert stats.json()["code"] == "orchestration_stats_failed"
    assert handlers.status_code == 403
    assert handlers.json()["code"] == "orchestration_handlers_failed"
