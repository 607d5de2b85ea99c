from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from bizflow.ai.client import StubPredictionClient
from bizflow.api.deps import get_orchestrator
from bizflow.core.config import Settings, get_settings
from bizflow.core.database import Base, get_db
from bizflow.events import bus
from bizflow.main import app
from bizflow.middleware.rate_limit import reset_rate_limiter
from bizflow.orchestration.orchestrator import build_orchestrator


JWT_SECRET = "test-secret"


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
    monkeypatch.setenv("JWT_SECRET", JWT_SECRET)
    get_settings.cache_clear()
    reset_rate_limiter()
    bus.published_events.clear()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()
    bus.published_events.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    orchestrator = build_orchestrator(Settings(auto_run_workflow_jobs=True), ai_client=StubPredictionClient())

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _token(**claims: object) -> dict[str, str]:
    return {"Authorization": f"Bearer {jwt.encode(claims, JWT_SECRET, algorithm='HS256')}"}


def test_me_reads_token_claims(client: TestClient) -> None:
    response = client.get("/me", headers=_token(sub="user-7", roles=["orchestration.read"], tenant_id="acme"))

    assert response.status_code == 200
    assert response.json() == {"sub": "user-7", "roles": ["orchestration.read"], "tenant_id": "acme"}


def test_invalid_or_missing_token_is_anonymous(client: TestClient) -> None:
    missing = client.get("/me")
    forged = client.get("/me", headers={"Authorization": "Bearer not-a-token"})

    assert missing.json() == {"sub": "anonymous", "roles": ["guest"], "tenant_id": None}
    assert forged.json() == missing.json()


def test_token_tenant_scopes_published_events(client: TestClient) -> None:
    headers = {
        **_token(sub="user-7", roles=["orchestration.events.publish", "orchestration.read"], tenant_id="acme"),
        "X-Tenant-Id": "someone-else",
    }

    published = client.post("/api/events", json={"event_name": "system.ping"}, headers=headers)

    assert published.status_code == 201
    assert bus.published_events[-1]["tenant_id"] == "acme"
    assert bus.published_events[-1]["metadata"]["userId"] == "user-7"
    assert client.get("/api/events", headers=headers).json()["total"] == 1


def test_guest_cannot_publish(client: TestClient) -> None:
    response = client.post("/api/events", json={"event_name": "system.ping"})

    assert response.status_code == 403
    assert response.json()["message"] == "Missing permission: orchestration.events.publish"
