from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest
from openai import OpenAIError

from bizflow.ai.client import (
    OpenAIPredictionClient,
    StubPredictionClient,
    build_prediction_client,
    parse_json_prediction,
)
from bizflow.core.config import Settings
from bizflow.orchestration.errors import AIPredictionError


class FakeCompletions:
    def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _client(completions: FakeCompletions, **overrides: Any) -> OpenAIPredictionClient:
    settings = Settings(llm_model="gpt-test", llm_temperature=0.1, llm_max_tokens=321, **overrides)
    return OpenAIPredictionClient(settings, client=SimpleNamespace(chat=SimpleNamespace(completions=completions)))


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"isAnomaly": true, "confidence": 0.9}', {"isAnomaly": True, "confidence": 0.9}),
        ('```json\n{"category": "software"}\n```', {"category": "software"}),
        ("```\n{\"a\": 1}\n```", {"a": 1}),
        ("not json at all", {}),
        ("[1, 2, 3]", {}),
        ("", {}),
        (None, {}),
    ],
)
def test_parse_json_prediction(text: str | None, expected: dict[str, Any]) -> None:
    assert parse_json_prediction(text) == expected


def test_openai_client_requests_json_output() -> None:
    completions = FakeCompletions(content='{"isAnomaly": false, "confidence": 0.1}')
    client = _client(completions)

    result = client.detect_anomaly({"currentEvent": {"eventName": "finance.transaction.created"}, "recentEvents": []})

    assert result == {"isAnomaly": False, "confidence": 0.1}
    call = completions.calls[0]
    assert call["model"] == "gpt-test"
    assert call["temperature"] == 0.1
    assert call["max_tokens"] == 321
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0]["role"] == "system"
    assert "anomaly" in call["messages"][0]["content"].lower()
    assert "finance.transaction.created" in call["messages"][1]["content"]


def test_openai_client_uses_domain_prompt_for_events() -> None:
    completions = FakeCompletions(content='{"insights": []}')
    client = _client(completions)

    client.analyze_event("project", {"eventName": "project.task.completed"})
    client.analyze_event("unknown", {"eventName": "misc.thing"})

    assert "project management" in completions.calls[0]["messages"][0]["content"]
    assert completions.calls[1]["messages"][0]["content"] == "You are a business AI analyst. Analyze business events."


def test_openai_client_tolerates_malformed_replies() -> None:
    client = _client(FakeCompletions(content="The invoice looks fine."))

    assert client.analyze_invoice({"invoiceId": "inv_1"}) == {}


def test_openai_errors_become_prediction_errors() -> None:
    client = _client(FakeCompletions(error=OpenAIError("connection reset")))

    with pytest.raises(AIPredictionError) as exc_info:
        client.perform_analysis({"invoiceId": "inv_1"})

    assert exc_info.value.code == "AI_PREDICTION_FAILED"
    assert exc_info.value.details == {"operation": "perform_analysis"}
    assert "connection reset" in exc_info.value.message


def test_build_prediction_client_selects_provider() -> None:
    assert isinstance(build_prediction_client(Settings(ai_provider="stub")), StubPredictionClient)
    assert isinstance(build_prediction_client(Settings(ai_provider="openai", openai_api_key="sk-test")), OpenAIPredictionClient)

    with pytest.raises(RuntimeError):
        build_prediction_client(Settings(ai_provider="openai", openai_api_key=None))
    with pytest.raises(ValueError):
        build_prediction_client(Settings(ai_provider="mystery"))


def test_stub_client_never_reports_anomalies() -> None:
    stub = StubPredictionClient()

    assert stub.detect_anomaly({})["isAnomaly"] is False
    assert 0 <= stub.analyze_invoice({})["confidence"] <= 1
