from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from openai import OpenAI, OpenAIError
from opentelemetry import trace

from bizflow.context import get_correlation_id
from bizflow.core.config import Settings
from bizflow.orchestration.errors import AIPredictionError


logger = logging.getLogger("bizflow.ai")
tracer = trace.get_tracer("bizflow.ai.client")

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_prediction(text: str | None) -> dict[str, Any]:
    """Parse a model reply into a dict.

    Code fences are stripped. Anything that is not a JSON object yields `{}`.
    """
    if not text:
        return {}
    cleaned = _CODE_FENCE_RE.sub("", text.strip()).strip()
    if not cleaned:
        return {}
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("ai_response_malformed", extra={"error": cleaned[:200]})
        return {}
    return parsed if isinstance(parsed, dict) else {}


class PredictionClient(Protocol):
    def analyze_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]: ...

    def optimize_project(self, project: dict[str, Any]) -> dict[str, Any]: ...

    def detect_anomaly(self, context: dict[str, Any]) -> dict[str, Any]: ...

    def analyze_event(self, domain: str, event: dict[str, Any]) -> dict[str, Any]: ...

    def perform_analysis(self, config: dict[str, Any]) -> dict[str, Any]: ...


_EVENT_ANALYSTS = {
    "finance": (
        "You are a financial AI analyst. Analyze financial events and provide strategic insights.",
        "insights, riskAssessment, recommendations, impactAnalysis, confidence (0-1)",
    ),
    "project": (
        "You are a project management AI expert. Analyze project events and provide management insights.",
        "insights, statusAssessment, recommendations, riskFactors, confidence (0-1)",
    ),
    "analytics": (
        "You are a data analytics AI expert. Analyze data events and provide analytical insights.",
        "insights, trendAnalysis, recommendations, predictiveInsights, confidence (0-1)",
    ),
}


class OpenAIPredictionClient:
    def __init__(self, settings: Settings, client: OpenAI | None = None) -> None:
        if client is None:
            if not settings.openai_api_key:
                raise RuntimeError("OPENAI_API_KEY is not configured")
            client = OpenAI(api_key=settings.openai_api_key)
        self.client = client
        self.model = settings.llm_model
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens

    def analyze_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]:
        return self._complete_json(
            "analyze_invoice",
            "You are a financial AI analyst. Analyze invoices and provide intelligent categorization and insights.",
            "Analyze this invoice data and provide intelligent categorization and insights.",
            {"Invoice Data": invoice},
            "category (e.g. office_supplies, marketing, software, consulting), confidence (0-1), "
            "insights, anomalies, recommendations",
        )

    def optimize_project(self, project: dict[str, Any]) -> dict[str, Any]:
        return self._complete_json(
            "optimize_project",
            "You are a project management AI expert. Analyze projects and provide optimization recommendations.",
            "Analyze this project data and provide optimization recommendations.",
            {"Project Data": project},
            "summary, recommendations, risks, resourceOptimization, timeline, confidence (0-1)",
        )

    def detect_anomaly(self, context: dict[str, Any]) -> dict[str, Any]:
        return self._complete_json(
            "detect_anomaly",
            "You are an AI anomaly detection expert. Identify unusual patterns and potential issues in business data.",
            "Analyze this event data for anomalies and unusual patterns.",
            {
                "Current Event": context.get("currentEvent"),
                "Recent Events": context.get("recentEvents"),
                "Event Patterns": context.get("patterns"),
            },
            "isAnomaly (boolean), confidence (0-1), type (volume, timing, pattern, value), description, "
            "severity (LOW, MEDIUM, HIGH, CRITICAL), possibleCauses, recommendedActions",
        )

    def analyze_event(self, domain: str, event: dict[str, Any]) -> dict[str, Any]:
        system_prompt, fields = _EVENT_ANALYSTS.get(
            domain,
            ("You are a business AI analyst. Analyze business events.", "insights, recommendations, confidence (0-1)"),
        )
        return self._complete_json(
            f"analyze_{domain}_event",
            system_prompt,
            f"Analyze this {domain} event and provide insights.",
            {"Event": event},
            fields,
        )

    def perform_analysis(self, config: dict[str, Any]) -> dict[str, Any]:
        return self._complete_json(
            "perform_analysis",
            "You are an AI analysis expert. Perform detailed analysis based on provided configurations and data.",
            "Perform AI analysis based on this configuration.",
            {"Configuration": config},
            "results, insights, recommendations, confidence (0-1), metadata",
        )

    def _complete_json(
        self,
        operation: str,
        system_prompt: str,
        instruction: str,
        sections: dict[str, Any],
        fields: str,
    ) -> dict[str, Any]:
        body = "\n\n".join(f"{title}: {json.dumps(value, indent=2, default=str)}" for title, value in sections.items())
        prompt = f"{instruction}\n\n{body}\n\nReturn a JSON object with: {fields}.\nRespond with raw JSON only."

        with tracer.start_as_current_span(f"ai.{operation}") as span:
            span.set_attribute("ai.model", self.model)
            span.set_attribute("correlation_id", get_correlation_id() or "")
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    response_format={"type": "json_object"},
                )
            except OpenAIError as exc:
                logger.warning("ai_request_failed", extra={"reason": operation, "error": str(exc)})
                raise AIPredictionError(f"AI request failed: {exc}", {"operation": operation}) from exc

            text = response.choices[0].message.content if response.choices else None
            return parse_json_prediction(text)


class StubPredictionClient:
    """Deterministic, neutral predictions for local runs without a model."""

    def analyze_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]:
        return {"category": "uncategorized", "confidence": 0.5, "insights": [], "anomalies": [], "recommendations": []}

    def optimize_project(self, project: dict[str, Any]) -> dict[str, Any]:
        return {
            "summary": "No optimization suggested",
            "recommendations": [],
            "risks": [],
            "resourceOptimization": [],
            "timeline": [],
            "confidence": 0.5,
        }

    def detect_anomaly(self, context: dict[str, Any]) -> dict[str, Any]:
        return {
            "isAnomaly": False,
            "confidence": 0.0,
            "type": "none",
            "description": "",
            "severity": "LOW",
            "possibleCauses": [],
            "recommendedActions": [],
        }

    def analyze_event(self, domain: str, event: dict[str, Any]) -> dict[str, Any]:
        return {"status": "processed", "domain": domain, "insights": [], "confidence": 0.5}

    def perform_analysis(self, config: dict[str, Any]) -> dict[str, Any]:
        return {"results": {}, "insights": [], "recommendations": [], "confidence": 0.5, "metadata": {"provider": "stub"}}


def build_prediction_client(settings: Settings) -> PredictionClient:
    provider = settings.ai_provider.lower()
    if provider == "openai":
        return OpenAIPredictionClient(settings)
    if provider == "stub":
        return StubPredictionClient()
    raise ValueError(f"Unknown AI provider: {settings.ai_provider}")
