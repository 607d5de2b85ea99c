from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

events_published_total = Counter(
    "bizflow_events_published_total",
    "Total published events by final status",
    ["status"],
)

event_handler_executions_total = Counter(
    "bizflow_event_handler_executions_total",
    "Total event handler invocations by handler and status",
    ["handler", "status"],
)

event_guardrail_blocks_total = Counter(
    "bizflow_event_guardrail_blocks_total",
    "Total events blocked by the nested publish guardrail",
    ["reason"],
)

workflow_executions_total = Counter(
    "bizflow_workflow_executions_total",
    "Total finished workflow executions by status",
    ["workflow_name", "status"],
)

workflow_execution_duration_seconds = Histogram(
    "bizflow_workflow_execution_duration_seconds",
    "Workflow execution wall time in seconds",
    ["workflow_name"],
)

workflow_steps_total = Counter(
    "bizflow_workflow_steps_total",
    "Total workflow steps by type and status",
    ["step_type", "status"],
)

workflow_step_duration_seconds = Histogram(
    "bizflow_workflow_step_duration_seconds",
    "Workflow step duration in seconds",
    ["step_type"],
)

anomalies_detected_total = Counter(
    "bizflow_anomalies_detected_total",
    "Total anomaly detector outcomes",
    ["outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_event_published(status: str) -> None:
    events_published_total.labels(status=status).inc()


def observe_event_handler(handler: str, status: str) -> None:
    event_handler_executions_total.labels(handler=handler, status=status).inc()


def observe_event_guardrail_block(reason: str) -> None:
    event_guardrail_blocks_total.labels(reason=reason).inc()


def observe_workflow_execution(workflow_name: str, status: str, duration: float | None) -> None:
    workflow_executions_total.labels(workflow_name=workflow_name, status=status).inc()
    if duration is not None:
        workflow_execution_duration_seconds.labels(workflow_name=workflow_name).observe(duration)


def observe_workflow_step(step_type: str, status: str, duration: float) -> None:
    workflow_steps_total.labels(step_type=step_type, status=status).inc()
    workflow_step_duration_seconds.labels(step_type=step_type).observe(duration)


def observe_anomaly_outcome(outcome: str) -> None:
    anomalies_detected_total.labels(outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
