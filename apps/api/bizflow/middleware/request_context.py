from __future__ import annotations

import uuid
from dataclasses import dataclass

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from bizflow.context import correlation_scope


DEFAULT_TENANT = "default"


@dataclass
class RequestContext:
    correlation_id: str
    tenant_id: str
    user_id: str | None = None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds the caller's correlation id and tenant to the request.

    `x-correlation-id` is reused when sent and generated otherwise; it is
    echoed back as both `x-correlation-id` and `x-request-id`.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        context = RequestContext(
            correlation_id=correlation_id,
            tenant_id=request.headers.get("x-tenant-id") or DEFAULT_TENANT,
            user_id=request.headers.get("x-user-id"),
        )
        request.state.correlation_id = correlation_id
        request.state.context = context

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
            span.set_attribute("tenant_id", context.tenant_id)

        with correlation_scope(correlation_id):
            response = await call_next(request)

        response.headers["x-correlation-id"] = correlation_id
        response.headers["x-request-id"] = correlation_id
        return response
