from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from bizflow.context import get_correlation_id
from bizflow.core.auth import ANONYMOUS, decode_bearer_token
from bizflow.core.config import get_settings


@dataclass
class _Bucket:
    tokens: float
    refilled_at: float

    def refill(self, now: float, capacity: float, per_second: float) -> None:
        self.tokens = min(capacity, self.tokens + max(0.0, now - self.refilled_at) * per_second)
        self.refilled_at = now


class PublishRateLimiter:
    """Token bucket per (tenant, caller); a full bucket holds one window's worth of publishes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], _Bucket] = {}

    def take(self, tenant_id: str, caller_id: str, capacity: int, window_seconds: int) -> tuple[bool, int]:
        """Spend one token. Returns (allowed, seconds until the next token)."""
        if capacity <= 0:
            return False, window_seconds
        per_second = capacity / float(window_seconds)
        now = time.monotonic()

        with self._lock:
            bucket = self._buckets.setdefault((tenant_id, caller_id), _Bucket(float(capacity), now))
            bucket.refill(now, float(capacity), per_second)
            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True, 0
            missing = 1.0 - bucket.tokens

        return False, max(1, math.ceil(missing / per_second))

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = PublishRateLimiter()


class EventPublishRateLimitMiddleware(BaseHTTPMiddleware):
    """Throttles `POST /api/events` per (tenant, caller)."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        if settings.rate_limit_disabled:
            return await call_next(request)
        if request.method.upper() != "POST" or request.url.path.rstrip("/") != "/api/events":
            return await call_next(request)

        tenant_id, caller_id = _resolve_caller(request)
        allowed, retry_after = _limiter.take(
            tenant_id=tenant_id,
            caller_id=caller_id,
            capacity=settings.rate_limit_event_publish_per_minute,
            window_seconds=60,
        )
        if allowed:
            return await call_next(request)

        correlation_id = (
            get_correlation_id()
            or getattr(request.state, "correlation_id", None)
            or request.headers.get("x-correlation-id")
            or str(uuid.uuid4())
        )
        response = JSONResponse(
            status_code=429,
            content={
                "code": "RATE_LIMITED",
                "message": "Too many events published",
                "details": {"limit": settings.rate_limit_event_publish_per_minute, "window_seconds": 60},
                "correlation_id": correlation_id,
            },
        )
        response.headers["Retry-After"] = str(retry_after)
        response.headers["X-Correlation-Id"] = correlation_id
        return response


def _resolve_caller(request: Request) -> tuple[str, str]:
    claims = decode_bearer_token(request) or {}
    tenant_id = claims.get("tenant_id") or request.headers.get("x-tenant-id") or "default"
    subject = claims.get("sub")
    return str(tenant_id), ANONYMOUS if subject is None else str(subject)


def reset_rate_limiter() -> None:
    _limiter.clear()
