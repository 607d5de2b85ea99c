from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from bizflow.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("bizflow.request")


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code in (403, 429):
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One `http.request` line and one metrics sample per request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _record(request, 500, started, failed=True)
            raise

        _record(request, response.status_code, started)
        return response


def _record(request: Request, status_code: int, started: float, *, failed: bool = False) -> None:
    duration = time.perf_counter() - started
    # The route label only exists once the router has matched.
    path = resolve_http_path_label(request)
    observe_http_request(method=request.method, path=path, status=status_code, duration=duration)

    context = getattr(request.state, "context", None)
    logger.log(
        logging.ERROR if failed else _level_for(status_code),
        "http.error" if failed else "http.request",
        exc_info=failed,
        extra={
            "method": request.method,
            "path": path,
            "status_code": status_code,
            "duration_ms": round(duration * 1000, 2),
            "tenant_id": getattr(context, "tenant_id", None),
        },
    )
