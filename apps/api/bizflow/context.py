from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

_correlation_id: ContextVar[str | None] = ContextVar("bizflow_correlation_id", default=None)
_dispatch_depth: ContextVar[int] = ContextVar("bizflow_dispatch_depth", default=0)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: str | None) -> Iterator[str | None]:
    """Bind a correlation id for log records, audit entries and spans."""
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)


def get_dispatch_depth() -> int:
    """How many handler dispatches enclose the current call; 0 outside any handler."""
    return _dispatch_depth.get()


@contextmanager
def nested_dispatch() -> Iterator[int]:
    token = _dispatch_depth.set(_dispatch_depth.get() + 1)
    try:
        yield _dispatch_depth.get()
    finally:
        _dispatch_depth.reset(token)
