"""Trace context — W3C ``traceparent`` propagation.

Header format: ``00-{trace_id}-{span_id}-{flags}`` with a 32-hex trace id,
a 16-hex span id and ``01`` meaning sampled.

The active context lives in a ``ContextVar`` and is bound into structlog's
contextvars while in use, so log lines emitted while handling a request
carry ``trace_id`` and ``span_id``.

Usage::

    app = web.Application(middlewares=[trace_middleware()])

    with use_trace(TraceContext.new()):
        await monitor.alert(...)
        print(current_trace_id())
"""

from __future__ import annotations

import contextlib
import re
import secrets
from collections.abc import Iterator
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any

import structlog
from aiohttp import web

TRACEPARENT_HEADER = "traceparent"

# Request storage key for the context created by ``trace_middleware``.
TRACE_CONTEXT_KEY = "trace_context"

_TRACE_ID = re.compile(r"^[0-9a-f]{32}$")
_SPAN_ID = re.compile(r"^[0-9a-f]{16}$")

_current: ContextVar[TraceContext | None] = ContextVar("trace_context", default=None)


def generate_trace_id() -> str:
    return secrets.token_hex(16)


def generate_span_id() -> str:
    return secrets.token_hex(8)


@dataclass(frozen=True)
class TraceContext:
    """One span within a trace."""

    trace_id: str
    span_id: str
    parent_span_id: str | None = None
    sampled: bool = True

    @classmethod
    def new(cls) -> TraceContext:
        """Start a fresh, sampled trace."""
        return cls(trace_id=generate_trace_id(), span_id=generate_span_id())

    def child(self) -> TraceContext:
        return TraceContext(
            trace_id=self.trace_id,
            span_id=generate_span_id(),
            parent_span_id=self.span_id,
            sampled=self.sampled,
        )

    def to_traceparent(self) -> str:
        flags = "01" if self.sampled else "00"
        return f"00-{self.trace_id}-{self.span_id}-{flags}"


def parse_traceparent(header: str) -> TraceContext | None:
    """Parse a ``traceparent`` header; None if it is malformed."""
    parts = header.split("-")
    if len(parts) != 4:
        return None
    version, trace_id, span_id, flags = parts
    if version != "00" or not _TRACE_ID.match(trace_id) or not _SPAN_ID.match(span_id):
        return None
    return TraceContext(trace_id=trace_id, span_id=span_id, sampled=flags == "01")


def current_trace() -> TraceContext | None:
    return _current.get()


def current_trace_id() -> str | None:
    ctx = _current.get()
    return ctx.trace_id if ctx is not None else None


def child_span() -> TraceContext | None:
    """New span under the active context, or None outside a trace."""
    parent = _current.get()
    return parent.child() if parent is not None else None


@contextlib.contextmanager
def use_trace(ctx: TraceContext) -> Iterator[TraceContext]:
    """Make *ctx* the active trace for the enclosed block."""
    token = _current.set(ctx)
    try:
        with structlog.contextvars.bound_contextvars(trace_id=ctx.trace_id, span_id=ctx.span_id):
            yield ctx
    finally:
        _current.reset(token)


def incoming_context(header: str | None) -> TraceContext:
    """Continue the caller's trace with a new span, or start a fresh one."""
    parsed = parse_traceparent(header) if header else None
    if parsed is None:
        return TraceContext.new()
    return parsed.child()


def trace_middleware() -> Any:
    """aiohttp middleware: adopt or start a trace and echo ``traceparent``."""

    @web.middleware
    async def _trace(request: web.Request, handler: Any) -> web.StreamResponse:
        ctx = incoming_context(request.headers.get(TRACEPARENT_HEADER))
        request[TRACE_CONTEXT_KEY] = ctx
        with use_trace(ctx):
            response = await handler(request)
        response.headers[TRACEPARENT_HEADER] = ctx.to_traceparent()
        return response

    return _trace
