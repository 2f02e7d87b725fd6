"""
Correlation IDs for HTTP requests and worker jobs.

Requests carry X-Correlation-ID (or get a fresh UUID); the worker tags each job
with "job-<id>". Either way the id lives in a contextvar, and every SystemEvent
recorded while it is set carries it in its payload.
"""

import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

HEADER_CORRELATION_ID = "X-Correlation-ID"
MAX_INCOMING_LENGTH = 128

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id(request: Request | None = None) -> str | None:
    """Correlation id of the given request, else of the current request or job, else None."""
    if request is not None and getattr(request.state, "correlation_id", None):
        return request.state.correlation_id
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Tag the current task. The worker calls this once per job; asyncio tasks copy the
    context, so ids set in one job's task never reach another job.
    """
    _correlation_id_var.set(correlation_id)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        incoming = (request.headers.get(HEADER_CORRELATION_ID) or "").strip()
        cid = incoming if incoming and len(incoming) <= MAX_INCOMING_LENGTH else str(uuid.uuid4())
        request.state.correlation_id = cid
        token = _correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            _correlation_id_var.reset(token)
        response.headers[HEADER_CORRELATION_ID] = cid
        return response
