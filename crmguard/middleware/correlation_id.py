from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crmguard.context import reset_correlation_id, set_correlation_id
from crmguard.models.audit import AuditLog


CORRELATION_HEADER = "x-correlation-id"
# Audit rows store the id verbatim, so it must fit their column.
MAX_CORRELATION_ID_LENGTH = AuditLog.__table__.c.correlation_id.type.length
_CORRELATION_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._:-]*")


def accept_correlation_id(value: str | None) -> str | None:
    """Return the caller's correlation id when it is safe to log and store, else None."""

    if not value or len(value) > MAX_CORRELATION_ID_LENGTH:
        return None
    if _CORRELATION_ID_PATTERN.fullmatch(value) is None:
        return None
    return value


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds one correlation id to the request, its logs, its span and every provenance row it writes."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        supplied = request.headers.get(CORRELATION_HEADER)
        correlation_id = accept_correlation_id(supplied) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
            if supplied and supplied != correlation_id:
                span.set_attribute("correlation_id.replaced", True)

        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
