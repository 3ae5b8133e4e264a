from __future__ import annotations

import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from agency_core.context import reset_correlation_id, set_correlation_id


CORRELATION_HEADER = "x-correlation-id"
TENANT_HEADER = "x-agency-id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Binds the caller's correlation id, and the advisory tenant header when sent, to the request."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        tenant_hint = request.headers.get(TENANT_HEADER)
        request.state.correlation_id = correlation_id
        request.state.tenant_hint = tenant_hint

        token = set_correlation_id(correlation_id)
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)
            if tenant_hint:
                span.set_attribute("tenant_id", tenant_hint)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
