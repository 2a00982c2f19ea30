from __future__ import annotations

import re

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from crm_billing.context import correlation_scope

CORRELATION_HEADER = "x-correlation-id"
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def accepted_correlation_id(raw: str | None) -> str | None:
    """Caller-supplied ids are echoed back only when short and header-safe."""
    if raw and _ACCEPTED_ID.match(raw):
        return raw
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        with correlation_scope(accepted_correlation_id(request.headers.get(CORRELATION_HEADER))) as correlation_id:
            request.state.correlation_id = correlation_id
            span = trace.get_current_span()
            if span.is_recording():
                span.set_attribute("correlation_id", correlation_id)
            response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
