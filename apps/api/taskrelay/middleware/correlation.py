"""Request correlation IDs, exposed on request.state and in log records."""

import logging
from contextvars import ContextVar
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Reuse the caller's X-Correlation-ID header or generate one, and echo it
    back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers["X-Correlation-ID"] = correlation_id
        return response


class CorrelationIDFilter(logging.Filter):
    """Adds ``correlation_id`` to every record so formats can reference it."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True
