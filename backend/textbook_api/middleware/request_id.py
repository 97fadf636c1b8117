"""
Textbook API — Request ID Middleware
=====================================

What:  Assigns a correlation id to each request and echoes it in X-Request-ID.
Why:   Every log line and every error body of one request share the id, so a
       user-reported error maps straight to its log entries.
How:   Accepts a well-formed client-supplied X-Request-ID (the frontend can
       tag a user action end-to-end), otherwise generates a short UUID.
       Stored in a ContextVar for loggers and in request.state for handlers.
"""

import logging
import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one thread each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client ids end up in log lines; anything else is replaced
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        supplied = request.headers.get("x-request-id", "")
        rid = supplied if _VALID_REQUEST_ID.match(supplied) else new_request_id()

        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = rid
        return response


class RequestIDLogFilter(logging.Filter):
    """Adds `request_id` to every log record so formatters can print it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("") or "-"
        return True
