"""
Textbook API — Request Logging Middleware
==========================================

What:  One access log line per HTTP request: method, path, status, duration,
       client address, user agent, request id.
Why:   Monitoring and debugging; the status-based level lets alerting key on
       WARNING/ERROR without parsing messages.
When:  Inside RequestIDMiddleware (so the id is set) and outside the rate
       limiter (so 429s are logged too).

What we log vs what we DON'T log (privacy):
    ✅ Log: method, path, status, duration, IP, user-agent, request ID
    ❌ Don't log: bodies (passwords, profile text), cookies, Authorization
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from textbook_api.middleware.rate_limit import get_client_ip
from textbook_api.middleware.request_id import request_id_var

logger = logging.getLogger("textbook_api.access")

# Liveness probes run every few seconds and would drown everything else
QUIET_PATHS = frozenset({"/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, trust_proxy: bool = False):
        super().__init__(app)
        self.trust_proxy = trust_proxy

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        # 5xx → ERROR, 4xx → WARNING, rest → INFO
        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        client_ip = get_client_ip(request, self.trust_proxy)
        user_agent = request.headers.get("user-agent", "-")
        rid = request_id_var.get("")

        logger.log(
            log_level,
            "%s %s %d %.1fms from %s (%s)",
            request.method,
            path,
            status,
            duration_ms,
            client_ip,
            user_agent,
            extra={
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "user_agent": user_agent,
                "request_id": rid or "-",
            },
        )
        return response
