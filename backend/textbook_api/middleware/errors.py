"""
Textbook API — Unhandled Error Middleware
==========================================

What:  Turns any exception no exception handler claimed into the shared 500
       error body, innermost in the middleware chain.
Why:   Starlette answers a bare `Exception` from ServerErrorMiddleware, which
       sits outside every user middleware. Those responses would miss the
       CORS grant, X-Request-ID and the security headers.
How:   Wraps call_next; the handler (built in main.create_app) logs the
       traceback and builds the response.
"""

from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

ErrorHandler = Callable[[Request, Exception], Awaitable[Response]]


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, handler: ErrorHandler):
        super().__init__(app)
        self.handler = handler

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return await self.handler(request, exc)
