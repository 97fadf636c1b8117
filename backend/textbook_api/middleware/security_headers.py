"""
Textbook API — Security Headers Middleware
===========================================

What:  Adds browser hardening headers to every response.
Why:   The API only ever returns JSON, so it can afford a strict policy:
       nothing may be framed, sniffed, or loaded from it as a document.
When:  Just inside CORS, so error and 429 responses carry the headers too.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; object-src 'none'",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    # Legacy XSS auditors cause more harm than good; "0" disables them
    "X-XSS-Protection": "0",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

# Swagger UI and ReDoc load scripts and styles from a CDN
DOCS_PATHS = frozenset({"/docs", "/redoc"})


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)
        is_docs = request.url.path in DOCS_PATHS
        for name, value in SECURITY_HEADERS.items():
            if is_docs and name == "Content-Security-Policy":
                continue
            response.headers.setdefault(name, value)
        return response
