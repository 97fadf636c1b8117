# Middleware package init
"""
Textbook API — Middleware Package
==================================

What:  Cross-cutting concerns applied to every request, plus the access guard
       dependencies used by protected routes.

Middleware Chain (outermost first):
    Request → [CORS] → [Security Headers] → [Request ID] → [Logging] → [Rate Limit] → [Unhandled Error] → Route

    1. CORS first: preflights are answered before anything else, and every
       response (429 included) carries the CORS headers
    2. Security headers: applied to every response, errors included
    3. Request ID: correlation id for everything below
    4. Logging: sees the final status, 429s included
    5. Rate limit: rejects before routing or any database work
    6. Unhandled error innermost: a stray exception becomes a 500 response
       that still passes back through every layer above

    Starlette wraps in reverse registration order, so create_app() adds them
    from unhandled error to CORS.
"""
