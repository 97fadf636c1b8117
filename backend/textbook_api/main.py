"""
Textbook API — FastAPI Application Factory
===========================================

What:  Creates and configures the FastAPI application instance.
Why:   One composition root: the database handle, the session verifier, the
       rate limiter and the HTTP policy are built here and handed to the
       rest of the app through app.state.
How:   create_app(settings) returns a configured FastAPI instance.
Who:   uvicorn (`uvicorn textbook_api.main:app`) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                        FastAPI App                            │
    │                                                               │
    │  Middleware Chain (outermost first):                          │
    │  CORS → Security Headers → Request ID → Logging → Rate Limit  │
    │  → Unhandled Error (innermost, catches any stray exception)   │
    │                                                               │
    │  Routes:                                                      │
    │  /health, /  │  /auth/*  │  /user/profile  │  /personalize   │
    │              │           │  /chat          │                  │
    │                                                               │
    │  Exception Handlers:                                          │
    │  Validation→400 │ Auth→401 │ NotFound→404 │ RateLimit→429     │
    │  Database→500   │ Verifier→500 │ anything else→500            │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Configure logging
    2. Validate the environment (abort on any violation)
    3. Install process-level fatal error handlers
    Shutdown:
    1. Dispose the connection pool
"""

import asyncio
import logging
import os
import signal
import sys
import threading
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from textbook_api import __version__
from textbook_api.config import Settings, settings, validate_environment
from textbook_api.database import Database
from textbook_api.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DatabaseError,
    NotFoundError,
    RateLimitExceededError,
    SessionVerificationError,
    TextbookAPIError,
    ValidationError,
)
from textbook_api.middleware.errors import UnhandledErrorMiddleware
from textbook_api.middleware.logging import RequestLoggingMiddleware
from textbook_api.middleware.rate_limit import RateLimiter, RateLimitMiddleware, default_policies
from textbook_api.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware, request_id_var
from textbook_api.middleware.security_headers import SecurityHeadersMiddleware
from textbook_api.routes import auth, chat, health, personalize, profile
from textbook_api.schemas.common import ErrorResponse
from textbook_api.services.auth_service import AuthService

logger = logging.getLogger(__name__)

GENERIC_500_MESSAGE = "An unexpected error occurred. Please try again later."


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger once for the whole process.

    Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s
    The request id comes from RequestIDLogFilter ("-" outside a request).
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Process-level Fatal Errors
# ══════════════════════════════════════════════════════════════════════════

def schedule_exit(delay: float) -> None:
    """SIGTERM ourselves after `delay` seconds so log handlers can flush first."""
    timer = threading.Timer(delay, os.kill, args=(os.getpid(), signal.SIGTERM))
    timer.daemon = True
    timer.start()


def make_loop_exception_handler(delay: float):
    """
    Event loop handler for exceptions nobody awaited (background tasks,
    callbacks). These are not requests, so there is no response to send:
    log and shut the process down.
    """

    def handle(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        exc = context.get("exception")
        if exc is None:
            logger.error("Event loop error: %s", context.get("message", "unknown"))
            return
        logger.critical(
            "Unhandled exception outside a request: %s",
            context.get("message", type(exc).__name__),
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        schedule_exit(delay)

    return handle


def install_fatal_error_handlers(delay: float) -> None:
    def excepthook(exc_type, exc_value, exc_tb) -> None:
        logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))

    def thread_excepthook(args) -> None:
        logger.critical(
            "Uncaught exception in thread %s",
            args.thread.name if args.thread else "unknown",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        schedule_exit(delay)

    sys.excepthook = excepthook
    threading.excepthook = thread_excepthook
    asyncio.get_running_loop().set_exception_handler(make_loop_exception_handler(delay))


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config: Settings = app.state.settings

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(config.log_level)
    logger.info("Textbook API %s starting (environment=%s)", __version__, config.environment)

    try:
        validate_environment(config)
    except ConfigurationError as e:
        logger.critical("%s", e.message)
        raise

    install_fatal_error_handlers(config.fatal_exit_delay)

    policy = app.state.http_policy
    logger.info("Trusted origins: %s", ", ".join(policy.allowed_origins) or "(none)")
    logger.info("Server ready on port %d", config.port)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Textbook API shutting down...")
    await app.state.database.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _request_id(request: Request) -> Optional[str]:
    # request.state outlives the ContextVar for errors handled outside the middleware stack
    return getattr(request.state, "request_id", None) or request_id_var.get("") or None


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    retry_after: Optional[int] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        request_id=_request_id(request),
        retry_after=retry_after,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI, config: Settings) -> None:
    """
    Map exception types to status codes and the shared error body.

    Handler hierarchy (most specific class wins):
        ValidationError / RequestValidationError → 400
        AuthenticationError                      → 401
        NotFoundError / unknown route            → 404
        RateLimitExceededError                   → 429
        DatabaseError, SessionVerificationError  → 500 (generic message)
        TextbookAPIError, Exception              → 500 (detail only in development)

    Exception context goes to the logs, never into a response.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("Validation error on %s: %s", request.url.path, exc.message)
        return error_response(request, 400, "validation_error", exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ())[1:])
            problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
        message = "; ".join(problems) or "Invalid request"
        logger.warning("Invalid request body on %s: %s", request.url.path, message)
        return error_response(request, 400, "validation_error", message)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return error_response(request, 401, "unauthorized", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return error_response(request, 404, "not_found", exc.message)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return error_response(
            request,
            429,
            "rate_limit_exceeded",
            exc.message,
            retry_after=exc.retry_after,
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error("Database error on %s | Context: %s", request.url.path, exc.context)
        return error_response(request, 500, "database_error", exc.message)

    @app.exception_handler(SessionVerificationError)
    async def handle_session_verification(request: Request, exc: SessionVerificationError):
        return error_response(request, 500, "internal_server_error", exc.message)

    @app.exception_handler(TextbookAPIError)
    async def handle_app_error(request: Request, exc: TextbookAPIError):
        logger.error("%s on %s: %s | Context: %s", type(exc).__name__, request.url.path, exc.message, exc.context)
        message = exc.message if config.is_development else GENERIC_500_MESSAGE
        return error_response(request, 500, "internal_server_error", message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request, 404, "not_found", f"Route {request.method} {request.url.path} not found"
            )
        if exc.status_code == 405:
            return error_response(
                request, 405, "method_not_allowed",
                f"Method {request.method} not allowed on {request.url.path}",
                headers=exc.headers,
            )
        return error_response(
            request, exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers
        )

    # Only reached by faults in the outer middlewares; route faults stop at UnhandledErrorMiddleware
    app.add_exception_handler(Exception, make_unexpected_error_handler(config))


def make_unexpected_error_handler(config: Settings):
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        """Last-resort boundary: full trace in the logs, generic body to the client."""
        logger.error(
            "Unexpected error on %s %s: %s",
            request.method,
            request.url.path,
            str(exc),
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        message = str(exc) if config.is_development else GENERIC_500_MESSAGE
        return error_response(request, 500, "internal_server_error", message)

    return handle_unexpected_error


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(config: Optional[Settings] = None) -> FastAPI:
    """
    Assemble the application.

    Args:
        config: Settings to use; defaults to the process-wide singleton.
                Tests pass their own instance.
    """
    config = config or settings

    app = FastAPI(
        title="Physical AI & Humanoid Robotics Textbook API",
        description=(
            "Session-gated backend for the textbook: reader profiles, "
            "chapter personalization and the chat assistant."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Shared components ─────────────────────────────────────────────────
    policy = config.resolve_http_policy()
    database = Database(config)
    auth_service = AuthService(database, config, policy)

    app.state.settings = config
    app.state.http_policy = policy
    app.state.database = database
    app.state.auth_service = auth_service
    app.state.session_verifier = auth_service
    app.state.rate_limiter = RateLimiter(default_policies(config))

    # ── Register Middleware ───────────────────────────────────────────────
    # Last added runs first: the chain below executes
    # CORS → SecurityHeaders → RequestID → Logging → RateLimit → UnhandledError → routes
    app.add_middleware(UnhandledErrorMiddleware, handler=make_unexpected_error_handler(config))
    app.add_middleware(
        RateLimitMiddleware,
        limiter=app.state.rate_limiter,
        trust_proxy=config.trust_proxy,
    )
    app.add_middleware(RequestLoggingMiddleware, trust_proxy=config.trust_proxy)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(policy.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Cookie", "X-Requested-With", "X-Request-ID"],
        expose_headers=["Set-Cookie", "X-Request-ID", "Retry-After"],
        max_age=86400,
    )

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app, config)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(profile.router)
    app.include_router(personalize.router)
    app.include_router(chat.router)

    return app


def run() -> None:
    """Console entry point: serve on 0.0.0.0:$PORT."""
    import uvicorn

    uvicorn.run(
        "textbook_api.main:app",
        host=settings.backend_host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


# ── Application Instance ─────────────────────────────────────────────────
# uvicorn expects `textbook_api.main:app` to be importable
app = create_app()
