"""
Textbook API — Rate Limiting Middleware
========================================

What:  Per-client sliding window limits, one window per route class.
Why:   Credential endpoints are brute-force targets and need a much tighter
       budget than ordinary API traffic.
How:   Each policy keeps, per client address, the timestamps of admitted
       requests. A request is admitted only if every policy covering its
       path still has room; it is then recorded against all of them.
Who:   RateLimitMiddleware, installed by create_app() between the access log
       and routing.

Route classes (defaults):
    auth            5 requests / 15 min   /auth/sign-in/*, /auth/sign-up/*
    password_reset  3 requests / 60 min   /auth/forget-password, /auth/reset-password
    api             RATE_LIMIT_MAX_REQUESTS / RATE_LIMIT_WINDOW_MS (100 / 15 min)
                                          every other path except health and docs

Algorithm: Sliding Window Log
    1. Drop timestamps older than the window
    2. If the remaining count >= limit, reject with 429
    3. Otherwise record the current timestamp
    Unlike a fixed window there is no burst at the window boundary.

Scope:
    State is in process memory, so each serverless instance counts on its
    own. A shared store (e.g. Redis) is needed for a global limit.
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from textbook_api.config import Settings
from textbook_api.exceptions import RateLimitExceededError
from textbook_api.middleware.request_id import request_id_var
from textbook_api.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

# Never limited: liveness probes and API docs
EXCLUDED_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})

# Sweep idle clients after this many admitted requests
CLEANUP_INTERVAL = 1000


def get_client_ip(request: Request, trust_proxy: bool = False) -> str:
    """
    Client address used as the rate limit key and in logs.

    X-Forwarded-For is only honoured with TRUST_PROXY set; its first entry
    is the original client.
    """
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    One route class.

    `paths` are prefixes: "/auth/sign-in" matches "/auth/sign-in/email".
    An empty tuple matches every path.
    """

    name: str
    max_requests: int
    window_seconds: float
    message: str
    paths: Tuple[str, ...] = ()

    def applies_to(self, path: str) -> bool:
        if not self.paths:
            return True
        return any(path == p or path.startswith(p + "/") for p in self.paths)


def default_policies(config: Settings) -> List[RateLimitPolicy]:
    """Policies checked most specific first, so the 429 names the tightest limit."""
    return [
        RateLimitPolicy(
            name="password_reset",
            max_requests=3,
            window_seconds=60 * 60,
            message="Too many password reset attempts. Please try again after 1 hour.",
            paths=("/auth/forget-password", "/auth/reset-password"),
        ),
        RateLimitPolicy(
            name="auth",
            max_requests=5,
            window_seconds=15 * 60,
            message="Too many authentication attempts. Please try again after 15 minutes.",
            paths=("/auth/sign-in", "/auth/sign-up"),
        ),
        RateLimitPolicy(
            name="api",
            max_requests=config.rate_limit_max_requests,
            window_seconds=config.rate_limit_window_seconds,
            message="Too many requests from this IP. Please try again later.",
        ),
    ]


class RateLimiter:
    """
    In-memory sliding window log over a set of policies.

    The clock is injectable so tests can move time without sleeping.
    Safe for a single event loop: check() never awaits, so it cannot
    interleave with another request's check().
    """

    def __init__(
        self,
        policies: Sequence[RateLimitPolicy],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policies = list(policies)
        self._clock = clock
        # (policy name, client key) → admitted request timestamps, oldest first
        self._hits: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        self._admitted = 0

    def check(self, path: str, key: str) -> None:
        """
        Admit or reject one request.

        Raises:
            RateLimitExceededError: some applicable policy is exhausted;
                                    `retry_after` is when its oldest hit expires
        """
        now = self._clock()
        applicable = [p for p in self.policies if p.applies_to(path)]

        for policy in applicable:
            hits = self._window(policy, key, now)
            if len(hits) >= policy.max_requests:
                retry_after = int(hits[0] + policy.window_seconds - now) + 1
                raise RateLimitExceededError(
                    retry_after=retry_after,
                    message=policy.message,
                    context={"policy": policy.name, "limit": policy.max_requests},
                )

        for policy in applicable:
            self._hits[(policy.name, key)].append(now)

        self._admitted += 1
        if self._admitted % CLEANUP_INTERVAL == 0:
            self._cleanup(now)

    def reset(self) -> None:
        self._hits.clear()
        self._admitted = 0

    def _window(self, policy: RateLimitPolicy, key: str, now: float) -> List[float]:
        window_start = now - policy.window_seconds
        hits = [ts for ts in self._hits.get((policy.name, key), []) if ts > window_start]
        if hits:
            self._hits[(policy.name, key)] = hits
        else:
            self._hits.pop((policy.name, key), None)
        return hits

    def _cleanup(self, now: float) -> None:
        windows = {p.name: p.window_seconds for p in self.policies}
        stale = [
            bucket for bucket, hits in self._hits.items()
            if not hits or hits[-1] <= now - windows.get(bucket[0], 0)
        ]
        for bucket in stale:
            del self._hits[bucket]
        if stale:
            logger.debug("Cleaned up %d idle rate limit buckets", len(stale))


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects over-limit requests with 429 before they reach routing.

    Response on rejection:
        HTTP 429 with a Retry-After header and
        {"error": "rate_limit_exceeded", "message": ..., "requestId": ..., "retryAfter": N}
    """

    def __init__(self, app, limiter: RateLimiter, trust_proxy: bool = False):
        super().__init__(app)
        self.limiter = limiter
        self.trust_proxy = trust_proxy

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in EXCLUDED_PATHS:
            return await call_next(request)

        client_ip = get_client_ip(request, self.trust_proxy)
        try:
            self.limiter.check(path, client_ip)
        except RateLimitExceededError as exc:
            logger.warning(
                "Rate limit exceeded (%s) for IP %s on %s %s",
                exc.context.get("policy"),
                client_ip,
                request.method,
                path,
            )
            body = ErrorResponse(
                error="rate_limit_exceeded",
                message=exc.message,
                request_id=request_id_var.get("") or None,
                retry_after=exc.retry_after,
            )
            return JSONResponse(
                status_code=429,
                content=body.model_dump(by_alias=True, exclude_none=True),
                headers={"Retry-After": str(exc.retry_after)},
            )

        return await call_next(request)
