"""
Textbook API — Access Guard
============================

What:  FastAPI dependencies that resolve the caller's session for a route.
Why:   Handlers get the principal as an explicit parameter (AuthContext)
       instead of reading mutable request attributes.
How:   Both dependencies ask the SessionVerifier on app.state.
       - require_auth:  no session → 401; verifier failure → 500
       - optional_auth: no session or verifier failure → None (anonymous)

Usage:
    @router.get("/user/profile")
    async def get_profile(auth: AuthContext = Depends(require_auth)): ...
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from textbook_api.exceptions import AuthenticationError, SessionVerificationError
from textbook_api.schemas.auth import Principal, SessionInfo
from textbook_api.services.auth_service import SessionVerifier, get_session_verifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthContext:
    """The verified principal and session for the current request."""

    user: Principal
    session: SessionInfo

    @property
    def user_id(self) -> str:
        return self.user.id


def _client(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_auth(
    request: Request,
    verifier: SessionVerifier = Depends(get_session_verifier),
) -> AuthContext:
    """
    Raises:
        AuthenticationError:      no valid session (→ 401; handler never runs)
        SessionVerificationError: the verifier itself failed (→ 500)
    """
    try:
        auth_session = await verifier.get_session(request.headers)
    except Exception as e:
        logger.error(
            "Authentication error on %s %s: %s",
            request.method,
            request.url.path,
            type(e).__name__,
            exc_info=True,
        )
        raise SessionVerificationError(context={"path": request.url.path}) from e

    if auth_session is None:
        logger.warning(
            "Unauthorized access attempt: %s %s from %s (%s)",
            request.method,
            request.url.path,
            _client(request),
            request.headers.get("user-agent", "-"),
        )
        raise AuthenticationError()

    logger.debug("Authenticated user %s for %s", auth_session.user.id, request.url.path)
    return AuthContext(user=auth_session.user, session=auth_session.session)


async def optional_auth(
    request: Request,
    verifier: SessionVerifier = Depends(get_session_verifier),
) -> Optional[AuthContext]:
    """Anonymous-friendly variant: never rejects, logs verifier failures at DEBUG."""
    try:
        auth_session = await verifier.get_session(request.headers)
    except Exception as e:
        logger.debug("Optional auth: session check failed (%s)", type(e).__name__)
        return None

    if auth_session is None:
        return None
    return AuthContext(user=auth_session.user, session=auth_session.session)
