"""
Textbook API — Authentication Routes
=====================================

What:  /auth/* endpoints: email sign-up and sign-in, sign-out, current
       session, and the password reset pair.
How:   Thin wrappers over AuthService. Handlers own the HTTP parts only:
       reading client metadata and setting or clearing the session cookie.

Rate limits (RateLimitMiddleware):
    /auth/sign-in/*, /auth/sign-up/*           5 per 15 minutes per address
    /auth/forget-password, /auth/reset-password 3 per hour per address
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from textbook_api.middleware.rate_limit import get_client_ip
from textbook_api.schemas.auth import (
    AuthResponse,
    AuthSession,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    SignInRequest,
    SignUpRequest,
)
from textbook_api.schemas.common import ErrorResponse, StatusResponse
from textbook_api.services.auth_service import AuthService, get_auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

RESET_REQUESTED_MESSAGE = "If an account exists for this email, a password reset link has been sent"


def _client_meta(request: Request) -> dict:
    return {
        "ip_address": get_client_ip(request, request.app.state.settings.trust_proxy),
        "user_agent": request.headers.get("user-agent"),
    }


@router.post(
    "/sign-up/email",
    response_model=AuthResponse,
    responses={
        400: {"description": "Invalid input or email already registered", "model": ErrorResponse},
        429: {"description": "Too many attempts", "model": ErrorResponse},
    },
    summary="Register with email and password",
)
async def sign_up(
    payload: SignUpRequest,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = await auth.sign_up(payload, **_client_meta(request))
    auth.set_session_cookie(response, result.token)
    return result


@router.post(
    "/sign-in/email",
    response_model=AuthResponse,
    responses={
        401: {"description": "Invalid email or password", "model": ErrorResponse},
        429: {"description": "Too many attempts", "model": ErrorResponse},
    },
    summary="Sign in with email and password",
)
async def sign_in(
    payload: SignInRequest,
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    result = await auth.sign_in(payload.email, payload.password, **_client_meta(request))
    auth.set_session_cookie(response, result.token)
    return result


@router.post("/sign-out", response_model=StatusResponse, summary="End the current session")
async def sign_out(
    request: Request,
    response: Response,
    auth: AuthService = Depends(get_auth_service),
) -> StatusResponse:
    await auth.sign_out(request.headers)
    auth.clear_session_cookie(response)
    return StatusResponse(message="Signed out")


@router.get(
    "/session",
    response_model=Optional[AuthSession],
    summary="Current session, or null when signed out",
)
async def get_session(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> Optional[AuthSession]:
    return await auth.get_session(request.headers)


@router.post(
    "/forget-password",
    response_model=StatusResponse,
    summary="Request a password reset token",
)
async def forget_password(
    payload: ForgotPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
) -> StatusResponse:
    # Same answer for known and unknown emails
    await auth.request_password_reset(payload.email)
    return StatusResponse(message=RESET_REQUESTED_MESSAGE)


@router.post(
    "/reset-password",
    response_model=StatusResponse,
    responses={400: {"description": "Invalid or expired token", "model": ErrorResponse}},
    summary="Set a new password with a reset token",
)
async def reset_password(
    payload: ResetPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
) -> StatusResponse:
    await auth.reset_password(payload.token, payload.new_password)
    return StatusResponse(message="Password has been reset. Please sign in again.")
