"""
Textbook API — Authentication Schemas
======================================

What:  Request bodies for the /auth routes and the principal/session values
       the session verifier hands to the access guard.
Why:   `AuthSession` is the whole contract between the authentication
       collaborator and the rest of the system. Route handlers only ever see
       this frozen value, never cookies or tokens.
"""

from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, EmailStr, Field

from textbook_api.schemas.common import CamelModel


class Principal(CamelModel):
    """An authenticated user identity."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str] = None


class SessionInfo(CamelModel):
    """Session metadata exposed to handlers and clients. The token is never included."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AuthSession(CamelModel):
    """
    What the session verifier returns for a valid session.

    Returned as-is by GET /auth/session, and wrapped into the access guard's
    AuthContext for protected routes.
    """

    model_config = ConfigDict(frozen=True)

    user: Principal
    session: SessionInfo


class AuthResponse(AuthSession):
    """
    Sign-up / sign-in reply.

    `token` is the signed session token also set as the session cookie, for
    clients that send it as `Authorization: Bearer <token>` instead.
    """

    token: str


class SignUpRequest(CamelModel):
    """
    POST /auth/sign-up/email body.

    Profile fields are optional; when any is present the profile row is
    created together with the account.
    """

    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: Optional[str] = Field(default=None, max_length=255)
    skill_level: Optional[str] = Field(default=None, max_length=50)
    software_background: Optional[str] = Field(default=None, max_length=2000)
    hardware_background: Optional[str] = Field(default=None, max_length=2000)
    learning_goal: Optional[str] = Field(default=None, max_length=2000)


class SignInRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=8, max_length=128)
