"""
Textbook API — Authentication Service
======================================

What:  Email/password accounts and server-side sessions: sign-up, sign-in,
       sign-out, session lookup, and password reset.
Why:   Protected routes need one question answered, "who is this request
       from?", without knowing how sessions are stored. The `SessionVerifier`
       protocol is that question; `AuthService` is the production answer.
How:   - Passwords: bcrypt, hashed in a worker thread (CPU-bound, ~250ms at 12 rounds)
       - Sessions:  random token stored in `sessions`, handed to the client
                    wrapped in an HS256 JWT (python-jose) in a cookie or Bearer header
       - Expiry:    7 days, extended (sliding) when the session is older than a day
       - Storage:   SQLAlchemy Core statements through Database.query()
Who:   /auth routes (all operations), the access guard (get_session only).

Token format:
    value     = JWT(HS256, AUTH_SECRET) with claim {"sid": token}; no exp claim,
                expiry lives in the sessions row
    cookie    = <cookie_prefix>.session_token=<value>; HttpOnly; Path=/
    header    = Authorization: Bearer <value>
    A value that does not decode and verify is treated as "no session".
"""

import asyncio
import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional, Protocol, Tuple

import bcrypt
from fastapi import Request, Response
from jose import JWTError, jwt
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from starlette.requests import cookie_parser

from textbook_api.config import HttpPolicy, Settings
from textbook_api.database import Database
from textbook_api.exceptions import AuthenticationError, DatabaseError, ValidationError
from textbook_api.models.user import Account, Session, User, Verification
from textbook_api.schemas.auth import (
    AuthResponse,
    AuthSession,
    Principal,
    SessionInfo,
    SignUpRequest,
)
from textbook_api.services.profile_service import profile_service

logger = logging.getLogger(__name__)

users = User.__table__
sessions = Session.__table__
accounts = Account.__table__
verifications = Verification.__table__

CREDENTIAL_PROVIDER = "credential"
RESET_IDENTIFIER_PREFIX = "reset-password:"

TOKEN_ALGORITHM = "HS256"
TOKEN_CLAIM = "sid"

# bcrypt only looks at the first 72 bytes; longer secrets are rejected, not truncated
BCRYPT_MAX_BYTES = 72

INVALID_CREDENTIALS = "Invalid email or password"
DUPLICATE_EMAIL = "An account with this email already exists"


class SessionVerifier(Protocol):
    """
    Resolves request headers to a session.

    Returns None when the request carries no valid session. Raises when the
    verification itself could not be carried out (e.g. database unreachable).
    """

    async def get_session(self, headers: Mapping[str, str]) -> Optional[AuthSession]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AuthService:
    """
    Production SessionVerifier plus the account operations behind /auth.

    One instance per application, created by create_app() and stored on
    app.state. Holds no per-request state.
    """

    def __init__(
        self,
        database: Database,
        config: Settings,
        policy: Optional[HttpPolicy] = None,
    ):
        self._db = database
        self._settings = config
        self._policy = policy or config.resolve_http_policy()

    @property
    def cookie_name(self) -> str:
        return self._policy.cookie_name

    # ── Token signing ─────────────────────────────────────────────────────

    def sign_token(self, token: str) -> str:
        return jwt.encode(
            {TOKEN_CLAIM: token},
            self._settings.auth_secret,
            algorithm=TOKEN_ALGORITHM,
        )

    def unsign_token(self, value: str) -> Optional[str]:
        """Return the raw token if the signature verifies, else None."""
        try:
            claims = jwt.decode(
                value,
                self._settings.auth_secret,
                algorithms=[TOKEN_ALGORITHM],
            )
        except JWTError as e:
            logger.debug("Session token rejected: %s", e)
            return None
        token = claims.get(TOKEN_CLAIM)
        return token if isinstance(token, str) and token else None

    def extract_token(self, headers: Mapping[str, str]) -> Optional[str]:
        """
        Find and verify the session token in request headers.

        The session cookie wins over an Authorization header when both exist.
        """
        signed = cookie_parser(headers.get("cookie", "")).get(self.cookie_name)
        if not signed:
            authorization = headers.get("authorization", "")
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() == "bearer":
                signed = credentials.strip()
        if not signed:
            return None
        return self.unsign_token(signed)

    # ── Cookies ───────────────────────────────────────────────────────────

    def set_session_cookie(self, response: Response, signed_token: str) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=signed_token,
            max_age=self._settings.session_expires_in,
            path="/",
            httponly=True,
            secure=self._policy.cookie_secure,
            samesite=self._policy.cookie_samesite,
        )

    def clear_session_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            httponly=True,
            secure=self._policy.cookie_secure,
            samesite=self._policy.cookie_samesite,
        )

    # ── Passwords ─────────────────────────────────────────────────────────

    @staticmethod
    def check_password_length(password: str) -> bytes:
        """Encode the password, rejecting what bcrypt would silently truncate."""
        secret = password.encode("utf-8")
        if len(secret) > BCRYPT_MAX_BYTES:
            raise ValidationError(
                message=f"Password must be at most {BCRYPT_MAX_BYTES} bytes long",
                field="password",
            )
        return secret

    async def hash_password(self, password: str) -> str:
        secret = self.check_password_length(password)
        salt = bcrypt.gensalt(rounds=self._settings.password_hash_rounds)
        hashed = await asyncio.to_thread(bcrypt.hashpw, secret, salt)
        return hashed.decode("utf-8")

    async def verify_password(self, password: str, hashed: str) -> bool:
        secret = password.encode("utf-8")
        if len(secret) > BCRYPT_MAX_BYTES:
            return False
        return await asyncio.to_thread(bcrypt.checkpw, secret, hashed.encode("utf-8"))

    # ── Sessions ──────────────────────────────────────────────────────────

    async def _create_session(
        self,
        user_id: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> Tuple[SessionInfo, str]:
        token = secrets.token_urlsafe(32)
        now = _utcnow()
        info = SessionInfo(
            id=uuid.uuid4().hex,
            user_id=user_id,
            expires_at=now + timedelta(seconds=self._settings.session_expires_in),
            created_at=now,
            updated_at=now,
        )
        await self._db.query(
            insert(sessions).values(
                id=info.id,
                user_id=user_id,
                token=token,
                expires_at=info.expires_at,
                ip_address=ip_address,
                user_agent=(user_agent or "")[:512] or None,
                created_at=now,
                updated_at=now,
            )
        )
        return info, self.sign_token(token)

    async def get_session(self, headers: Mapping[str, str]) -> Optional[AuthSession]:
        """
        Resolve headers to a live session.

        Returns None for a missing, forged, unknown or expired token. Expired
        rows are deleted on sight. A session older than `session_update_age`
        gets its expiry pushed out by another `session_expires_in`.

        Raises:
            DatabaseError: the session store could not be read
        """
        token = self.extract_token(headers)
        if token is None:
            return None

        rows = await self._db.query(
            select(
                sessions.c.id,
                sessions.c.user_id,
                sessions.c.expires_at,
                sessions.c.created_at,
                sessions.c.updated_at,
                users.c.email,
                users.c.name,
            )
            .select_from(sessions.join(users, sessions.c.user_id == users.c.id))
            .where(sessions.c.token == token)
        )
        if not rows:
            return None
        row = rows[0]

        now = _utcnow()
        expires_at = _as_utc(row["expires_at"])
        if expires_at <= now:
            await self._db.query(delete(sessions).where(sessions.c.id == row["id"]))
            logger.debug("Expired session %s removed", row["id"])
            return None

        updated_at = _as_utc(row["updated_at"])
        if now - updated_at > timedelta(seconds=self._settings.session_update_age):
            expires_at = now + timedelta(seconds=self._settings.session_expires_in)
            updated_at = now
            await self._db.query(
                update(sessions)
                .where(sessions.c.id == row["id"])
                .values(expires_at=expires_at, updated_at=now)
            )
            logger.debug("Session %s refreshed until %s", row["id"], expires_at.isoformat())

        return AuthSession(
            user=Principal(id=row["user_id"], email=row["email"], name=row["name"]),
            session=SessionInfo(
                id=row["id"],
                user_id=row["user_id"],
                expires_at=expires_at,
                created_at=_as_utc(row["created_at"]),
                updated_at=updated_at,
            ),
        )

    # ── Accounts ──────────────────────────────────────────────────────────

    async def sign_up(
        self,
        payload: SignUpRequest,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResponse:
        """
        Register a principal with email and password and open a session.

        Profile fields in the payload create the profile row right away. A
        failure there is logged and does not undo the registration; the user
        can complete the profile later through PUT /user/profile.

        Raises:
            ValidationError: the email is already registered, or the password
                             is too long for bcrypt
        """
        email = payload.email.strip().lower()
        existing = await self._db.query(select(users.c.id).where(users.c.email == email))
        if existing:
            raise ValidationError(message=DUPLICATE_EMAIL, field="email")

        password_hash = await self.hash_password(payload.password)
        user_id = uuid.uuid4().hex
        now = _utcnow()

        try:
            await self._db.query(
                insert(users).values(
                    id=user_id,
                    name=payload.name,
                    email=email,
                    created_at=now,
                    updated_at=now,
                )
            )
        except DatabaseError as e:
            # A concurrent sign-up for the same email won the unique constraint
            if isinstance(e.__cause__, IntegrityError):
                raise ValidationError(message=DUPLICATE_EMAIL, field="email") from e
            raise
        try:
            await self._db.query(
                insert(accounts).values(
                    id=uuid.uuid4().hex,
                    user_id=user_id,
                    provider_id=CREDENTIAL_PROVIDER,
                    account_id=user_id,
                    password=password_hash,
                    created_at=now,
                    updated_at=now,
                )
            )
        except DatabaseError:
            # No orphaned user without credentials
            await self._db.query(delete(users).where(users.c.id == user_id))
            raise

        profile_fields = {
            name: value
            for name, value in (
                ("skill_level", payload.skill_level),
                ("software_background", payload.software_background),
                ("hardware_background", payload.hardware_background),
                ("learning_goal", payload.learning_goal),
            )
            if value
        }
        if profile_fields:
            try:
                await profile_service.upsert_profile(self._db, user_id, profile_fields)
            except DatabaseError as e:
                logger.error(
                    "Profile creation during sign-up failed for user %s: %s",
                    user_id,
                    e.context.get("error_type", type(e).__name__),
                )

        session, signed = await self._create_session(user_id, ip_address, user_agent)
        logger.info("User %s signed up", user_id)
        return AuthResponse(
            token=signed,
            user=Principal(id=user_id, email=email, name=payload.name),
            session=session,
        )

    async def sign_in(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResponse:
        """
        Raises:
            AuthenticationError: unknown email or wrong password (same message)
        """
        rows = await self._db.query(
            select(users.c.id, users.c.email, users.c.name, accounts.c.password)
            .select_from(users.join(accounts, accounts.c.user_id == users.c.id))
            .where(users.c.email == email.strip().lower())
            .where(accounts.c.provider_id == CREDENTIAL_PROVIDER)
        )
        if not rows or not rows[0]["password"]:
            logger.info("Sign-in rejected: unknown email (ip=%s)", ip_address)
            raise AuthenticationError(message=INVALID_CREDENTIALS)

        row = rows[0]
        if not await self.verify_password(password, row["password"]):
            logger.info("Sign-in rejected: wrong password for user %s (ip=%s)", row["id"], ip_address)
            raise AuthenticationError(message=INVALID_CREDENTIALS)

        session, signed = await self._create_session(row["id"], ip_address, user_agent)
        logger.info("User %s signed in", row["id"])
        return AuthResponse(
            token=signed,
            user=Principal(id=row["id"], email=row["email"], name=row["name"]),
            session=session,
        )

    async def sign_out(self, headers: Mapping[str, str]) -> bool:
        """Delete the session named by the headers. Returns False if there was none."""
        token = self.extract_token(headers)
        if token is None:
            return False
        rows = await self._db.query(
            delete(sessions).where(sessions.c.token == token).returning(sessions.c.user_id)
        )
        if rows:
            logger.info("User %s signed out", rows[0]["user_id"])
        return bool(rows)

    # ── Password reset ────────────────────────────────────────────────────

    async def request_password_reset(self, email: str) -> Optional[str]:
        """
        Issue a single-use reset token for the account, if it exists.

        Returns the raw token (None for unknown emails). Callers must not echo
        it to the requester: the response is identical either way so that
        the endpoint cannot be used to probe for accounts.
        """
        rows = await self._db.query(
            select(users.c.id).where(users.c.email == email.strip().lower())
        )
        if not rows:
            logger.info("Password reset requested for unknown email")
            return None

        user_id = rows[0]["id"]
        identifier = f"{RESET_IDENTIFIER_PREFIX}{user_id}"
        token = secrets.token_urlsafe(32)
        now = _utcnow()

        await self._db.query(delete(verifications).where(verifications.c.identifier == identifier))
        await self._db.query(
            insert(verifications).values(
                id=uuid.uuid4().hex,
                identifier=identifier,
                value=_hash_token(token),
                expires_at=now + timedelta(seconds=self._settings.password_reset_ttl),
                created_at=now,
                updated_at=now,
            )
        )
        # TODO: deliver reset tokens by email once a mail provider is configured
        logger.info("Password reset token issued for user %s", user_id)
        return token

    async def reset_password(self, token: str, new_password: str) -> None:
        """
        Set a new password from a reset token and revoke every session.

        Raises:
            ValidationError: unknown, used or expired token, or a new password
                             bcrypt cannot take (the token stays usable)
        """
        self.check_password_length(new_password)

        rows = await self._db.query(
            select(verifications.c.id, verifications.c.identifier, verifications.c.expires_at)
            .where(verifications.c.value == _hash_token(token))
        )
        if not rows or not rows[0]["identifier"].startswith(RESET_IDENTIFIER_PREFIX):
            raise ValidationError(message="Invalid or expired reset token", field="token")

        row = rows[0]
        # Single use, whether or not it is still valid
        await self._db.query(delete(verifications).where(verifications.c.id == row["id"]))
        if _as_utc(row["expires_at"]) <= _utcnow():
            raise ValidationError(message="Invalid or expired reset token", field="token")

        user_id = row["identifier"][len(RESET_IDENTIFIER_PREFIX):]
        password_hash = await self.hash_password(new_password)
        await self._db.query(
            update(accounts)
            .where(accounts.c.user_id == user_id)
            .where(accounts.c.provider_id == CREDENTIAL_PROVIDER)
            .values(password=password_hash, updated_at=_utcnow())
        )
        await self._db.query(delete(sessions).where(sessions.c.user_id == user_id))
        logger.info("Password reset completed for user %s; all sessions revoked", user_id)


# ── Dependencies ──────────────────────────────────────────────────────────
def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_session_verifier(request: Request) -> SessionVerifier:
    """The verifier used by the access guard; tests replace it on app.state."""
    return request.app.state.session_verifier
