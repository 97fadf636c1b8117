"""
Textbook API — Custom Exception Hierarchy
==========================================

What:  Application-specific exceptions for each failure class.
Why:   Targeted handling with the right HTTP status code and a client-safe
       message, instead of generic exceptions leaking internals.
How:   Each exception carries a message and an optional context dict.
       Global exception handlers (registered in main.py) turn them into
       `{error, message, requestId}` JSON bodies.
Who:   Raised by services, dependencies and middleware; caught by global handlers.

Exception Hierarchy:
    TextbookAPIError (base)
    ├── ConfigurationError        → fatal at startup (never an HTTP response)
    ├── ValidationError           → 400 Bad Request
    ├── AuthenticationError       → 401 Unauthorized
    ├── NotFoundError             → 404 Not Found
    ├── RateLimitExceededError    → 429 Too Many Requests
    ├── DatabaseError             → 500 Internal Server Error
    └── SessionVerificationError  → 500 Internal Server Error

The `context` dict is for logs only; it is never serialized into a response.
"""

from typing import Any, Dict, Optional


class TextbookAPIError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ConfigurationError(TextbookAPIError):
    """
    Raised when required configuration is missing or malformed.

    When:  Startup validation, or the pool manager's first use without a
           connection string.
    Effect: Aborts startup. Never converted into an HTTP response.
    """

    def __init__(
        self,
        message: str = "Configuration is invalid",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ValidationError(TextbookAPIError):
    """
    Raised when client input fails validation.

    HTTP:    400 Bad Request
    Example: PUT /user/profile with none of the four profile fields.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(TextbookAPIError):
    """
    Raised when a request has no valid session, or credentials are wrong.

    HTTP:    401 Unauthorized
    Note:    Sign-in uses one message for "unknown email" and "wrong password"
             so the response does not reveal which accounts exist.
    """

    def __init__(
        self,
        message: str = "You must be logged in to access this resource",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(TextbookAPIError):
    """
    Raised when a requested resource does not exist.

    HTTP:    404 Not Found
    When:    GET /user/profile before the profile has been created.
    """

    def __init__(
        self,
        resource: str = "resource",
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["resource"] = resource
        super().__init__(message=message or f"The requested {resource} was not found", context=ctx)
        self.resource = resource


class RateLimitExceededError(TextbookAPIError):
    """
    Raised when a client exceeds the limit of a route class.

    HTTP:    429 Too Many Requests
    Response includes `retryAfter` (seconds) and a Retry-After header.
    """

    def __init__(
        self,
        retry_after: int = 60,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = (
                f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
            )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class DatabaseError(TextbookAPIError):
    """
    Raised when a database operation fails.

    HTTP:    500 Internal Server Error
    Security Note:
        The client always gets a generic message. The context carries the
        first 100 characters of the statement and the parameter count, never
        parameter values (they can hold emails and password hashes).
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SessionVerificationError(TextbookAPIError):
    """
    Raised when the session verifier itself fails (not "no session").

    HTTP:    500 Internal Server Error, generic message
    Why separate from AuthenticationError: a broken verifier is a server
    fault; answering 401 would log users out for our own outage.
    """

    def __init__(
        self,
        message: str = "An error occurred while verifying your session",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
