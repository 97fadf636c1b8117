"""
Textbook API — Shared Response Schemas
=======================================

What:  Error and health response models used across all routers.
Why:   Clients parse one error shape everywhere: `{error, message}` plus the
       request correlation id and, on 429, `retryAfter`.

JSON field names are camelCase (the frontend's convention); Python attribute
names stay snake_case through pydantic's alias generator.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(CamelModel):
    """
    Standardized error body for every non-2xx response.

    Example:
        {
            "error": "rate_limit_exceeded",
            "message": "Too many authentication attempts. Please try again after 15 minutes.",
            "requestId": "a1b2c3d4",
            "retryAfter": 897
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")
    retry_after: Optional[int] = Field(
        default=None, description="Seconds until the request may be retried (429 only)"
    )


class HealthResponse(CamelModel):
    """
    Liveness payload returned by GET /health.

    Deliberately static: a liveness probe must not fail because the database
    is cold-starting, or the platform recycles a healthy instance.
    """

    status: str = Field(default="ok")
    timestamp: datetime
    service: str
    environment: str
    version: str
    uptime_seconds: float


class StatusResponse(CamelModel):
    """Acknowledgement for operations without a resource payload."""

    success: bool = True
    message: str
