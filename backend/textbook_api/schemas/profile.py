"""
Textbook API — Profile Schemas
===============================

What:  Request/response models for GET and PUT /user/profile.

Partial update semantics:
    Every field of ProfileUpdateRequest is optional. A field that is absent,
    null or an empty string means "keep the stored value". `userId` is
    accepted only so that a mismatch can be detected and logged; the profile
    owner always comes from the verified session.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import ConfigDict, Field

from textbook_api.schemas.common import CamelModel

PROFILE_FIELDS = (
    "skill_level",
    "software_background",
    "hardware_background",
    "learning_goal",
)


class ProfileUpdateRequest(CamelModel):
    """PUT /user/profile body: any subset of the four profile fields."""

    model_config = ConfigDict(extra="ignore")

    skill_level: Optional[str] = Field(default=None, max_length=50)
    software_background: Optional[str] = Field(default=None, max_length=2000)
    hardware_background: Optional[str] = Field(default=None, max_length=2000)
    learning_goal: Optional[str] = Field(default=None, max_length=2000)

    # Never used as the owner; any JSON value, so a mismatch is logged, not rejected
    user_id: Optional[Any] = None

    def supplied_fields(self) -> Dict[str, str]:
        """Profile fields that carry a value, keyed by column name."""
        return {
            name: getattr(self, name)
            for name in PROFILE_FIELDS
            if getattr(self, name)
        }


class ProfileResponse(CamelModel):
    """A stored profile as returned to its owner."""

    user_id: str
    skill_level: Optional[str] = None
    software_background: Optional[str] = None
    hardware_background: Optional[str] = None
    learning_goal: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProfileEnvelope(CamelModel):
    success: bool = True
    profile: ProfileResponse


class ProfileUpdateEnvelope(CamelModel):
    success: bool = True
    message: str = "Profile updated successfully"
    profile: ProfileResponse
