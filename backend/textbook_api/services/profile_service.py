"""
Textbook API — Profile Service
===============================

What:  Reads and upserts the per-principal profile row.
Why:   Keeps the SQL and the partial-merge rule out of the route handlers.
How:   Plain parameterized statements through Database.query().
Who:   Profile and personalize routes, and sign-up (profile fields at registration).

Upsert semantics:
    INSERT ... ON CONFLICT (user_id) DO UPDATE SET
        field = COALESCE(excluded.field, user_profiles.field)
    A NULL parameter means "not supplied", so the stored value survives. The
    whole mutation is one statement, so row-level atomicity is enough and no
    explicit transaction spans multiple statements.
"""

import logging
import uuid
from typing import Dict, Optional

from sqlalchemy import DateTime, text

from textbook_api.database import Database
from textbook_api.exceptions import NotFoundError, ValidationError
from textbook_api.schemas.profile import PROFILE_FIELDS, ProfileResponse

logger = logging.getLogger(__name__)

_COLUMNS = (
    "user_id, skill_level, software_background, hardware_background, "
    "learning_goal, created_at, updated_at"
)

# Typed result columns so SQLite's text timestamps come back as datetimes too
_TIMESTAMP_TYPES = {
    "created_at": DateTime(timezone=True),
    "updated_at": DateTime(timezone=True),
}

SELECT_PROFILE = text(
    f"SELECT {_COLUMNS} FROM user_profiles WHERE user_id = :user_id"
).columns(**_TIMESTAMP_TYPES)

UPSERT_PROFILE = text(
    f"""
    INSERT INTO user_profiles (
        id, user_id, skill_level, software_background,
        hardware_background, learning_goal, created_at, updated_at
    )
    VALUES (
        :id, :user_id, :skill_level, :software_background,
        :hardware_background, :learning_goal, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP
    )
    ON CONFLICT (user_id) DO UPDATE SET
        skill_level = COALESCE(excluded.skill_level, user_profiles.skill_level),
        software_background = COALESCE(excluded.software_background, user_profiles.software_background),
        hardware_background = COALESCE(excluded.hardware_background, user_profiles.hardware_background),
        learning_goal = COALESCE(excluded.learning_goal, user_profiles.learning_goal),
        updated_at = CURRENT_TIMESTAMP
    RETURNING {_COLUMNS}
    """
).columns(**_TIMESTAMP_TYPES)


class ProfileService:
    """
    Stateless profile operations; the Database handle is passed per call.

    Responsibilities:
        - find_profile():   lookup that tolerates absence (personalization)
        - get_profile():    lookup that raises NotFoundError (GET /user/profile)
        - upsert_profile(): partial create-or-update keyed on the principal
    """

    async def find_profile(self, db: Database, user_id: str) -> Optional[ProfileResponse]:
        rows = await db.query(SELECT_PROFILE, {"user_id": user_id})
        if not rows:
            return None
        return ProfileResponse.model_validate(dict(rows[0]))

    async def get_profile(self, db: Database, user_id: str) -> ProfileResponse:
        """
        Raises:
            NotFoundError: the principal has not created a profile yet (→ 404)
        """
        profile = await self.find_profile(db, user_id)
        if profile is None:
            raise NotFoundError(
                resource="profile",
                message="User profile does not exist. Please complete your profile setup.",
                context={"user_id": user_id},
            )
        return profile

    async def upsert_profile(
        self,
        db: Database,
        user_id: str,
        fields: Dict[str, str],
    ) -> ProfileResponse:
        """
        Create the profile or merge the supplied fields into it.

        Args:
            db:      Database handle
            user_id: Owner, always taken from the verified session
            fields:  Column name → value; absent or empty values are ignored

        Raises:
            ValidationError: no field carries a value
        """
        supplied = {name: fields.get(name) or None for name in PROFILE_FIELDS}
        if not any(supplied.values()):
            raise ValidationError(
                message="At least one profile field must be provided",
                context={"allowed_fields": list(PROFILE_FIELDS)},
            )

        rows = await db.query(
            UPSERT_PROFILE,
            {"id": uuid.uuid4().hex, "user_id": user_id, **supplied},
        )
        logger.info(
            "Profile updated for user %s (fields: %s)",
            user_id,
            ", ".join(name for name, value in supplied.items() if value),
        )
        return ProfileResponse.model_validate(dict(rows[0]))


profile_service = ProfileService()
