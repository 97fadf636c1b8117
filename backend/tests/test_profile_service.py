"""
Textbook API — Profile Service Tests
=====================================

What:  ProfileService against a real (SQLite) database, so the upsert
       statement itself is exercised, not a mock of it.

What we test:
    ✅ Missing profile raises NotFoundError
    ✅ First upsert creates the row
    ✅ Later upserts merge: unspecified fields keep their stored value,
       updated_at advances and created_at does not
    ✅ Empty strings count as "not supplied"
    ✅ No supplied field raises ValidationError without touching the database
"""

from datetime import datetime

import pytest
from sqlalchemy import insert

from textbook_api.exceptions import NotFoundError, ValidationError
from textbook_api.models.user import User
from textbook_api.services.profile_service import ProfileService


async def create_user(db, user_id="user-1", email="reader@example.com"):
    await db.query(insert(User.__table__).values(id=user_id, email=email, name="Reader"))


class TestGetProfile:

    def setup_method(self):
        self.service = ProfileService()

    @pytest.mark.asyncio
    async def test_missing_profile_raises_not_found(self, database):
        await create_user(database)

        with pytest.raises(NotFoundError) as exc_info:
            await self.service.get_profile(database, "user-1")

        assert exc_info.value.resource == "profile"

    @pytest.mark.asyncio
    async def test_find_profile_returns_none_when_missing(self, database):
        assert await self.service.find_profile(database, "nobody") is None


class TestUpsertProfile:

    def setup_method(self):
        self.service = ProfileService()

    @pytest.mark.asyncio
    async def test_first_upsert_creates_profile(self, database):
        await create_user(database)

        profile = await self.service.upsert_profile(
            database, "user-1", {"skill_level": "beginner", "learning_goal": "Build a robot arm"}
        )

        assert profile.user_id == "user-1"
        assert profile.skill_level == "beginner"
        assert profile.learning_goal == "Build a robot arm"
        assert profile.software_background is None
        assert profile.created_at is not None

    @pytest.mark.asyncio
    async def test_partial_update_keeps_unspecified_fields(self, database):
        await create_user(database)
        await self.service.upsert_profile(
            database,
            "user-1",
            {
                "skill_level": "beginner",
                "software_background": "Python beginner",
                "hardware_background": "Arduino",
                "learning_goal": "robotics",
            },
        )

        updated = await self.service.upsert_profile(database, "user-1", {"learning_goal": "AI agents"})

        assert updated.learning_goal == "AI agents"
        assert updated.skill_level == "beginner"
        assert updated.software_background == "Python beginner"
        assert updated.hardware_background == "Arduino"
        assert updated.updated_at >= updated.created_at

        stored = await self.service.get_profile(database, "user-1")
        assert stored == updated

    @pytest.mark.asyncio
    async def test_goal_only_first_write_leaves_other_fields_null(self, database):
        await create_user(database)

        profile = await self.service.upsert_profile(database, "user-1", {"learning_goal": "robotics"})

        assert profile.learning_goal == "robotics"
        assert profile.skill_level is None
        assert profile.software_background is None
        assert profile.hardware_background is None

    @pytest.mark.asyncio
    async def test_update_touches_only_given_field_and_timestamp(self, database):
        await create_user(database)
        await self.service.upsert_profile(
            database, "user-1", {"learning_goal": "robotics", "hardware_background": "Arduino"}
        )
        # CURRENT_TIMESTAMP has one-second resolution on SQLite
        await database.query(
            "UPDATE user_profiles SET created_at = :old, updated_at = :old WHERE user_id = :user_id",
            {"old": "2020-01-01 00:00:00", "user_id": "user-1"},
        )

        updated = await self.service.upsert_profile(database, "user-1", {"skill_level": "advanced"})

        long_ago = datetime(2020, 1, 1)
        assert updated.skill_level == "advanced"
        assert updated.learning_goal == "robotics"
        assert updated.hardware_background == "Arduino"
        assert updated.software_background is None
        assert updated.created_at.replace(tzinfo=None) == long_ago
        assert updated.updated_at.replace(tzinfo=None) > long_ago

    @pytest.mark.asyncio
    async def test_empty_string_does_not_overwrite(self, database):
        await create_user(database)
        await self.service.upsert_profile(database, "user-1", {"skill_level": "advanced"})

        updated = await self.service.upsert_profile(
            database, "user-1", {"skill_level": "", "hardware_background": "Jetson Nano"}
        )

        assert updated.skill_level == "advanced"
        assert updated.hardware_background == "Jetson Nano"

    @pytest.mark.asyncio
    async def test_one_row_per_user(self, database):
        await create_user(database)
        for goal in ("a", "b", "c"):
            await self.service.upsert_profile(database, "user-1", {"learning_goal": goal})

        rows = await database.query("SELECT COUNT(*) AS n FROM user_profiles WHERE user_id = 'user-1'")
        assert rows[0]["n"] == 1

    @pytest.mark.asyncio
    async def test_no_fields_rejected_before_query(self, mock_database):
        with pytest.raises(ValidationError):
            await self.service.upsert_profile(mock_database, "user-1", {"skill_level": None})

        mock_database.query.assert_not_awaited()
