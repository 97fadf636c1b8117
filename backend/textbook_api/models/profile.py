"""
Textbook API — User Profile SQLAlchemy Model
=============================================

What:  ORM model for the `user_profiles` table, the only table this system owns.
Why:   Extended per-principal data collected at sign-up and edited later,
       used to personalize chapter content.

Table Design Rationale:
    - user_id UNIQUE: exactly one profile per principal; it is also the
      ON CONFLICT target that makes the upsert idempotent
    - ON DELETE CASCADE: a profile never outlives its principal
    - all four profile fields nullable: profiles are created lazily by
      partial updates, so any subset may be missing
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from textbook_api.database import Base


class UserProfile(Base):
    """
    Skill level, backgrounds and learning goal of one principal.

    Lifecycle:
        1. Created on first write (sign-up with profile fields, or PUT /user/profile)
        2. Partially updated by its owner; unspecified fields keep their value
        3. Never deleted explicitly; removed with the principal
    """

    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    skill_level: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    software_background: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hardware_background: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    learning_goal: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<UserProfile(user_id={self.user_id}, skill_level='{self.skill_level}')>"
