"""Create user_profiles table

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  One profile row per principal (skill level, software and hardware
       background, learning goal), used for chapter personalization.
How:   UNIQUE(user_id) is the conflict target of the profile upsert;
       ON DELETE CASCADE removes the profile with its principal.

Rollback: downgrade() drops the table (destructive: all profiles lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "user_profiles",
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("skill_level", sa.String(50), nullable=True),
        sa.Column("software_background", sa.Text(), nullable=True),
        sa.Column("hardware_background", sa.Text(), nullable=True),
        sa.Column("learning_goal", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_user_profiles"),
        sa.UniqueConstraint("user_id", name="uq_user_profiles_user_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        comment="Reader profile collected at sign-up or later; drives personalization",
    )


def downgrade() -> None:
    op.drop_table("user_profiles")
