"""Add per-user agent profiles selected by task role."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "agent_profiles",
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), server_default="default_user", nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("system_prompt", sa.Text(), nullable=False),
        sa.Column("agent", sa.String(), nullable=True),
        sa.Column("model_profile", sa.String(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("agent_id"),
    )
    op.create_index("ix_agent_profiles_owner_id", "agent_profiles", ["owner_id"], unique=False)
    op.create_index("ix_agent_profiles_role", "agent_profiles", ["role"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_agent_profiles_role", table_name="agent_profiles")
    op.drop_index("ix_agent_profiles_owner_id", table_name="agent_profiles")
    op.drop_table("agent_profiles")
