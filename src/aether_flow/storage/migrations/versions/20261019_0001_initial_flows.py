"""Initial schema: users, flows and their ordered tasks."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"], unique=False)
    op.create_index("ix_users_display_name", "users", ["display_name"], unique=False)

    op.create_table(
        "flows",
        sa.Column("flow_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), server_default="default_user", nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("goal", sa.Text(), server_default="", nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("context_memory_json", sa.Text(), server_default="{}", nullable=False),
        sa.Column("max_depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pruned_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("decomposed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("branching_factor", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["users.user_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("flow_id"),
    )
    op.create_index("ix_flows_owner_id", "flows", ["owner_id"], unique=False)
    op.create_index("ix_flows_status", "flows", ["status"], unique=False)
    op.create_index("idx_flows_owner_updated", "flows", ["owner_id", "updated_at"], unique=False)

    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("flow_id", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parent_id", sa.String(), nullable=True),
        sa.Column("dependencies_json", sa.Text(), server_default="[]", nullable=False),
        sa.Column("assigned_role", sa.String(), nullable=False, server_default=""),
        sa.Column(
            "requires_approval",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("output_content", sa.Text(), nullable=True),
        sa.Column("output_produced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("output_content_type", sa.String(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("audit_feedback", sa.Text(), nullable=True),
        sa.Column("guidance_json", sa.Text(), server_default="[]", nullable=False),
        sa.Column("pitfalls_json", sa.Text(), server_default="[]", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["flow_id"], ["flows.flow_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("task_id", "flow_id"),
    )
    op.create_index("ix_tasks_status", "tasks", ["status"], unique=False)
    op.create_index("idx_tasks_flow_position", "tasks", ["flow_id", "position"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_tasks_flow_position", table_name="tasks")
    op.drop_index("ix_tasks_status", table_name="tasks")
    op.drop_table("tasks")
    op.drop_index("idx_flows_owner_updated", table_name="flows")
    op.drop_index("ix_flows_status", table_name="flows")
    op.drop_index("ix_flows_owner_id", table_name="flows")
    op.drop_table("flows")
    op.drop_index("ix_users_display_name", table_name="users")
    op.drop_index("ix_users_user_id", table_name="users")
    op.drop_table("users")
