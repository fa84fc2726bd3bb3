"""SQLModel ORM tables for flow persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlmodel import Field, SQLModel

DEFAULT_USER_ID = "default_user"


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True, index=True)
    display_name: str = Field(index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FlowRecord(SQLModel, table=True):
    __tablename__ = "flows"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_flows_owner_updated", "owner_id", "updated_at"),)

    flow_id: str = Field(primary_key=True)
    owner_id: str = Field(
        default=DEFAULT_USER_ID,
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            server_default=DEFAULT_USER_ID,
            index=True,
        ),
    )
    name: str
    goal: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    status: str = Field(index=True)
    context_memory_json: str = Field(
        default="{}",
        sa_column=Column(Text, nullable=False, server_default="{}"),
    )
    max_depth: int = 0
    pruned_count: int = 0
    decomposed_count: int = 0
    branching_factor: int = 3
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_flow_position", "flow_id", "position"),)

    task_id: str = Field(primary_key=True)
    flow_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("flows.flow_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    position: int
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    status: str = Field(index=True)
    stage: str
    depth: int = 0
    parent_id: str | None = None
    dependencies_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    assigned_role: str = ""
    requires_approval: bool = False
    output_content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    output_produced_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    output_content_type: str | None = None
    retry_count: int = 0
    last_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    audit_feedback: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    guidance_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    pitfalls_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AgentProfileRecord(SQLModel, table=True):
    __tablename__ = "agent_profiles"  # type: ignore[bad-override]

    agent_id: str = Field(primary_key=True)
    owner_id: str = Field(
        default=DEFAULT_USER_ID,
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            server_default=DEFAULT_USER_ID,
            index=True,
        ),
    )
    name: str
    role: str = Field(index=True)
    system_prompt: str = Field(sa_column=Column(Text, nullable=False))
    agent: str | None = None
    model_profile: str | None = None
    model: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CooldownRecord(SQLModel, table=True):
    __tablename__ = "cooldowns"  # type: ignore[bad-override]

    owner_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("users.user_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    cooldown_until: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
