"""Flow, agent-profile and cooldown persistence backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlmodel import Session, col, select

from aether_flow.engine.models import (
    AgentProfile,
    ContentType,
    Flow,
    FlowStatus,
    FlowTelemetry,
    Task,
    TaskOutput,
    TaskStage,
    TaskStatus,
    default_agent_profile,
)
from aether_flow.storage.alembic_runner import upgrade_head
from aether_flow.storage.common import build_sqlite_engine, ensure_utc, utc_now
from aether_flow.storage.sqlmodel_models import (
    DEFAULT_USER_ID,
    AgentProfileRecord,
    AppUser,
    CooldownRecord,
    FlowRecord,
    TaskRecord,
)


class FlowNotFoundError(LookupError):
    """Raised when a flow id does not exist in the current user scope."""


class FlowRepository:
    """Persistence facade for flows, their tasks and agent profiles."""

    def __init__(
        self,
        db_path: Path,
        *,
        user_id: str = DEFAULT_USER_ID,
        user_name: str = "Default User",
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.user_id = user_id
        self.user_name = user_name
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations and ensure actor context exists."""

        upgrade_head(self.db_path)
        self._ensure_actor_context()

    def _ensure_actor_context(self) -> None:
        with Session(self.engine) as session:
            user = session.exec(
                select(AppUser).where(AppUser.user_id == self.user_id),
            ).one_or_none()
            if user is not None:
                return
            session.add(
                AppUser(
                    user_id=self.user_id,
                    display_name=self.user_name,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def save_flow(self, flow: Flow) -> None:
        """Upsert the flow row and every task row in collection order."""

        if flow.owner_id != self.user_id:
            raise ValueError(
                f"Flow {flow.flow_id} belongs to {flow.owner_id!r}, "
                f"repository is scoped to {self.user_id!r}.",
            )
        with Session(self.engine) as session:
            session.merge(_to_flow_record(flow))
            for position, task in enumerate(flow.tasks):
                session.merge(_to_task_record(task, position=position))
            session.commit()

    def load_flow(self, flow_id: str) -> Flow:
        """Load one flow with its tasks in insertion order."""

        with Session(self.engine) as session:
            record = session.exec(
                select(FlowRecord).where(
                    FlowRecord.flow_id == flow_id,
                    FlowRecord.owner_id == self.user_id,
                ),
            ).one_or_none()
            if record is None:
                raise FlowNotFoundError(f"Flow not found: {flow_id}")
            task_rows = session.exec(
                select(TaskRecord)
                .where(TaskRecord.flow_id == flow_id)
                .order_by(col(TaskRecord.position).asc()),
            ).all()
            return _to_flow(record, task_rows)

    def list_flows(self, *, limit: int = 50) -> list[Flow]:
        """List flows for the current user, most recently updated first."""

        with Session(self.engine) as session:
            records = session.exec(
                select(FlowRecord)
                .where(FlowRecord.owner_id == self.user_id)
                .order_by(col(FlowRecord.updated_at).desc())
                .limit(limit),
            ).all()
            flows: list[Flow] = []
            for record in records:
                task_rows = session.exec(
                    select(TaskRecord)
                    .where(TaskRecord.flow_id == record.flow_id)
                    .order_by(col(TaskRecord.position).asc()),
                ).all()
                flows.append(_to_flow(record, task_rows))
            return flows

    def delete_flow(self, flow_id: str) -> bool:
        """Delete a flow and its tasks. Returns False when nothing matched."""

        with Session(self.engine) as session:
            record = session.exec(
                select(FlowRecord).where(
                    FlowRecord.flow_id == flow_id,
                    FlowRecord.owner_id == self.user_id,
                ),
            ).one_or_none()
            if record is None:
                return False
            session.exec(sa_delete(TaskRecord).where(col(TaskRecord.flow_id) == flow_id))
            session.delete(record)
            session.commit()
            return True

    def save_agent_profile(self, profile: AgentProfile) -> AgentProfile:
        """Insert or replace one agent profile for the current user."""

        with Session(self.engine) as session:
            session.merge(
                AgentProfileRecord(
                    agent_id=profile.agent_id,
                    owner_id=self.user_id,
                    name=profile.name,
                    role=profile.role,
                    system_prompt=profile.system_prompt,
                    agent=profile.agent,
                    model_profile=profile.model_profile,
                    model=profile.model,
                    created_at=utc_now(),
                ),
            )
            session.commit()
        profile.owner_id = self.user_id
        return profile

    def list_agent_profiles(self) -> list[AgentProfile]:
        """Stored profiles for the current user, or the built-in default."""

        with Session(self.engine) as session:
            records = session.exec(
                select(AgentProfileRecord)
                .where(AgentProfileRecord.owner_id == self.user_id)
                .order_by(col(AgentProfileRecord.created_at).asc()),
            ).all()
        if not records:
            return [default_agent_profile(self.user_id)]
        return [
            AgentProfile(
                agent_id=record.agent_id,
                name=record.name,
                role=record.role,
                system_prompt=record.system_prompt,
                owner_id=record.owner_id,
                agent=record.agent,
                model_profile=record.model_profile,
                model=record.model,
            )
            for record in records
        ]

    def load_cooldown_until(self) -> datetime | None:
        """Persisted quota cooldown deadline for the current user, if any."""

        with Session(self.engine) as session:
            record = session.get(CooldownRecord, self.user_id)
            if record is None or record.cooldown_until is None:
                return None
            return ensure_utc(record.cooldown_until)

    def save_cooldown_until(self, deadline: datetime | None) -> None:
        """Store (or clear with ``None``) the quota cooldown deadline."""

        with Session(self.engine) as session:
            session.merge(
                CooldownRecord(
                    owner_id=self.user_id,
                    cooldown_until=deadline,
                    updated_at=utc_now(),
                ),
            )
            session.commit()


def _to_flow_record(flow: Flow) -> FlowRecord:
    return FlowRecord(
        flow_id=flow.flow_id,
        owner_id=flow.owner_id,
        name=flow.name,
        goal=flow.goal,
        status=flow.status.value,
        context_memory_json=json.dumps(flow.context_memory, ensure_ascii=False),
        max_depth=flow.telemetry.max_depth,
        pruned_count=flow.telemetry.pruned_count,
        decomposed_count=flow.telemetry.decomposed_count,
        branching_factor=flow.telemetry.branching_factor,
        created_at=flow.created_at,
        updated_at=flow.updated_at,
    )


def _to_task_record(task: Task, *, position: int) -> TaskRecord:
    output = task.output
    return TaskRecord(
        task_id=task.task_id,
        flow_id=task.flow_id,
        position=position,
        title=task.title,
        description=task.description,
        status=task.status.value,
        stage=task.stage.value,
        depth=task.depth,
        parent_id=task.parent_id,
        dependencies_json=json.dumps(task.dependencies, ensure_ascii=False),
        assigned_role=task.assigned_role,
        requires_approval=task.requires_approval,
        output_content=output.content if output is not None else None,
        output_produced_at=output.produced_at if output is not None else None,
        output_content_type=output.content_type.value if output is not None else None,
        retry_count=task.retry_count,
        last_error=task.last_error,
        audit_feedback=task.audit_feedback,
        guidance_json=json.dumps(task.guidance, ensure_ascii=False),
        pitfalls_json=json.dumps(task.pitfalls, ensure_ascii=False),
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _to_flow(record: FlowRecord, task_rows: list[TaskRecord]) -> Flow:
    return Flow(
        flow_id=record.flow_id,
        name=record.name,
        goal=record.goal,
        owner_id=record.owner_id,
        status=FlowStatus(record.status),
        tasks=[_to_task(row) for row in task_rows],
        context_memory=_load_json_mapping(record.context_memory_json),
        telemetry=FlowTelemetry(
            max_depth=record.max_depth,
            pruned_count=record.pruned_count,
            decomposed_count=record.decomposed_count,
            branching_factor=record.branching_factor,
        ),
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


def _to_task(row: TaskRecord) -> Task:
    output: TaskOutput | None = None
    if row.output_content is not None:
        output = TaskOutput(
            content=row.output_content,
            produced_at=ensure_utc(row.output_produced_at or row.updated_at),
            content_type=ContentType(row.output_content_type or ContentType.MARKDOWN.value),
        )
    return Task(
        task_id=row.task_id,
        flow_id=row.flow_id,
        title=row.title,
        description=row.description,
        status=TaskStatus(row.status),
        stage=TaskStage(row.stage),
        depth=row.depth,
        parent_id=row.parent_id,
        dependencies=_load_json_list(row.dependencies_json),
        assigned_role=row.assigned_role,
        requires_approval=row.requires_approval,
        output=output,
        retry_count=row.retry_count,
        last_error=row.last_error,
        audit_feedback=row.audit_feedback,
        guidance=_load_json_list(row.guidance_json),
        pitfalls=_load_json_list(row.pitfalls_json),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
    )


def _load_json_list(raw: str) -> list[str]:
    parsed = json.loads(raw or "[]")
    if not isinstance(parsed, list):
        raise TypeError("Expected JSON array in task column")
    return [str(item) for item in parsed]


def _load_json_mapping(raw: str) -> dict[str, str]:
    parsed = json.loads(raw or "{}")
    if not isinstance(parsed, dict):
        raise TypeError("Expected JSON object in flow context memory")
    return {str(key): str(value) for key, value in parsed.items()}
