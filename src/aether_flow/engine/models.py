"""Domain models for missions, their task graph and agent profiles."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from aether_flow.storage.common import utc_now


class TaskStatus(str, Enum):
    """Execution lifecycle states of one task."""

    TODO = "todo"
    DECOMPOSING = "decomposing"
    IN_PROGRESS = "in_progress"
    AUDITING = "auditing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"
    PRUNED = "pruned"


class TaskStage(str, Enum):
    """Content maturity, orthogonal to status."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)


_STAGE_ORDER = (TaskStage.BRONZE, TaskStage.SILVER, TaskStage.GOLD)


class FlowStatus(str, Enum):
    """Mission-level run state."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ContentType(str, Enum):
    """Rendering hint for task output."""

    MARKDOWN = "markdown"
    CODE = "code"
    JSON = "json"


@dataclass(slots=True)
class TaskOutput:
    """Result payload stored once a task produced content."""

    content: str
    produced_at: datetime
    content_type: ContentType = ContentType.MARKDOWN

    @classmethod
    def from_result(cls, content: str) -> TaskOutput:
        """Wrap raw executor text, detecting fenced code."""

        content_type = ContentType.CODE if "```" in content else ContentType.MARKDOWN
        return cls(content=content, produced_at=utc_now(), content_type=content_type)


@dataclass(slots=True)
class Task:
    """One unit of work in a mission's dependency graph."""

    task_id: str
    flow_id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    stage: TaskStage = TaskStage.BRONZE
    depth: int = 0
    parent_id: str | None = None
    dependencies: list[str] = field(default_factory=list)
    assigned_role: str = ""
    requires_approval: bool = False
    output: TaskOutput | None = None
    retry_count: int = 0
    last_error: str | None = None
    audit_feedback: str | None = None
    guidance: list[str] = field(default_factory=list)
    pitfalls: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()


@dataclass(slots=True)
class FlowTelemetry:
    """Advisory counters updated opportunistically by the loop."""

    max_depth: int = 0
    pruned_count: int = 0
    decomposed_count: int = 0
    branching_factor: int = 3

    def observe_depth(self, depth: int) -> None:
        self.max_depth = max(self.max_depth, depth)


@dataclass(slots=True)
class Flow:
    """Mission aggregate: the task collection plus shared context."""

    flow_id: str
    name: str
    goal: str = ""
    owner_id: str = "default_user"
    status: FlowStatus = FlowStatus.IDLE
    tasks: list[Task] = field(default_factory=list)
    context_memory: dict[str, str] = field(default_factory=dict)
    telemetry: FlowTelemetry = field(default_factory=FlowTelemetry)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def get_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise KeyError(f"Unknown task id in flow {self.flow_id}: {task_id}")
        return task

    def siblings_of(self, task: Task) -> list[Task]:
        """Tasks sharing the same parent (roots are siblings of each other)."""

        return [
            other
            for other in self.tasks
            if other.parent_id == task.parent_id and other.task_id != task.task_id
        ]

    def children_of(self, task_id: str) -> list[Task]:
        return [task for task in self.tasks if task.parent_id == task_id]

    def hierarchy_path(self, task_id: str) -> list[str]:
        """Ids from the root ancestor down to ``task_id`` following ``parent_id``."""

        path: list[str] = []
        seen: set[str] = set()
        current = self.get_task(task_id)
        while current is not None and current.task_id not in seen:
            seen.add(current.task_id)
            path.append(current.task_id)
            if current.parent_id is None:
                break
            current = self.get_task(current.parent_id)
        path.reverse()
        return path

    def touch(self) -> None:
        self.updated_at = utc_now()


@dataclass(slots=True)
class AgentProfile:
    """Executing agent persona selected by a task's assigned role."""

    agent_id: str
    name: str
    role: str
    system_prompt: str
    owner_id: str = "default_user"
    agent: str | None = None
    model_profile: str | None = None
    model: str | None = None


def default_agent_profile(owner_id: str) -> AgentProfile:
    """Fallback profile used when a user has not configured any."""

    return AgentProfile(
        agent_id=f"agent-arch-{owner_id}",
        name="Architect-Prime",
        role="Meta-Architect",
        system_prompt=(
            "Systems architecture expert. Analyse requirements, plan task graphs "
            "and produce precise, self-contained deliverables."
        ),
        owner_id=owner_id,
        model_profile="quality",
    )
