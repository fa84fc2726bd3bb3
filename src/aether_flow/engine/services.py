"""Use-case services for planning, running and exporting missions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from aether_flow.config import EngineSettings
from aether_flow.engine.advisories import AdvisoryBoard, AdvisoryKind
from aether_flow.engine.cooldown import CooldownController
from aether_flow.engine.loop import LoopRunSummary, OrchestrationLoop
from aether_flow.engine.models import Flow, FlowTelemetry, Task
from aether_flow.gateway.base import LlmGateway, QuotaExhaustedError
from aether_flow.gateway.contracts import MissionPlan
from aether_flow.storage.repository import FlowRepository
from aether_flow.storage.sync import PersistenceSync

logger = logging.getLogger(__name__)

REPORT_SCHEMA_VERSION = 1


class CoolingDownError(RuntimeError):
    """Planning refused while the quota cooldown is active."""

    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(f"Cooling down: {remaining_seconds} s remaining")
        self.remaining_seconds = remaining_seconds


@dataclass(slots=True)
class MissionRunResult:
    flow: Flow
    summary: LoopRunSummary


class MissionService:
    """Coordinates gateway planning, flow persistence and loop runs."""

    def __init__(
        self,
        *,
        repository: FlowRepository,
        gateway: LlmGateway,
        cooldown: CooldownController,
        settings: EngineSettings,
        advisories: AdvisoryBoard | None = None,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.cooldown = cooldown
        self.cooldown.attach_store(repository)
        self.settings = settings
        self.advisories = advisories or AdvisoryBoard()
        self._active_loop: OrchestrationLoop | None = None

    def plan_mission(self, goal: str, *, branching_factor: int | None = None) -> Flow:
        """Ask the gateway for a task graph and store it as a new idle flow."""

        if not goal.strip():
            raise ValueError("Mission goal must not be empty.")
        if self.cooldown.is_active:
            raise CoolingDownError(self.cooldown.remaining)

        factor = branching_factor or self.settings.branching_factor
        try:
            plan = self.gateway.plan(goal, branching_factor=factor)
        except QuotaExhaustedError as error:
            remaining = self.cooldown.start(self.settings.cooldown_seconds)
            self.advisories.post(
                AdvisoryKind.COOLDOWN,
                f"Quota exhausted while planning; cooling down for {remaining} s.",
            )
            raise CoolingDownError(remaining) from error

        flow = build_flow_from_plan(
            plan,
            goal=goal,
            owner_id=self.repository.user_id,
            branching_factor=factor,
        )
        self.repository.save_flow(flow)
        logger.info("Planned flow %s with %d tasks", flow.flow_id, len(flow.tasks))
        return flow

    def run_mission(
        self,
        flow_id: str,
        *,
        max_steps: int | None = None,
        max_idle_polls: int | None = None,
    ) -> MissionRunResult:
        """Load a flow and drive it with the orchestration loop."""

        flow = self.repository.load_flow(flow_id)
        loop = OrchestrationLoop(
            gateway=self.gateway,
            cooldown=self.cooldown,
            settings=self.settings,
            sync=PersistenceSync(self.repository, advisories=self.advisories),
            advisories=self.advisories,
            agent_profiles=self.repository.list_agent_profiles(),
        )
        self._active_loop = loop
        try:
            summary = loop.run(flow, max_steps=max_steps, max_idle_polls=max_idle_polls)
        finally:
            self._active_loop = None
        return MissionRunResult(flow=flow, summary=summary)

    def pause(self) -> None:
        """Ask the running loop, if any, to pause after its current step."""

        if self._active_loop is not None:
            self._active_loop.request_stop()

    def export_report(self, flow_id: str) -> dict[str, Any]:
        return build_project_report(self.repository.load_flow(flow_id))


def build_flow_from_plan(
    plan: MissionPlan,
    *,
    goal: str,
    owner_id: str,
    branching_factor: int,
) -> Flow:
    flow_id = f"flow-{uuid4().hex[:12]}"
    tasks = [
        Task(
            task_id=planned.task_id,
            flow_id=flow_id,
            title=planned.title,
            description=planned.description,
            dependencies=list(planned.dependencies),
            assigned_role=planned.role,
            requires_approval=planned.requires_approval,
        )
        for planned in plan.tasks
    ]
    return Flow(
        flow_id=flow_id,
        name=plan.project_name,
        goal=goal.strip(),
        owner_id=owner_id,
        tasks=tasks,
        telemetry=FlowTelemetry(branching_factor=branching_factor),
    )


def build_project_report(flow: Flow) -> dict[str, Any]:
    """JSON-serializable snapshot of a flow and every task result."""

    return {
        "schema_version": REPORT_SCHEMA_VERSION,
        "flow_id": flow.flow_id,
        "name": flow.name,
        "goal": flow.goal,
        "status": flow.status.value,
        "created_at": flow.created_at.isoformat(),
        "updated_at": flow.updated_at.isoformat(),
        "telemetry": {
            "max_depth": flow.telemetry.max_depth,
            "pruned_count": flow.telemetry.pruned_count,
            "decomposed_count": flow.telemetry.decomposed_count,
            "branching_factor": flow.telemetry.branching_factor,
        },
        "tasks": [
            {
                "task_id": task.task_id,
                "title": task.title,
                "description": task.description,
                "status": task.status.value,
                "stage": task.stage.value,
                "depth": task.depth,
                "parent_id": task.parent_id,
                "path": flow.hierarchy_path(task.task_id),
                "dependencies": list(task.dependencies),
                "assigned_role": task.assigned_role,
                "requires_approval": task.requires_approval,
                "retry_count": task.retry_count,
                "last_error": task.last_error,
                "audit_feedback": task.audit_feedback,
                "guidance": list(task.guidance),
                "pitfalls": list(task.pitfalls),
                "output": (
                    {
                        "content": task.output.content,
                        "content_type": task.output.content_type.value,
                        "produced_at": task.output.produced_at.isoformat(),
                    }
                    if task.output is not None
                    else None
                ),
            }
            for task in flow.tasks
        ],
        "context_memory": dict(flow.context_memory),
    }
