"""Controllers for mission and agent CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from aether_flow.config import Settings
from aether_flow.engine.advisories import AdvisoryBoard
from aether_flow.engine.cooldown import CooldownController
from aether_flow.engine.evaluator import eligible_tasks
from aether_flow.engine.models import AgentProfile, Flow, TaskStatus
from aether_flow.engine.services import MissionService
from aether_flow.gateway.base import LlmGateway
from aether_flow.gateway.cli_gateway import CliLlmGateway
from aether_flow.gateway.routing import SUPPORTED_PROFILES
from aether_flow.storage.repository import FlowRepository

GatewayFactory = Callable[[Settings], LlmGateway]


@dataclass(slots=True)
class MissionPlanCommand:
    """CLI input for mission planning."""

    db_path: Path | None
    goal: str
    branching_factor: int | None = None


@dataclass(slots=True)
class MissionRunCommand:
    """CLI input for running the orchestration loop on one mission."""

    db_path: Path | None
    flow_id: str
    max_steps: int | None = None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class MissionListCommand:
    db_path: Path | None
    limit: int = 20


@dataclass(slots=True)
class MissionInspectCommand:
    db_path: Path | None
    flow_id: str


@dataclass(slots=True)
class MissionExportCommand:
    """CLI input for JSON report export."""

    db_path: Path | None
    flow_id: str
    output_path: Path | None = None


@dataclass(slots=True)
class MissionDeleteCommand:
    db_path: Path | None
    flow_id: str


@dataclass(slots=True)
class AgentListCommand:
    db_path: Path | None


@dataclass(slots=True)
class AgentAddCommand:
    """CLI input for registering an agent profile."""

    db_path: Path | None
    name: str
    role: str
    system_prompt: str
    agent: str | None = None
    model_profile: str | None = None
    model: str | None = None


class MissionCliController:
    """Coordinates planning, loop runs and inspection CLI operations."""

    def __init__(self, *, gateway_factory: GatewayFactory | None = None) -> None:
        self._gateway_factory = gateway_factory or _cli_gateway
        self.cooldown = CooldownController()
        self.advisories = AdvisoryBoard()

    def plan(self, command: MissionPlanCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            flow = self._service(settings, repository).plan_mission(
                command.goal,
                branching_factor=command.branching_factor,
            )
        lines = [
            f"Mission planned: flow_id={flow.flow_id} name={flow.name!r} tasks={len(flow.tasks)}",
        ]
        lines.extend(_render_task_lines(flow))
        return lines

    def run(self, command: MissionRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            result = self._service(settings, repository).run_mission(
                command.flow_id,
                max_steps=command.max_steps,
                max_idle_polls=command.max_idle_polls,
            )
        summary = result.summary
        lines = [
            f"Mission {result.flow.flow_id} status={result.flow.status.value}",
            "Loop summary: "
            f"steps={summary.steps} executed={summary.executed} "
            f"completed={summary.completed} failed={summary.failed} "
            f"pruned={summary.pruned} decomposed={summary.decomposed} "
            f"rejected={summary.rejected} integrity_passes={summary.integrity_passes} "
            f"idle_polls={summary.idle_polls} cooldowns={summary.cooldowns}",
        ]
        lines.extend(self._advisory_lines())
        return lines

    def list_missions(self, command: MissionListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            flows = repository.list_flows(limit=command.limit)
        if not flows:
            return ["No missions found."]
        lines = ["flow_id | status | tasks | done | name"]
        for flow in flows:
            done = sum(1 for task in flow.tasks if task.status is TaskStatus.COMPLETED)
            lines.append(
                f"{flow.flow_id} | {flow.status.value} | {len(flow.tasks)} | {done} | {flow.name}",
            )
        return lines

    def inspect(self, command: MissionInspectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            flow = repository.load_flow(command.flow_id)
        telemetry = flow.telemetry
        eligible = ", ".join(task.task_id for task in eligible_tasks(flow.tasks)) or "-"
        lines = [
            f"Mission: {flow.name} ({flow.flow_id})",
            f"Goal: {flow.goal}",
            f"Status: {flow.status.value}",
            "Telemetry: "
            f"max_depth={telemetry.max_depth} pruned={telemetry.pruned_count} "
            f"decomposed={telemetry.decomposed_count} "
            f"branching_factor={telemetry.branching_factor}",
            f"Eligible now: {eligible}",
            "Tasks:",
        ]
        lines.extend(_render_task_lines(flow))
        lines.extend(self._advisory_lines())
        return lines

    def export(self, command: MissionExportCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            report = self._service(settings, repository).export_report(command.flow_id)
        payload = json.dumps(report, ensure_ascii=False, indent=2)
        if command.output_path is None:
            return payload.splitlines()
        command.output_path.parent.mkdir(parents=True, exist_ok=True)
        command.output_path.write_text(payload + "\n", "utf-8")
        return [f"Report written: {command.output_path}"]

    def delete(self, command: MissionDeleteCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            deleted = repository.delete_flow(command.flow_id)
        if not deleted:
            raise LookupError(f"Flow not found: {command.flow_id}")
        return [f"Mission deleted: {command.flow_id}"]

    def list_agents(self, command: AgentListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            profiles = repository.list_agent_profiles()
        return [
            f"{profile.agent_id} | {profile.name} | {profile.role} | "
            f"agent={profile.agent or 'default'} profile={profile.model_profile or 'default'}"
            + (f" model={profile.model}" if profile.model else "")
            for profile in profiles
        ]

    def add_agent(self, command: AgentAddCommand) -> list[str]:
        if command.model_profile is not None and command.model_profile not in SUPPORTED_PROFILES:
            raise ValueError(
                f"Unsupported model profile: {command.model_profile!r}. "
                f"Use one of {SUPPORTED_PROFILES}.",
            )
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            profile = repository.save_agent_profile(
                AgentProfile(
                    agent_id=f"agent-{uuid4().hex[:12]}",
                    name=command.name.strip(),
                    role=command.role.strip(),
                    system_prompt=command.system_prompt.strip(),
                    agent=command.agent,
                    model_profile=command.model_profile,
                    model=command.model,
                ),
            )
        return [f"Agent added: agent_id={profile.agent_id} role={profile.role!r}"]

    def _service(self, settings: Settings, repository: FlowRepository) -> MissionService:
        return MissionService(
            repository=repository,
            gateway=self._gateway_factory(settings),
            cooldown=self.cooldown,
            settings=settings.engine,
            advisories=self.advisories,
        )

    def _advisory_lines(self) -> list[str]:
        latest = self.advisories.latest
        if latest is None:
            return []
        return [f"Advisory: {latest.render()}"]


def _render_task_lines(flow: Flow) -> list[str]:
    lines: list[str] = []
    for task in flow.tasks:
        indent = "  " * (task.depth + 1)
        deps = f" deps={','.join(task.dependencies)}" if task.dependencies else ""
        approval = " [approval]" if task.requires_approval else ""
        lines.append(
            f"{indent}{task.task_id} [{task.status.value}/{task.stage.value}] "
            f"{task.title}{deps}{approval}",
        )
        if task.last_error:
            lines.append(f"{indent}  error: {task.last_error}")
    return lines


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _cli_gateway(settings: Settings) -> LlmGateway:
    return CliLlmGateway(settings.gateway)


@contextmanager
def _repository(settings: Settings) -> Iterator[FlowRepository]:
    repository = FlowRepository(
        db_path=settings.db_path,
        user_id=settings.user_context.user_id,
        user_name=settings.user_context.user_name,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
