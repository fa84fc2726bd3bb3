"""Shared test fixtures."""

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest

from aether_flow.config import EngineSettings
from aether_flow.engine.cooldown import CooldownController
from aether_flow.engine.evaluator import ACTIVE_STATUSES
from aether_flow.engine.models import AgentProfile, Flow, FlowStatus, FlowTelemetry, Task
from aether_flow.gateway.base import GatewayOperation
from aether_flow.gateway.contracts import (
    AuditVerdict,
    IntegrityReport,
    JudgeDecision,
    Judgment,
    MissionPlan,
    PlannedTask,
    SubtaskDraft,
)

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m aether_flow.gateway.echo_agent --prompt-file {{prompt_file}}"
)
_SRC_DIR = Path(__file__).resolve().parents[1] / "src"


class ScriptedGateway:
    """In-memory gateway answering from per-task scripts.

    Unscripted calls succeed: integrity passes, judgment is ``execute`` and
    audits approve. Scripted entries are consumed in order. An exception
    queued in ``failures`` is raised instead of answering.
    """

    def __init__(self, owner: Callable[[], Flow | None] | None = None) -> None:
        self.integrity: dict[str, IntegrityReport] = {}
        self.decisions: dict[str, list[JudgeDecision]] = {}
        self.subtasks: dict[str, list[SubtaskDraft]] = {}
        self.verdicts: dict[str, list[AuditVerdict]] = {}
        self.failures: dict[tuple[GatewayOperation, str], list[Exception]] = {}
        self.plan_result: MissionPlan | None = None
        self.calls: list[tuple[GatewayOperation, str]] = []
        self.feedback_seen: list[tuple[str, str | None]] = []
        self.profiles_seen: list[tuple[str, str]] = []
        self.siblings_seen: dict[str, list[str]] = {}
        self.judge_factors: list[int] = []
        self.max_active_seen = 0
        self._owner = owner

    def watch(self, flow: Flow) -> None:
        """Track how many tasks are mid-lifecycle whenever the gateway is called."""

        self._owner = lambda: flow

    def plan(self, goal: str, *, branching_factor: int) -> MissionPlan:
        self._record(GatewayOperation.PLAN, goal)
        if self.plan_result is not None:
            return self.plan_result
        return MissionPlan(
            project_name="Scripted mission",
            tasks=[
                PlannedTask(task_id="t1", title="First", description="", role="Analyst"),
                PlannedTask(
                    task_id="t2",
                    title="Second",
                    description="",
                    role="Writer",
                    dependencies=["t1"],
                ),
            ],
        )

    def validate_integrity(self, task: Task, siblings: Sequence[Task]) -> IntegrityReport:
        self._record(GatewayOperation.VALIDATE_INTEGRITY, task.task_id)
        self.siblings_seen[task.task_id] = [sibling.task_id for sibling in siblings]
        return self.integrity.get(
            task.task_id,
            IntegrityReport(is_valid=True, recommendations=["be brief"], pitfalls=["scope"]),
        )

    def judge(self, task: Task, context_digest: str, *, branching_factor: int) -> Judgment:
        self._record(GatewayOperation.JUDGE, task.task_id)
        self.judge_factors.append(branching_factor)
        scripted = self.decisions.get(task.task_id)
        decision = scripted.pop(0) if scripted else JudgeDecision.EXECUTE
        return Judgment(decision=decision, reasoning="scripted")

    def decompose(
        self,
        task: Task,
        context_digest: str,
        *,
        branching_factor: int,
    ) -> list[SubtaskDraft]:
        self._record(GatewayOperation.DECOMPOSE, task.task_id)
        return list(
            self.subtasks.get(
                task.task_id,
                [
                    SubtaskDraft(local_id="1", title="Part one", description="", role=""),
                    SubtaskDraft(local_id="2", title="Part two", description="", role=""),
                ],
            ),
        )

    def execute(
        self,
        task: Task,
        profile: AgentProfile,
        context_digest: str,
        *,
        feedback: str | None = None,
    ) -> str:
        self._record(GatewayOperation.EXECUTE, task.task_id)
        self.feedback_seen.append((task.task_id, feedback))
        self.profiles_seen.append((task.task_id, profile.agent_id))
        return f"Result for {task.title}"

    def audit(self, task: Task, result: str) -> AuditVerdict:
        self._record(GatewayOperation.AUDIT, task.task_id)
        scripted = self.verdicts.get(task.task_id)
        if scripted:
            return scripted.pop(0)
        return AuditVerdict(approved=True, feedback="ok")

    def operations_for(self, task_id: str) -> list[GatewayOperation]:
        return [operation for operation, target in self.calls if target == task_id]

    def _record(self, operation: GatewayOperation, target: str) -> None:
        self.calls.append((operation, target))
        flow = self._owner() if self._owner is not None else None
        if flow is not None:
            active = sum(1 for task in flow.tasks if task.status in ACTIVE_STATUSES)
            self.max_active_seen = max(self.max_active_seen, active)
        queued = self.failures.get((operation, target))
        if queued:
            raise queued.pop(0)


@pytest.fixture()
def engine_settings() -> EngineSettings:
    """Engine policy with all delays at zero so loop runs finish instantly."""

    return EngineSettings(
        idle_poll_seconds=0.0,
        integrity_delay_seconds=0.0,
        step_delay_seconds=0.0,
        decompose_delay_seconds=0.0,
        cooldown_seconds=60,
    )


@pytest.fixture()
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture()
def gateway_factory() -> Callable[[], ScriptedGateway]:
    """For tests that simulate several processes, each with its own gateway."""

    return ScriptedGateway


@pytest.fixture()
def manual_cooldown() -> CooldownController:
    """Cooldown without the background ticker; tests tick it by hand."""

    return CooldownController(autostart_ticker=False)


@pytest.fixture()
def make_flow() -> Callable[..., Flow]:
    """Build a running flow from ``(task_id, dependencies)`` pairs."""

    def _make(
        specs: Sequence[tuple[str, Sequence[str]]],
        *,
        flow_id: str = "flow-test",
        status: FlowStatus = FlowStatus.RUNNING,
        branching_factor: int = 3,
    ) -> Flow:
        tasks = [
            Task(
                task_id=task_id,
                flow_id=flow_id,
                title=f"Task {task_id}",
                description=f"Do {task_id}",
                dependencies=list(dependencies),
            )
            for task_id, dependencies in specs
        ]
        return Flow(
            flow_id=flow_id,
            name="Test mission",
            goal="Test goal",
            status=status,
            tasks=tasks,
            telemetry=FlowTelemetry(branching_factor=branching_factor),
        )

    return _make


@pytest.fixture()
def echo_agent_env(monkeypatch, tmp_path: Path) -> Path:
    """Route every agent to the local echo agent with zero loop delays."""

    for agent in ("CLAUDE", "CODEX", "GEMINI"):
        monkeypatch.setenv(f"AETHER_LLM_{agent}_COMMAND_TEMPLATE", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("AETHER_WORKDIR", str(tmp_path / "workdir"))
    monkeypatch.setenv("AETHER_IDLE_POLL_SECONDS", "0")
    monkeypatch.setenv("AETHER_INTEGRITY_DELAY_SECONDS", "0")
    monkeypatch.setenv("AETHER_STEP_DELAY_SECONDS", "0")
    monkeypatch.setenv("AETHER_DECOMPOSE_DELAY_SECONDS", "0")
    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        str(_SRC_DIR) if not existing else f"{_SRC_DIR}{os.pathsep}{existing}",
    )
    monkeypatch.delenv("AETHER_ECHO_FAILURE", raising=False)
    monkeypatch.delenv("AETHER_ECHO_FAILURE_ON", raising=False)
    monkeypatch.delenv("AETHER_ECHO_DECISION", raising=False)
    return tmp_path / "workdir"
