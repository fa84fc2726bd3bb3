"""Single-flight orchestration loop driving tasks through their lifecycle.

One call to :meth:`OrchestrationLoop.step` advances at most one task:
integrity check, then judgment (prune, decompose or execute), then
execution and audit. Each step returns the delay before the next one, or
``None`` when the loop must halt.
"""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from aether_flow.config import EngineSettings
from aether_flow.engine.advisories import AdvisoryBoard, AdvisoryKind
from aether_flow.engine.cooldown import CooldownController
from aether_flow.engine.digest import build_context_digest, summarize_result
from aether_flow.engine.evaluator import (
    ACTIVE_STATUSES,
    dangling_dependencies,
    eligible_tasks,
    is_flow_complete,
    is_flow_stalled,
    unsatisfied_dependencies,
)
from aether_flow.engine.models import (
    AgentProfile,
    ContentType,
    Flow,
    FlowStatus,
    Task,
    TaskOutput,
    TaskStage,
    TaskStatus,
    default_agent_profile,
)
from aether_flow.gateway.base import LlmGateway, QuotaExhaustedError
from aether_flow.gateway.contracts import ContractError, JudgeDecision, SubtaskDraft
from aether_flow.storage.common import utc_now
from aether_flow.storage.sync import PersistenceSync

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    """What a single loop step did."""

    PAUSED = "paused"
    COOLING_DOWN = "cooling_down"
    COMPLETED = "completed"
    IDLE = "idle"
    INTEGRITY_PASSED = "integrity_passed"
    INTEGRITY_FAILED = "integrity_failed"
    PRUNED = "pruned"
    DECOMPOSED = "decomposed"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETRIES_EXHAUSTED = "retries_exhausted"
    FAILED = "failed"


@dataclass(slots=True)
class StepResult:
    kind: StepKind
    task_id: str | None = None
    next_delay: float | None = None
    failed_dangling: tuple[str, ...] = ()

    @property
    def halted(self) -> bool:
        return self.next_delay is None


@dataclass(slots=True)
class LoopRunSummary:
    """Aggregate loop counters for CLI reporting."""

    steps: int = 0
    executed: int = 0
    completed: int = 0
    failed: int = 0
    pruned: int = 0
    decomposed: int = 0
    rejected: int = 0
    integrity_passes: int = 0
    idle_polls: int = 0
    cooldowns: int = 0

    def record(self, result: StepResult) -> None:
        self.steps += 1
        self.failed += len(result.failed_dangling)
        kind = result.kind
        if kind is StepKind.APPROVED:
            self.executed += 1
            self.completed += 1
        elif kind is StepKind.REJECTED:
            self.executed += 1
            self.rejected += 1
        elif kind is StepKind.RETRIES_EXHAUSTED:
            self.executed += 1
            self.rejected += 1
            self.failed += 1
        elif kind in (StepKind.FAILED, StepKind.INTEGRITY_FAILED):
            self.failed += 1
        elif kind is StepKind.PRUNED:
            self.pruned += 1
        elif kind is StepKind.DECOMPOSED:
            self.decomposed += 1
        elif kind is StepKind.INTEGRITY_PASSED:
            self.integrity_passes += 1
        elif kind is StepKind.IDLE:
            self.idle_polls += 1
        elif kind is StepKind.COOLING_DOWN and result.task_id is not None:
            self.cooldowns += 1


class OrchestrationLoop:
    """Drives one flow at a time; never runs two tasks concurrently."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        gateway: LlmGateway,
        cooldown: CooldownController,
        settings: EngineSettings,
        sync: PersistenceSync | None = None,
        advisories: AdvisoryBoard | None = None,
        agent_profiles: Sequence[AgentProfile] = (),
    ) -> None:
        self.gateway = gateway
        self.cooldown = cooldown
        self.settings = settings
        self.sync = sync
        self.advisories = advisories or AdvisoryBoard()
        self.agent_profiles = list(agent_profiles)
        self._stop_requested = False
        self._stalled_flows: set[str] = set()

    def step(self, flow: Flow) -> StepResult:
        """Advance the flow by at most one task lifecycle step."""

        if flow.status is not FlowStatus.RUNNING:
            return StepResult(StepKind.PAUSED)
        if self.cooldown.is_active:
            return StepResult(StepKind.COOLING_DOWN)

        failed_dangling: tuple[str, ...] = ()
        if self.settings.dangling_dependency_policy == "fail":
            failed_dangling = self._fail_dangling(flow)

        eligible = eligible_tasks(flow.tasks)
        if not eligible:
            return self._no_eligible_task(flow, failed_dangling)
        self._stalled_flows.discard(flow.flow_id)

        task = eligible[0]
        try:
            result = self._advance(flow, task)
        except QuotaExhaustedError as error:
            result = self._enter_cooldown(flow, task, error)
        except Exception as error:
            logger.exception("Task %s failed in flow %s", task.task_id, flow.flow_id)
            result = self._fail_task(flow, task, str(error) or error.__class__.__name__)
        result.failed_dangling = failed_dangling
        return result

    def run(
        self,
        flow: Flow,
        *,
        max_steps: int | None = None,
        max_idle_polls: int | None = None,
    ) -> LoopRunSummary:
        """Drive ``step`` until the flow completes, pauses or a limit is hit.

        Args:
            max_steps: Stop (and pause the flow) after this many steps.
            max_idle_polls: Stop (and pause the flow) after this many
                consecutive idle polls. ``None`` keeps polling forever.
        """

        summary = LoopRunSummary()
        self._stop_requested = False
        recovered = self.recover_interrupted(flow)
        if recovered:
            logger.info("Re-queued interrupted tasks %s in flow %s", recovered, flow.flow_id)
        flow.status = FlowStatus.RUNNING
        self._persist(flow)
        logger.info("Flow %s running (%d tasks)", flow.flow_id, len(flow.tasks))

        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    self._pause(flow)
                    return summary
                if max_steps is not None and summary.steps >= max_steps:
                    self._pause(flow)
                    return summary

                result = self.step(flow)
                summary.record(result)

                if result.kind is StepKind.COMPLETED or result.kind is StepKind.PAUSED:
                    return summary
                if result.kind is StepKind.COOLING_DOWN:
                    if not self._resume_after_cooldown(flow):
                        return summary
                    continue

                if result.kind is StepKind.IDLE:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        self._pause(flow)
                        return summary
                else:
                    consecutive_idle = 0
                self._sleep_with_stop(result.next_delay or 0.0)

    def request_stop(self) -> None:
        """Let the in-flight step finish, then pause the flow."""

        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def recover_interrupted(self, flow: Flow) -> list[str]:
        """Re-queue tasks a previous run left mid-lifecycle."""

        recovered: list[str] = []
        for task in flow.tasks:
            if task.status in ACTIVE_STATUSES:
                task.status = TaskStatus.TODO
                task.touch()
                recovered.append(task.task_id)
        return recovered

    def select_profile(self, task: Task, owner_id: str) -> AgentProfile:
        for profile in self.agent_profiles:
            if profile.role == task.assigned_role:
                return profile
        if self.agent_profiles:
            return self.agent_profiles[0]
        return default_agent_profile(owner_id)

    def _advance(self, flow: Flow, task: Task) -> StepResult:
        if task.stage is TaskStage.BRONZE:
            return self._check_integrity(flow, task)

        digest = build_context_digest(flow, task)
        if task.status is TaskStatus.REJECTED:
            return self._execute(flow, task, digest, feedback=task.audit_feedback)

        judgment = self.gateway.judge(
            task,
            digest,
            branching_factor=flow.telemetry.branching_factor,
        )
        decision = judgment.decision
        if (
            decision is JudgeDecision.DECOMPOSE
            and task.depth >= self.settings.max_decomposition_depth
        ):
            logger.info(
                "Task %s at depth %d hit max decomposition depth, executing instead",
                task.task_id,
                task.depth,
            )
            decision = JudgeDecision.EXECUTE

        if decision is JudgeDecision.PRUNE:
            task.status = TaskStatus.PRUNED
            task.touch()
            flow.telemetry.pruned_count += 1
            self._persist(flow)
            logger.info("Pruned task %s: %s", task.task_id, judgment.reasoning)
            return StepResult(StepKind.PRUNED, task.task_id, self.settings.step_delay_seconds)
        if decision is JudgeDecision.DECOMPOSE:
            return self._decompose(flow, task, digest)
        return self._execute(flow, task, digest, feedback=None)

    def _check_integrity(self, flow: Flow, task: Task) -> StepResult:
        report = self.gateway.validate_integrity(task, flow.siblings_of(task))
        task.touch()
        if not report.is_valid:
            task.status = TaskStatus.FAILED
            task.last_error = report.error
            self._persist(flow)
            self.advisories.post(
                AdvisoryKind.ERROR,
                f"Task {task.task_id} failed integrity check: {report.error}",
            )
            logger.info("Task %s failed integrity: %s", task.task_id, report.error)
            return StepResult(
                StepKind.INTEGRITY_FAILED,
                task.task_id,
                self.settings.step_delay_seconds,
            )

        task.stage = TaskStage.SILVER
        task.guidance = list(report.recommendations)
        task.pitfalls = list(report.pitfalls)
        self._persist(flow)
        return StepResult(
            StepKind.INTEGRITY_PASSED,
            task.task_id,
            self.settings.integrity_delay_seconds,
        )

    def _decompose(self, flow: Flow, task: Task, digest: str) -> StepResult:
        task.status = TaskStatus.DECOMPOSING
        task.touch()
        self._persist(flow)

        branching_factor = flow.telemetry.branching_factor
        drafts = self.gateway.decompose(task, digest, branching_factor=branching_factor)
        if len(drafts) < 2:
            raise ContractError(
                f"Decomposition must produce at least 2 subtasks, got {len(drafts)}.",
            )
        children = self._build_children(flow, task, drafts[:branching_factor])
        flow.tasks.extend(children)

        task.status = TaskStatus.COMPLETED
        task.output = TaskOutput(
            content=_decomposition_summary(children),
            produced_at=utc_now(),
            content_type=ContentType.MARKDOWN,
        )
        task.touch()
        flow.telemetry.observe_depth(task.depth + 1)
        flow.telemetry.decomposed_count += 1
        self._persist(flow)
        logger.info(
            "Decomposed task %s into %s",
            task.task_id,
            [child.task_id for child in children],
        )
        return StepResult(
            StepKind.DECOMPOSED,
            task.task_id,
            self.settings.decompose_delay_seconds,
        )

    def _build_children(
        self,
        flow: Flow,
        parent: Task,
        drafts: Sequence[SubtaskDraft],
    ) -> list[Task]:
        inherited = unsatisfied_dependencies(parent, flow.tasks)
        taken = {task.task_id for task in flow.tasks}
        children: list[Task] = []
        for draft in drafts:
            child_id = _unique_child_id(f"{parent.task_id}.{draft.local_id}", taken)
            taken.add(child_id)
            children.append(
                Task(
                    task_id=child_id,
                    flow_id=flow.flow_id,
                    title=draft.title,
                    description=draft.description,
                    depth=parent.depth + 1,
                    parent_id=parent.task_id,
                    dependencies=list(inherited),
                    assigned_role=draft.role or parent.assigned_role,
                ),
            )
        return children

    def _execute(
        self,
        flow: Flow,
        task: Task,
        digest: str,
        *,
        feedback: str | None,
    ) -> StepResult:
        profile = self.select_profile(task, flow.owner_id)
        task.status = TaskStatus.IN_PROGRESS
        task.touch()
        self._persist(flow)

        result = self.gateway.execute(task, profile, digest, feedback=feedback)

        task.status = TaskStatus.AUDITING
        task.touch()
        self._persist(flow)

        verdict = self.gateway.audit(task, result)
        task.touch()
        delay = self.settings.step_delay_seconds
        if verdict.approved:
            task.status = TaskStatus.COMPLETED
            task.stage = TaskStage.GOLD
            task.output = TaskOutput.from_result(result)
            task.last_error = None
            flow.context_memory[task.task_id] = summarize_result(
                result,
                max_chars=self.settings.context_digest_chars,
            )
            self._persist(flow)
            logger.info("Task %s approved", task.task_id)
            return StepResult(StepKind.APPROVED, task.task_id, delay)

        task.retry_count += 1
        task.audit_feedback = verdict.feedback
        if task.retry_count > self.settings.max_audit_retries:
            task.status = TaskStatus.FAILED
            task.last_error = verdict.feedback
            self._persist(flow)
            self.advisories.post(
                AdvisoryKind.ERROR,
                f"Task {task.task_id} failed after {task.retry_count} rejected attempts.",
            )
            logger.info("Task %s exhausted audit retries", task.task_id)
            return StepResult(StepKind.RETRIES_EXHAUSTED, task.task_id, delay)

        task.status = TaskStatus.REJECTED
        self._persist(flow)
        logger.info("Task %s rejected (attempt %d)", task.task_id, task.retry_count)
        return StepResult(StepKind.REJECTED, task.task_id, delay)

    def _enter_cooldown(self, flow: Flow, task: Task, error: QuotaExhaustedError) -> StepResult:
        task.status = TaskStatus.TODO
        task.touch()
        flow.status = FlowStatus.PAUSED
        remaining = self.cooldown.start(self.settings.cooldown_seconds)
        self.advisories.post(
            AdvisoryKind.COOLDOWN,
            f"Quota exhausted; cooling down for {remaining} s before retrying {task.task_id}.",
        )
        logger.warning("Quota exhausted on task %s: %s", task.task_id, error)
        self._persist(flow)
        return StepResult(StepKind.COOLING_DOWN, task.task_id)

    def _fail_task(self, flow: Flow, task: Task, message: str) -> StepResult:
        task.status = TaskStatus.FAILED
        task.last_error = message
        task.touch()
        self._persist(flow)
        self.advisories.post(AdvisoryKind.ERROR, f"Task {task.task_id} failed: {message}")
        return StepResult(StepKind.FAILED, task.task_id, self.settings.step_delay_seconds)

    def _fail_dangling(self, flow: Flow) -> tuple[str, ...]:
        dangling = dangling_dependencies(flow.tasks)
        if not dangling:
            return ()
        for task_id, missing in dangling.items():
            task = flow.require_task(task_id)
            task.status = TaskStatus.FAILED
            task.last_error = f"Unknown dependencies: {', '.join(missing)}"
            task.touch()
            logger.info("Task %s failed on unknown dependencies %s", task_id, missing)
        self._persist(flow)
        return tuple(dangling)

    def _no_eligible_task(self, flow: Flow, failed_dangling: tuple[str, ...]) -> StepResult:
        if is_flow_complete(flow.tasks):
            flow.status = FlowStatus.COMPLETED
            self._persist(flow)
            self.advisories.post(AdvisoryKind.INFO, f"Mission {flow.name!r} completed.")
            logger.info("Flow %s completed", flow.flow_id)
            return StepResult(StepKind.COMPLETED, failed_dangling=failed_dangling)

        if is_flow_stalled(flow.tasks) and flow.flow_id not in self._stalled_flows:
            self._stalled_flows.add(flow.flow_id)
            self.advisories.post(
                AdvisoryKind.WARNING,
                f"Mission {flow.name!r} is stalled: remaining tasks wait on dependencies "
                "that cannot complete.",
            )
            logger.warning("Flow %s is stalled", flow.flow_id)
        return StepResult(
            StepKind.IDLE,
            next_delay=self.settings.idle_poll_seconds,
            failed_dangling=failed_dangling,
        )

    def _resume_after_cooldown(self, flow: Flow) -> bool:
        if not self.settings.auto_resume_after_cooldown:
            self._pause(flow)
            return False
        logger.info(
            "Waiting %d s for cooldown before resuming %s",
            self.cooldown.remaining,
            flow.flow_id,
        )
        if not self.cooldown.wait_until_clear(stop_requested=lambda: self._stop_requested):
            self._pause(flow)
            return False
        flow.status = FlowStatus.RUNNING
        self._persist(flow)
        self.advisories.post(AdvisoryKind.INFO, f"Cooldown finished; resuming {flow.name!r}.")
        return True

    def _pause(self, flow: Flow) -> None:
        if flow.status is FlowStatus.RUNNING:
            flow.status = FlowStatus.PAUSED
            self._persist(flow)
            logger.info("Flow %s paused", flow.flow_id)

    def _persist(self, flow: Flow) -> None:
        if self.sync is not None:
            self.sync.save(flow)
        else:
            flow.touch()

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received signal %s, pausing after the current step", signum)
            self.request_stop()

        try:
            original_sigint = signal.signal(signal.SIGINT, _handler)
            original_sigterm = signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _unique_child_id(candidate: str, taken: set[str]) -> str:
    if candidate not in taken:
        return candidate
    suffix = 2
    while f"{candidate}_{suffix}" in taken:
        suffix += 1
    return f"{candidate}_{suffix}"


def _decomposition_summary(children: Sequence[Task]) -> str:
    lines = ["Decomposed into:", ""]
    lines.extend(f"- `{child.task_id}` {child.title}" for child in children)
    return "\n".join(lines)
