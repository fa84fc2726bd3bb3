"""Gateway interface used by the orchestration loop and mission planning."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from aether_flow.engine.models import AgentProfile, Task
    from aether_flow.gateway.contracts import (
        AuditVerdict,
        IntegrityReport,
        Judgment,
        MissionPlan,
        SubtaskDraft,
    )


class GatewayOperation(str, Enum):
    """LLM operations the orchestrator relies on."""

    PLAN = "plan"
    VALIDATE_INTEGRITY = "validate_integrity"
    JUDGE = "judge"
    DECOMPOSE = "decompose"
    EXECUTE = "execute"
    AUDIT = "audit"


class GatewayError(RuntimeError):
    """LLM call failed for a reason other than quota exhaustion."""

    def __init__(self, message: str, *, operation: GatewayOperation | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class QuotaExhaustedError(GatewayError):
    """Provider signalled rate limiting or exhausted quota."""


class LlmGateway(Protocol):
    """Protocol implemented by LLM gateways."""

    def plan(self, goal: str, *, branching_factor: int) -> MissionPlan:
        """Turn a natural-language goal into a task graph."""

    def validate_integrity(self, task: Task, siblings: Sequence[Task]) -> IntegrityReport:
        """Check a task for contradictions against its siblings."""

    def judge(self, task: Task, context_digest: str, *, branching_factor: int) -> Judgment:
        """Decide whether to execute, decompose or prune a task."""

    def decompose(
        self,
        task: Task,
        context_digest: str,
        *,
        branching_factor: int,
    ) -> list[SubtaskDraft]:
        """Split a task into child drafts."""

    def execute(
        self,
        task: Task,
        profile: AgentProfile,
        context_digest: str,
        *,
        feedback: str | None = None,
    ) -> str:
        """Produce the task result text."""

    def audit(self, task: Task, result: str) -> AuditVerdict:
        """Approve or reject an execution result."""
