"""Typed results of gateway operations and validation of raw LLM payloads.

Every LLM response is treated as untrusted input. The ``parse_*`` helpers
turn a decoded JSON object into a dataclass or raise ``ContractError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ContractError(ValueError):
    """LLM payload does not satisfy the operation contract."""


class JudgeDecision(str, Enum):
    EXECUTE = "execute"
    DECOMPOSE = "decompose"
    PRUNE = "prune"


@dataclass(slots=True)
class PlannedTask:
    """One task of a freshly planned mission."""

    task_id: str
    title: str
    description: str
    role: str
    dependencies: list[str] = field(default_factory=list)
    requires_approval: bool = False


@dataclass(slots=True)
class MissionPlan:
    project_name: str
    tasks: list[PlannedTask]


@dataclass(slots=True)
class IntegrityReport:
    is_valid: bool
    error: str | None = None
    recommendations: list[str] = field(default_factory=list)
    pitfalls: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Judgment:
    decision: JudgeDecision
    reasoning: str = ""


@dataclass(slots=True)
class SubtaskDraft:
    """Child proposal; ``local_id`` is made globally unique by the loop."""

    local_id: str
    title: str
    description: str
    role: str


@dataclass(slots=True)
class AuditVerdict:
    approved: bool
    feedback: str = ""


def parse_mission_plan(payload: dict[str, Any]) -> MissionPlan:
    """Validate a plan: at least one task, unique non-empty ids."""

    project_name = _optional_str(payload, "project_name", "projectName") or "Untitled mission"
    raw_tasks = payload.get("tasks")
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise ContractError("Plan must contain a non-empty 'tasks' array.")

    tasks: list[PlannedTask] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_tasks):
        if not isinstance(raw, dict):
            raise ContractError(f"Plan task #{index} is not an object.")
        task_id = _required_str(raw, "id", "task_id")
        if task_id in seen:
            raise ContractError(f"Duplicate task id in plan: {task_id!r}")
        seen.add(task_id)
        dependencies = [
            dep_id for dep_id in _str_list(raw, "dependencies") if dep_id != task_id
        ]
        tasks.append(
            PlannedTask(
                task_id=task_id,
                title=_required_str(raw, "title"),
                description=_optional_str(raw, "description") or "",
                role=_optional_str(raw, "role", "agentRole", "agent_role") or "",
                dependencies=dependencies,
                requires_approval=_optional_bool(
                    raw,
                    "requires_approval",
                    "requiresApproval",
                ),
            ),
        )
    return MissionPlan(project_name=project_name, tasks=tasks)


def parse_integrity_report(payload: dict[str, Any]) -> IntegrityReport:
    is_valid = payload.get("is_valid", payload.get("isValid"))
    if not isinstance(is_valid, bool):
        raise ContractError("Integrity report requires boolean 'is_valid'.")
    error = _optional_str(payload, "error")
    if not is_valid and not error:
        error = "Integrity check failed without a reported reason."
    return IntegrityReport(
        is_valid=is_valid,
        error=None if is_valid else error,
        recommendations=_str_list(payload, "recommendations"),
        pitfalls=_str_list(payload, "pitfalls"),
    )


def parse_judgment(payload: dict[str, Any]) -> Judgment:
    raw_decision = payload.get("decision")
    if not isinstance(raw_decision, str):
        raise ContractError("Judgment requires string 'decision'.")
    try:
        decision = JudgeDecision(raw_decision.strip().lower())
    except ValueError as error:
        raise ContractError(f"Unknown judgment decision: {raw_decision!r}") from error
    return Judgment(decision=decision, reasoning=_optional_str(payload, "reasoning") or "")


def parse_subtasks(payload: dict[str, Any], *, branching_factor: int) -> list[SubtaskDraft]:
    """Validate decomposition output; extra children beyond the factor are dropped."""

    raw_subtasks = payload.get("subtasks")
    if not isinstance(raw_subtasks, list):
        raise ContractError("Decomposition requires a 'subtasks' array.")

    drafts: list[SubtaskDraft] = []
    used_ids: set[str] = set()
    for index, raw in enumerate(raw_subtasks):
        if not isinstance(raw, dict):
            raise ContractError(f"Subtask #{index} is not an object.")
        local_id = _optional_str(raw, "id", "local_id") or str(index + 1)
        while local_id in used_ids:
            local_id = f"{local_id}_{index + 1}"
        used_ids.add(local_id)
        drafts.append(
            SubtaskDraft(
                local_id=local_id,
                title=_required_str(raw, "title"),
                description=_optional_str(raw, "description") or "",
                role=_optional_str(raw, "role", "agentRole", "agent_role") or "",
            ),
        )
    if len(drafts) < 2:
        raise ContractError(
            f"Decomposition must produce at least 2 subtasks, got {len(drafts)}.",
        )
    return drafts[:branching_factor]


def parse_audit_verdict(payload: dict[str, Any]) -> AuditVerdict:
    approved = payload.get("approved")
    if not isinstance(approved, bool):
        raise ContractError("Audit verdict requires boolean 'approved'.")
    feedback = _optional_str(payload, "feedback") or ""
    if not approved and not feedback:
        feedback = "Result rejected by audit without feedback."
    return AuditVerdict(approved=approved, feedback=feedback)


def _required_str(payload: dict[str, Any], *keys: str) -> str:
    value = _optional_str(payload, *keys)
    if not value:
        raise ContractError(f"Missing required string field: {keys[0]!r}")
    return value


def _optional_str(payload: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ContractError(f"Field {key!r} must be a string.")
        return value.strip()
    return None


def _optional_bool(payload: dict[str, Any], *keys: str) -> bool:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, bool):
            raise ContractError(f"Field {key!r} must be a boolean.")
        return value
    return False


def _str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ContractError(f"Field {key!r} must be an array of strings.")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ContractError(f"Field {key!r} must be an array of strings.")
        stripped = item.strip()
        if stripped and stripped not in items:
            items.append(stripped)
    return items
