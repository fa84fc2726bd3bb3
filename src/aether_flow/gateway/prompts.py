"""Prompt templates for each gateway operation."""

from __future__ import annotations

import json
from collections.abc import Sequence

from aether_flow.engine.models import AgentProfile, Task
from aether_flow.gateway.base import GatewayOperation

OPERATION_HEADER = "Operation: {operation}"

_JSON_ONLY_RULES = """
Output rules:
- Reply with a single JSON object and nothing else.
- Do not wrap the object in prose. A ```json fenced block is tolerated.
"""

PLAN_PROMPT = """\
You are the meta-architect of a task orchestration system.

Architect a mission for this goal:
{goal}

Break the goal into a dependency graph of high-level tasks. Keep each task
self-contained and assign it the role of the specialist who should do it.
Use short ids ("t1", "t2", ...). A task may depend only on ids in this plan.
Use at most {branching_factor} tasks per level of the hierarchy where possible.

JSON shape:
{{"project_name": "<short name>",
  "tasks": [{{"id": "t1", "title": "...", "description": "...", "role": "...",
             "dependencies": [], "requires_approval": false}}]}}
""" + _JSON_ONLY_RULES

INTEGRITY_PROMPT = """\
You are reviewing one task of a plan before any work starts.

Task {task_id}: {title}
Description: {description}

Sibling tasks at the same level:
{siblings}

Decide whether the task is coherent and does not contradict or duplicate its
siblings. List concrete recommendations for whoever executes it and the
pitfalls to avoid.

JSON shape:
{{"is_valid": true, "error": null, "recommendations": ["..."], "pitfalls": ["..."]}}
""" + _JSON_ONLY_RULES

JUDGE_PROMPT = """\
You decide how to handle one task of a larger mission.

Task {task_id}: {title}
Description: {description}
Depth in hierarchy: {depth}
Recommendations: {guidance}
Pitfalls: {pitfalls}

Results of finished tasks:
{context}

Choose exactly one decision:
- "execute": the task is small enough to be done in one answer.
- "decompose": the task needs 2 to {branching_factor} smaller sub-steps.
- "prune": the task is redundant given the finished results.

JSON shape:
{{"decision": "execute", "reasoning": "..."}}
""" + _JSON_ONLY_RULES

DECOMPOSE_PROMPT = """\
Split this task into between 2 and {branching_factor} sub-steps.

Task {task_id}: {title}
Description: {description}

Results of finished tasks:
{context}

Each sub-step needs a short local id ("1", "2", ...), a title, a description
and the role of the specialist who should do it.

JSON shape:
{{"subtasks": [{{"id": "1", "title": "...", "description": "...", "role": "..."}}]}}
""" + _JSON_ONLY_RULES

EXECUTE_PROMPT = """\
{system_prompt}

You are {agent_name} ({role}).

Execute: {title}
Description: {description}
Recommendations: {guidance}
Pitfalls: {pitfalls}

Context from finished tasks:
{context}
{feedback_block}
Reply with the deliverable itself in Markdown. Use fenced blocks for code.
"""

FEEDBACK_BLOCK = """
A previous attempt was rejected by the auditor. Address this feedback:
{feedback}
"""

AUDIT_PROMPT = """\
You are the auditor of a task orchestration system.

Task {task_id}: {title}
Description: {description}

Submitted result:
{result}

Approve the result only if it fully and correctly addresses the task.
When rejecting, give specific, actionable feedback.

JSON shape:
{{"approved": true, "feedback": "..."}}
""" + _JSON_ONLY_RULES


def build_plan_prompt(goal: str, *, branching_factor: int) -> str:
    return _with_header(
        GatewayOperation.PLAN,
        PLAN_PROMPT.format(goal=goal.strip(), branching_factor=branching_factor),
    )


def build_integrity_prompt(task: Task, siblings: Sequence[Task]) -> str:
    sibling_lines = "\n".join(
        f"- {sibling.task_id}: {sibling.title}" for sibling in siblings
    )
    return _with_header(
        GatewayOperation.VALIDATE_INTEGRITY,
        INTEGRITY_PROMPT.format(
            task_id=task.task_id,
            title=task.title,
            description=task.description or "(none)",
            siblings=sibling_lines or "(none)",
        ),
    )


def build_judge_prompt(task: Task, context_digest: str, *, branching_factor: int) -> str:
    return _with_header(
        GatewayOperation.JUDGE,
        JUDGE_PROMPT.format(
            task_id=task.task_id,
            title=task.title,
            description=task.description or "(none)",
            depth=task.depth,
            guidance=_join_or_none(task.guidance),
            pitfalls=_join_or_none(task.pitfalls),
            context=context_digest or "(none)",
            branching_factor=branching_factor,
        ),
    )


def build_decompose_prompt(task: Task, context_digest: str, *, branching_factor: int) -> str:
    return _with_header(
        GatewayOperation.DECOMPOSE,
        DECOMPOSE_PROMPT.format(
            task_id=task.task_id,
            title=task.title,
            description=task.description or "(none)",
            context=context_digest or "(none)",
            branching_factor=branching_factor,
        ),
    )


def build_execute_prompt(
    task: Task,
    profile: AgentProfile,
    context_digest: str,
    *,
    feedback: str | None,
) -> str:
    feedback_block = FEEDBACK_BLOCK.format(feedback=feedback.strip()) if feedback else ""
    return _with_header(
        GatewayOperation.EXECUTE,
        EXECUTE_PROMPT.format(
            system_prompt=profile.system_prompt.strip(),
            agent_name=profile.name,
            role=task.assigned_role or profile.role,
            title=task.title,
            description=task.description or "(none)",
            guidance=_join_or_none(task.guidance),
            pitfalls=_join_or_none(task.pitfalls),
            context=context_digest or "(none)",
            feedback_block=feedback_block,
        ),
    )


def build_audit_prompt(task: Task, result: str) -> str:
    return _with_header(
        GatewayOperation.AUDIT,
        AUDIT_PROMPT.format(
            task_id=task.task_id,
            title=task.title,
            description=task.description or "(none)",
            result=result.strip(),
        ),
    )


def read_operation(prompt: str) -> GatewayOperation | None:
    """Recover the operation from a rendered prompt's header line."""

    first_line = prompt.lstrip().split("\n", 1)[0]
    prefix = OPERATION_HEADER.format(operation="")
    if not first_line.startswith(prefix):
        return None
    try:
        return GatewayOperation(first_line[len(prefix) :].strip())
    except ValueError:
        return None


def _with_header(operation: GatewayOperation, body: str) -> str:
    return f"{OPERATION_HEADER.format(operation=operation.value)}\n\n{body}"


def _join_or_none(items: Sequence[str]) -> str:
    if not items:
        return "(none)"
    return json.dumps(list(items), ensure_ascii=False)
