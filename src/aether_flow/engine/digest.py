"""Short digests of task results shared as context with later LLM calls."""

from __future__ import annotations

import re
from collections.abc import Callable

from aether_flow.engine.models import Flow, Task

MAX_DIGEST_ENTRIES = 12

_Replacement = str | Callable[[re.Match[str]], str]

_REPLACEMENTS: tuple[tuple[re.Pattern[str], _Replacement], ...] = (
    (
        re.compile(r"(?i)\b(bearer)\s+[a-z0-9._\-]{8,}\b"),
        r"\1 [redacted-token]",
    ),
    (
        re.compile(r"(?i)\b(sk-[a-z0-9\-]{8,})\b"),
        "[redacted-token]",
    ),
    (
        re.compile(
            r"(?i)\b(aether|openai|anthropic|gemini|google)[a-z0-9_]*_?(api_)?(key|token)\b"
            r"\s*[:=]\s*['\"]?[^'\" \n\r\t]+['\"]?",
        ),
        "[redacted-secret]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|key|signature|auth)=[^&\s]+)"),
        lambda match: match.group(1).split("=")[0] + "=[redacted]",
    ),
)
_WHITESPACE = re.compile(r"\s+")


def sanitize_preview(text: str, *, max_chars: int = 2_000) -> str:
    """Redact obvious secrets and clamp payload size."""

    compact = text.strip()
    if not compact:
        return ""

    redacted = compact
    for pattern, replacement in _REPLACEMENTS:
        redacted = pattern.sub(replacement, redacted)

    if len(redacted) <= max_chars:
        return redacted
    return redacted[:max_chars]


def summarize_result(content: str, *, max_chars: int) -> str:
    """One-line digest of an approved result for ``Flow.context_memory``."""

    collapsed = _WHITESPACE.sub(" ", sanitize_preview(content, max_chars=max_chars * 4))
    if len(collapsed) <= max_chars:
        return collapsed
    return collapsed[: max(0, max_chars - 3)].rstrip() + "..."


def build_context_digest(flow: Flow, task: Task) -> str:
    """Context lines for ``task``: its dependencies first, then ancestors, then the rest."""

    memory = flow.context_memory
    if not memory:
        return ""

    ordered: list[str] = []
    for task_id in [*task.dependencies, *flow.hierarchy_path(task.task_id)]:
        if task_id in memory and task_id not in ordered and task_id != task.task_id:
            ordered.append(task_id)
    for task_id in reversed(list(memory)):
        if task_id not in ordered and task_id != task.task_id:
            ordered.append(task_id)

    lines: list[str] = []
    for task_id in ordered[:MAX_DIGEST_ENTRIES]:
        source = flow.get_task(task_id)
        label = f"{task_id} ({source.title})" if source is not None else task_id
        lines.append(f"- {label}: {memory[task_id]}")
    return "\n".join(lines)
