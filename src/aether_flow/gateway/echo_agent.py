"""Local deterministic agent for CLI gateway smoke runs and tests.

Usage in a command template::

    python -m aether_flow.gateway.echo_agent --prompt-file {prompt_file}

``AETHER_ECHO_FAILURE=quota|error`` makes every call (or only the operations
listed in ``AETHER_ECHO_FAILURE_ON``) fail the way a real CLI would.
``AETHER_ECHO_DECISION`` overrides the judgment (default ``execute``).
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from aether_flow.gateway.base import GatewayOperation
from aether_flow.gateway.prompts import read_operation


def main(argv: list[str] | None = None) -> int:
    """Answer one rendered prompt with a canned payload on stdout."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8")
    operation = read_operation(prompt)
    if operation is None:
        sys.stderr.write("echo_agent: prompt has no operation header\n")
        return 2

    failure = os.getenv("AETHER_ECHO_FAILURE", "").strip().lower()
    if failure and _failure_applies(operation):
        if failure == "quota":
            sys.stderr.write("Error 429 RESOURCE_EXHAUSTED: quota exceeded for this project\n")
            return 1
        sys.stderr.write("echo_agent: simulated internal failure\n")
        return 3

    if operation is GatewayOperation.EXECUTE:
        title = _field(prompt, "Execute:") or "task"
        sys.stdout.write(f"# {title}\n\nCompleted by echo agent.\n")
        return 0

    sys.stdout.write(json.dumps(_payload_for(operation, prompt), ensure_ascii=False))
    sys.stdout.write("\n")
    return 0


def _payload_for(operation: GatewayOperation, prompt: str) -> dict[str, object]:
    if operation is GatewayOperation.PLAN:
        return {
            "project_name": "Echo mission",
            "tasks": [
                {
                    "id": "t1",
                    "title": "Gather requirements",
                    "description": "List what the goal needs.",
                    "role": "Analyst",
                    "dependencies": [],
                    "requires_approval": False,
                },
                {
                    "id": "t2",
                    "title": "Deliver result",
                    "description": "Produce the final deliverable.",
                    "role": "Meta-Architect",
                    "dependencies": ["t1"],
                    "requires_approval": False,
                },
            ],
        }
    if operation is GatewayOperation.VALIDATE_INTEGRITY:
        return {
            "is_valid": True,
            "error": None,
            "recommendations": ["Keep the result short."],
            "pitfalls": ["Scope creep."],
        }
    if operation is GatewayOperation.JUDGE:
        decision = os.getenv("AETHER_ECHO_DECISION", "execute").strip().lower()
        return {"decision": decision, "reasoning": "echo agent"}
    if operation is GatewayOperation.DECOMPOSE:
        title = _field(prompt, "Task ") or "task"
        return {
            "subtasks": [
                {"id": "1", "title": f"{title}: part one", "description": "", "role": ""},
                {"id": "2", "title": f"{title}: part two", "description": "", "role": ""},
            ],
        }
    return {"approved": True, "feedback": "Looks complete."}


def _failure_applies(operation: GatewayOperation) -> bool:
    raw = os.getenv("AETHER_ECHO_FAILURE_ON", "").strip()
    if not raw:
        return True
    return operation.value in {item.strip().lower() for item in raw.split(",")}


def _field(prompt: str, prefix: str) -> str | None:
    for line in prompt.splitlines():
        if line.startswith(prefix):
            return line[len(prefix) :].strip()
    return None


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
