from __future__ import annotations

import allure

from aether_flow.engine.digest import (
    MAX_DIGEST_ENTRIES,
    build_context_digest,
    sanitize_preview,
    summarize_result,
)

pytestmark = [
    allure.epic("Orchestration Loop"),
    allure.feature("Context Digest"),
]


def test_sanitize_preview_redacts_secrets() -> None:
    raw = (
        "Authorization: Bearer abcdefghijklmnop\n"
        "OPENAI_API_KEY=sk-supersecretvalue\n"
        "url https://x.test/cb?token=abc123&x=1"
    )

    cleaned = sanitize_preview(raw)

    assert "abcdefghijklmnop" not in cleaned
    assert "supersecretvalue" not in cleaned
    assert "abc123" not in cleaned
    assert "Bearer [redacted-token]" in cleaned
    assert "?token=[redacted]" in cleaned


def test_sanitize_preview_clamps_and_handles_blank() -> None:
    assert sanitize_preview("   ") == ""
    assert sanitize_preview("x" * 50, max_chars=10) == "x" * 10


def test_summarize_result_collapses_whitespace_and_truncates() -> None:
    assert summarize_result("line one\n\n  line two", max_chars=100) == "line one line two"

    summary = summarize_result("word " * 40, max_chars=20)

    assert len(summary) <= 20
    assert summary.endswith("...")


def test_digest_orders_dependencies_then_ancestors_then_newest(make_flow) -> None:
    flow = make_flow([("root", []), ("a", []), ("b", []), ("c", []), ("child", ["b"])])
    flow.require_task("child").parent_id = "root"
    flow.context_memory = {
        "a": "alpha",
        "root": "root summary",
        "c": "gamma",
        "b": "beta",
    }

    digest = build_context_digest(flow, flow.require_task("child"))

    assert digest.splitlines() == [
        "- b (Task b): beta",
        "- root (Task root): root summary",
        "- c (Task c): gamma",
        "- a (Task a): alpha",
    ]


def test_digest_excludes_task_itself_and_caps_entries(make_flow) -> None:
    specs = [(f"t{index}", []) for index in range(MAX_DIGEST_ENTRIES + 5)]
    flow = make_flow(specs)
    flow.context_memory = {task_id: f"done {task_id}" for task_id, _ in specs}
    target = flow.require_task("t0")

    lines = build_context_digest(flow, target).splitlines()

    assert len(lines) == MAX_DIGEST_ENTRIES
    assert all(not line.startswith("- t0 ") for line in lines)
    assert build_context_digest(make_flow([("x", [])]), target) == ""
