from __future__ import annotations

import allure
import pytest

from aether_flow.gateway.failure_classifier import (
    FailureClass,
    classify_failure,
    is_quota_message,
)

pytestmark = [
    allure.epic("LLM Gateway"),
    allure.feature("Failure Classification"),
]


@pytest.mark.parametrize(
    "stderr",
    [
        "HTTP 429",
        "status: RESOURCE_EXHAUSTED",
        "Quota exceeded for this project",
        "Rate limit reached",
        "Too Many Requests",
    ],
)
def test_quota_markers_are_detected(stderr: str) -> None:
    classified = classify_failure(agent="gemini", exit_code=1, stdout="", stderr=stderr)

    assert classified.failure_class is FailureClass.QUOTA
    assert classified.is_quota
    assert classified.reason_code == "gemini_quota_exhausted"


def test_quota_wins_over_timeout() -> None:
    classified = classify_failure(
        agent="codex",
        exit_code=124,
        stdout="429 too many requests",
        stderr="",
        timed_out=True,
    )

    assert classified.failure_class is FailureClass.QUOTA


def test_timeout_without_quota_markers() -> None:
    classified = classify_failure(agent="codex", exit_code=124, stdout="", stderr="", timed_out=True)

    assert classified.failure_class is FailureClass.TIMEOUT


def test_model_unavailable_and_auth() -> None:
    model = classify_failure(agent="claude", exit_code=1, stdout="", stderr="Invalid model requested")
    auth = classify_failure(agent="claude", exit_code=1, stdout="", stderr="401 Unauthorized")

    assert model.failure_class is FailureClass.MODEL_NOT_AVAILABLE
    assert model.reason_code == "claude_model_not_available"
    assert auth.failure_class is FailureClass.ACCESS_OR_AUTH


def test_falls_back_to_non_retryable_with_exit_code() -> None:
    classified = classify_failure(agent="codex", exit_code=2, stdout="", stderr="segfault")

    assert classified.failure_class is FailureClass.NON_RETRYABLE
    assert classified.matched_pattern is None
    assert classified.describe() == "codex_exit_2"


def test_is_quota_message() -> None:
    assert is_quota_message("Error: RESOURCE_EXHAUSTED") is True
    assert is_quota_message("connection reset") is False
