"""Deterministic classification of failed LLM CLI invocations."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailureClass(str, Enum):
    QUOTA = "quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    NON_RETRYABLE = "non_retryable"


_QUOTA_PATTERNS: tuple[str, ...] = (
    "429",
    "resource_exhausted",
    "quota",
    "rate limit",
    "too many requests",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "could not resolve host",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_pattern: str | None

    @property
    def is_quota(self) -> bool:
        return self.failure_class is FailureClass.QUOTA

    def describe(self) -> str:
        if self.matched_pattern is None:
            return self.reason_code
        return f"{self.reason_code} (matched {self.matched_pattern!r})"


def classify_failure(
    *,
    agent: str,
    exit_code: int,
    stdout: str,
    stderr: str,
    timed_out: bool = False,
) -> FailureClassification:
    """Classify a failed CLI run. Quota markers win over every other rule."""

    haystack = f"{stderr}\n{stdout}".lower()

    pattern = _first_match(haystack, _QUOTA_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.QUOTA,
            reason_code=f"{agent}_quota_exhausted",
            matched_pattern=pattern,
        )

    if timed_out:
        return FailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{agent}_timeout",
            matched_pattern=None,
        )

    for failure_class, patterns in (
        (FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.TRANSIENT, _TRANSIENT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(
                failure_class=failure_class,
                reason_code=f"{agent}_{failure_class.value}",
                matched_pattern=pattern,
            )

    return FailureClassification(
        failure_class=FailureClass.NON_RETRYABLE,
        reason_code=f"{agent}_exit_{exit_code}",
        matched_pattern=None,
    )


def is_quota_message(text: str) -> bool:
    """True when free text carries any quota or rate-limit marker."""

    return _first_match(text.lower(), _QUOTA_PATTERNS) is not None


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
