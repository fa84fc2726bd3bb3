"""LLM gateway that shells out to a CLI agent (claude, codex, gemini)."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from aether_flow.config import GatewaySettings
from aether_flow.engine.digest import sanitize_preview
from aether_flow.engine.models import AgentProfile, Task
from aether_flow.gateway import prompts
from aether_flow.gateway.base import GatewayError, GatewayOperation, QuotaExhaustedError
from aether_flow.gateway.contracts import (
    AuditVerdict,
    ContractError,
    IntegrityReport,
    Judgment,
    MissionPlan,
    SubtaskDraft,
    parse_audit_verdict,
    parse_integrity_report,
    parse_judgment,
    parse_mission_plan,
    parse_subtasks,
)
from aether_flow.gateway.failure_classifier import classify_failure
from aether_flow.gateway.payload import normalize_plain_text, parse_json_payload
from aether_flow.gateway.routing import (
    ResolvedRoute,
    RoutingDefaults,
    resolve_route,
    resolve_route_for_profile,
)

logger = logging.getLogger(__name__)

QUOTA_BACKOFF_MULTIPLIER = 1.5


@dataclass(slots=True)
class CliRunResult:
    """Captured outcome of one CLI invocation."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str


class CliLlmGateway:
    """Run every gateway operation as one CLI agent call with a hard timeout."""

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.settings = settings
        self.routing = RoutingDefaults.from_settings(settings)
        self._sleep = sleep
        self._shutdown_requested = shutdown_requested

    def plan(self, goal: str, *, branching_factor: int) -> MissionPlan:
        payload = self._call_json(
            GatewayOperation.PLAN,
            prompts.build_plan_prompt(goal, branching_factor=branching_factor),
        )
        return parse_mission_plan(payload)

    def validate_integrity(self, task: Task, siblings: Sequence[Task]) -> IntegrityReport:
        payload = self._call_json(
            GatewayOperation.VALIDATE_INTEGRITY,
            prompts.build_integrity_prompt(task, siblings),
        )
        return parse_integrity_report(payload)

    def judge(self, task: Task, context_digest: str, *, branching_factor: int) -> Judgment:
        payload = self._call_json(
            GatewayOperation.JUDGE,
            prompts.build_judge_prompt(
                task,
                context_digest,
                branching_factor=branching_factor,
            ),
        )
        return parse_judgment(payload)

    def decompose(
        self,
        task: Task,
        context_digest: str,
        *,
        branching_factor: int,
    ) -> list[SubtaskDraft]:
        payload = self._call_json(
            GatewayOperation.DECOMPOSE,
            prompts.build_decompose_prompt(
                task,
                context_digest,
                branching_factor=branching_factor,
            ),
        )
        return parse_subtasks(payload, branching_factor=branching_factor)

    def execute(
        self,
        task: Task,
        profile: AgentProfile,
        context_digest: str,
        *,
        feedback: str | None = None,
    ) -> str:
        route = resolve_route_for_profile(
            defaults=self.routing,
            operation=GatewayOperation.EXECUTE,
            profile=profile,
        )
        stdout = self._call(
            GatewayOperation.EXECUTE,
            prompts.build_execute_prompt(task, profile, context_digest, feedback=feedback),
            route=route,
        )
        result = normalize_plain_text(stdout)
        if not result:
            raise ContractError("Executor returned an empty result.")
        return result

    def audit(self, task: Task, result: str) -> AuditVerdict:
        payload = self._call_json(
            GatewayOperation.AUDIT,
            prompts.build_audit_prompt(task, result),
        )
        return parse_audit_verdict(payload)

    def _call_json(self, operation: GatewayOperation, prompt: str) -> dict[str, object]:
        stdout = self._call(operation, prompt)
        payload = parse_json_payload(stdout)
        if payload is None:
            preview = sanitize_preview(stdout, max_chars=200)
            raise ContractError(f"{operation.value} returned no JSON object: {preview!r}")
        return payload

    def _call(
        self,
        operation: GatewayOperation,
        prompt: str,
        *,
        route: ResolvedRoute | None = None,
    ) -> str:
        resolved = route or resolve_route(defaults=self.routing, operation=operation)
        retries_left = self.settings.quota_retries
        delay = self.settings.quota_retry_delay_seconds
        while True:
            try:
                return self._invoke(operation, prompt, resolved)
            except QuotaExhaustedError:
                if retries_left <= 0:
                    raise
                logger.warning(
                    "Quota hit on %s via %s, retrying in %.1fs (%d retries left)",
                    operation.value,
                    resolved.agent,
                    delay,
                    retries_left,
                )
                self._sleep(delay)
                retries_left -= 1
                delay *= QUOTA_BACKOFF_MULTIPLIER

    def _invoke(self, operation: GatewayOperation, prompt: str, route: ResolvedRoute) -> str:
        call_dir = self.settings.workdir_root / f"{operation.value}-{uuid.uuid4().hex[:12]}"
        prompt_file = call_dir / "prompt.txt"
        call_dir.mkdir(parents=True, exist_ok=True)
        prompt_file.write_text(prompt, "utf-8")

        run_args = build_run_args(
            command_template=route.command_template,
            model=route.model,
            prompt=prompt,
            prompt_file=prompt_file,
        )
        env = os.environ.copy()
        env["AETHER_LLM_OPERATION"] = operation.value
        env["AETHER_LLM_AGENT"] = route.agent
        env["AETHER_LLM_MODEL"] = route.model
        env["AETHER_LLM_MODEL_PROFILE"] = route.profile

        logger.debug("Running %s via %s/%s", operation.value, route.agent, route.model)
        try:
            result = run_with_timeout(
                run_args=run_args,
                env=env,
                timeout_seconds=self.settings.timeout_seconds,
                stdout_path=call_dir / "stdout.txt",
                stderr_path=call_dir / "stderr.txt",
                shutdown_requested=self._shutdown_requested,
            )
        except FileNotFoundError as error:
            raise GatewayError(
                f"LLM CLI command not found: {run_args[0]}",
                operation=operation,
            ) from error
        except OSError as error:
            raise GatewayError(f"LLM CLI failed to start: {error}", operation=operation) from error

        if result.exit_code == 0 and not result.timed_out:
            shutil.rmtree(call_dir, ignore_errors=True)
            return result.stdout

        classification = classify_failure(
            agent=route.agent,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
        )
        detail = sanitize_preview(result.stderr or result.stdout, max_chars=500)
        if result.timed_out and not classification.is_quota:
            message = f"{operation.value} timed out after {self.settings.timeout_seconds}s"
        else:
            message = f"{operation.value} failed: {classification.describe()}"
        if detail:
            message = f"{message}: {detail}"
        if classification.is_quota:
            raise QuotaExhaustedError(message, operation=operation)
        raise GatewayError(message, operation=operation)


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    """Render a command template into argv with shell-safe placeholder values."""

    stripped = command_template.strip()
    if not stripped:
        raise GatewayError("LLM CLI command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise GatewayError("LLM CLI command template must include {prompt} or {prompt_file}.")
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise GatewayError(f"Unsupported command template placeholder: {error}") from error
    argv = shlex.split(rendered)
    if not argv:
        raise GatewayError("LLM CLI command template rendered empty command.")
    return argv


def run_with_timeout(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    timeout_seconds: int,
    stdout_path: Path,
    stderr_path: Path,
    shutdown_requested: Callable[[], bool] | None = None,
) -> CliRunResult:
    """Run a command, terminating it on timeout or when shutdown is requested.

    On POSIX the child gets its own session, so a terminal Ctrl+C reaches the
    orchestration loop only and the in-flight call runs to completion.
    """

    with (
        stdout_path.open("w", encoding="utf-8") as stdout_handle,
        stderr_path.open("w", encoding="utf-8") as stderr_handle,
    ):
        process = subprocess.Popen(  # noqa: S603
            run_args,
            env=env,
            stdout=stdout_handle,
            stderr=stderr_handle,
            text=True,
            start_new_session=os.name != "nt",
        )
        start_monotonic = time.monotonic()
        timed_out = False
        while True:
            returncode = process.poll()
            if returncode is not None:
                break
            if time.monotonic() - start_monotonic >= timeout_seconds or (
                shutdown_requested is not None and shutdown_requested()
            ):
                _terminate_process(process)
                timed_out = True
                returncode = 124
                break
            time.sleep(0.1)

    return CliRunResult(
        exit_code=returncode,
        timed_out=timed_out,
        stdout=stdout_path.read_text("utf-8", errors="replace"),
        stderr=stderr_path.read_text("utf-8", errors="replace"),
    )


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
