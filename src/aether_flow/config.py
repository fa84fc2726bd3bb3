"""Runtime configuration for mission planning and orchestration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

SUPPORTED_DANGLING_POLICIES = ("wait", "fail")
SUPPORTED_AGENTS = ("claude", "codex", "gemini")

DEFAULT_COMMAND_TEMPLATES = {
    "claude": "claude -p --model {model} --output-format text -- {prompt}",
    "codex": "codex exec --model {model} {prompt}",
    "gemini": "gemini --model {model} --prompt {prompt}",
}


@dataclass(slots=True)
class EngineSettings:
    """Orchestration loop policy values."""

    branching_factor: int = 3
    max_audit_retries: int = 2
    max_decomposition_depth: int = 3
    cooldown_seconds: int = 60
    idle_poll_seconds: float = 5.0
    integrity_delay_seconds: float = 0.5
    step_delay_seconds: float = 2.0
    decompose_delay_seconds: float = 4.0
    context_digest_chars: int = 400
    dangling_dependency_policy: str = "wait"
    auto_resume_after_cooldown: bool = True


@dataclass(slots=True)
class GatewaySettings:
    """CLI-backed LLM gateway settings."""

    default_agent: str = "gemini"
    claude_command_template: str = DEFAULT_COMMAND_TEMPLATES["claude"]
    codex_command_template: str = DEFAULT_COMMAND_TEMPLATES["codex"]
    gemini_command_template: str = DEFAULT_COMMAND_TEMPLATES["gemini"]
    claude_model_fast: str = "haiku"
    claude_model_quality: str = "sonnet"
    codex_model_fast: str = "gpt-5-mini"
    codex_model_quality: str = "gpt-5"
    gemini_model_fast: str = "gemini-2.5-flash"
    gemini_model_quality: str = "gemini-2.5-pro"
    timeout_seconds: int = 120
    quota_retries: int = 0
    quota_retry_delay_seconds: float = 10.0
    workdir_root: Path = Path(".aether_flow/workdir")


@dataclass(slots=True)
class UserContextSettings:
    """User context settings."""

    user_id: str = "default_user"
    user_name: str = "Default User"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".aether_flow.db")
    engine: EngineSettings = field(default_factory=EngineSettings)
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AETHER_DB_PATH", ".aether_flow.db")),
            engine=EngineSettings(
                branching_factor=int(os.getenv("AETHER_BRANCHING_FACTOR", "3")),
                max_audit_retries=int(os.getenv("AETHER_MAX_AUDIT_RETRIES", "2")),
                max_decomposition_depth=int(
                    os.getenv("AETHER_MAX_DECOMPOSITION_DEPTH", "3"),
                ),
                cooldown_seconds=int(os.getenv("AETHER_COOLDOWN_SECONDS", "60")),
                idle_poll_seconds=float(os.getenv("AETHER_IDLE_POLL_SECONDS", "5.0")),
                integrity_delay_seconds=float(
                    os.getenv("AETHER_INTEGRITY_DELAY_SECONDS", "0.5"),
                ),
                step_delay_seconds=float(os.getenv("AETHER_STEP_DELAY_SECONDS", "2.0")),
                decompose_delay_seconds=float(
                    os.getenv("AETHER_DECOMPOSE_DELAY_SECONDS", "4.0"),
                ),
                context_digest_chars=int(os.getenv("AETHER_CONTEXT_DIGEST_CHARS", "400")),
                dangling_dependency_policy=os.getenv(
                    "AETHER_DANGLING_DEPENDENCY_POLICY",
                    "wait",
                )
                .strip()
                .lower(),
                auto_resume_after_cooldown=_env_bool(
                    "AETHER_AUTO_RESUME_AFTER_COOLDOWN",
                    default=True,
                ),
            ),
            gateway=GatewaySettings(
                default_agent=os.getenv("AETHER_LLM_DEFAULT_AGENT", "gemini").strip().lower(),
                claude_command_template=os.getenv(
                    "AETHER_LLM_CLAUDE_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATES["claude"],
                ),
                codex_command_template=os.getenv(
                    "AETHER_LLM_CODEX_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATES["codex"],
                ),
                gemini_command_template=os.getenv(
                    "AETHER_LLM_GEMINI_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATES["gemini"],
                ),
                claude_model_fast=os.getenv("AETHER_LLM_CLAUDE_MODEL_FAST", "haiku"),
                claude_model_quality=os.getenv("AETHER_LLM_CLAUDE_MODEL_QUALITY", "sonnet"),
                codex_model_fast=os.getenv("AETHER_LLM_CODEX_MODEL_FAST", "gpt-5-mini"),
                codex_model_quality=os.getenv("AETHER_LLM_CODEX_MODEL_QUALITY", "gpt-5"),
                gemini_model_fast=os.getenv("AETHER_LLM_GEMINI_MODEL_FAST", "gemini-2.5-flash"),
                gemini_model_quality=os.getenv(
                    "AETHER_LLM_GEMINI_MODEL_QUALITY",
                    "gemini-2.5-pro",
                ),
                timeout_seconds=int(os.getenv("AETHER_LLM_TIMEOUT_SECONDS", "120")),
                quota_retries=int(os.getenv("AETHER_LLM_QUOTA_RETRIES", "0")),
                quota_retry_delay_seconds=float(
                    os.getenv("AETHER_LLM_QUOTA_RETRY_DELAY_SECONDS", "10.0"),
                ),
                workdir_root=Path(os.getenv("AETHER_WORKDIR", ".aether_flow/workdir")),
            ),
            user_context=UserContextSettings(
                user_id=os.getenv("AETHER_USER_ID", "default_user"),
                user_name=os.getenv("AETHER_USER_NAME", "Default User"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if policy values are inconsistent."""

        engine = self.engine
        if engine.branching_factor < 2:
            raise ValueError("AETHER_BRANCHING_FACTOR must be >= 2.")
        if engine.max_audit_retries < 0:
            raise ValueError("AETHER_MAX_AUDIT_RETRIES must be >= 0.")
        if engine.max_decomposition_depth < 0:
            raise ValueError("AETHER_MAX_DECOMPOSITION_DEPTH must be >= 0.")
        if engine.cooldown_seconds <= 0:
            raise ValueError("AETHER_COOLDOWN_SECONDS must be > 0.")
        if engine.context_digest_chars <= 0:
            raise ValueError("AETHER_CONTEXT_DIGEST_CHARS must be > 0.")
        if engine.dangling_dependency_policy not in SUPPORTED_DANGLING_POLICIES:
            raise ValueError(
                "Invalid AETHER_DANGLING_DEPENDENCY_POLICY: "
                f"{engine.dangling_dependency_policy!r}. "
                f"Expected one of: {', '.join(SUPPORTED_DANGLING_POLICIES)}.",
            )
        if min(
            engine.idle_poll_seconds,
            engine.integrity_delay_seconds,
            engine.step_delay_seconds,
            engine.decompose_delay_seconds,
        ) < 0:
            raise ValueError("Orchestration delays must be >= 0.")
        if not (
            engine.integrity_delay_seconds
            <= engine.step_delay_seconds
            <= engine.decompose_delay_seconds
        ):
            raise ValueError(
                "Delays must satisfy integrity <= step <= decompose "
                "(AETHER_INTEGRITY_DELAY_SECONDS, AETHER_STEP_DELAY_SECONDS, "
                "AETHER_DECOMPOSE_DELAY_SECONDS).",
            )
        if engine.idle_poll_seconds < engine.step_delay_seconds:
            raise ValueError(
                "AETHER_IDLE_POLL_SECONDS must be >= AETHER_STEP_DELAY_SECONDS.",
            )
        if self.gateway.default_agent not in SUPPORTED_AGENTS:
            raise ValueError(
                f"Unsupported AETHER_LLM_DEFAULT_AGENT: {self.gateway.default_agent!r}. "
                "Use codex, claude, or gemini.",
            )
        if self.gateway.timeout_seconds <= 0:
            raise ValueError("AETHER_LLM_TIMEOUT_SECONDS must be > 0.")
        if self.gateway.quota_retries < 0:
            raise ValueError("AETHER_LLM_QUOTA_RETRIES must be >= 0.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
