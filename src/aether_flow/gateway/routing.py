"""Agent/model routing for gateway operations."""

from __future__ import annotations

from dataclasses import dataclass

from aether_flow.config import SUPPORTED_AGENTS, GatewaySettings
from aether_flow.engine.models import AgentProfile
from aether_flow.gateway.base import GatewayOperation

SUPPORTED_PROFILES = ("fast", "quality")

OPERATION_PROFILE_MAP: dict[GatewayOperation, str] = {
    GatewayOperation.PLAN: "quality",
    GatewayOperation.VALIDATE_INTEGRITY: "fast",
    GatewayOperation.JUDGE: "fast",
    GatewayOperation.DECOMPOSE: "quality",
    GatewayOperation.EXECUTE: "quality",
    GatewayOperation.AUDIT: "fast",
}


@dataclass(slots=True)
class ResolvedRoute:
    """Concrete CLI invocation target for one gateway call."""

    agent: str
    profile: str
    model: str
    command_template: str


@dataclass(slots=True)
class RoutingDefaults:
    """Validated settings snapshot used to resolve routes."""

    default_agent: str
    command_templates: dict[str, str]
    models: dict[str, dict[str, str]]

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> RoutingDefaults:
        default_agent = _normalize(settings.default_agent)
        _validate_supported_agent(default_agent)
        command_templates = {
            "claude": settings.claude_command_template,
            "codex": settings.codex_command_template,
            "gemini": settings.gemini_command_template,
        }
        for agent, template in command_templates.items():
            if not template.strip():
                raise ValueError(f"Empty command template for agent={agent!r}")
        models = {
            "claude": {
                "fast": settings.claude_model_fast,
                "quality": settings.claude_model_quality,
            },
            "codex": {
                "fast": settings.codex_model_fast,
                "quality": settings.codex_model_quality,
            },
            "gemini": {
                "fast": settings.gemini_model_fast,
                "quality": settings.gemini_model_quality,
            },
        }
        for agent, profile_models in models.items():
            for profile, model in profile_models.items():
                if not model.strip():
                    raise ValueError(
                        f"Empty model id for agent={agent!r}, profile={profile!r}",
                    )
        return cls(
            default_agent=default_agent,
            command_templates=command_templates,
            models=models,
        )


def resolve_route(
    *,
    defaults: RoutingDefaults,
    operation: GatewayOperation,
    agent_override: str | None = None,
    profile_override: str | None = None,
    model_override: str | None = None,
) -> ResolvedRoute:
    """Resolve agent, profile and model for one operation call."""

    agent = _normalize(agent_override) if agent_override else defaults.default_agent
    _validate_supported_agent(agent)
    profile = (
        _normalize(profile_override) if profile_override else OPERATION_PROFILE_MAP[operation]
    )
    if profile not in SUPPORTED_PROFILES:
        raise ValueError(
            f"Unsupported model profile: {profile!r}. Use one of {SUPPORTED_PROFILES}.",
        )
    model = model_override.strip() if model_override else defaults.models[agent][profile]
    if not model:
        raise ValueError(f"Resolved model is empty for agent={agent!r}, profile={profile!r}")
    return ResolvedRoute(
        agent=agent,
        profile=profile,
        model=model,
        command_template=defaults.command_templates[agent].strip(),
    )


def resolve_route_for_profile(
    *,
    defaults: RoutingDefaults,
    operation: GatewayOperation,
    profile: AgentProfile,
) -> ResolvedRoute:
    """Route an execution call honoring the agent profile's overrides."""

    return resolve_route(
        defaults=defaults,
        operation=operation,
        agent_override=profile.agent,
        profile_override=profile.model_profile,
        model_override=profile.model,
    )


def _normalize(value: str) -> str:
    return value.strip().lower()


def _validate_supported_agent(agent: str) -> None:
    if agent in SUPPORTED_AGENTS:
        return
    raise ValueError(f"Unsupported LLM agent: {agent!r}. Use codex, claude, or gemini.")
