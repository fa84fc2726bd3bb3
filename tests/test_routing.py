from __future__ import annotations

import allure
import pytest

from aether_flow.config import GatewaySettings
from aether_flow.engine.models import AgentProfile
from aether_flow.gateway.base import GatewayOperation
from aether_flow.gateway.routing import (
    RoutingDefaults,
    resolve_route,
    resolve_route_for_profile,
)

pytestmark = [
    allure.epic("LLM Gateway"),
    allure.feature("Agent Routing"),
]


def _defaults() -> RoutingDefaults:
    return RoutingDefaults(
        default_agent="codex",
        command_templates={
            "claude": "claude --model {model} -- {prompt}",
            "codex": "codex exec --model {model} {prompt}",
            "gemini": "gemini --model {model} --prompt {prompt}",
        },
        models={
            "claude": {"fast": "claude-fast", "quality": "claude-quality"},
            "codex": {"fast": "codex-fast", "quality": "codex-quality"},
            "gemini": {"fast": "gemini-fast", "quality": "gemini-quality"},
        },
    )


@pytest.mark.parametrize(
    ("operation", "model"),
    [
        (GatewayOperation.JUDGE, "codex-fast"),
        (GatewayOperation.AUDIT, "codex-fast"),
        (GatewayOperation.VALIDATE_INTEGRITY, "codex-fast"),
        (GatewayOperation.PLAN, "codex-quality"),
        (GatewayOperation.DECOMPOSE, "codex-quality"),
        (GatewayOperation.EXECUTE, "codex-quality"),
    ],
)
def test_operation_profile_map(operation: GatewayOperation, model: str) -> None:
    route = resolve_route(defaults=_defaults(), operation=operation)

    assert route.agent == "codex"
    assert route.model == model
    assert route.command_template == "codex exec --model {model} {prompt}"


def test_agent_profile_overrides_execution_route() -> None:
    profile = AgentProfile(
        agent_id="p1",
        name="Coder",
        role="Coder",
        system_prompt="",
        agent=" Claude ",
        model_profile="fast",
    )

    route = resolve_route_for_profile(
        defaults=_defaults(),
        operation=GatewayOperation.EXECUTE,
        profile=profile,
    )

    assert route.agent == "claude"
    assert route.profile == "fast"
    assert route.model == "claude-fast"


def test_explicit_model_override_wins() -> None:
    route = resolve_route(
        defaults=_defaults(),
        operation=GatewayOperation.EXECUTE,
        agent_override="gemini",
        model_override="gemini-exp",
    )

    assert route.model == "gemini-exp"


def test_unknown_agent_and_profile_are_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported LLM agent"):
        resolve_route(defaults=_defaults(), operation=GatewayOperation.JUDGE, agent_override="x")
    with pytest.raises(ValueError, match="Unsupported model profile"):
        resolve_route(
            defaults=_defaults(),
            operation=GatewayOperation.JUDGE,
            profile_override="turbo",
        )


def test_defaults_from_settings_validate_templates() -> None:
    with pytest.raises(ValueError, match="Empty command template"):
        RoutingDefaults.from_settings(GatewaySettings(codex_command_template="  "))

    defaults = RoutingDefaults.from_settings(GatewaySettings(default_agent="Claude"))
    assert defaults.default_agent == "claude"
    assert defaults.models["gemini"]["quality"] == "gemini-2.5-pro"
