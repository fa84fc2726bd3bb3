from __future__ import annotations

from pathlib import Path

import allure
import pytest

from aether_flow.config import EngineSettings, GatewaySettings, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_defaults_are_valid() -> None:
    settings = Settings()

    settings.validate()

    assert settings.engine.branching_factor == 3
    assert settings.engine.max_audit_retries == 2
    assert settings.engine.dangling_dependency_policy == "wait"
    assert settings.engine.auto_resume_after_cooldown is True
    assert settings.gateway.timeout_seconds == 120


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AETHER_BRANCHING_FACTOR", "4")
    monkeypatch.setenv("AETHER_DANGLING_DEPENDENCY_POLICY", " FAIL ")
    monkeypatch.setenv("AETHER_AUTO_RESUME_AFTER_COOLDOWN", "off")
    monkeypatch.setenv("AETHER_LLM_DEFAULT_AGENT", "Claude")
    monkeypatch.setenv("AETHER_LLM_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("AETHER_USER_ID", "alice")

    settings = Settings.from_env(db_path=tmp_path / "a.db")

    assert settings.db_path == tmp_path / "a.db"
    assert settings.engine.branching_factor == 4
    assert settings.engine.dangling_dependency_policy == "fail"
    assert settings.engine.auto_resume_after_cooldown is False
    assert settings.gateway.default_agent == "claude"
    assert settings.gateway.timeout_seconds == 30
    assert settings.user_context.user_id == "alice"
    settings.validate()


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AETHER_AUTO_RESUME_AFTER_COOLDOWN", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("engine", "message"),
    [
        (EngineSettings(branching_factor=1), "AETHER_BRANCHING_FACTOR"),
        (EngineSettings(max_audit_retries=-1), "AETHER_MAX_AUDIT_RETRIES"),
        (EngineSettings(cooldown_seconds=0), "AETHER_COOLDOWN_SECONDS"),
        (EngineSettings(dangling_dependency_policy="ignore"), "DANGLING_DEPENDENCY_POLICY"),
        (EngineSettings(integrity_delay_seconds=3.0), "integrity <= step <= decompose"),
        (EngineSettings(idle_poll_seconds=1.0), "AETHER_IDLE_POLL_SECONDS"),
        (EngineSettings(step_delay_seconds=-1.0), "must be >= 0"),
    ],
)
def test_validate_rejects_inconsistent_engine_policy(engine: EngineSettings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(engine=engine).validate()


def test_validate_rejects_unknown_default_agent() -> None:
    with pytest.raises(ValueError, match="Unsupported AETHER_LLM_DEFAULT_AGENT"):
        Settings(gateway=GatewaySettings(default_agent="llama")).validate()
