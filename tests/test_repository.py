from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest
from sqlalchemy import text

from aether_flow import storage as storage_package
from aether_flow.engine.models import (
    AgentProfile,
    ContentType,
    FlowStatus,
    TaskOutput,
    TaskStage,
    TaskStatus,
)
from aether_flow.storage.alembic_runner import MIGRATIONS_DIR
from aether_flow.storage.repository import FlowNotFoundError, FlowRepository

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Flow Repository"),
]


@pytest.fixture()
def repository(tmp_path: Path):
    repo = FlowRepository(tmp_path / "flows.db")
    repo.init_schema()
    yield repo
    repo.close()


def test_schema_is_initialized_to_head(repository: FlowRepository) -> None:
    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        tables = connection.execute(
            text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name IN ('users', 'flows', 'tasks', 'agent_profiles', 'cooldowns') "
                "ORDER BY name",
            ),
        ).scalars()
        user = connection.execute(
            text("SELECT user_id FROM users WHERE user_id = 'default_user'"),
        ).scalar_one_or_none()

        assert version == "20261019_0003"
        assert list(tables) == ["agent_profiles", "cooldowns", "flows", "tasks", "users"]
        assert user == "default_user"


def test_flow_round_trip_preserves_tasks_and_context(repository, make_flow) -> None:
    flow = make_flow([("a", []), ("b", ["a"])])
    first, second = flow.tasks
    first.status = TaskStatus.COMPLETED
    first.stage = TaskStage.GOLD
    first.output = TaskOutput(
        content="```py\nprint(1)\n```",
        produced_at=datetime(2026, 10, 19, 12, tzinfo=UTC),
        content_type=ContentType.CODE,
    )
    first.guidance = ["be brief"]
    second.status = TaskStatus.REJECTED
    second.retry_count = 1
    second.audit_feedback = "add tests"
    second.requires_approval = True
    flow.context_memory = {"a": "printed one"}
    flow.telemetry.max_depth = 2
    flow.telemetry.decomposed_count = 1

    repository.save_flow(flow)
    loaded = repository.load_flow(flow.flow_id)

    assert [task.task_id for task in loaded.tasks] == ["a", "b"]
    assert loaded.status is FlowStatus.RUNNING
    assert loaded.context_memory == {"a": "printed one"}
    assert loaded.telemetry.max_depth == 2
    assert loaded.telemetry.decomposed_count == 1
    loaded_a, loaded_b = loaded.tasks
    assert loaded_a.stage is TaskStage.GOLD
    assert loaded_a.output is not None
    assert loaded_a.output.content_type is ContentType.CODE
    assert loaded_a.output.produced_at == datetime(2026, 10, 19, 12, tzinfo=UTC)
    assert loaded_a.guidance == ["be brief"]
    assert loaded_b.dependencies == ["a"]
    assert loaded_b.status is TaskStatus.REJECTED
    assert loaded_b.retry_count == 1
    assert loaded_b.audit_feedback == "add tests"
    assert loaded_b.requires_approval is True
    assert loaded_b.output is None


def test_save_upserts_existing_rows(repository, make_flow) -> None:
    flow = make_flow([("a", [])])
    repository.save_flow(flow)

    flow.tasks[0].status = TaskStatus.PRUNED
    flow.status = FlowStatus.COMPLETED
    repository.save_flow(flow)

    loaded = repository.load_flow(flow.flow_id)
    assert loaded.status is FlowStatus.COMPLETED
    assert loaded.tasks[0].status is TaskStatus.PRUNED


def test_list_flows_most_recent_first(repository, make_flow) -> None:
    older = make_flow([("a", [])], flow_id="flow-old")
    older.updated_at = datetime(2026, 1, 1, tzinfo=UTC)
    newer = make_flow([("a", [])], flow_id="flow-new")
    newer.updated_at = datetime(2026, 6, 1, tzinfo=UTC)
    repository.save_flow(older)
    repository.save_flow(newer)

    assert [flow.flow_id for flow in repository.list_flows()] == ["flow-new", "flow-old"]
    assert [flow.flow_id for flow in repository.list_flows(limit=1)] == ["flow-new"]


def test_delete_flow(repository, make_flow) -> None:
    flow = make_flow([("a", []), ("b", [])])
    repository.save_flow(flow)

    assert repository.delete_flow(flow.flow_id) is True
    assert repository.delete_flow(flow.flow_id) is False
    with pytest.raises(FlowNotFoundError, match="Flow not found"):
        repository.load_flow(flow.flow_id)


def test_flows_are_scoped_to_owner(tmp_path: Path, make_flow) -> None:
    db_path = tmp_path / "shared.db"
    alice = FlowRepository(db_path, user_id="alice")
    alice.init_schema()
    bob = FlowRepository(db_path, user_id="bob")
    bob.init_schema()
    try:
        flow = make_flow([("a", [])])
        flow.owner_id = "alice"
        alice.save_flow(flow)

        with pytest.raises(ValueError, match="belongs to 'alice'"):
            bob.save_flow(flow)
        with pytest.raises(FlowNotFoundError):
            bob.load_flow(flow.flow_id)
        assert bob.list_flows() == []
        assert bob.delete_flow(flow.flow_id) is False
    finally:
        alice.close()
        bob.close()


def test_agent_profiles_default_until_one_is_saved(repository) -> None:
    profiles = repository.list_agent_profiles()
    assert [profile.name for profile in profiles] == ["Architect-Prime"]
    assert profiles[0].agent_id == "agent-arch-default_user"

    repository.save_agent_profile(
        AgentProfile(
            agent_id="agent-coder",
            name="Coder",
            role="Backend Engineer",
            system_prompt="Writes code.",
            agent="claude",
            model_profile="fast",
        ),
    )

    profiles = repository.list_agent_profiles()
    assert [profile.agent_id for profile in profiles] == ["agent-coder"]
    assert profiles[0].agent == "claude"
    assert profiles[0].model_profile == "fast"
    assert profiles[0].model is None


def test_cooldown_deadline_round_trip_per_user(tmp_path: Path) -> None:
    db_path = tmp_path / "cooldown.db"
    alice = FlowRepository(db_path, user_id="alice")
    alice.init_schema()
    bob = FlowRepository(db_path, user_id="bob")
    bob.init_schema()
    try:
        assert alice.load_cooldown_until() is None

        deadline = datetime(2026, 10, 19, 12, 30, tzinfo=UTC)
        alice.save_cooldown_until(deadline)

        assert alice.load_cooldown_until() == deadline
        assert bob.load_cooldown_until() is None

        alice.save_cooldown_until(None)
        assert alice.load_cooldown_until() is None
    finally:
        alice.close()
        bob.close()


def test_migrations_ship_inside_the_package() -> None:
    package_dir = Path(storage_package.__file__).resolve().parent

    assert MIGRATIONS_DIR.parent == package_dir
    assert (MIGRATIONS_DIR / "env.py").is_file()
    assert (MIGRATIONS_DIR / "script.py.mako").is_file()
    assert sorted(path.name for path in (MIGRATIONS_DIR / "versions").glob("*.py")) == [
        "20261019_0001_initial_flows.py",
        "20261019_0002_agent_profiles.py",
        "20261019_0003_cooldowns.py",
    ]
