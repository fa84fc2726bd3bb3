from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest

from aether_flow.engine.advisories import AdvisoryBoard, AdvisoryKind
from aether_flow.engine.cooldown import CooldownController
from aether_flow.engine.models import FlowStatus, TaskStatus
from aether_flow.engine.services import (
    REPORT_SCHEMA_VERSION,
    CoolingDownError,
    MissionService,
)
from aether_flow.gateway.base import GatewayOperation, QuotaExhaustedError
from aether_flow.gateway.contracts import MissionPlan, PlannedTask
from aether_flow.storage.repository import FlowNotFoundError, FlowRepository

pytestmark = [
    allure.epic("Missions"),
    allure.feature("Mission Service"),
]


@pytest.fixture()
def repository(tmp_path: Path):
    repo = FlowRepository(tmp_path / "missions.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def service(repository, gateway, manual_cooldown, engine_settings) -> MissionService:
    return MissionService(
        repository=repository,
        gateway=gateway,
        cooldown=manual_cooldown,
        settings=engine_settings,
        advisories=AdvisoryBoard(),
    )


def test_plan_mission_stores_idle_flow(service, repository, gateway) -> None:
    gateway.plan_result = MissionPlan(
        project_name="Landing page",
        tasks=[
            PlannedTask(task_id="copy", title="Write copy", description="", role="Writer"),
            PlannedTask(
                task_id="html",
                title="Build HTML",
                description="",
                role="Frontend",
                dependencies=["copy"],
                requires_approval=True,
            ),
        ],
    )

    flow = service.plan_mission("  Ship a landing page  ", branching_factor=4)

    assert flow.flow_id.startswith("flow-")
    assert flow.status is FlowStatus.IDLE
    assert flow.goal == "Ship a landing page"
    assert flow.telemetry.branching_factor == 4
    stored = repository.load_flow(flow.flow_id)
    assert stored.name == "Landing page"
    assert [task.task_id for task in stored.tasks] == ["copy", "html"]
    assert stored.tasks[1].dependencies == ["copy"]
    assert stored.tasks[1].assigned_role == "Frontend"
    assert stored.tasks[1].requires_approval is True
    assert all(task.status is TaskStatus.TODO for task in stored.tasks)


def test_plan_mission_rejects_empty_goal(service) -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        service.plan_mission("   ")


def test_plan_mission_refused_while_cooling_down(service, gateway, manual_cooldown) -> None:
    manual_cooldown.start(30)

    with pytest.raises(CoolingDownError, match="Cooling down: 30 s remaining"):
        service.plan_mission("Anything")

    assert gateway.calls == []


def test_quota_during_planning_starts_cooldown(service, gateway, manual_cooldown) -> None:
    gateway.failures[(GatewayOperation.PLAN, "Build it")] = [
        QuotaExhaustedError("429 quota", operation=GatewayOperation.PLAN),
    ]

    with pytest.raises(CoolingDownError) as excinfo:
        service.plan_mission("Build it")

    assert excinfo.value.remaining_seconds == 60
    assert manual_cooldown.remaining == 60
    assert service.advisories.latest is not None
    assert service.advisories.latest.kind is AdvisoryKind.COOLDOWN


def test_run_mission_completes_and_persists(service, repository) -> None:
    flow = service.plan_mission("Two step mission")

    result = service.run_mission(flow.flow_id, max_idle_polls=3)

    assert result.flow.status is FlowStatus.COMPLETED
    assert result.summary.completed == 2
    stored = repository.load_flow(flow.flow_id)
    assert stored.status is FlowStatus.COMPLETED
    assert all(task.status is TaskStatus.COMPLETED for task in stored.tasks)
    assert set(stored.context_memory) == {"t1", "t2"}


def test_run_mission_unknown_flow(service) -> None:
    with pytest.raises(FlowNotFoundError):
        service.run_mission("flow-missing")


def test_export_report_includes_results(service) -> None:
    flow = service.plan_mission("Two step mission")
    service.run_mission(flow.flow_id, max_idle_polls=3)

    report = service.export_report(flow.flow_id)

    assert report["schema_version"] == REPORT_SCHEMA_VERSION
    assert report["status"] == "completed"
    assert report["context_memory"].keys() == {"t1", "t2"}
    first = report["tasks"][0]
    assert first["task_id"] == "t1"
    assert first["path"] == ["t1"]
    assert first["stage"] == "gold"
    assert first["output"]["content"] == "Result for First"
    assert first["output"]["content_type"] == "markdown"


def test_cooldown_survives_into_a_new_process(
    tmp_path: Path,
    engine_settings,
    gateway_factory,
) -> None:
    db_path = tmp_path / "shared.db"
    settings = replace(engine_settings, cooldown_seconds=600, auto_resume_after_cooldown=False)

    first_repository = FlowRepository(db_path)
    first_repository.init_schema()
    first_gateway = gateway_factory()
    first = MissionService(
        repository=first_repository,
        gateway=first_gateway,
        cooldown=CooldownController(autostart_ticker=False),
        settings=settings,
    )
    flow = first.plan_mission("Two step mission")
    first_gateway.failures[(GatewayOperation.VALIDATE_INTEGRITY, "t1")] = [
        QuotaExhaustedError("429", operation=GatewayOperation.VALIDATE_INTEGRITY),
    ]
    paused = first.run_mission(flow.flow_id)
    first_repository.close()
    assert paused.flow.status is FlowStatus.PAUSED

    second_repository = FlowRepository(db_path)
    second_repository.init_schema()
    second_gateway = gateway_factory()
    second_cooldown = CooldownController(autostart_ticker=False)
    try:
        second = MissionService(
            repository=second_repository,
            gateway=second_gateway,
            cooldown=second_cooldown,
            settings=settings,
        )

        assert 590 <= second_cooldown.remaining <= 600
        with pytest.raises(CoolingDownError, match="Cooling down"):
            second.plan_mission("Another mission")
        rerun = second.run_mission(flow.flow_id)
    finally:
        second_repository.close()

    assert rerun.flow.status is FlowStatus.PAUSED
    assert rerun.summary.cooldowns == 0
    assert second_gateway.calls == []
