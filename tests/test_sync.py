from __future__ import annotations

from datetime import UTC, datetime

import allure
from sqlalchemy.exc import OperationalError

from aether_flow.engine.advisories import AdvisoryBoard, AdvisoryKind
from aether_flow.storage.sync import PersistenceSync

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Best-effort Sync"),
]


class _RecordingStore:
    def __init__(self) -> None:
        self.saved: list[str] = []

    def save_flow(self, flow) -> None:
        self.saved.append(flow.flow_id)


class _BrokenStore:
    def save_flow(self, flow) -> None:
        raise OperationalError("INSERT", {}, Exception("database is locked"))


def test_save_touches_flow_and_delegates(make_flow) -> None:
    store = _RecordingStore()
    flow = make_flow([("a", [])])
    flow.updated_at = datetime(2020, 1, 1, tzinfo=UTC)

    assert PersistenceSync(store).save(flow) is True
    assert store.saved == ["flow-test"]
    assert flow.updated_at > datetime(2020, 1, 1, tzinfo=UTC)


def test_storage_failure_is_reported_not_raised(make_flow) -> None:
    board = AdvisoryBoard()
    sync = PersistenceSync(_BrokenStore(), advisories=board)

    assert sync.save(make_flow([("a", [])])) is False
    assert sync.save(make_flow([("a", [])])) is False

    assert sync.failures == 2
    assert board.latest is not None
    assert board.latest.kind is AdvisoryKind.WARNING
    assert "database is locked" in board.latest.message


def test_advisory_board_keeps_latest_until_dismissed() -> None:
    board = AdvisoryBoard()
    board.post(AdvisoryKind.INFO, "first")
    board.post(AdvisoryKind.COOLDOWN, "second")

    assert board.latest is not None
    assert board.latest.render() == "[cooldown] second"
    assert [item.message for item in board.history()] == ["first", "second"]

    board.dismiss()

    assert board.latest is None
    assert len(board.history()) == 2


class _ForeignOwnerStore:
    def save_flow(self, flow) -> None:
        raise ValueError(f"Flow {flow.flow_id} belongs to 'alice'.")


def test_any_store_error_is_reported_not_raised(make_flow) -> None:
    board = AdvisoryBoard()
    sync = PersistenceSync(_ForeignOwnerStore(), advisories=board)

    assert sync.save(make_flow([("a", [])])) is False

    assert sync.failures == 1
    assert board.latest is not None
    assert "belongs to 'alice'" in board.latest.message
