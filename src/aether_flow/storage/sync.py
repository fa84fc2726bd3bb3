"""Best-effort persistence of flow state after each loop mutation."""

from __future__ import annotations

import logging
from typing import Protocol

from aether_flow.engine.advisories import AdvisoryBoard, AdvisoryKind
from aether_flow.engine.models import Flow

logger = logging.getLogger(__name__)


class FlowStore(Protocol):
    """Anything that can durably save a flow snapshot."""

    def save_flow(self, flow: Flow) -> None:
        """Persist the flow with all of its tasks."""


class PersistenceSync:
    """Saves flows without ever aborting the caller on storage failures."""

    def __init__(self, store: FlowStore, *, advisories: AdvisoryBoard | None = None) -> None:
        self.store = store
        self.advisories = advisories
        self.failures = 0

    def save(self, flow: Flow) -> bool:
        """Persist ``flow``; any store error becomes a warning advisory and ``False``."""

        flow.touch()
        try:
            self.store.save_flow(flow)
        except Exception as error:
            self.failures += 1
            logger.warning("Failed to persist flow %s: %s", flow.flow_id, error)
            if self.advisories is not None:
                self.advisories.post(
                    AdvisoryKind.WARNING,
                    f"Could not save mission {flow.name!r}: {error}",
                )
            return False
        return True
