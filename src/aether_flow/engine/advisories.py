"""Latest user-visible advisory message (error, cooldown or informational)."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from aether_flow.storage.common import utc_now


class AdvisoryKind(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    COOLDOWN = "cooldown"


@dataclass(slots=True, frozen=True)
class Advisory:
    kind: AdvisoryKind
    message: str
    created_at: datetime

    def render(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class AdvisoryBoard:
    """Holds one advisory until it is dismissed or superseded."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Advisory | None = None
        self._history: list[Advisory] = []

    def post(self, kind: AdvisoryKind, message: str) -> Advisory:
        advisory = Advisory(kind=kind, message=message, created_at=utc_now())
        with self._lock:
            self._latest = advisory
            self._history.append(advisory)
        return advisory

    @property
    def latest(self) -> Advisory | None:
        with self._lock:
            return self._latest

    def dismiss(self) -> None:
        with self._lock:
            self._latest = None

    def history(self) -> list[Advisory]:
        with self._lock:
            return list(self._history)
