"""Quota cooldown: a countdown that gates planning and loop steps.

The countdown is decremented by a ``CooldownTicker`` daemon thread once per
second, independently of the orchestration loop's own delays. With a
``CooldownStore`` attached, the deadline is also written to storage so a
later process resumes the same countdown.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

from aether_flow.storage.common import utc_now

logger = logging.getLogger(__name__)


class CooldownStore(Protocol):
    """Durable home of the cooldown deadline."""

    def load_cooldown_until(self) -> datetime | None: ...

    def save_cooldown_until(self, deadline: datetime | None) -> None: ...


class CooldownController:
    """Thread-safe remaining-seconds counter with expiry callbacks."""

    def __init__(self, *, tick_seconds: float = 1.0, autostart_ticker: bool = True) -> None:
        self.tick_seconds = tick_seconds
        self.autostart_ticker = autostart_ticker
        self._lock = threading.Lock()
        self._remaining = 0
        self._cleared = threading.Event()
        self._cleared.set()
        self._callbacks: list[Callable[[], None]] = []
        self._ticker: CooldownTicker | None = None
        self._store: CooldownStore | None = None

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def is_active(self) -> bool:
        return self.remaining > 0

    def on_expired(self, callback: Callable[[], None]) -> None:
        """Register a callback fired (from the ticking thread) when the countdown hits zero."""

        with self._lock:
            self._callbacks.append(callback)

    def attach_store(self, store: CooldownStore) -> int:
        """Persist future cooldowns to ``store`` and resume a deadline it already holds."""

        with self._lock:
            self._store = store
        try:
            deadline = store.load_cooldown_until()
        except Exception as error:
            logger.warning("Failed to load cooldown deadline: %s", error)
            return self.remaining
        if deadline is None:
            return self.remaining
        seconds = math.ceil((deadline - utc_now()).total_seconds())
        if seconds <= 0:
            return self.remaining
        return self._begin(seconds)

    def start(self, seconds: int) -> int:
        """Begin or extend the cooldown; an active countdown is never shortened."""

        remaining = self._begin(int(seconds))
        if remaining > 0:
            self._save_deadline(utc_now() + timedelta(seconds=remaining))
        return remaining

    def _begin(self, seconds: int) -> int:
        with self._lock:
            self._remaining = max(self._remaining, seconds)
            remaining = self._remaining
            if remaining > 0:
                self._cleared.clear()
                if self.autostart_ticker and self._ticker is None:
                    self._ticker = CooldownTicker(self, interval_seconds=self.tick_seconds)
                    self._ticker.start()
        logger.info("Cooldown active: %d s remaining", remaining)
        return remaining

    def _save_deadline(self, deadline: datetime | None) -> None:
        with self._lock:
            store = self._store
        if store is None:
            return
        try:
            store.save_cooldown_until(deadline)
        except Exception as error:
            logger.warning("Failed to persist cooldown deadline: %s", error)

    def tick(self) -> int:
        """Decrement by one second (floor zero) and return the new remaining value."""

        remaining, expired = self._decrement()
        if expired:
            self._fire_expired()
        return remaining

    def clear(self) -> None:
        with self._lock:
            self._remaining = 0
            self._cleared.set()
        self._save_deadline(None)

    def wait_until_clear(
        self,
        *,
        stop_requested: Callable[[], bool] | None = None,
        poll_seconds: float = 0.25,
    ) -> bool:
        """Block until the countdown reaches zero. False when a stop was requested first."""

        while self.is_active:
            if stop_requested is not None and stop_requested():
                return False
            self._cleared.wait(timeout=poll_seconds)
        return True

    def shutdown(self) -> None:
        """Stop the ticker thread without touching the countdown."""

        with self._lock:
            ticker = self._ticker
            self._ticker = None
        if ticker is not None:
            ticker.stop()

    def _tick_from_ticker(self, ticker: CooldownTicker) -> bool:
        """Tick on behalf of ``ticker``; False tells it to exit."""

        with self._lock:
            if self._ticker is not ticker:
                return False
        remaining, expired = self._decrement(retire=ticker)
        if expired:
            self._fire_expired()
        return remaining > 0

    def _decrement(self, *, retire: CooldownTicker | None = None) -> tuple[int, bool]:
        with self._lock:
            if self._remaining == 0:
                if retire is not None and self._ticker is retire:
                    self._ticker = None
                return 0, False
            self._remaining -= 1
            expired = self._remaining == 0
            if expired:
                self._cleared.set()
                if retire is not None and self._ticker is retire:
                    self._ticker = None
            return self._remaining, expired

    def _fire_expired(self) -> None:
        logger.info("Cooldown expired")
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cooldown expiry callback failed")


class CooldownTicker:
    """Daemon thread ticking a controller once per interval until it reaches zero."""

    def __init__(self, controller: CooldownController, *, interval_seconds: float = 1.0) -> None:
        self.controller = controller
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True, name="cooldown-ticker")

    def start(self) -> None:
        self._thread.start()

    def stop(self, *, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(timeout=self.interval_seconds):
            if not self.controller._tick_from_ticker(self):
                return
