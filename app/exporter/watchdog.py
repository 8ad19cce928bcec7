from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from .logging_utils import _export_event


@dataclass(frozen=True)
class TimerFired:
    """Delivered to the controller inbox when a scheduled timer expires."""

    kind: str
    generation: int


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, seconds: float, callback: Callable[[], Any]) -> TimerHandle: ...


class ThreadingScheduler:
    """Run callbacks on daemon ``threading.Timer`` threads."""

    def call_later(self, seconds: float, callback: Callable[[], Any]) -> TimerHandle:
        timer = threading.Timer(max(0.0, float(seconds)), callback)
        timer.daemon = True
        timer.start()
        return timer


class Watchdog:
    """Single-shot stall detector.

    Every ``arm`` bumps the generation, so a timer that fires after being
    disarmed or re-armed is recognisably stale and the controller drops it.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        post: Callable[[TimerFired], None],
        timeout_seconds: float,
    ) -> None:
        self._scheduler = scheduler
        self._post = post
        self.timeout_seconds = float(timeout_seconds)
        self.generation = 0
        self.kind: Optional[str] = None
        self._handle: Optional[TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, kind: str, seconds: Optional[float] = None) -> int:
        self.disarm()
        self.generation += 1
        self.kind = kind
        generation = self.generation
        timeout = self.timeout_seconds if seconds is None else float(seconds)
        self._handle = self._scheduler.call_later(
            timeout, lambda: self._post(TimerFired(kind, generation))
        )
        _export_event("watchdog", step="arm", kind=kind, generation=generation, timeout=timeout)
        return generation

    def disarm(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.cancel()
        finally:
            self._handle = None
            self.kind = None

    def is_current(self, fired: TimerFired) -> bool:
        return self.armed and fired.kind == self.kind and fired.generation == self.generation

    def consume(self, fired: TimerFired) -> bool:
        """Accept a fired timer if it is the live one, leaving the watchdog disarmed."""

        if not self.is_current(fired):
            return False
        self._handle = None
        self.kind = None
        return True


__all__ = ["TimerFired", "Scheduler", "ThreadingScheduler", "Watchdog"]
