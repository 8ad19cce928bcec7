"""Status and log events pushed from the controller to the UI."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from . import config


@dataclass(frozen=True)
class StatusUpdate:
    phase: str
    counters: Dict[str, int]
    current_item: Optional[str] = None
    message: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {"type": "status", **asdict(self)}


@dataclass(frozen=True)
class LogLine:
    text: str
    level: str = "info"

    def as_dict(self) -> Dict[str, Any]:
        return {"type": "log", **asdict(self)}


Event = Union[StatusUpdate, LogLine]
Subscriber = Callable[[Event], None]


class StatusBus:
    """Best-effort fan-out of events; subscriber errors never reach the publisher."""

    def __init__(self, log_limit: Optional[int] = None) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._recent_logs: Deque[LogLine] = deque(maxlen=log_limit or config.LOG_LINES_LIMIT)
        self.last_status: Optional[StatusUpdate] = None

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def publish(self, event: Event) -> None:
        with self._lock:
            if isinstance(event, LogLine):
                self._recent_logs.appendleft(event)
            else:
                self.last_status = event
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:  # noqa: BLE001
                continue

    def recent_logs(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [line.as_dict() for line in self._recent_logs]


__all__ = ["StatusUpdate", "LogLine", "StatusBus"]
