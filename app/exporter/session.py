"""The single mutable record describing the current export run."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

CHECKPOINT_VERSION = 1


class Phase(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    PROCESSING = "processing"
    PAUSED = "paused"
    DONE = "done"


class Awaiting(str, Enum):
    """What the controller is suspended on, if anything."""

    NOTHING = "nothing"
    LIST_LOAD = "list_load"
    COLLECT_REPLY = "collect_reply"
    ITEM_LOAD = "item_load"
    EXTRACT_REPLY = "extract_reply"
    DELAY = "delay"
    BACKOFF = "backoff"


RUNNING_PHASES = {Phase.COLLECTING, Phase.PROCESSING}


def _safe_phase(value: Any) -> Phase:
    try:
        return Phase(value)
    except ValueError:
        return Phase.IDLE


@dataclass
class PageRange:
    start: int = 1
    end: int = 1


@dataclass
class DateFilter:
    """Inclusive order creation window, ISO ``YYYY-MM-DD`` strings."""

    date_from: Optional[str] = None
    date_to: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.date_from or self.date_to)


@dataclass
class Counters:
    processed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class InFlight:
    """The order currently being worked on.

    ``request_id`` is set once the extraction request is dispatched and reset
    when a stall forces a reload, so a second dispatch for the same cursor can
    only happen after the reload completes.
    """

    identifier: str
    cursor: int
    request_id: Optional[int] = None
    dispatched_at: Optional[float] = None
    stall_reloads: int = 0


@dataclass
class SessionState:
    phase: Phase = Phase.IDLE
    work_list: List[str] = field(default_factory=list)
    cursor: int = 0
    page_range: PageRange = field(default_factory=PageRange)
    current_page: int = 1
    end_page: int = 1
    # Page whose work list is loaded; ``None`` until the first collection.
    collected_page: Optional[int] = None
    page_total: int = 0
    retry_counts: Dict[str, int] = field(default_factory=dict)
    counters: Counters = field(default_factory=Counters)
    accumulated_amount: float = 0.0
    date_filter: DateFilter = field(default_factory=DateFilter)
    delay_range: Optional[List[float]] = None
    max_orders: Optional[int] = None
    items_since_break: int = 0
    next_break_at: int = 0
    started_at: Optional[float] = None
    stop_requested: bool = False
    pause_requested: bool = False
    awaiting: Awaiting = Awaiting.NOTHING
    in_flight: Optional[InFlight] = None
    collect_request_id: Optional[int] = None
    message: str = ""
    last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def is_item_in_flight(self) -> bool:
        return self.in_flight is not None and self.in_flight.request_id is not None

    @property
    def is_running(self) -> bool:
        return self.phase in RUNNING_PHASES

    @property
    def current_item(self) -> Optional[str]:
        if self.in_flight is not None:
            return self.in_flight.identifier
        if 0 <= self.cursor < len(self.work_list):
            return self.work_list[self.cursor]
        return None

    @property
    def remaining(self) -> int:
        return max(0, len(self.work_list) - self.cursor)

    @property
    def has_pages_left(self) -> bool:
        return self.current_page < self.end_page

    @property
    def page_collected(self) -> bool:
        return self.collected_page == self.current_page

    # ------------------------------------------------------------------
    # Checkpoint round trip
    # ------------------------------------------------------------------

    def to_checkpoint(self) -> Dict[str, Any]:
        return {
            "version": CHECKPOINT_VERSION,
            "phase": self.phase.value,
            "work_list": list(self.work_list),
            "cursor": self.cursor,
            "page_range": asdict(self.page_range),
            "current_page": self.current_page,
            "end_page": self.end_page,
            "collected_page": self.collected_page,
            "page_total": self.page_total,
            "retry_counts": dict(self.retry_counts),
            "counters": self.counters.as_dict(),
            "accumulated_amount": self.accumulated_amount,
            "date_filter": asdict(self.date_filter),
            "delay_range": list(self.delay_range) if self.delay_range else None,
            "max_orders": self.max_orders,
            "items_since_break": self.items_since_break,
            "next_break_at": self.next_break_at,
            "started_at": self.started_at,
            "saved_at": time.time(),
        }

    @classmethod
    def from_checkpoint(cls, data: Dict[str, Any]) -> "SessionState":
        """Rebuild a state from a checkpoint; transient fields start clean."""

        work_list = [str(item) for item in data.get("work_list") or []]
        cursor = int(data.get("cursor") or 0)
        page_range = data.get("page_range") or {}
        date_filter = data.get("date_filter") or {}
        counters = data.get("counters") or {}
        delay_range = data.get("delay_range")

        state = cls(
            phase=_safe_phase(data.get("phase")),
            work_list=work_list,
            cursor=max(0, min(cursor, len(work_list))),
            page_range=PageRange(
                start=int(page_range.get("start", 1)),
                end=int(page_range.get("end", 1)),
            ),
            current_page=int(data.get("current_page") or 1),
            end_page=int(data.get("end_page") or page_range.get("end", 1)),
            collected_page=data.get("collected_page"),
            page_total=int(data.get("page_total") or len(work_list)),
            retry_counts={str(k): int(v) for k, v in (data.get("retry_counts") or {}).items()},
            counters=Counters(**{k: int(counters.get(k, 0)) for k in Counters().as_dict()}),
            accumulated_amount=float(data.get("accumulated_amount") or 0.0),
            date_filter=DateFilter(
                date_from=date_filter.get("date_from"),
                date_to=date_filter.get("date_to"),
            ),
            delay_range=[float(v) for v in delay_range] if delay_range else None,
            max_orders=data.get("max_orders"),
            items_since_break=int(data.get("items_since_break") or 0),
            next_break_at=int(data.get("next_break_at") or 0),
            started_at=data.get("started_at"),
        )
        return state


__all__ = [
    "Phase",
    "Awaiting",
    "PageRange",
    "DateFilter",
    "Counters",
    "InFlight",
    "SessionState",
    "RUNNING_PHASES",
]
