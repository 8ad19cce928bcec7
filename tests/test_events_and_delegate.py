from __future__ import annotations

from typing import Any, List

import pytest

from app.exporter.delegate import (
    CollectPage,
    ExtractionDelegate,
    ExtractItem,
    ItemExtracted,
    LocalChannel,
)
from app.exporter.error_codes import DelegateError
from app.exporter.events import LogLine, StatusBus, StatusUpdate


def test_bus_keeps_newest_logs_first_and_bounded() -> None:
    bus = StatusBus(log_limit=2)
    for text in ("one", "two", "three"):
        bus.publish(LogLine(text))

    assert [line["text"] for line in bus.recent_logs()] == ["three", "two"]
    assert bus.recent_logs()[0]["type"] == "log"


def test_bus_isolates_failing_subscribers() -> None:
    bus = StatusBus()
    received: List[Any] = []

    def broken(event: Any) -> None:
        raise RuntimeError("socket closed")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    update = StatusUpdate(phase="processing", counters={"processed": 1})
    bus.publish(update)

    assert received == [update]
    assert bus.last_status is update
    assert update.as_dict()["type"] == "status"

    bus.unsubscribe(received.append)
    bus.publish(LogLine("after"))
    assert received == [update]


def test_delegate_numbers_requests() -> None:
    seen: List[Any] = []
    replies: List[Any] = []

    def handler(tab_id: str, request: Any) -> Any:
        seen.append((tab_id, request))
        if isinstance(request, ExtractItem):
            return ItemExtracted(request.request_id, request.identifier, success=True)
        return None

    delegate = ExtractionDelegate(LocalChannel(handler), replies.append)
    first = delegate.collect_page("tab-1", 2, max_orders=5)
    second = delegate.extract_item("tab-1", "A")

    assert (first, second) == (1, 2)
    assert seen[0] == ("tab-1", CollectPage(request_id=1, page_number=2, max_orders=5))
    assert replies == [ItemExtracted(2, "A", success=True)]


def test_delegate_wraps_transport_failures() -> None:
    def handler(tab_id: str, request: Any) -> Any:
        raise ConnectionError("port disconnected")

    delegate = ExtractionDelegate(LocalChannel(handler), lambda reply: None)
    with pytest.raises(DelegateError, match="ExtractItem could not be delivered"):
        delegate.extract_item("tab-1", "A")
