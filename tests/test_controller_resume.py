from __future__ import annotations

import json
import threading
from typing import Callable

from app.exporter import config
from app.exporter.controller import OrderExportController
from app.exporter.delegate import ItemExtracted
from app.exporter.navigation import LoadComplete
from app.exporter.session import Awaiting, Phase
from app.exporter.storage import MemoryStore
from tests.test_controller_flow import (
    FakeNavigator,
    ManualScheduler,
    ScriptedAgent,
    _drain,
    _make_controller,
    _run,
)


def _step_until(
    controller: OrderExportController,
    scheduler: ManualScheduler,
    predicate: Callable[[], bool],
    limit: int = 1000,
) -> None:
    for _ in range(limit):
        if predicate():
            return
        if controller.process_next():
            continue
        if not scheduler.fire_next():
            break
    assert predicate(), "condition never reached"


def test_resume_from_checkpoint_restores_progress_exactly() -> None:
    store = MemoryStore()
    first_agent = ScriptedAgent({1: ["A", "B", "C"]}, {"B": ["masked"]})
    first, scheduler, _ = _make_controller(first_agent, store=store)

    first.start(1, 1)
    _step_until(first, scheduler, lambda: first.state.awaiting == Awaiting.BACKOFF)

    before = first.persistence.load_checkpoint()
    assert before is not None
    assert before["cursor"] == 1
    assert before["retry_counts"] == {"B": 1}

    # A fresh controller over the same store stands in for a restarted process.
    second_agent = ScriptedAgent({1: ["A", "B", "C"]})
    second, second_scheduler, second_navigator = _make_controller(second_agent, store=store)
    assert second.resume() == {"success": True}

    restored = second.state
    assert json.dumps(restored.counters.as_dict(), sort_keys=True) == json.dumps(
        before["counters"], sort_keys=True
    )
    assert json.dumps(restored.retry_counts, sort_keys=True) == json.dumps(
        before["retry_counts"], sort_keys=True
    )
    assert restored.cursor == before["cursor"]
    assert restored.work_list == before["work_list"]
    assert restored.phase == Phase.PROCESSING

    _run(second, second_scheduler)

    assert [request.identifier for request in second_agent.extract_requests()] == ["B", "C"]
    assert second_navigator.list_visits == []
    counters = second.state.counters
    assert counters.success == 3
    assert counters.retried == 1
    assert counters.failed == 0
    assert second.state.retry_counts == {"B": 1}


def test_pause_and_resume_in_memory_repeats_current_order() -> None:
    agent = ScriptedAgent({1: ["A", "B"]}, {"A": ["silent", "ok"]})
    controller, scheduler, _ = _make_controller(agent)

    controller.start(1, 1)
    _drain(controller)
    assert controller.pause() == {"paused": True}

    state = controller.state
    assert state.phase == Phase.PAUSED
    assert state.in_flight is None
    checkpoint = controller.persistence.load_checkpoint()
    assert checkpoint is not None and checkpoint["cursor"] == 0
    assert controller.get_status()["paused"] is True

    assert controller.resume() == {"success": True}
    _run(controller, scheduler)

    assert len(agent.extract_requests("A")) == 2
    assert controller.state.counters.success == 2
    assert controller.state.counters.retried == 0


def test_pause_while_collecting_resumes_collection() -> None:
    navigator = FakeNavigator()
    navigator.swallow_loads = 1
    agent = ScriptedAgent({1: ["A"]})
    controller, scheduler, _ = _make_controller(agent, navigator=navigator)

    controller.start(1, 1)
    _drain(controller)
    controller.pause()
    controller.resume()

    assert controller.state.phase == Phase.COLLECTING
    _run(controller, scheduler)

    assert len(navigator.list_visits) == 2
    assert controller.state.counters.success == 1


def test_pause_when_idle_is_rejected() -> None:
    controller, _, _ = _make_controller(ScriptedAgent({}))
    assert controller.pause() == {"error": "Not running"}


def test_start_while_paused_is_rejected() -> None:
    agent = ScriptedAgent({1: ["A"]}, {"A": ["silent"]})
    controller, _, _ = _make_controller(agent)

    controller.start(1, 1)
    _drain(controller)
    controller.pause()

    assert "error" in controller.start(1, 1)


def test_stop_is_idempotent() -> None:
    agent = ScriptedAgent({1: ["A", "B"]}, {"B": ["silent"]})
    controller, scheduler, _ = _make_controller(agent)

    controller.start(1, 1)
    _step_until(controller, scheduler, lambda: controller.state.counters.success == 1)

    assert controller.stop() == {"stopped": True}
    assert controller.state.phase == Phase.IDLE
    assert controller.persistence.load_checkpoint() is None

    assert controller.stop() == {"stopped": True}
    assert controller.state.phase == Phase.IDLE
    assert controller.persistence.load_checkpoint() is None

    # Counters stay visible after stopping.
    assert controller.get_status()["success"] == 1
    assert controller.get_status()["stopped"] is True

    _run(controller, scheduler)
    assert controller.state.phase == Phase.IDLE
    assert controller.state.counters.processed == 1


def test_stop_when_never_started() -> None:
    controller, _, _ = _make_controller(ScriptedAgent({}))
    assert controller.stop() == {"stopped": True}
    assert controller.state.phase == Phase.IDLE


def test_resume_without_checkpoint() -> None:
    controller, _, _ = _make_controller(ScriptedAgent({}))
    assert controller.resume() == {"error": "No session to resume"}
    assert controller.resume_if_checkpoint() is False


def test_resume_after_done_has_nothing_to_resume() -> None:
    controller, scheduler, _ = _make_controller(ScriptedAgent({1: ["A"]}))
    controller.start(1, 1)
    _run(controller, scheduler)

    assert controller.state.phase == Phase.DONE
    assert controller.resume() == {"error": "No session to resume"}


def test_auto_resume_picks_up_interrupted_run() -> None:
    checkpoint = {
        "version": 1,
        "phase": "processing",
        "work_list": ["A", "B", "C"],
        "cursor": 2,
        "page_range": {"start": 1, "end": 2},
        "current_page": 1,
        "end_page": 2,
        "collected_page": 1,
        "page_total": 3,
        "retry_counts": {"B": 2},
        "counters": {"processed": 2, "success": 1, "failed": 1, "skipped": 0, "retried": 1},
        "accumulated_amount": 10.5,
        "date_filter": {"date_from": None, "date_to": None},
        "delay_range": None,
        "max_orders": None,
        "items_since_break": 2,
        "next_break_at": 21,
        "started_at": 0,
    }
    store = MemoryStore({config.CHECKPOINT_KEY: checkpoint})
    agent = ScriptedAgent({1: ["A", "B", "C"], 2: ["D"]})
    controller, scheduler, navigator = _make_controller(agent, store=store)

    assert controller.resume_if_checkpoint() is True
    _run(controller, scheduler)

    assert [request.identifier for request in agent.extract_requests()] == ["C", "D"]
    assert controller.state.counters.as_dict() == {
        "processed": 4,
        "success": 3,
        "failed": 1,
        "skipped": 0,
        "retried": 1,
    }
    assert controller.state.accumulated_amount == 31.5
    assert len(navigator.list_visits) == 1
    assert controller.persistence.load_checkpoint() is None


def test_load_events_ignored_while_paused_idle_or_done() -> None:
    agent = ScriptedAgent({1: ["A"]}, {"A": ["silent", "ok"]})
    controller, scheduler, navigator = _make_controller(agent)

    # Idle, before any run: the tab does not even exist yet.
    controller.post(LoadComplete(tab_id="tab-1", url="about:blank"))
    _drain(controller)
    assert agent.requests == []

    controller.start(1, 1)
    _drain(controller)
    assert len(agent.extract_requests("A")) == 1
    controller.pause()

    navigator._emit("tab-1", navigator.current_url or "")
    _drain(controller)
    assert controller.state.phase == Phase.PAUSED
    assert len(agent.extract_requests("A")) == 1
    assert scheduler.pending() == []

    controller.resume()
    _run(controller, scheduler)
    assert controller.state.phase == Phase.DONE
    sent = len(agent.requests)

    navigator._emit("tab-1", navigator.current_url or "")
    _drain(controller)
    assert len(agent.requests) == sent
    assert controller.state.phase == Phase.DONE


def test_reply_arriving_after_stop_is_discarded() -> None:
    agent = ScriptedAgent({1: ["A", "B"]}, {"A": ["silent"]})
    controller, scheduler, navigator = _make_controller(agent)

    controller.start(1, 1)
    _drain(controller)
    request_id = agent.extract_requests("A")[0].request_id
    assert controller.stop() == {"stopped": True}

    controller.post(ItemExtracted(request_id, "A", success=True, fields={"customer_name": "Late"}))
    _run(controller, scheduler)

    assert controller.state.phase == Phase.IDLE
    assert controller.state.counters.processed == 0
    assert controller.persistence.load_results() == []
    assert controller.persistence.load_checkpoint() is None
    assert len(navigator.item_visits) == 1


def test_status_read_while_loop_busy_is_flagged_stale() -> None:
    agent = ScriptedAgent({1: ["A"]}, {"A": ["silent"]})
    controller, scheduler, navigator = _make_controller(agent)
    controller.start(1, 1)
    _drain(controller)

    fresh = controller.get_status()
    assert fresh["stale"] is False
    assert fresh["phase"] == Phase.PROCESSING.value

    holding = threading.Event()
    release = threading.Event()

    def busy_loop() -> None:
        with controller._lock:
            holding.set()
            release.wait(timeout=5)

    worker = threading.Thread(target=busy_loop)
    worker.start()
    try:
        assert holding.wait(timeout=5)
        snapshot = controller.get_status()
    finally:
        release.set()
        worker.join(timeout=5)

    assert snapshot["stale"] is True
    assert snapshot["phase"] == Phase.PROCESSING.value
    assert snapshot["total"] == 1
    assert controller.get_status()["stale"] is False
