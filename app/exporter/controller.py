"""Export run orchestration.

The controller owns the session state and reacts to messages arriving on its
inbox: page loads from the navigation driver, replies from the in-page agent,
expired timers, and wake-ups posted by UI commands. Messages are handled one
at a time under a single lock, so each transition is atomic and only one order
is ever in flight.

Workflow for a run:

- open the order list page for ``current_page`` and ask the agent for the
  order ids on it;
- drop ids that were exported before (counted as skipped);
- for each remaining id: arm the watchdog, open the detail page, ask the agent
  to extract the order, then classify the reply as success, retryable failure
  or terminal failure;
- wait a randomised delay and move to the next order; when the page is
  exhausted move to the next page or finish.

Every state change is written to the resume checkpoint first and broadcast to
the UI second.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from . import config
from .delays import DelayPolicy
from .delegate import DelegateChannel, ExtractionDelegate, ItemExtracted, PageCollected
from .error_codes import DelegateError, ErrorCode, NavigationError
from .events import LogLine, StatusBus, StatusUpdate
from .logging_utils import _export_event
from .navigation import LoadComplete, NavigationDriver, item_page_url, list_page_url
from .parser import parse_amount
from .persistence import PersistenceBridge
from .retry_policy import NON_RETRYABLE_ERROR_CODES, decide_retry
from .session import (
    RUNNING_PHASES,
    Awaiting,
    DateFilter,
    InFlight,
    PageRange,
    Phase,
    SessionState,
)
from .utils import log_line, now_iso, short_id
from .watchdog import Scheduler, ThreadingScheduler, TimerFired, Watchdog

WATCHDOG_ITEM = "watchdog:item"
WATCHDOG_COLLECT = "watchdog:collect"
TIMER_DELAY = "delay"
TIMER_BACKOFF = "backoff"


@dataclass(frozen=True)
class _Advance:
    """Wake-up: continue with whatever the current phase needs next."""


@dataclass(frozen=True)
class _Shutdown:
    pass


class OrderExportController:
    """Single-worker state machine driving one browser tab through a run."""

    def __init__(
        self,
        persistence: PersistenceBridge,
        navigator: NavigationDriver,
        channel: DelegateChannel,
        *,
        delays: Optional[DelayPolicy] = None,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[StatusBus] = None,
        clock: Callable[[], float] = time.monotonic,
        max_retries: Optional[int] = None,
        watchdog_seconds: Optional[float] = None,
        collect_timeout_seconds: Optional[float] = None,
        max_stall_reloads: Optional[int] = None,
        min_dispatch_interval: Optional[float] = None,
    ) -> None:
        self.persistence = persistence
        self.navigator = navigator
        self.delays = delays or DelayPolicy()
        self.scheduler = scheduler or ThreadingScheduler()
        self.bus = bus or StatusBus()
        self._clock = clock
        self.max_retries = config.MAX_RETRIES if max_retries is None else int(max_retries)
        self.collect_timeout_seconds = (
            config.COLLECT_TIMEOUT_SECONDS
            if collect_timeout_seconds is None
            else float(collect_timeout_seconds)
        )
        self.max_stall_reloads = (
            config.MAX_STALL_RELOADS if max_stall_reloads is None else int(max_stall_reloads)
        )
        self.min_dispatch_interval = (
            config.MIN_DISPATCH_INTERVAL_SECONDS
            if min_dispatch_interval is None
            else float(min_dispatch_interval)
        )

        self.state = SessionState()
        self._lock = threading.RLock()
        self._inbox: "queue.Queue[Any]" = queue.Queue()
        self._delegate = ExtractionDelegate(channel, self.post)
        self._watchdog = Watchdog(
            self.scheduler,
            self.post,
            config.WATCHDOG_TIMEOUT_SECONDS if watchdog_seconds is None else watchdog_seconds,
        )
        self._active_delays = self.delays
        self._timer: Any = None
        self._timer_kind: Optional[str] = None
        self._timer_generation = 0
        self._tab_id: Optional[str] = None
        # Order whose outcome is being recorded; in_flight is already cleared.
        self._settling: Optional[str] = None
        self._finished = threading.Event()
        self._finished.set()
        self._shutdown = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_status: Dict[str, Any] = self._status_payload()

        navigator.add_load_listener(self.post)

    # ------------------------------------------------------------------
    # Commands (any thread)
    # ------------------------------------------------------------------

    def start(
        self,
        page_start: int = 1,
        page_end: Optional[int] = None,
        *,
        date_filter: Optional[DateFilter] = None,
        delay_range: Optional[Sequence[float]] = None,
        max_orders: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Begin a fresh run over ``[page_start, page_end]``."""

        with self._lock:
            if self.state.phase in RUNNING_PHASES:
                return {"error": "Already running"}
            if self.state.phase == Phase.PAUSED:
                return {"error": "A paused run exists; resume or stop it first"}

            start = max(1, int(page_start))
            end = max(start, int(page_end if page_end is not None else start))
            self._halt()
            self.state = SessionState(
                phase=Phase.COLLECTING,
                page_range=PageRange(start=start, end=end),
                current_page=start,
                end_page=end,
                date_filter=date_filter or DateFilter(),
                delay_range=[float(v) for v in delay_range] if delay_range else None,
                max_orders=int(max_orders) if max_orders else None,
                started_at=time.time(),
            )
            self._active_delays = self.delays.with_range(self.state.delay_range)
            self.state.next_break_at = self._active_delays.next_rest_threshold()
            self._finished.clear()

            self._log(f"Starting export of pages {start}-{end}")
            _export_event(
                "state",
                phase="start",
                page_start=start,
                page_end=end,
                date_filter=asdict(self.state.date_filter),
                delay_range=self.state.delay_range,
                max_orders=self.state.max_orders,
            )
            self._commit("Opening order list...")
            self.post(_Advance())
            return {"success": True}

    def resume(self) -> Dict[str, Any]:
        """Continue a paused run, or rehydrate one from the checkpoint."""

        with self._lock:
            if self.state.phase in RUNNING_PHASES:
                return {"error": "Already running"}

            if self.state.phase == Phase.PAUSED:
                source = "memory"
            else:
                snapshot = self.persistence.load_checkpoint()
                if not snapshot:
                    return {"error": "No session to resume"}
                self.state = SessionState.from_checkpoint(snapshot)
                self._active_delays = self.delays.with_range(self.state.delay_range)
                if self.state.next_break_at <= 0:
                    self.state.next_break_at = self._active_delays.next_rest_threshold()
                source = "checkpoint"

            self._halt()
            self.state.pause_requested = False
            self.state.stop_requested = False
            self.state.phase = Phase.PROCESSING if self.state.page_collected else Phase.COLLECTING
            self._finished.clear()

            self._log(
                f"Resuming on page {self.state.current_page} at order "
                f"{self.state.cursor + 1}/{len(self.state.work_list)} ({source})"
            )
            _export_event(
                "state",
                phase="resume",
                source=source,
                cursor=self.state.cursor,
                current_page=self.state.current_page,
                counters=self.state.counters.as_dict(),
            )
            self._commit("Resuming export...")
            self.post(_Advance())
            return {"success": True}

    def resume_if_checkpoint(self) -> bool:
        """Resume automatically when an interrupted run was left behind."""

        with self._lock:
            if self.state.phase != Phase.IDLE or not self.persistence.has_resumable_checkpoint():
                return False
            return bool(self.resume().get("success"))

    def pause(self) -> Dict[str, Any]:
        with self._lock:
            if self.state.phase not in RUNNING_PHASES:
                return {"error": "Not running"}
            self.state.pause_requested = True
            self._halt()
            self.state.phase = Phase.PAUSED
            self._log("Export paused")
            self._commit("Export paused")
            return {"paused": True}

    def stop(self) -> Dict[str, Any]:
        """Terminate the run and drop its checkpoint. Safe to call repeatedly."""

        with self._lock:
            was_active = self.state.phase in RUNNING_PHASES or self.state.phase == Phase.PAUSED
            self.state.stop_requested = True
            self._halt()
            self.state.phase = Phase.IDLE
            self._clear_checkpoint()
            if was_active:
                self._log("Export stopped by user")
            self.state.message = "Export stopped"
            self._broadcast()
            self._finished.set()
            return {"stopped": True}

    def get_status(self) -> Dict[str, Any]:
        # While the loop holds the lock for a blocking navigation, answer with
        # the last broadcast and flag it as stale.
        if self._lock.acquire(timeout=0.25):
            try:
                return self._status_payload()
            finally:
                self._lock.release()
        return {**self._last_status, "stale": True}

    # ------------------------------------------------------------------
    # Inbox / loop
    # ------------------------------------------------------------------

    def post(self, message: Any) -> None:
        self._inbox.put(message)

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Handle one inbox message; return ``False`` when none was available."""

        try:
            if timeout is None:
                message = self._inbox.get_nowait()
            else:
                message = self._inbox.get(timeout=timeout)
        except queue.Empty:
            return False
        self._handle(message)
        return True

    def serve_forever(self, poll_seconds: float = 0.5) -> None:
        while not self._shutdown.is_set():
            self.process_next(timeout=poll_seconds)

    def start_background(self) -> threading.Thread:
        if self._thread is None or not self._thread.is_alive():
            self._shutdown.clear()
            self._thread = threading.Thread(
                target=self.serve_forever, name="order-export-controller", daemon=True
            )
            self._thread.start()
        return self._thread

    def shutdown(self, timeout: float = 10.0) -> None:
        self.post(_Shutdown())
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def wait_until_finished(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _handle(self, message: Any) -> None:
        with self._lock:
            try:
                if isinstance(message, LoadComplete):
                    self._on_load_complete(message)
                elif isinstance(message, PageCollected):
                    self._on_page_collected(message)
                elif isinstance(message, ItemExtracted):
                    self._on_item_extracted(message)
                elif isinstance(message, TimerFired):
                    self._on_timer(message)
                elif isinstance(message, _Advance):
                    self._advance()
                elif isinstance(message, _Shutdown):
                    self._on_shutdown()
                else:
                    log_line(f"[RUN] Ignoring unknown message {message!r}", "warning")
            except Exception as exc:  # noqa: BLE001
                self._recover(exc, message)

    def _advance(self) -> None:
        state = self.state
        if state.stop_requested or state.phase not in RUNNING_PHASES:
            return
        if state.awaiting != Awaiting.NOTHING:
            return
        if state.phase == Phase.COLLECTING:
            self._begin_collect()
        else:
            self._process_current()

    def _on_shutdown(self) -> None:
        self._watchdog.disarm()
        self._cancel_timer()
        self._shutdown.set()
        try:
            self.navigator.close()
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN] Error closing navigator: {exc}", "warning")

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def _ensure_tab(self) -> str:
        if self._tab_id is None:
            self._tab_id = self.navigator.open_tab()
        return self._tab_id

    def _begin_collect(self) -> None:
        state = self.state
        state.awaiting = Awaiting.LIST_LOAD
        self._log(f"Opening order list page {state.current_page}/{state.end_page}")
        self._commit(f"Collecting order IDs from page {state.current_page}...")
        self._watchdog.arm(WATCHDOG_COLLECT, self.collect_timeout_seconds)
        try:
            tab_id = self._ensure_tab()
            self.navigator.navigate(tab_id, list_page_url(state.current_page, state.date_filter))
        except NavigationError as exc:
            self._abort_run(ErrorCode.NAVIGATION, f"Could not open order list: {exc}")

    def _dispatch_collect(self) -> None:
        state = self.state
        try:
            request_id = self._delegate.collect_page(
                self._ensure_tab(),
                state.current_page,
                date_filter=state.date_filter,
                max_orders=state.max_orders,
            )
        except DelegateError as exc:
            self._abort_run(ErrorCode.COLLECTION, f"Error collecting order IDs: {exc}")
            return
        state.collect_request_id = request_id
        state.awaiting = Awaiting.COLLECT_REPLY

    def _on_page_collected(self, reply: PageCollected) -> None:
        state = self.state
        if (
            state.phase != Phase.COLLECTING
            or state.awaiting != Awaiting.COLLECT_REPLY
            or reply.request_id != state.collect_request_id
        ):
            _export_event("delegate", step="stale_reply", request_id=reply.request_id,
                          phase=state.phase.value)
            return

        self._watchdog.disarm()
        state.collect_request_id = None
        state.awaiting = Awaiting.NOTHING

        if reply.error:
            self._abort_run(ErrorCode.COLLECTION, f"Error collecting order IDs: {reply.error}")
            return

        identifiers = list(
            dict.fromkeys(str(value).strip() for value in reply.identifiers if str(value).strip())
        )

        actual = reply.actual_max_pages
        if actual is not None and actual < state.end_page:
            adjusted = max(int(actual), state.current_page)
            self._log(
                f"Only {actual} page(s) available; ending at page {adjusted} "
                f"instead of {state.end_page}",
                "warning",
            )
            state.end_page = adjusted

        exported = self.persistence.exported_ids()
        fresh = [identifier for identifier in identifiers if identifier not in exported]
        duplicates = len(identifiers) - len(fresh)

        state.work_list = fresh
        state.cursor = 0
        state.collected_page = state.current_page
        state.page_total = len(identifiers)
        state.counters.skipped += duplicates

        if not identifiers:
            self._log(f"No orders found on page {state.current_page}", "warning")
        else:
            self._log(f"Collected {len(identifiers)} order IDs on page {state.current_page}")
        if duplicates:
            self._log(f"Skipping {duplicates} order(s) already exported")

        if fresh:
            state.phase = Phase.PROCESSING
            self._commit(f"Processing {len(fresh)} orders...")
            self._process_current()
        else:
            self._commit()
            self._finish_page()

    def _finish_page(self) -> None:
        state = self.state
        if state.has_pages_left:
            state.current_page += 1
            state.phase = Phase.COLLECTING
            state.work_list = []
            state.cursor = 0
            state.awaiting = Awaiting.NOTHING
            self._commit(f"Moving to page {state.current_page}...")
            self._begin_collect()
        else:
            self._finish_run()

    # ------------------------------------------------------------------
    # Per-order processing
    # ------------------------------------------------------------------

    def _process_current(self) -> None:
        state = self.state
        if state.cursor >= len(state.work_list):
            self._finish_page()
            return

        identifier = state.work_list[state.cursor]
        attempt = state.retry_counts.get(identifier, 0) + 1
        state.in_flight = InFlight(identifier=identifier, cursor=state.cursor)
        state.awaiting = Awaiting.ITEM_LOAD

        suffix = f", attempt {attempt}" if attempt > 1 else ""
        self._log(
            f"Processing order {short_id(identifier)} "
            f"({state.cursor + 1}/{len(state.work_list)}, page {state.current_page}{suffix})"
        )
        self._commit(f"Processing order {state.cursor + 1}/{len(state.work_list)}")

        self._watchdog.arm(WATCHDOG_ITEM)
        try:
            self.navigator.navigate(self._ensure_tab(), item_page_url(identifier))
        except NavigationError as exc:
            self._watchdog.disarm()
            state.in_flight = None
            state.awaiting = Awaiting.NOTHING
            self._item_failed(identifier, ErrorCode.NAVIGATION, f"Navigation failed: {exc}")

    def _on_load_complete(self, event: LoadComplete) -> None:
        state = self.state
        if event.tab_id != self._tab_id:
            return
        if state.stop_requested or state.phase not in RUNNING_PHASES:
            return

        if state.phase == Phase.COLLECTING and state.awaiting == Awaiting.LIST_LOAD:
            self._dispatch_collect()
        elif (
            state.phase == Phase.PROCESSING
            and state.awaiting == Awaiting.ITEM_LOAD
            and state.in_flight is not None
        ):
            self._dispatch_extract()
        else:
            _export_event(
                "nav",
                step="load_ignored",
                url=event.url,
                phase=state.phase.value,
                awaiting=state.awaiting.value,
            )

    def _dispatch_extract(self) -> None:
        state = self.state
        in_flight = state.in_flight
        assert in_flight is not None

        now = self._clock()
        if (
            in_flight.dispatched_at is not None
            and now - in_flight.dispatched_at < self.min_dispatch_interval
        ):
            _export_event("delegate", step="dispatch_throttled", identifier=in_flight.identifier)
            return

        try:
            request_id = self._delegate.extract_item(self._ensure_tab(), in_flight.identifier)
        except DelegateError as exc:
            self._watchdog.disarm()
            state.in_flight = None
            state.awaiting = Awaiting.NOTHING
            self._item_failed(in_flight.identifier, ErrorCode.DELEGATE_UNREACHABLE, str(exc))
            return

        in_flight.request_id = request_id
        in_flight.dispatched_at = now
        state.awaiting = Awaiting.EXTRACT_REPLY

    def _on_item_extracted(self, reply: ItemExtracted) -> None:
        state = self.state
        in_flight = state.in_flight
        if (
            state.phase != Phase.PROCESSING
            or in_flight is None
            or reply.request_id != in_flight.request_id
        ):
            _export_event("delegate", step="stale_reply", request_id=reply.request_id,
                          identifier=reply.identifier, phase=state.phase.value)
            return

        self._watchdog.disarm()
        state.in_flight = None
        state.awaiting = Awaiting.NOTHING
        identifier = in_flight.identifier

        if reply.success:
            self._item_succeeded(identifier, reply.fields)
        elif reply.skip_retry:
            self._item_failed(
                identifier,
                ErrorCode.PERMISSION_BLOCKED,
                reply.error or "Customer data is blocked for this account",
                skip_retry=True,
            )
        else:
            self._item_failed(
                identifier,
                reply.error_code or ErrorCode.EXTRACTION_MASKED,
                reply.error or "Data masked/unavailable",
            )

    def _item_succeeded(self, identifier: str, fields: Dict[str, Any]) -> None:
        state = self.state
        self._settling = identifier
        record = self._build_record(identifier, fields)
        self.persistence.append_result(record)

        state.counters.success += 1
        state.counters.processed += 1
        state.accumulated_amount = round(state.accumulated_amount + record["total_amount"], 2)
        name = record["customer_name"] or "(no name)"
        self._log(f"Order {short_id(identifier)}: {name}", "success")
        self._complete_item()

    def _item_failed(
        self,
        identifier: str,
        error_code: str,
        reason: str,
        *,
        skip_retry: bool = False,
    ) -> None:
        self._settling = identifier
        state = self.state
        retryable = not skip_retry and error_code not in NON_RETRYABLE_ERROR_CODES
        attempts = state.retry_counts.get(identifier, 0)
        if retryable:
            attempts += 1
            state.retry_counts[identifier] = attempts

        state.last_error = error_code
        if decide_retry(attempts, self.max_retries, error_code=error_code, skip_retry=not retryable):
            if attempts == 1:
                state.counters.retried += 1
            wait = self._active_delays.backoff(attempts)
            self._log(
                f"Order {short_id(identifier)}: {reason}; "
                f"retry {attempts}/{self.max_retries} in {wait:.1f}s",
                "warning",
            )
            self._settling = None
            state.awaiting = Awaiting.BACKOFF
            self._commit()
            self._schedule(TIMER_BACKOFF, wait)
            return

        state.counters.failed += 1
        state.counters.processed += 1
        self._log(f"Order {short_id(identifier)}: {reason}", "error")
        _export_event("error", phase="order", identifier=identifier, error_code=error_code,
                      attempts=attempts, reason=reason)
        self._complete_item()

    def _complete_item(self) -> None:
        state = self.state
        self._settling = None
        state.cursor += 1
        state.items_since_break += 1

        if state.cursor >= len(state.work_list) and not state.has_pages_left:
            self._finish_run()
            return

        wait = self._active_delays(state.counters.as_dict())
        if state.next_break_at and state.items_since_break >= state.next_break_at:
            rest = self._active_delays.rest_break()
            wait += rest
            state.items_since_break = 0
            state.next_break_at = self._active_delays.next_rest_threshold()
            if rest > 0:
                self._log(f"Taking a {rest:.0f}s break")

        state.awaiting = Awaiting.DELAY
        self._commit()
        self._schedule(TIMER_DELAY, wait)

    def _build_record(self, identifier: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        def text(key: str, *fallbacks: str) -> str:
            for name in (key, *fallbacks):
                value = fields.get(name)
                if value not in (None, ""):
                    return str(value).strip()
            return ""

        return {
            "page": self.state.current_page,
            "order_id": identifier,
            "shipping_method": text("shipping_method"),
            "payment_method": text("payment_method"),
            "total_amount": parse_amount(fields.get("total_amount")),
            "currency": text("currency") or config.DEFAULT_CURRENCY,
            "items": text("items"),
            "sku": text("sku"),
            "customer_name": text("customer_name", "name"),
            "phone_number": text("phone_number"),
            "full_address": text("full_address"),
            "order_date": text("order_date"),
            "order_status": text("order_status", "status"),
            "extracted_at": now_iso(),
        }

    # ------------------------------------------------------------------
    # Timers and stalls
    # ------------------------------------------------------------------

    def _schedule(self, kind: str, seconds: float) -> None:
        self._cancel_timer()
        self._timer_generation += 1
        generation = self._timer_generation
        self._timer_kind = kind
        self._timer = self.scheduler.call_later(
            seconds, lambda: self.post(TimerFired(kind, generation))
        )

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._timer_kind = None

    def _on_timer(self, fired: TimerFired) -> None:
        if fired.kind in (WATCHDOG_ITEM, WATCHDOG_COLLECT):
            if not self._watchdog.consume(fired):
                return
            if fired.kind == WATCHDOG_COLLECT:
                self._on_collect_stall()
            else:
                self._on_item_stall()
            return

        if fired.kind != self._timer_kind or fired.generation != self._timer_generation:
            return
        self._timer = None
        self._timer_kind = None
        if self.state.phase not in RUNNING_PHASES or self.state.stop_requested:
            return
        self.state.awaiting = Awaiting.NOTHING
        self._advance()

    def _on_collect_stall(self) -> None:
        if self.state.phase != Phase.COLLECTING:
            return
        self._abort_run(
            ErrorCode.COLLECTION,
            f"Order list did not answer within {self.collect_timeout_seconds:.0f}s",
        )

    def _on_item_stall(self) -> None:
        state = self.state
        in_flight = state.in_flight
        if state.phase != Phase.PROCESSING or in_flight is None:
            return

        identifier = in_flight.identifier
        in_flight.request_id = None
        in_flight.stall_reloads += 1
        state.last_error = ErrorCode.STALL
        _export_event("watchdog", step="stall", identifier=identifier,
                      stall_reloads=in_flight.stall_reloads)

        if in_flight.stall_reloads > self.max_stall_reloads:
            state.in_flight = None
            state.awaiting = Awaiting.NOTHING
            self._item_failed(
                identifier,
                ErrorCode.STALL_EXHAUSTED,
                f"No response after {self.max_stall_reloads} reload(s)",
            )
            return

        self._log(
            f"Order {short_id(identifier)}: no response within "
            f"{self._watchdog.timeout_seconds:.0f}s, reloading "
            f"({in_flight.stall_reloads}/{self.max_stall_reloads})",
            "warning",
        )
        state.awaiting = Awaiting.ITEM_LOAD
        self._watchdog.arm(WATCHDOG_ITEM)
        try:
            self.navigator.reload(self._ensure_tab())
        except NavigationError as exc:
            self._watchdog.disarm()
            state.in_flight = None
            state.awaiting = Awaiting.NOTHING
            self._item_failed(identifier, ErrorCode.RELOAD_FAILED, f"Reload failed: {exc}")

    # ------------------------------------------------------------------
    # Run termination
    # ------------------------------------------------------------------

    def _halt(self) -> None:
        self._settling = None
        self._watchdog.disarm()
        self._cancel_timer()
        self.state.in_flight = None
        self.state.collect_request_id = None
        self.state.awaiting = Awaiting.NOTHING

    def _finish_run(self) -> None:
        state = self.state
        self._halt()
        state.phase = Phase.DONE
        self._clear_checkpoint()
        counters = state.counters
        self._log(
            f"Export completed! {counters.success} success, {counters.failed} failed, "
            f"{counters.skipped} skipped, {counters.retried} retried",
            "success",
        )
        _export_event("state", phase="done", counters=counters.as_dict(),
                      accumulated_amount=state.accumulated_amount)
        state.message = "Export completed!"
        self._broadcast()
        self._finished.set()

    def _abort_run(self, error_code: str, reason: str) -> None:
        state = self.state
        self._halt()
        state.phase = Phase.IDLE
        state.stop_requested = True
        state.last_error = error_code
        self._clear_checkpoint()
        counters = state.counters
        self._log(
            f"{reason}. Run stopped: {counters.success} success, {counters.failed} failed, "
            f"{counters.skipped} skipped",
            "error",
        )
        _export_event("error", phase="run", error_code=error_code, reason=reason)
        state.message = reason
        self._broadcast()
        self._finished.set()

    def _recover(self, exc: Exception, message: Any) -> None:
        log_line(
            f"[RUN] Unexpected {type(exc).__name__} while handling "
            f"{type(message).__name__}: {exc}",
            "error",
        )
        _export_event("error", phase="controller", message=type(message).__name__, error=repr(exc))
        state = self.state
        try:
            identifier = state.in_flight.identifier if state.in_flight is not None else self._settling
            self._settling = None
            if state.phase == Phase.PROCESSING and identifier is not None:
                self._watchdog.disarm()
                state.in_flight = None
                state.awaiting = Awaiting.NOTHING
                self._item_failed(identifier, ErrorCode.INTERNAL, f"Unexpected error: {exc}")
            elif state.phase == Phase.COLLECTING:
                self._abort_run(ErrorCode.INTERNAL, f"Unexpected error while collecting: {exc}")
            elif state.phase == Phase.PROCESSING and self._timer is None:
                state.awaiting = Awaiting.NOTHING
                self.post(_Advance())
        except Exception as nested:  # noqa: BLE001
            log_line(f"[RUN] Recovery failed: {nested}", "error")
            try:
                self._abort_run(ErrorCode.INTERNAL, f"Unrecoverable error: {nested}")
            except Exception:  # noqa: BLE001
                self.state.phase = Phase.IDLE
                self._finished.set()

    # ------------------------------------------------------------------
    # Persistence and reporting
    # ------------------------------------------------------------------

    def _clear_checkpoint(self) -> None:
        try:
            self.persistence.clear_checkpoint()
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN] Could not clear checkpoint: {exc}", "error")

    def _commit(self, message: Optional[str] = None) -> None:
        """Checkpoint the state, then tell the UI about it."""

        if message is not None:
            self.state.message = message
        if self.state.phase in RUNNING_PHASES or self.state.phase == Phase.PAUSED:
            try:
                self.persistence.save_checkpoint(self.state.to_checkpoint())
            except Exception as exc:  # noqa: BLE001
                log_line(f"[RUN] Could not save checkpoint: {exc}", "error")
        self._broadcast()

    def _status_payload(self) -> Dict[str, Any]:
        state = self.state
        active = state.phase in RUNNING_PHASES or state.phase == Phase.PAUSED
        return {
            "phase": state.phase.value,
            "is_running": state.is_running,
            "paused": state.phase == Phase.PAUSED,
            "completed": state.phase == Phase.DONE,
            "stopped": state.phase == Phase.IDLE and state.stop_requested,
            "page_range": asdict(state.page_range),
            "current_page": state.current_page,
            "end_page": state.end_page,
            "total": len(state.work_list),
            "page_total": state.page_total,
            "cursor": state.cursor,
            "remaining": state.remaining,
            "current_item": state.current_item if active else None,
            "counters": state.counters.as_dict(),
            **state.counters.as_dict(),
            "accumulated_amount": round(state.accumulated_amount, 2),
            "retry_counts": dict(state.retry_counts),
            "item_in_flight": state.is_item_in_flight,
            "message": state.message,
            "last_error": state.last_error,
            "stale": False,
        }

    def _broadcast(self) -> None:
        try:
            payload = self._status_payload()
            self._last_status = payload
            extra = {
                key: value
                for key, value in payload.items()
                if key not in {"phase", "counters", "current_item", "message", "stale"}
            }
            self.bus.publish(
                StatusUpdate(
                    phase=payload["phase"],
                    counters=payload["counters"],
                    current_item=payload["current_item"],
                    message=payload["message"],
                    extra=extra,
                )
            )
        except Exception as exc:  # noqa: BLE001
            log_line(f"[RUN] Status broadcast failed: {exc}", "warning")

    def _log(self, text: str, level: str = "info") -> None:
        log_line(f"[RUN] {text}", level)
        try:
            self.bus.publish(LogLine(text=text, level=level))
        except Exception:  # noqa: BLE001
            pass


__all__ = ["OrderExportController"]
