from __future__ import annotations

"""Command line entry for running and inspecting exports without the web UI."""

import argparse
from typing import Sequence

from . import config
from .agent import PlaywrightAgent
from .config_validation import validate_run_request, validate_runtime_config
from .controller import OrderExportController
from .export import export_orders, summarize_results
from .navigation import PlaywrightNavigator
from .persistence import PersistenceBridge
from .session import DateFilter
from .storage import JsonFileStore
from .utils import ensure_dirs, log_line, setup_run_logger


def _persistence() -> PersistenceBridge:
    return PersistenceBridge(JsonFileStore(config.STORE_DIR))


def _build_controller(persistence: PersistenceBridge, *, headless: bool | None = None) -> OrderExportController:
    navigator = PlaywrightNavigator(headless=headless)
    return OrderExportController(persistence, navigator, PlaywrightAgent(navigator.page))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export seller-portal orders.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Start a new export run.")
    run.add_argument("--page-start", type=int, default=1)
    run.add_argument("--page-end", type=int, default=None)
    run.add_argument("--date-from", default=None, help="YYYY-MM-DD")
    run.add_argument("--date-to", default=None, help="YYYY-MM-DD")
    run.add_argument("--delay-min", type=float, default=None)
    run.add_argument("--delay-max", type=float, default=None)
    run.add_argument("--max-orders", type=int, default=None, help="Per-page order cap.")
    run.add_argument("--headless", action="store_true", default=None)

    resume = sub.add_parser("resume", help="Continue an interrupted run from its checkpoint.")
    resume.add_argument("--headless", action="store_true", default=None)

    export = sub.add_parser("export", help="Write stored orders to CSV or Excel.")
    export.add_argument("--format", choices=["csv", "xlsx"], default="csv")
    export.add_argument("--output", default=None, help="Destination path.")

    sub.add_parser("history", help="List previous exports.")
    sub.add_parser("summary", help="Show totals for stored orders.")
    return parser


def _drive(controller: OrderExportController, result: dict) -> int:
    if "error" in result:
        log_line(f"[CLI] {result['error']}", "error")
        controller.shutdown()
        return 1
    try:
        controller.wait_until_finished()
    except KeyboardInterrupt:
        controller.pause()
        log_line("[CLI] Interrupted; run paused and checkpoint kept. Use 'resume' to continue.")
        controller.shutdown()
        return 130
    status = controller.get_status()
    controller.shutdown()
    print(
        f"{status['phase']}: {status['success']} success, {status['failed']} failed, "
        f"{status['skipped']} skipped, {status['retried']} retried"
    )
    return 0 if status["phase"] == "done" else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    ensure_dirs()
    persistence = _persistence()

    if args.command in {"run", "resume"}:
        validate_runtime_config("cli")
        setup_run_logger()
        controller = _build_controller(persistence, headless=args.headless)

        if args.command == "resume":
            controller.start_background()
            return _drive(controller, controller.resume())

        delay_range = None
        if args.delay_min is not None or args.delay_max is not None:
            delay_range = (
                args.delay_min if args.delay_min is not None else config.DELAY_MIN_SECONDS,
                args.delay_max if args.delay_max is not None else config.DELAY_MAX_SECONDS,
            )
        try:
            pages, delays = validate_run_request(
                "cli",
                page_range=(args.page_start, args.page_end or args.page_start),
                delay_range=delay_range,
                max_orders=args.max_orders,
            )
        except ValueError as exc:
            parser.error(str(exc))
        assert pages is not None
        controller.start_background()
        result = controller.start(
            pages[0],
            pages[1],
            date_filter=DateFilter(date_from=args.date_from, date_to=args.date_to),
            delay_range=delays,
            max_orders=args.max_orders,
        )
        return _drive(controller, result)

    if args.command == "export":
        try:
            path = export_orders(persistence, args.format, args.output)
        except FileNotFoundError as exc:
            print(str(exc))
            return 1
        print(path)
        return 0

    if args.command == "history":
        history = persistence.load_history()
        if not history:
            print("No exports yet.")
        for entry in history:
            print(f"{entry.get('timestamp', '')}  {entry.get('format', ''):5}  "
                  f"{entry.get('orders', 0):>5} orders  {entry.get('filename', '')}")
        return 0

    summary = summarize_results(persistence.load_results())
    print(f"Total orders:     {summary['total_orders']}")
    print(f"Total amount:     {config.DEFAULT_CURRENCY} {summary['total_amount']:.2f}")
    print(f"Extracted today:  {summary['today_orders']}")
    print(f"Unique customers: {summary['unique_customers']}")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
