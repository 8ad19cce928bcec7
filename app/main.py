from __future__ import annotations

import os
import threading
import time
from typing import Any, Dict, Generator, Optional

from flask import Flask, Response, jsonify, request, send_file

from app.exporter import config
from app.exporter.agent import PlaywrightAgent
from app.exporter.config_validation import validate_run_request, validate_runtime_config
from app.exporter.controller import OrderExportController
from app.exporter.error_codes import LicenseError
from app.exporter.export import export_orders, summarize_results
from app.exporter.license_client import check_license
from app.exporter.logging_utils import _export_event
from app.exporter.navigation import PlaywrightNavigator
from app.exporter.persistence import PersistenceBridge
from app.exporter.session import DateFilter
from app.exporter.storage import JsonFileStore
from app.exporter.utils import ensure_dirs, get_current_log_path, log_line

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

# Storage paths are created on import so WSGI entrypoints find them ready.
ensure_dirs()

_INIT_LOCK = threading.RLock()


def _get_persistence() -> PersistenceBridge:
    persistence = app.config.get("PERSISTENCE")
    if persistence is None:
        with _INIT_LOCK:
            persistence = app.config.get("PERSISTENCE")
            if persistence is None:
                persistence = PersistenceBridge(JsonFileStore(config.STORE_DIR))
                app.config["PERSISTENCE"] = persistence
    return persistence


def _get_controller() -> OrderExportController:
    """Return the process-wide controller, building the browser stack on first use."""

    controller = app.config.get("CONTROLLER")
    if controller is None:
        with _INIT_LOCK:
            controller = app.config.get("CONTROLLER")
            if controller is None:
                navigator = PlaywrightNavigator()
                controller = OrderExportController(
                    _get_persistence(),
                    navigator,
                    PlaywrightAgent(navigator.page),
                )
                controller.start_background()
                app.config["CONTROLLER"] = controller
    return controller


def init_controller() -> OrderExportController:
    """Create the controller and pick up an interrupted run when enabled."""

    validate_runtime_config("ui")
    controller = _get_controller()
    if config.AUTO_RESUME and controller.resume_if_checkpoint():
        log_line("[UI] Resumed interrupted export from checkpoint")
    return controller


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    return int(value)


def _command_response(result: Dict[str, Any]) -> Response:
    if "error" in result:
        return jsonify({"ok": False, **result}), 409
    return jsonify({"ok": True, **result})


def _tail_log_generator() -> Generator[str, None, None]:
    """Yield Server-Sent Event messages for appended log lines."""

    ensure_dirs()
    current_path = get_current_log_path()
    current_path.parent.mkdir(parents=True, exist_ok=True)
    current_path.touch(exist_ok=True)

    handle = current_path.open("r", encoding="utf-8", errors="ignore")
    handle.seek(0, os.SEEK_END)

    try:
        while True:
            latest_path = get_current_log_path()
            if latest_path != current_path:
                handle.close()
                current_path = latest_path
                current_path.parent.mkdir(parents=True, exist_ok=True)
                current_path.touch(exist_ok=True)
                handle = current_path.open("r", encoding="utf-8", errors="ignore")
                handle.seek(0, os.SEEK_END)

            line = handle.readline()
            if line:
                yield f"data: {line.rstrip()}\n\n"
            else:
                time.sleep(1)
                yield ": heartbeat\n\n"
    finally:
        handle.close()


# ---------------------------------------------------------------------------
# Run control
# ---------------------------------------------------------------------------


@app.get("/api/status")
def api_status() -> Response:
    return jsonify(_get_controller().get_status())


@app.post("/api/start")
def api_start() -> Response:
    """Start a run. Body: page_start, page_end, date_from, date_to, delay_min, delay_max, max_orders."""

    body = _json_body()
    try:
        page_start = _optional_int(body.get("page_start")) or 1
        page_end = _optional_int(body.get("page_end")) or page_start
        delay_min = body.get("delay_min")
        delay_max = body.get("delay_max")
        delay_range = None
        if delay_min not in (None, "") or delay_max not in (None, ""):
            delay_range = (
                float(config.DELAY_MIN_SECONDS if delay_min in (None, "") else delay_min),
                float(config.DELAY_MAX_SECONDS if delay_max in (None, "") else delay_max),
            )
        max_orders = _optional_int(body.get("max_orders"))
        pages, delays = validate_run_request(
            "ui",
            page_range=(page_start, page_end),
            delay_range=delay_range,
            max_orders=max_orders,
        )
    except (TypeError, ValueError) as exc:
        return jsonify({"ok": False, "error": "invalid_params", "details": str(exc)}), 400

    if config.LICENSE_ENFORCED:
        try:
            status = check_license()
        except LicenseError as exc:
            return jsonify({"ok": False, "error": "license_unavailable", "details": str(exc)}), 503
        if not status.valid:
            return jsonify({"ok": False, "error": "license_invalid", "license": status.as_dict()}), 403

    assert pages is not None
    date_filter = DateFilter(
        date_from=body.get("date_from") or None,
        date_to=body.get("date_to") or None,
    )
    _export_event(
        "ui",
        phase="start_request",
        page_range=pages,
        delay_range=delays,
        max_orders=max_orders,
        date_filter=(date_filter.date_from, date_filter.date_to),
    )
    result = _get_controller().start(
        pages[0],
        pages[1],
        date_filter=date_filter,
        delay_range=delays,
        max_orders=max_orders,
    )
    return _command_response(result)


@app.post("/api/resume")
def api_resume() -> Response:
    return _command_response(_get_controller().resume())


@app.post("/api/pause")
def api_pause() -> Response:
    return _command_response(_get_controller().pause())


@app.post("/api/stop")
def api_stop() -> Response:
    return _command_response(_get_controller().stop())


@app.get("/api/logs")
def api_logs() -> Response:
    return jsonify({"logs": _get_controller().bus.recent_logs()})


@app.get("/logs/stream")
def logs_stream() -> Response:
    """Stream log updates to the browser using SSE."""

    response = Response(_tail_log_generator(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@app.get("/logs/<path:filename>")
def download_log(filename: str) -> Response:
    """Serve a log file from the logs directory."""

    target = (config.LOG_DIR / filename).resolve()
    root = config.LOG_DIR.resolve()
    if not str(target).startswith(str(root)):
        return Response("Invalid path", status=400)
    if not target.exists() or not target.is_file():
        return Response("File not found", status=404)
    return send_file(target, as_attachment=True, download_name=target.name)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@app.get("/api/download/<fmt>")
def api_download(fmt: str) -> Response:
    try:
        path = export_orders(_get_persistence(), fmt)
    except ValueError as exc:
        return jsonify({"ok": False, "error": "invalid_format", "details": str(exc)}), 400
    except FileNotFoundError:
        return jsonify({"ok": False, "error": "no_orders"}), 404
    return send_file(path, as_attachment=True, download_name=os.path.basename(path))


@app.get("/api/history")
def api_history() -> Response:
    return jsonify({"history": _get_persistence().load_history()})


@app.get("/api/orders")
def api_orders() -> Response:
    records = _get_persistence().load_results()
    return jsonify({"count": len(records), "data": records})


@app.get("/api/orders/summary")
def api_orders_summary() -> Response:
    return jsonify(summarize_results(_get_persistence().load_results()))


@app.post("/api/orders/clear")
def api_orders_clear() -> Response:
    controller = _get_controller()
    if controller.get_status()["is_running"]:
        return jsonify({"ok": False, "error": "Already running"}), 409
    controller.stop()
    _get_persistence().clear_results()
    return jsonify({"ok": True})


@app.get("/api/license")
def api_license() -> Response:
    try:
        status = check_license()
    except LicenseError as exc:
        return jsonify({"ok": False, "error": "license_unavailable", "details": str(exc)}), 503
    return jsonify({"ok": True, "license": status.as_dict()})


def run_server() -> None:
    """Build the controller, then serve on ``PORT`` (default 8080)."""

    init_controller()
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    run_server()
