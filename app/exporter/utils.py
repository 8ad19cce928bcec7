from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from . import config

LOGGER = logging.getLogger("order_export")
_log_state: dict[str, Any] = {"path": config.LOG_FILE, "ready": False}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}
_LINE_FORMAT = logging.Formatter("[%(asctime)s] %(message)s", "%Y-%m-%d %H:%M:%S")


def _attach_handlers(log_path: Path) -> None:
    """Point the exporter logger at stdout and ``log_path``, dropping old handlers."""

    ensure_dirs()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    while LOGGER.handlers:
        stale = LOGGER.handlers[0]
        LOGGER.removeHandler(stale)
        try:
            stale.close()
        except Exception:  # noqa: BLE001
            pass

    for handler in (
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_path, encoding="utf-8"),
    ):
        handler.setFormatter(_LINE_FORMAT)
        LOGGER.addHandler(handler)
    LOGGER.setLevel(logging.INFO)
    LOGGER.propagate = False

    _log_state.update(path=log_path, ready=True)


def setup_run_logger() -> Path:
    """Start a fresh ``export_<utc stamp>.log`` for the run about to begin."""

    stamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    log_path = config.LOG_DIR / f"export_{stamp}.log"
    _attach_handlers(log_path)
    LOGGER.info("Run log: %s", log_path)
    return log_path


def get_current_log_path() -> Path:
    if not _log_state["ready"]:
        _attach_handlers(config.LOG_FILE)
    return _log_state["path"]


def ensure_dirs() -> None:
    for directory in (config.DATA_DIR, config.LOG_DIR, config.EXPORTS_DIR):
        directory.mkdir(parents=True, exist_ok=True)


def log_line(message: str, level: str = "info") -> None:
    """Log ``message`` through the exporter logger; ``level`` is a name from ``_LEVELS``."""

    if not _log_state["ready"]:
        _attach_handlers(config.LOG_FILE)
    LOGGER.log(_LEVELS.get(level, logging.INFO), message)


def short_id(identifier: str | None, length: int = 8) -> str:
    """Return the trailing characters of an order id for compact log lines."""

    value = str(identifier or "")
    return f"...{value[-length:]}" if len(value) > length else value


def now_iso() -> str:
    return datetime.utcnow().isoformat(timespec="seconds") + "Z"


def load_json_file(path: Path) -> Any:
    """Return parsed JSON from ``path`` or ``None`` when missing/corrupt."""

    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except (FileNotFoundError, json.JSONDecodeError):
        return None


def save_json_file(path: Path, payload: Any) -> None:
    """Persist ``payload`` as JSON atomically via a temporary sibling file."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
    tmp_path.replace(path)


__all__ = [
    "ensure_dirs",
    "setup_run_logger",
    "get_current_log_path",
    "log_line",
    "short_id",
    "now_iso",
    "load_json_file",
    "save_json_file",
]
