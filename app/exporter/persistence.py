"""Helpers for persisting checkpoints, exported orders and run history."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Set

from . import config
from .storage import KeyValueStore
from .utils import log_line, now_iso


class PersistenceBridge:
    """Checkpoint, accumulated results and history on top of a key-value store.

    The controller only reads results for de-duplication and appends to them;
    nothing here ever rewrites an existing order record.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self._known_ids: Optional[Set[str]] = None

    # ------------------------------------------------------------------
    # Resume checkpoint
    # ------------------------------------------------------------------

    def load_checkpoint(self) -> Optional[Dict[str, Any]]:
        value = self.store.get([config.CHECKPOINT_KEY]).get(config.CHECKPOINT_KEY)
        return value if isinstance(value, dict) else None

    def save_checkpoint(self, snapshot: Dict[str, Any]) -> None:
        self.store.set({config.CHECKPOINT_KEY: snapshot})

    def clear_checkpoint(self) -> None:
        self.store.remove([config.CHECKPOINT_KEY])

    def has_resumable_checkpoint(self) -> bool:
        snapshot = self.load_checkpoint()
        if not snapshot:
            return False
        work_list = snapshot.get("work_list") or []
        cursor = int(snapshot.get("cursor") or 0)
        pages_left = int(snapshot.get("current_page") or 1) < int(snapshot.get("end_page") or 1)
        return cursor < len(work_list) or pages_left or snapshot.get("collected_page") is None

    # ------------------------------------------------------------------
    # Accumulated results
    # ------------------------------------------------------------------

    def load_results(self) -> List[Dict[str, Any]]:
        value = self.store.get([config.RESULTS_KEY]).get(config.RESULTS_KEY)
        return [row for row in value if isinstance(row, dict)] if isinstance(value, list) else []

    def _ids(self) -> Set[str]:
        if self._known_ids is None:
            self._known_ids = {
                str(row.get("order_id")) for row in self.load_results() if row.get("order_id")
            }
        return self._known_ids

    def exported_ids(self) -> Set[str]:
        return set(self._ids())

    def has_result(self, order_id: str) -> bool:
        return str(order_id) in self._ids()

    def append_result(self, record: Dict[str, Any]) -> bool:
        """Append ``record`` unless its order id is already stored."""

        order_id = str(record.get("order_id") or "")
        if not order_id:
            raise ValueError("order record without order_id")
        known = self._ids()
        if order_id in known:
            return False
        self.store.append(config.RESULTS_KEY, record)
        known.add(order_id)
        return True

    def clear_results(self) -> None:
        self.store.remove([config.RESULTS_KEY, config.CHECKPOINT_KEY])
        self._known_ids = None
        log_line("[STORE] Cleared exported orders and checkpoint")

    # ------------------------------------------------------------------
    # Run history
    # ------------------------------------------------------------------

    def load_history(self) -> List[Dict[str, Any]]:
        value = self.store.get([config.HISTORY_KEY]).get(config.HISTORY_KEY)
        return [row for row in value if isinstance(row, dict)] if isinstance(value, list) else []

    def add_history(self, entry: Dict[str, Any]) -> Dict[str, Any]:
        """Insert ``entry`` at the head of the history, dropping the oldest."""

        stamped = {"timestamp": now_iso(), "ts": time.time(), **entry}
        history = [stamped, *self.load_history()][: max(1, config.HISTORY_LIMIT)]
        self.store.set({config.HISTORY_KEY: history})
        return stamped


__all__ = ["PersistenceBridge"]
