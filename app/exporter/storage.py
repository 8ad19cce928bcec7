"""Key-value stores backing checkpoints, results and history."""

from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Protocol

from .utils import load_json_file, log_line, save_json_file


class KeyValueStore(Protocol):
    def get(self, keys: Iterable[str]) -> Dict[str, Any]: ...

    def set(self, values: Mapping[str, Any]) -> None: ...

    def remove(self, keys: Iterable[str]) -> None: ...

    def append(self, key: str, item: Any) -> None: ...


class MemoryStore:
    """In-process store; values are copied through JSON like a real backend."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: Dict[str, Any] = {}
        self._lock = threading.Lock()
        if initial:
            self.set(initial)

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            return {key: copy.deepcopy(self._data[key]) for key in keys if key in self._data}

    def set(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            for key, value in values.items():
                self._data[key] = json.loads(json.dumps(value))

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    def append(self, key: str, item: Any) -> None:
        with self._lock:
            current = self._data.get(key)
            if not isinstance(current, list):
                current = []
            current.append(json.loads(json.dumps(item)))
            self._data[key] = current


class JsonFileStore:
    """One file per key under ``root``.

    ``set`` rewrites ``<key>.json`` atomically. ``append`` adds one line to
    ``<key>.jsonl`` and never rewrites earlier lines, so a growing list does
    not make unrelated writes more expensive.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def _value_path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def _lines_path(self, key: str) -> Path:
        return self.root / f"{key}.jsonl"

    def _read_lines(self, path: Path) -> List[Any]:
        items: List[Any] = []
        with path.open("r", encoding="utf-8") as handle:
            for number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    items.append(json.loads(line))
                except json.JSONDecodeError:
                    log_line(f"[STORE] Skipping unreadable line {number} of {path}", "warning")
        return items

    def _read(self, key: str) -> tuple[bool, Any]:
        lines_path = self._lines_path(key)
        if lines_path.exists():
            return True, self._read_lines(lines_path)
        value_path = self._value_path(key)
        if not value_path.exists():
            return False, None
        data = load_json_file(value_path)
        if data is None:
            log_line(f"[STORE] Could not decode {value_path}; treating {key!r} as missing", "warning")
            return False, None
        return True, data

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        with self._lock:
            for key in keys:
                found, value = self._read(key)
                if found:
                    result[key] = value
        return result

    def set(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            for key, value in values.items():
                save_json_file(self._value_path(key), value)
                self._lines_path(key).unlink(missing_ok=True)

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._value_path(key).unlink(missing_ok=True)
                self._lines_path(key).unlink(missing_ok=True)

    def append(self, key: str, item: Any) -> None:
        with self._lock:
            lines_path = self._lines_path(key)
            value_path = self._value_path(key)
            lines_path.parent.mkdir(parents=True, exist_ok=True)
            if value_path.exists() and not lines_path.exists():
                # A list stored through ``set`` moves to the line format once.
                existing = load_json_file(value_path)
                with lines_path.open("w", encoding="utf-8") as handle:
                    for row in existing if isinstance(existing, list) else []:
                        handle.write(json.dumps(row, ensure_ascii=False) + "\n")
                value_path.unlink()
            with lines_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(item, ensure_ascii=False) + "\n")


__all__ = ["KeyValueStore", "MemoryStore", "JsonFileStore"]
