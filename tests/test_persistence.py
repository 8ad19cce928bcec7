from __future__ import annotations

import json
from pathlib import Path

import pytest

from app.exporter import config, storage
from app.exporter.persistence import PersistenceBridge
from app.exporter.storage import JsonFileStore, MemoryStore


def test_memory_store_copies_values() -> None:
    store = MemoryStore()
    payload = {"nested": [1, 2]}
    store.set({"k": payload})
    payload["nested"].append(3)

    fetched = store.get(["k", "missing"])
    assert fetched == {"k": {"nested": [1, 2]}}
    fetched["k"]["nested"].append(9)
    assert store.get(["k"])["k"] == {"nested": [1, 2]}

    store.remove(["k", "missing"])
    assert store.get(["k"]) == {}


def test_memory_store_append() -> None:
    store = MemoryStore()
    store.append("rows", {"order_id": "1"})
    store.append("rows", {"order_id": "2"})
    assert store.get(["rows"])["rows"] == [{"order_id": "1"}, {"order_id": "2"}]


def test_json_file_store_persists_between_instances(tmp_path: Path) -> None:
    root = tmp_path / "store"
    JsonFileStore(root).set({"a": 1, "b": [1, 2]})

    reopened = JsonFileStore(root)
    assert reopened.get(["a", "b", "c"]) == {"a": 1, "b": [1, 2]}
    reopened.remove(["a"])
    assert not (root / "a.json").exists()
    assert json.loads((root / "b.json").read_text(encoding="utf-8")) == [1, 2]
    assert not (root / "b.json.tmp").exists()


def test_json_file_store_survives_corrupt_file(tmp_path: Path) -> None:
    root = tmp_path / "store"
    root.mkdir()
    (root / "a.json").write_text("{not json", encoding="utf-8")
    (root / "rows.jsonl").write_text('{"order_id": "1"}\n{broken\n', encoding="utf-8")
    store = JsonFileStore(root)

    assert store.get(["a"]) == {}
    assert store.get(["rows"]) == {"rows": [{"order_id": "1"}]}
    store.set({"a": 2})
    assert store.get(["a"]) == {"a": 2}


def test_json_file_store_append_moves_list_to_lines(tmp_path: Path) -> None:
    root = tmp_path / "store"
    store = JsonFileStore(root)
    store.set({"rows": [{"order_id": "1"}]})

    store.append("rows", {"order_id": "2"})

    assert not (root / "rows.json").exists()
    assert store.get(["rows"])["rows"] == [{"order_id": "1"}, {"order_id": "2"}]
    store.remove(["rows"])
    assert store.get(["rows"]) == {}


def test_checkpoint_saves_do_not_rewrite_results(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    written: list[Path] = []
    real_save = storage.save_json_file

    def _recording_save(path: Path, payload: object) -> None:
        written.append(Path(path))
        real_save(path, payload)

    monkeypatch.setattr(storage, "save_json_file", _recording_save)
    root = tmp_path / "store"
    bridge = PersistenceBridge(JsonFileStore(root))

    for index in range(200):
        bridge.append_result({"order_id": str(index), "full_address": "x" * 200})
        bridge.save_checkpoint({"cursor": index})

    results_file = root / f"{config.RESULTS_KEY}.jsonl"
    checkpoint_file = root / f"{config.CHECKPOINT_KEY}.json"
    assert {path.name for path in written} == {checkpoint_file.name}
    assert checkpoint_file.stat().st_size < 200
    assert len(results_file.read_text(encoding="utf-8").splitlines()) == 200
    assert len(PersistenceBridge(JsonFileStore(root)).load_results()) == 200


def test_checkpoint_save_load_clear() -> None:
    bridge = PersistenceBridge(MemoryStore())
    assert bridge.load_checkpoint() is None
    assert not bridge.has_resumable_checkpoint()

    bridge.save_checkpoint({"work_list": ["A"], "cursor": 0, "current_page": 1, "end_page": 1,
                            "collected_page": 1})
    assert bridge.load_checkpoint()["work_list"] == ["A"]
    assert bridge.has_resumable_checkpoint()

    bridge.clear_checkpoint()
    assert bridge.load_checkpoint() is None


@pytest.mark.parametrize(
    "snapshot, expected",
    [
        ({"work_list": ["A"], "cursor": 1, "current_page": 1, "end_page": 1, "collected_page": 1}, False),
        ({"work_list": ["A"], "cursor": 1, "current_page": 1, "end_page": 2, "collected_page": 1}, True),
        ({"work_list": [], "cursor": 0, "current_page": 1, "end_page": 1, "collected_page": None}, True),
    ],
)
def test_resumable_checkpoint_detection(snapshot: dict, expected: bool) -> None:
    bridge = PersistenceBridge(MemoryStore({config.CHECKPOINT_KEY: snapshot}))
    assert bridge.has_resumable_checkpoint() is expected


def test_append_result_skips_known_order_ids() -> None:
    bridge = PersistenceBridge(MemoryStore())
    assert bridge.append_result({"order_id": "1", "total_amount": 5.0})
    assert not bridge.append_result({"order_id": "1", "total_amount": 9.0})
    assert bridge.has_result("1")
    assert not bridge.has_result("2")
    assert bridge.load_results() == [{"order_id": "1", "total_amount": 5.0}]

    with pytest.raises(ValueError):
        bridge.append_result({"total_amount": 1.0})


def test_clear_results_drops_checkpoint_too() -> None:
    bridge = PersistenceBridge(MemoryStore())
    bridge.append_result({"order_id": "1"})
    bridge.save_checkpoint({"cursor": 0})

    bridge.clear_results()

    assert bridge.load_results() == []
    assert bridge.load_checkpoint() is None
    assert bridge.exported_ids() == set()


def test_history_is_newest_first_and_bounded(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "HISTORY_LIMIT", 2)
    bridge = PersistenceBridge(MemoryStore())

    for count in (1, 2, 3):
        entry = bridge.add_history({"filename": f"f{count}.csv", "orders": count})
        assert entry["timestamp"].endswith("Z")

    history = bridge.load_history()
    assert [row["orders"] for row in history] == [3, 2]
