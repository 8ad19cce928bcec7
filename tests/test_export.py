from __future__ import annotations

import os
import time
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from app.exporter import config, export
from app.exporter.persistence import PersistenceBridge
from app.exporter.storage import MemoryStore


def _configure_temp_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setattr(config, "DATA_DIR", data_dir)
    monkeypatch.setattr(config, "LOG_DIR", data_dir / "logs")
    monkeypatch.setattr(config, "EXPORTS_DIR", data_dir / "exports")
    return data_dir


def _record(order_id: str, **overrides) -> dict:
    record = {
        "page": 1,
        "order_id": order_id,
        "shipping_method": "Standard",
        "payment_method": "COD",
        "total_amount": 70.19,
        "currency": "MYR",
        "items": "Batik Scarf",
        "sku": "BS-001",
        "customer_name": "Nur Aisyah",
        "phone_number": "(+60)123456789",
        "full_address": "Jalan Bukit Bintang, 55100 Kuala Lumpur",
        "order_date": "12/03/2024 14:22",
        "extracted_at": "2024-03-12T10:00:00Z",
    }
    record.update(overrides)
    return record


def _bridge_with(*records: dict) -> PersistenceBridge:
    bridge = PersistenceBridge(MemoryStore())
    for record in records:
        bridge.append_result(record)
    return bridge


def test_records_to_frame_column_order() -> None:
    frame = export.records_to_frame([_record("576543210987654321", total_amount="12")])
    assert list(frame.columns) == export.EXPORT_COLUMNS
    row = frame.iloc[0]
    assert row["Order ID"] == "576543210987654321"
    assert row["Total"] == "MYR 12.00"
    assert row["Phone"] == "(+60)123456789"


def test_export_filename() -> None:
    assert export.export_filename(3, "csv", on=date(2024, 3, 12)) == "orders_2024-03-12_3orders.csv"


def test_export_csv_writes_bom_and_history(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    bridge = _bridge_with(_record("1"), _record("2", customer_name="Lim Wei Ming"))

    path = export.export_orders(bridge, "csv")

    raw = Path(path).read_bytes()
    assert raw.startswith(b"\xef\xbb\xbf")
    assert Path(path).parent == config.EXPORTS_DIR
    frame = pd.read_csv(path, encoding="utf-8-sig", dtype=str)
    assert list(frame.columns) == export.EXPORT_COLUMNS
    assert list(frame["Customer Name"]) == ["Nur Aisyah", "Lim Wei Ming"]

    history = bridge.load_history()
    assert history[0]["filename"] == os.path.basename(path)
    assert history[0]["format"] == "csv"
    assert history[0]["orders"] == 2


def test_export_xlsx(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    bridge = _bridge_with(_record("1"))
    dest = tmp_path / "out.xlsx"

    path = export.export_orders(bridge, "XLSX", dest_path=str(dest))

    assert path == str(dest)
    frame = pd.read_excel(dest, sheet_name="Orders", dtype=str)
    assert frame.loc[0, "Order ID"] == "1"
    assert frame.loc[0, "Total"] == "MYR 70.19"


def test_export_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    with pytest.raises(FileNotFoundError):
        export.export_orders(PersistenceBridge(MemoryStore()), "csv")
    with pytest.raises(ValueError):
        export.export_orders(_bridge_with(_record("1")), "pdf")


def test_prune_old_exports_keeps_newest(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)
    config.EXPORTS_DIR.mkdir(parents=True)
    now = time.time()
    for index in range(4):
        path = config.EXPORTS_DIR / f"orders_2024-01-0{index + 1}_1orders.csv"
        path.write_text("x", encoding="utf-8")
        os.utime(path, (now + index, now + index))
    unrelated = config.EXPORTS_DIR / "notes.txt"
    unrelated.write_text("keep", encoding="utf-8")

    export.prune_old_exports(keep=2)

    remaining = sorted(p.name for p in config.EXPORTS_DIR.iterdir())
    assert remaining == [
        "notes.txt",
        "orders_2024-01-03_1orders.csv",
        "orders_2024-01-04_1orders.csv",
    ]


def test_summarize_results() -> None:
    records = [
        _record("1", total_amount=10.5, extracted_at="2024-03-12T10:00:00Z"),
        _record("2", total_amount="4.25", extracted_at="2024-03-11T23:59:00Z"),
        _record("3", total_amount=None, phone_number=None, extracted_at="garbage"),
    ]
    summary = export.summarize_results(records, today=date(2024, 3, 12))
    assert summary == {
        "total_orders": 3,
        "total_amount": 14.75,
        "today_orders": 1,
        "unique_customers": 1,
    }
