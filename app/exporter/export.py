"""CSV / Excel export of accumulated order records."""

from __future__ import annotations

import os
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from . import config
from .persistence import PersistenceBridge
from .utils import ensure_dirs, log_line

EXPORT_COLUMNS = [
    "Page",
    "Order ID",
    "Shipping Method",
    "Payment Method",
    "Total",
    "Items",
    "SKU",
    "Customer Name",
    "Phone",
    "Address",
    "Order Date",
]
EXPORT_FORMATS = ("csv", "xlsx")


def _format_total(record: Dict[str, Any]) -> str:
    try:
        amount = float(record.get("total_amount") or 0)
    except (TypeError, ValueError):
        amount = 0.0
    currency = record.get("currency") or config.DEFAULT_CURRENCY
    return f"{currency} {amount:.2f}"


def records_to_frame(records: List[Dict[str, Any]]) -> pd.DataFrame:
    """Flatten order records into the export layout, one row per order."""

    rows = [
        {
            "Page": record.get("page", ""),
            "Order ID": str(record.get("order_id", "")),
            "Shipping Method": record.get("shipping_method") or "",
            "Payment Method": record.get("payment_method") or "",
            "Total": _format_total(record),
            "Items": record.get("items") or "",
            "SKU": record.get("sku") or "",
            "Customer Name": record.get("customer_name") or "",
            "Phone": record.get("phone_number") or "",
            "Address": record.get("full_address") or "",
            "Order Date": record.get("order_date") or "",
        }
        for record in records
    ]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_filename(count: int, fmt: str, *, on: Optional[date] = None) -> str:
    day = (on or date.today()).isoformat()
    return f"orders_{day}_{count}orders.{fmt}"


def prune_old_exports(keep: Optional[int] = None) -> None:
    keep = config.EXPORTS_KEEP_MAX if keep is None else keep
    if not os.path.isdir(config.EXPORTS_DIR):
        return
    files = sorted(
        (
            os.path.join(config.EXPORTS_DIR, name)
            for name in os.listdir(config.EXPORTS_DIR)
            if name.startswith("orders_") and name.endswith(EXPORT_FORMATS)
        ),
        key=os.path.getmtime,
    )
    while len(files) > keep:
        old = files.pop(0)
        try:
            os.remove(old)
        except Exception:  # noqa: BLE001
            continue


def export_orders(
    persistence: PersistenceBridge,
    fmt: str = "csv",
    dest_path: Optional[str] = None,
) -> str:
    """Write every stored order to ``fmt`` and record the export in history.

    Raises ``ValueError`` for an unknown format and ``FileNotFoundError`` when
    there is nothing to export.
    """

    fmt = (fmt or "csv").lower()
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt!r}")

    records = persistence.load_results()
    if not records:
        raise FileNotFoundError("No orders available to export")

    frame = records_to_frame(records)
    if not dest_path:
        ensure_dirs()
        dest_path = os.path.join(config.EXPORTS_DIR, export_filename(len(records), fmt))

    if fmt == "csv":
        # utf-8-sig writes the BOM Excel needs to detect UTF-8.
        frame.to_csv(dest_path, index=False, encoding="utf-8-sig")
    else:
        with pd.ExcelWriter(dest_path, engine="openpyxl") as writer:
            frame.to_excel(writer, index=False, sheet_name="Orders")

    persistence.add_history(
        {
            "filename": os.path.basename(dest_path),
            "format": fmt,
            "orders": len(records),
        }
    )
    log_line(f"[EXPORT] Wrote {len(records)} orders to {dest_path}", "success")
    prune_old_exports()
    return dest_path


def summarize_results(records: List[Dict[str, Any]], *, today: Optional[date] = None) -> Dict[str, Any]:
    """Dashboard numbers: totals, orders extracted today, distinct customers."""

    today = today or date.today()
    total_amount = 0.0
    today_orders = 0
    phones = set()
    for record in records:
        try:
            total_amount += float(record.get("total_amount") or 0)
        except (TypeError, ValueError):
            pass
        extracted = record.get("extracted_at") or ""
        try:
            if datetime.fromisoformat(str(extracted).rstrip("Z")).date() == today:
                today_orders += 1
        except ValueError:
            pass
        if record.get("phone_number"):
            phones.add(str(record["phone_number"]))
    return {
        "total_orders": len(records),
        "total_amount": round(total_amount, 2),
        "today_orders": today_orders,
        "unique_customers": len(phones),
    }


__all__ = [
    "EXPORT_COLUMNS",
    "records_to_frame",
    "export_filename",
    "export_orders",
    "prune_old_exports",
    "summarize_results",
]
