from __future__ import annotations

from typing import Literal, Sequence

from . import config
from .logging_utils import _export_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "tests"]


def _raise_config_error(message: str, *, entrypoint: Entrypoint, error: str) -> None:
    _export_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})", "error")
    raise ValueError(message)


def _log_adjustment(field: str, value: object, adjusted: object, *, entrypoint: Entrypoint) -> None:
    _export_event(
        "state",
        phase="config",
        context="runtime_validation",
        kind="config_adjustment",
        field=field,
        value=value,
        adjusted=adjusted,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {field}={value!r} adjusted to {adjusted!r}", "warning")


def validate_run_request(
    entrypoint: Entrypoint,
    *,
    page_range: Sequence[int] | None = None,
    delay_range: Sequence[float] | None = None,
    max_orders: int | None = None,
) -> tuple[tuple[int, int] | None, tuple[float, float] | None]:
    """Check the user supplied run parameters.

    Returns the (possibly clamped) page and delay ranges. Raises
    ``ValueError`` for values that cannot be repaired.
    """

    pages: tuple[int, int] | None = None
    if page_range is not None:
        try:
            start, end = (int(page_range[0]), int(page_range[1]))
        except (TypeError, ValueError, IndexError):
            _raise_config_error("Page range must be two integers.", entrypoint=entrypoint,
                                error="page_range_invalid")
        if start < 1 or end < 1:
            _raise_config_error("Page numbers start at 1.", entrypoint=entrypoint,
                                error="page_range_invalid")
        if end < start:
            _raise_config_error(
                f"Page range end ({end}) is before start ({start}).",
                entrypoint=entrypoint,
                error="page_range_reversed",
            )
        pages = (start, end)

    delays: tuple[float, float] | None = None
    if delay_range is not None:
        try:
            low, high = (float(delay_range[0]), float(delay_range[1]))
        except (TypeError, ValueError, IndexError):
            _raise_config_error("Delay range must be two numbers.", entrypoint=entrypoint,
                                error="delay_range_invalid")
        if low < 0 or high < 0:
            _raise_config_error("Delays must be non-negative.", entrypoint=entrypoint,
                                error="delay_range_negative")
        if high < low:
            _log_adjustment("delay_range", (low, high), (high, low), entrypoint=entrypoint)
            low, high = high, low
        delays = (low, high)

    if max_orders is not None and int(max_orders) < 1:
        _raise_config_error("max_orders must be at least 1.", entrypoint=entrypoint,
                            error="max_orders_invalid")

    return pages, delays


def validate_runtime_config(entrypoint: Entrypoint) -> None:
    """Validate module-level configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Recoverable values are clamped and logged.
    """

    if config.MAX_RETRIES < 0:
        _raise_config_error("MAX_RETRIES must be non-negative.", entrypoint=entrypoint,
                            error="max_retries_invalid")

    if config.MAX_STALL_RELOADS < 0:
        _log_adjustment("MAX_STALL_RELOADS", config.MAX_STALL_RELOADS, 0, entrypoint=entrypoint)
        config.MAX_STALL_RELOADS = 0

    if config.DELAY_MAX_SECONDS < config.DELAY_MIN_SECONDS:
        adjusted = (config.DELAY_MAX_SECONDS, config.DELAY_MIN_SECONDS)
        _log_adjustment(
            "DELAY_MIN_SECONDS/DELAY_MAX_SECONDS",
            (config.DELAY_MIN_SECONDS, config.DELAY_MAX_SECONDS),
            adjusted,
            entrypoint=entrypoint,
        )
        config.DELAY_MIN_SECONDS, config.DELAY_MAX_SECONDS = adjusted

    if config.REST_EVERY_MIN < 1:
        _log_adjustment("REST_EVERY_MIN", config.REST_EVERY_MIN, 1, entrypoint=entrypoint)
        config.REST_EVERY_MIN = 1

    timeout_fields = [
        ("WATCHDOG_TIMEOUT_SECONDS", config.WATCHDOG_TIMEOUT_SECONDS),
        ("COLLECT_TIMEOUT_SECONDS", config.COLLECT_TIMEOUT_SECONDS),
        ("PLAYWRIGHT_NAV_TIMEOUT_SECONDS", config.PLAYWRIGHT_NAV_TIMEOUT_SECONDS),
    ]
    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
            )

    if config.LICENSE_ENFORCED and not config.LICENSE_URL:
        _raise_config_error(
            "ORDER_EXPORT_LICENSE_ENFORCED is set but ORDER_EXPORT_LICENSE_URL is empty.",
            entrypoint=entrypoint,
            error="license_url_missing",
        )


__all__ = ["validate_runtime_config", "validate_run_request", "Entrypoint"]
