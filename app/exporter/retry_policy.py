from __future__ import annotations

from typing import Optional

from . import config
from .error_codes import ErrorCode
from .logging_utils import _export_event

RETRYABLE_ERROR_CODES = {
    ErrorCode.EXTRACTION_MASKED,
    ErrorCode.DELEGATE_TIMEOUT,
    ErrorCode.DELEGATE_UNREACHABLE,
    ErrorCode.NAVIGATION,
}

NON_RETRYABLE_ERROR_CODES = {
    ErrorCode.PERMISSION_BLOCKED,
    ErrorCode.STALL_EXHAUSTED,
    ErrorCode.RELOAD_FAILED,
    ErrorCode.INTERNAL,
}


def compute_backoff_seconds(
    attempt_index: int,
    *,
    base: Optional[float] = None,
    increment: Optional[float] = None,
    cap: Optional[float] = None,
) -> float:
    """Return the wait before retry ``attempt_index`` (1-based).

    The delay is ``base + increment * 2**(attempt - 1)``, capped.
    """

    base = config.BACKOFF_BASE_SECONDS if base is None else base
    increment = config.BACKOFF_INCREMENT_SECONDS if increment is None else increment
    cap = config.BACKOFF_MAX_SECONDS if cap is None else cap
    exponent = max(0, attempt_index - 1)
    return float(max(0.0, min(base + increment * (2 ** exponent), cap)))


def decide_retry(
    attempt_index: int,
    max_retries: int,
    *,
    error_code: Optional[str] = None,
    skip_retry: bool = False,
) -> bool:
    """Decide whether a failed extraction attempt should be retried.

    ``attempt_index`` counts failed attempts for the order so far, including
    the one being classified. Retries are allowed while it does not exceed
    ``max_retries``; ``skip_retry`` marks a permission block that is never
    retried.
    """

    code = (error_code or "").strip()

    if skip_retry or code in NON_RETRYABLE_ERROR_CODES:
        _export_event(
            "state",
            phase="retry_decision",
            kind="non_retryable",
            error_code=code or None,
            attempt=attempt_index,
            max_retries=max_retries,
            will_retry=False,
        )
        return False

    if attempt_index > max_retries:
        _export_event(
            "state",
            phase="retry_decision",
            kind="capped",
            error_code=code or None,
            attempt=attempt_index,
            max_retries=max_retries,
            will_retry=False,
        )
        return False

    _export_event(
        "state",
        phase="retry_decision",
        kind="retryable" if code in RETRYABLE_ERROR_CODES else "unknown",
        error_code=code or None,
        attempt=attempt_index,
        max_retries=max_retries,
        will_retry=True,
    )
    return True


__all__ = [
    "decide_retry",
    "compute_backoff_seconds",
    "RETRYABLE_ERROR_CODES",
    "NON_RETRYABLE_ERROR_CODES",
]
