from __future__ import annotations

"""Error code taxonomy for per-order and run-level failures.

Codes are written to structured logs and to the ``last_error`` of the status
payload so that a failed order can be explained after the fact.
"""


class ErrorCode:
    EXTRACTION_MASKED = "extraction_masked"
    DELEGATE_TIMEOUT = "delegate_timeout"
    DELEGATE_UNREACHABLE = "delegate_unreachable"
    PERMISSION_BLOCKED = "permission_blocked"
    NAVIGATION = "navigation_failed"
    STALL = "stall"
    STALL_EXHAUSTED = "stall_exhausted"
    RELOAD_FAILED = "reload_failed"
    COLLECTION = "collection_failed"
    INTERNAL = "internal_error"


class NavigationError(RuntimeError):
    """Raised when the tab cannot be navigated or reloaded."""


class DelegateError(RuntimeError):
    """Raised when a request cannot be delivered to the in-page agent."""


class LicenseError(RuntimeError):
    """Raised when the license endpoint cannot be reached or answers garbage."""


__all__ = ["ErrorCode", "NavigationError", "DelegateError", "LicenseError"]
