"""Configuration constants for the seller-portal order exporter."""
from __future__ import annotations

import os
from pathlib import Path


def _env_flag(env_var: str, default: str) -> bool:
    return os.getenv(env_var, default).strip().lower() not in {"0", "false", "no", ""}


def _parse_timeout_seconds(env_var: str, default: int, *, minimum: int = 1) -> int:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = int(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


DATA_DIR: Path = Path(os.getenv("ORDER_EXPORT_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"
STORE_DIR: Path = DATA_DIR / "store"
EXPORTS_DIR: Path = DATA_DIR / "exports"

PORTAL_BASE_URL: str = os.getenv(
    "ORDER_EXPORT_PORTAL_URL", "https://seller-my.tiktok.com"
).rstrip("/")
SHOP_REGION: str = os.getenv("ORDER_EXPORT_SHOP_REGION", "MY")
DEFAULT_CURRENCY: str = os.getenv("ORDER_EXPORT_CURRENCY", "MYR")

# Storage keys inside the key-value store.
CHECKPOINT_KEY: str = "session_state"
RESULTS_KEY: str = "exported_orders"
HISTORY_KEY: str = "export_history"
HISTORY_LIMIT: int = int(os.getenv("ORDER_EXPORT_HISTORY_LIMIT", "50"))
LOG_LINES_LIMIT: int = int(os.getenv("ORDER_EXPORT_LOG_LINES_LIMIT", "50"))
EXPORTS_KEEP_MAX: int = int(os.getenv("EXPORTS_KEEP_MAX", "5"))

# Retry accounting
MAX_RETRIES: int = int(os.getenv("ORDER_EXPORT_MAX_RETRIES", "3"))
BACKOFF_BASE_SECONDS: float = float(os.getenv("ORDER_EXPORT_BACKOFF_BASE_SECONDS", "3"))
BACKOFF_INCREMENT_SECONDS: float = float(
    os.getenv("ORDER_EXPORT_BACKOFF_INCREMENT_SECONDS", "2")
)
BACKOFF_MAX_SECONDS: float = float(os.getenv("ORDER_EXPORT_BACKOFF_MAX_SECONDS", "60"))

# Watchdog bounds (seconds)
WATCHDOG_TIMEOUT_SECONDS: int = _parse_timeout_seconds("ORDER_EXPORT_WATCHDOG_SECONDS", 30)
COLLECT_TIMEOUT_SECONDS: int = _parse_timeout_seconds("ORDER_EXPORT_COLLECT_TIMEOUT_SECONDS", 60)
MAX_STALL_RELOADS: int = int(os.getenv("ORDER_EXPORT_MAX_STALL_RELOADS", "2"))
# Duplicate load events for the same order inside this window are ignored.
MIN_DISPATCH_INTERVAL_SECONDS: float = float(
    os.getenv("ORDER_EXPORT_MIN_DISPATCH_INTERVAL_SECONDS", "2.0")
)

# Inter-order pacing (seconds)
DELAY_MIN_SECONDS: float = float(os.getenv("ORDER_EXPORT_DELAY_MIN_SECONDS", "2"))
DELAY_MAX_SECONDS: float = float(os.getenv("ORDER_EXPORT_DELAY_MAX_SECONDS", "6"))
THINKING_PROBABILITY: float = float(os.getenv("ORDER_EXPORT_THINKING_PROBABILITY", "0.15"))
THINKING_MIN_SECONDS: float = 1.0
THINKING_MAX_SECONDS: float = 3.0
DISTRACTION_PROBABILITY: float = float(
    os.getenv("ORDER_EXPORT_DISTRACTION_PROBABILITY", "0.03")
)
DISTRACTION_MIN_SECONDS: float = 8.0
DISTRACTION_MAX_SECONDS: float = 20.0
REST_EVERY_MIN: int = int(os.getenv("ORDER_EXPORT_REST_EVERY_MIN", "20"))
REST_EVERY_MAX: int = int(os.getenv("ORDER_EXPORT_REST_EVERY_MAX", "25"))
REST_MIN_SECONDS: float = float(os.getenv("ORDER_EXPORT_REST_MIN_SECONDS", "30"))
REST_MAX_SECONDS: float = float(os.getenv("ORDER_EXPORT_REST_MAX_SECONDS", "90"))

# Playwright
HEADLESS: bool = _env_flag("ORDER_EXPORT_HEADLESS", "0")
BROWSER_PROFILE_DIR: Path = Path(
    os.getenv("ORDER_EXPORT_PROFILE_DIR", str(DATA_DIR / "browser_profile"))
)
PLAYWRIGHT_NAV_TIMEOUT_SECONDS: int = _parse_timeout_seconds(
    "ORDER_EXPORT_NAV_TIMEOUT_SECONDS", 25
)
# Time the agent lets a freshly loaded page render before reading it.
PAGE_SETTLE_SECONDS: float = float(os.getenv("ORDER_EXPORT_PAGE_SETTLE_SECONDS", "2.0"))
REVEAL_CLICK_PAUSE_SECONDS: float = float(
    os.getenv("ORDER_EXPORT_REVEAL_CLICK_PAUSE_SECONDS", "0.5")
)

# License gate
LICENSE_URL: str = os.getenv("ORDER_EXPORT_LICENSE_URL", "")
LICENSE_TIMEOUT_SECONDS: int = _parse_timeout_seconds("ORDER_EXPORT_LICENSE_TIMEOUT_SECONDS", 10)
LICENSE_ENFORCED: bool = _env_flag("ORDER_EXPORT_LICENSE_ENFORCED", "0")
ACCOUNT_CODE: str = os.getenv("ORDER_EXPORT_ACCOUNT_CODE", "")

AUTO_RESUME: bool = _env_flag("ORDER_EXPORT_AUTO_RESUME", "1")

COMMON_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}
