"""Tab navigation for the seller portal.

The driver is the only component that touches the browser's tab lifecycle.
It announces finished page loads as ``LoadComplete`` events keyed by tab id;
the controller decides whether a given load is one it is waiting for.
"""

from __future__ import annotations

import itertools
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from playwright.sync_api import (
    BrowserContext,
    Error as PWError,
    Page,
    Playwright,
    TimeoutError as PWTimeout,
    sync_playwright,
)

from . import config
from .error_codes import NavigationError
from .logging_utils import _export_event
from .session import DateFilter
from .utils import log_line


@dataclass(frozen=True)
class LoadComplete:
    tab_id: str
    url: str


LoadListener = Callable[[LoadComplete], None]


class NavigationDriver(Protocol):
    def add_load_listener(self, listener: LoadListener) -> None: ...

    def open_tab(self) -> str: ...

    def navigate(self, tab_id: str, url: str) -> None: ...

    def reload(self, tab_id: str) -> None: ...

    def close(self) -> None: ...


def list_page_url(
    page_number: int,
    date_filter: Optional[DateFilter] = None,
    *,
    base_url: Optional[str] = None,
) -> str:
    """Return the shipped-orders list URL for ``page_number``."""

    params = {"selected_sort": "6", "tab": "shipped", "page": str(int(page_number))}
    if date_filter is not None:
        if date_filter.date_from:
            params["create_time_from"] = date_filter.date_from
        if date_filter.date_to:
            params["create_time_to"] = date_filter.date_to
    base = (base_url or config.PORTAL_BASE_URL).rstrip("/")
    return f"{base}/order?{urllib.parse.urlencode(params)}"


def item_page_url(
    order_id: str,
    *,
    base_url: Optional[str] = None,
    region: Optional[str] = None,
) -> str:
    """Return the detail page URL for a single order."""

    base = (base_url or config.PORTAL_BASE_URL).rstrip("/")
    params = {"order_no": str(order_id), "shop_region": region or config.SHOP_REGION}
    return f"{base}/order/detail?{urllib.parse.urlencode(params)}"


def _is_target_closed_error(exc: Exception) -> bool:
    message = str(exc).lower()
    return "target closed" in message or "has been closed" in message


class PlaywrightNavigator:
    """Drive tabs of a persistent Chromium profile with the sync API.

    All calls must come from the controller's loop thread. ``navigate`` and
    ``reload`` block until the page fires ``load`` (or the navigation times
    out); the ``load`` handler emits ``LoadComplete`` while that call is in
    progress. A timed-out navigation emits nothing and is left to the
    watchdog.
    """

    def __init__(
        self,
        *,
        headless: Optional[bool] = None,
        profile_dir: Optional[Path] = None,
        nav_timeout_seconds: Optional[int] = None,
    ) -> None:
        self.headless = config.HEADLESS if headless is None else headless
        self.profile_dir = Path(profile_dir or config.BROWSER_PROFILE_DIR)
        self.nav_timeout_ms = (nav_timeout_seconds or config.PLAYWRIGHT_NAV_TIMEOUT_SECONDS) * 1000
        self._playwright: Optional[Playwright] = None
        self._context: Optional[BrowserContext] = None
        self._pages: Dict[str, Page] = {}
        self._listeners: List[LoadListener] = []
        self._tab_seq = itertools.count(1)

    def add_load_listener(self, listener: LoadListener) -> None:
        self._listeners.append(listener)

    def _emit(self, tab_id: str, url: str) -> None:
        _export_event("nav", step="load_complete", tab_id=tab_id, url=url)
        for listener in list(self._listeners):
            listener(LoadComplete(tab_id=tab_id, url=url))

    def _ensure_context(self) -> BrowserContext:
        if self._context is None:
            self.profile_dir.mkdir(parents=True, exist_ok=True)
            self._playwright = sync_playwright().start()
            self._context = self._playwright.chromium.launch_persistent_context(
                str(self.profile_dir),
                headless=self.headless,
                user_agent=config.COMMON_HEADERS["User-Agent"],
                locale="en-US",
            )
            self._context.set_default_navigation_timeout(self.nav_timeout_ms)
        return self._context

    def page(self, tab_id: str) -> Page:
        try:
            return self._pages[tab_id]
        except KeyError:
            raise NavigationError(f"unknown tab {tab_id!r}") from None

    def open_tab(self) -> str:
        try:
            page = self._ensure_context().new_page()
        except PWError as exc:
            raise NavigationError(f"could not open tab: {exc}") from exc
        tab_id = f"tab-{next(self._tab_seq)}"
        self._pages[tab_id] = page
        page.on("load", lambda loaded: self._emit(tab_id, loaded.url))
        page.on("close", lambda _closed: self._pages.pop(tab_id, None))
        log_line(f"[NAV] Opened {tab_id}")
        return tab_id

    def navigate(self, tab_id: str, url: str) -> None:
        page = self.page(tab_id)
        _export_event("nav", step="goto", tab_id=tab_id, url=url)
        try:
            page.goto(url, wait_until="load", timeout=self.nav_timeout_ms)
        except PWTimeout as exc:
            log_line(f"[NAV] goto({url!r}) timed out: {exc}", "warning")
            _export_event("error", phase="nav", step="goto_timeout", tab_id=tab_id, url=url)
        except PWError as exc:
            if _is_target_closed_error(exc):
                self._pages.pop(tab_id, None)
            raise NavigationError(f"goto {url} failed: {exc}") from exc

    def reload(self, tab_id: str) -> None:
        page = self.page(tab_id)
        _export_event("nav", step="reload", tab_id=tab_id, url=page.url)
        try:
            page.reload(wait_until="load", timeout=self.nav_timeout_ms)
        except PWTimeout as exc:
            log_line(f"[NAV] reload of {tab_id} timed out: {exc}", "warning")
        except PWError as exc:
            if _is_target_closed_error(exc):
                self._pages.pop(tab_id, None)
            raise NavigationError(f"reload failed: {exc}") from exc

    def close(self) -> None:
        if self._context is not None:
            try:
                self._context.close()
            except PWError as exc:
                log_line(f"[NAV] Error closing browser context: {exc}", "warning")
            self._context = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
        self._pages.clear()


__all__ = [
    "LoadComplete",
    "NavigationDriver",
    "PlaywrightNavigator",
    "list_page_url",
    "item_page_url",
]
