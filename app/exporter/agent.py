"""Playwright-backed extraction agent.

Runs inside the controller's loop thread: it reads the tab the navigator just
loaded, clicks the "reveal" icons that unmask customer data, and answers each
request through the reply callback.
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from playwright.sync_api import Error as PWError, Page, TimeoutError as PWTimeout

from . import config
from .delegate import (
    CollectPage,
    DelegateRequest,
    ExtractItem,
    ItemExtracted,
    PageCollected,
    Reply,
)
from .error_codes import DelegateError, ErrorCode, NavigationError
from .logging_utils import _export_event
from .parser import detect_permission_block, extract_max_pages, extract_order_fields, extract_order_ids
from .utils import log_line, short_id

REVEAL_SELECTORS = [
    'svg[data-log_click_for="open_phone_plaintext"]',
    'svg.arco-icon-eye_invisible, svg[class*="eye_invisible"]',
]
SHIPPING_SECTION_SELECTOR = "div:text-is('Shipping address')"


def _click_reveal_icons(page: Page, pause_seconds: float) -> int:
    clicks = 0
    try:
        section = page.locator(SHIPPING_SECTION_SELECTOR)
        if section.count():
            section.first.scroll_into_view_if_needed()
    except PWError:
        pass

    for selector in REVEAL_SELECTORS:
        try:
            icons = page.locator(selector)
            count = icons.count()
        except PWError:
            continue
        for index in range(count):
            try:
                icons.nth(index).click(timeout=2000)
                clicks += 1
                time.sleep(pause_seconds)
            except PWError as exc:
                _export_event("delegate", step="reveal_click_failed", selector=selector, error=str(exc))
    return clicks


class PlaywrightAgent:
    """``DelegateChannel`` that scrapes the navigator's tabs directly."""

    def __init__(
        self,
        page_for_tab: Callable[[str], Page],
        *,
        settle_seconds: Optional[float] = None,
        reveal_pause_seconds: Optional[float] = None,
    ) -> None:
        self._page_for_tab = page_for_tab
        self.settle_seconds = (
            config.PAGE_SETTLE_SECONDS if settle_seconds is None else settle_seconds
        )
        self.reveal_pause_seconds = (
            config.REVEAL_CLICK_PAUSE_SECONDS
            if reveal_pause_seconds is None
            else reveal_pause_seconds
        )

    def send(self, tab_id: str, request: DelegateRequest, reply: Reply) -> None:
        try:
            page = self._page_for_tab(tab_id)
        except NavigationError as exc:
            raise DelegateError(str(exc)) from exc

        if isinstance(request, CollectPage):
            reply(self._collect(page, request))
        elif isinstance(request, ExtractItem):
            reply(self._extract(page, request))
        else:
            raise DelegateError(f"unsupported request {type(request).__name__}")

    def _collect(self, page: Page, request: CollectPage) -> PageCollected:
        time.sleep(self.settle_seconds)
        try:
            html = page.content()
        except PWError as exc:
            return PageCollected(request_id=request.request_id, error=str(exc))

        identifiers = extract_order_ids(html, request.max_orders)
        max_pages = extract_max_pages(html)
        log_line(f"[AGENT] Page {request.page_number}: {len(identifiers)} order IDs "
                 f"(pagination max={max_pages})")
        return PageCollected(
            request_id=request.request_id,
            identifiers=tuple(identifiers),
            actual_max_pages=max_pages,
        )

    def _extract(self, page: Page, request: ExtractItem) -> ItemExtracted:
        time.sleep(self.settle_seconds)
        try:
            if detect_permission_block(page.content()):
                return ItemExtracted(
                    request_id=request.request_id,
                    identifier=request.identifier,
                    success=False,
                    skip_retry=True,
                    error="No permission to view this order",
                )
            clicks = _click_reveal_icons(page, self.reveal_pause_seconds)
            if clicks:
                time.sleep(self.settle_seconds)
            fields = extract_order_fields(page.content())
        except PWTimeout as exc:
            return ItemExtracted(
                request_id=request.request_id,
                identifier=request.identifier,
                success=False,
                error=f"Page did not respond: {exc}",
                error_code=ErrorCode.DELEGATE_TIMEOUT,
            )
        except PWError as exc:
            return ItemExtracted(
                request_id=request.request_id,
                identifier=request.identifier,
                success=False,
                error=f"Page error: {exc}",
            )

        success = bool(fields["has_data"]) and not fields["is_masked"]
        _export_event(
            "delegate",
            step="extracted",
            identifier=short_id(request.identifier),
            reveal_clicks=clicks,
            has_data=fields["has_data"],
            is_masked=fields["is_masked"],
        )
        return ItemExtracted(
            request_id=request.request_id,
            identifier=request.identifier,
            success=success,
            fields=fields,
            error=None if success else "Data masked/unavailable",
        )


__all__ = ["PlaywrightAgent", "REVEAL_SELECTORS"]
