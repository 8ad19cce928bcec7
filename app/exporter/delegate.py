"""Request/response contract with the in-page extraction agent.

Requests are fire-and-forget: ``send`` returns as soon as the request is
handed to the transport, and the answer arrives later through the ``reply``
callback (normally the controller inbox). Every request carries an id so a
late answer to a superseded request can be recognised and dropped.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Union

from .error_codes import DelegateError
from .logging_utils import _export_event
from .session import DateFilter


@dataclass(frozen=True)
class CollectPage:
    request_id: int
    page_number: int
    date_filter: Optional[DateFilter] = None
    max_orders: Optional[int] = None


@dataclass(frozen=True)
class ExtractItem:
    request_id: int
    identifier: str


@dataclass(frozen=True)
class PageCollected:
    request_id: int
    identifiers: Tuple[str, ...] = ()
    # Number of list pages the portal reports for the current filter.
    actual_max_pages: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ItemExtracted:
    request_id: int
    identifier: str
    success: bool
    fields: Dict[str, Any] = field(default_factory=dict)
    # A permission/privacy block; retrying cannot help.
    skip_retry: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None


DelegateRequest = Union[CollectPage, ExtractItem]
DelegateResponse = Union[PageCollected, ItemExtracted]
Reply = Callable[[DelegateResponse], None]


class DelegateChannel(Protocol):
    def send(self, tab_id: str, request: DelegateRequest, reply: Reply) -> None: ...


class LocalChannel:
    """In-process transport that hands each request to ``handler``.

    ``handler(tab_id, request)`` returns the response to deliver, or ``None``
    to stay silent (the watchdog then has to notice).
    """

    def __init__(self, handler: Callable[[str, DelegateRequest], Optional[DelegateResponse]]) -> None:
        self._handler = handler

    def send(self, tab_id: str, request: DelegateRequest, reply: Reply) -> None:
        response = self._handler(tab_id, request)
        if response is not None:
            reply(response)


class ExtractionDelegate:
    """Number requests and push them through a channel."""

    def __init__(self, channel: DelegateChannel, reply: Reply) -> None:
        self.channel = channel
        self._reply = reply
        self._request_ids = itertools.count(1)

    def _send(self, tab_id: str, request: DelegateRequest) -> int:
        _export_event("delegate", step="send", tab_id=tab_id, request=type(request).__name__,
                      request_id=request.request_id)
        try:
            self.channel.send(tab_id, request, self._reply)
        except DelegateError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DelegateError(f"{type(request).__name__} could not be delivered: {exc}") from exc
        return request.request_id

    def collect_page(
        self,
        tab_id: str,
        page_number: int,
        *,
        date_filter: Optional[DateFilter] = None,
        max_orders: Optional[int] = None,
    ) -> int:
        request = CollectPage(
            request_id=next(self._request_ids),
            page_number=page_number,
            date_filter=date_filter,
            max_orders=max_orders,
        )
        return self._send(tab_id, request)

    def extract_item(self, tab_id: str, identifier: str) -> int:
        request = ExtractItem(request_id=next(self._request_ids), identifier=identifier)
        return self._send(tab_id, request)


__all__ = [
    "CollectPage",
    "ExtractItem",
    "PageCollected",
    "ItemExtracted",
    "DelegateChannel",
    "LocalChannel",
    "ExtractionDelegate",
]
