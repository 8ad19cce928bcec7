"""HTML heuristics for the seller portal's order list and order detail pages."""
from __future__ import annotations

import re
from datetime import date
from typing import Any

from bs4 import BeautifulSoup, NavigableString, Tag

from . import config


_ORDER_ID_PATTERN = re.compile(r"\d{17,19}")
_PHONE_PATTERN = re.compile(r"\+?60\d{8,11}|\(\+60\)\d{8,11}|01\d{8,9}")
_POSTCODE_PATTERN = re.compile(r"\d{5}")
_ADDRESS_WORDS = re.compile(r"jalan|lorong|taman|kampung|blok|unit|no\.|tingkat|bandar", re.I)
_PRICE_PATTERN = re.compile(r"(RM|MYR)\s*([\d,]+\.?\d*)", re.I)
_DATE_PATTERN = re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})\s*(\d{1,2}:\d{2}(:\d{2})?)?")
_TODAY_PATTERN = re.compile(r"Today\s+(\d{1,2}:\d{2}(:\d{2})?)", re.I)
_TOTAL_LABEL = re.compile(r"\btotal\b", re.I)
_SKU_PATTERN = re.compile(r"SKU\s*(?:ID)?\s*[:：]?\s*([A-Za-z0-9._-]+)", re.I)

STATUS_PATTERNS = ("AWAITING_COLLECTION", "IN_TRANSIT", "DELIVERED", "COMPLETED", "SHIPPED")
SHIPPING_LABEL = "Shipping address"

_PERMISSION_MARKERS = (
    "no permission",
    "don't have permission",
    "do not have permission",
    "not authorized to view",
    "access denied",
)

_LABELLED_FIELDS = {
    "shipping_method": ("shipping method", "shipping option", "delivery option", "logistics"),
    "payment_method": ("payment method", "paid by", "payment"),
}


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html5lib")


def _own_text(element: Tag) -> str:
    return "".join(
        str(child) for child in element.children if isinstance(child, NavigableString)
    ).strip()


def parse_amount(value: Any) -> float:
    """Coerce ``value`` (``"1,234.50"``, ``12``, ``None``...) to a float, 0.0 on junk."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip() or 0)
    except ValueError:
        return 0.0


# ---------------------------------------------------------------------------
# Order list page
# ---------------------------------------------------------------------------


def extract_order_ids(html: str, max_orders: int | None = None) -> list[str]:
    """Return order ids on a list page in document order, without duplicates.

    Detail links are the most reliable source; order cells and row checkboxes
    are only consulted while the cap has not been reached.
    """
    soup = _soup(html)
    limit = max_orders if max_orders and max_orders > 0 else None
    found: list[str] = []

    def take(text: str) -> bool:
        for match in _ORDER_ID_PATTERN.findall(text or ""):
            if match not in found:
                found.append(match)
            if limit is not None and len(found) >= limit:
                return True
        return False

    for anchor in soup.select('a[href*="order/detail"], a[href*="order_no="]'):
        if take(anchor.get("href", "")):
            return found

    for cell in soup.select('td, div[class*="order"], span[class*="order"]'):
        if take(cell.get_text(" ", strip=True)):
            return found

    for checkbox in soup.select('input[type="checkbox"]'):
        if take(checkbox.get("value") or checkbox.get("data-order-id") or ""):
            return found

    return found


def extract_max_pages(html: str) -> int | None:
    """Return the highest page number shown in the pagination bar, if any."""
    soup = _soup(html)
    numbers: list[int] = []
    for container in soup.select('[class*="pagination"], [class*="pager"]'):
        for item in container.find_all(["li", "a", "button", "span"]):
            text = item.get_text(strip=True)
            if text.isdigit():
                numbers.append(int(text))
            elif item.get("title", "").isdigit():
                numbers.append(int(item["title"]))
    return max(numbers) if numbers else None


# ---------------------------------------------------------------------------
# Order detail page
# ---------------------------------------------------------------------------


def find_shipping_section(soup: BeautifulSoup) -> Tag | None:
    for div in soup.find_all("div"):
        if not div.find(True) and div.get_text(strip=True) == SHIPPING_LABEL:
            return div.parent
    return None


def shipping_texts(container: Tag) -> list[str]:
    texts: list[str] = []
    for div in container.find_all("div"):
        if div.find(True) is not None and div.find("svg") is None:
            continue
        text = _own_text(div)
        if len(text) > 1 and text != SHIPPING_LABEL:
            texts.append(text)
    return texts


def classify_shipping_texts(texts: list[str]) -> dict[str, str | None]:
    """Sort loose shipping-section strings into name, phone and address."""
    result: dict[str, str | None] = {"name": None, "phone_number": None, "full_address": None}
    for text in texts:
        if "***" in text:
            continue

        if not result["phone_number"]:
            phone = _PHONE_PATTERN.search(text)
            if phone:
                result["phone_number"] = phone.group(0)
                continue

        if not result["full_address"] and (
            "Malaysia" in text
            or _POSTCODE_PATTERN.search(text)
            or len(text) > 35
            or _ADDRESS_WORDS.search(text)
        ):
            result["full_address"] = text
            continue

        if not result["name"] and 2 <= len(text) < 50:
            letters = sum(1 for ch in text if ch.isalpha() or ch.isspace())
            digits = sum(1 for ch in text if ch.isdigit())
            if letters > len(text) * 0.6 and digits < 3:
                result["name"] = text
    return result


def extract_order_status(soup: BeautifulSoup) -> str:
    for element in soup.select('[class*="status"], [class*="badge"], [class*="tag"]'):
        text = re.sub(r"[\s-]", "_", element.get_text(" ", strip=True).upper())
        for pattern in STATUS_PATTERNS:
            if pattern in text:
                return pattern

    page_text = soup.get_text(" ", strip=True).upper()
    for phrase in ("IN TRANSIT", "AWAITING COLLECTION", "DELIVERED", "COMPLETED"):
        if phrase in page_text:
            return phrase.replace(" ", "_")
    return "SHIPPED"


def extract_total_amount(soup: BeautifulSoup) -> tuple[float, str]:
    """Prefer a price next to a "total" label, else the largest price on the page."""
    for element in soup.find_all(True):
        if element.find(True) is not None:
            continue
        if not _TOTAL_LABEL.search(element.get_text()) or element.parent is None:
            continue
        match = _PRICE_PATTERN.search(element.parent.get_text(" ", strip=True))
        if match:
            return parse_amount(match.group(2)), config.DEFAULT_CURRENCY

    prices = [parse_amount(m.group(2)) for m in _PRICE_PATTERN.finditer(soup.get_text(" "))]
    if prices:
        return max(prices), config.DEFAULT_CURRENCY
    return 0.0, config.DEFAULT_CURRENCY


def extract_order_date(soup: BeautifulSoup, *, today: date | None = None) -> str:
    page_text = soup.get_text(" ", strip=True)
    match = _DATE_PATTERN.search(page_text)
    if match:
        return match.group(0).strip()
    today = today or date.today()
    match = _TODAY_PATTERN.search(page_text)
    if match:
        return f"{today.strftime('%d/%m/%Y')} {match.group(1)}"
    return today.isoformat()


def _labelled_value(soup: BeautifulSoup, labels: tuple[str, ...]) -> str | None:
    for element in soup.find_all(True):
        if element.find(True) is not None:
            continue
        text = element.get_text(strip=True).rstrip(":：").strip().lower()
        if text not in labels:
            continue
        sibling = element.find_next_sibling()
        if sibling is not None and sibling.get_text(strip=True):
            return sibling.get_text(" ", strip=True)
        if element.parent is not None:
            remainder = element.parent.get_text(" ", strip=True)
            value = remainder[len(element.get_text(strip=True)):].strip(" :：")
            if value:
                return value
    return None


def extract_line_items(soup: BeautifulSoup) -> tuple[str, str]:
    """Return ``(items, sku)`` joined with ``"; "`` for multi-product orders."""
    names: list[str] = []
    skus: list[str] = []
    for element in soup.select('[class*="product-name"], [class*="productName"], [class*="item-name"]'):
        text = element.get_text(" ", strip=True)
        if text and text not in names:
            names.append(text)
    for match in _SKU_PATTERN.finditer(soup.get_text(" ", strip=True)):
        if match.group(1) not in skus:
            skus.append(match.group(1))
    return "; ".join(names), "; ".join(skus)


def detect_permission_block(html: str) -> bool:
    text = _soup(html).get_text(" ", strip=True).lower()
    return any(marker in text for marker in _PERMISSION_MARKERS)


def extract_order_fields(html: str) -> dict[str, Any]:
    """Pull customer and order fields from a detail page.

    ``has_data`` is true when at least one of name, phone or address was
    found; ``is_masked`` is true when nothing usable was found or any of them
    still contains ``*``.
    """
    soup = _soup(html)
    section = find_shipping_section(soup)
    contact = classify_shipping_texts(shipping_texts(section)) if section is not None else {
        "name": None,
        "phone_number": None,
        "full_address": None,
    }
    amount, currency = extract_total_amount(soup)
    items, sku = extract_line_items(soup)

    has_data = any(contact.values())
    is_masked = not has_data or any("*" in (value or "") for value in contact.values())

    return {
        "customer_name": contact["name"],
        "phone_number": contact["phone_number"],
        "full_address": contact["full_address"],
        "order_status": extract_order_status(soup),
        "total_amount": amount,
        "currency": currency,
        "order_date": extract_order_date(soup),
        "shipping_method": _labelled_value(soup, _LABELLED_FIELDS["shipping_method"]),
        "payment_method": _labelled_value(soup, _LABELLED_FIELDS["payment_method"]),
        "items": items,
        "sku": sku,
        "has_data": has_data,
        "is_masked": is_masked,
    }


__all__ = [
    "parse_amount",
    "extract_order_ids",
    "extract_max_pages",
    "extract_order_fields",
    "classify_shipping_texts",
    "detect_permission_block",
]
