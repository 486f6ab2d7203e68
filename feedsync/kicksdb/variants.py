"""
Helpers for reading sizes and market prices out of KicksDB variant payloads.

Shared by the feed adapter, the price reconciler and the push webhook.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, Optional

EU_PREFIX_RE = re.compile(r"^EU\s*", re.IGNORECASE)
EU_TITLE_RE = re.compile(r"EU\s+([\d.]+)", re.IGNORECASE)
TRAILING_ZERO_RE = re.compile(r"^(\d+)\.0+$")

STANDARD_PRICE_TYPE = "standard"


def normalize_size(size: Any) -> str:
    """Canonical size key: trimmed, "EU" prefix removed, "42.0" -> "42"."""
    text = EU_PREFIX_RE.sub("", str(size).strip())
    match = TRAILING_ZERO_RE.match(text)
    return match.group(1) if match else text


def _to_decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def extract_size_by_type(variant: Dict[str, Any], size_type: str) -> Optional[str]:
    """Return the `size` of the sizes[] entry with the given type (eu, us m, uk...)."""
    for entry in variant.get("sizes") or []:
        if isinstance(entry, dict) and entry.get("type") == size_type:
            size = entry.get("size")
            return str(size) if size is not None else None
    return None


def extract_eu_size(variant: Dict[str, Any]) -> Optional[str]:
    """
    Extract the EU size of a KicksDB variant.

    Checks, in order:
    1. sizes[] entry with type "eu"
    2. a direct size_eu field
    3. the title ("Men's US 10 / EU 44")

    The plain `size` field is a US size and is never used.

    Returns:
        EU size such as "44" or "35.5", or None
    """
    eu_size = extract_size_by_type(variant, "eu")
    if eu_size is not None:
        return normalize_size(eu_size)

    direct = variant.get("size_eu")
    if direct not in (None, ""):
        return normalize_size(direct)

    title = variant.get("title") or ""
    match = EU_TITLE_RE.search(title)
    if match:
        return normalize_size(match.group(1))

    return None


def extract_standard_price(variant: Dict[str, Any]) -> Decimal:
    """
    Extract the standard-shipping market price of a KicksDB variant.

    If a prices[] list exists the "standard" entry wins, otherwise the lowest
    positive price in the list. Without prices[], falls back to lowest_ask,
    price or amount.

    Returns:
        Market price, Decimal("0") when none is available
    """
    prices = variant.get("prices")
    if isinstance(prices, list) and prices:
        for entry in prices:
            if isinstance(entry, dict) and entry.get("type") == STANDARD_PRICE_TYPE:
                return _to_decimal(entry.get("price"))

        positive = [
            _to_decimal(entry.get("price"))
            for entry in prices
            if isinstance(entry, dict)
        ]
        positive = [p for p in positive if p > 0]
        return min(positive) if positive else Decimal("0")

    for key in ("lowest_ask", "price", "amount"):
        if variant.get(key) is not None:
            return _to_decimal(variant[key])
    return Decimal("0")


def build_price_map(variants: Iterable[Dict[str, Any]]) -> Dict[str, Decimal]:
    """Map EU size -> market price, keeping only variants with a positive price."""
    price_map: Dict[str, Decimal] = {}
    for variant in variants:
        if not isinstance(variant, dict):
            continue
        size = extract_eu_size(variant)
        price = extract_standard_price(variant)
        if size is not None and price > 0:
            price_map[size] = price
    return price_map
