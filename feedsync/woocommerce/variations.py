"""
Reading and building WooCommerce variation payloads.
"""

import re
from typing import Any, Dict, List, Optional

from ..kicksdb.variants import normalize_size
from ..pricing.margin import format_price
from ..sync.models import EntitySnapshot, VariantSnapshot

SIZE_ATTRIBUTE_MARKERS = ("taglia", "size")
SKU_SIZE_RE = re.compile(r"-(\d+\.?\d*)$")

# Global attribute the catalog uses for sizes
SIZE_ATTRIBUTE_NAME = "Taglia"


def variation_size(variation: Dict[str, Any]) -> Optional[str]:
    """
    Size of a store variation.

    Looks for a size attribute (pa_taglia, taglia, size...) first, then
    falls back to the trailing "-<size>" of the variation SKU
    (e.g. "DD1873-102-38").
    """
    for attr in variation.get("attributes") or []:
        if not isinstance(attr, dict):
            continue
        slug = str(attr.get("slug") or attr.get("name") or "").lower()
        if any(marker in slug for marker in SIZE_ATTRIBUTE_MARKERS):
            option = attr.get("option")
            return normalize_size(option) if option not in (None, "") else None

    match = SKU_SIZE_RE.search(variation.get("sku") or "")
    if match:
        return normalize_size(match.group(1))
    return None


def stock_fields(quantity: int) -> Dict[str, Any]:
    return {
        "manage_stock": True,
        "stock_quantity": quantity,
        "stock_status": "instock" if quantity > 0 else "outofstock",
    }


def build_variation_create(
    entity_sku: str, variant: VariantSnapshot, selling_price
) -> Dict[str, Any]:
    """Payload for a new variation of a variable product."""
    payload: Dict[str, Any] = {
        "sku": f"{entity_sku}-{variant.size_key}",
        "attributes": [{"name": SIZE_ATTRIBUTE_NAME, "option": variant.size_key}],
        **stock_fields(variant.available_quantity),
    }
    if selling_price and selling_price > 0:
        payload["regular_price"] = format_price(selling_price)
    return payload


def build_variation_update(
    variation_id: int, variant: VariantSnapshot, selling_price
) -> Dict[str, Any]:
    """Payload updating price and stock of an existing variation."""
    payload: Dict[str, Any] = {"id": variation_id, **stock_fields(variant.available_quantity)}
    if selling_price and selling_price > 0:
        payload["regular_price"] = format_price(selling_price)
    return payload


def build_product_create(entity: EntitySnapshot) -> Dict[str, Any]:
    """Payload for a new variable product carrying every size as an option."""
    payload: Dict[str, Any] = {
        "name": entity.display_name,
        "type": "variable",
        "sku": entity.id,
        "status": "publish",
        "attributes": [
            {
                "name": SIZE_ATTRIBUTE_NAME,
                "visible": True,
                "variation": True,
                "options": sorted_sizes(entity.variants),
            }
        ],
    }
    if entity.brand_name:
        payload["meta_data"] = [{"key": "_brand", "value": entity.brand_name}]
    if entity.primary_image_url:
        payload["images"] = [{"src": entity.primary_image_url}]
    return payload


def sorted_sizes(variants: List[VariantSnapshot]) -> List[str]:
    """Size keys ordered numerically where possible."""

    def sort_key(size: str):
        try:
            return (0, float(size), size)
        except ValueError:
            return (1, 0.0, size)

    return sorted({v.size_key for v in variants}, key=sort_key)
