"""
Batch upsert operations for WooCommerce variations.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..http.client import ApiClientError
from .client import WooCommerceClient

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 100


@dataclass
class BatchResult:
    """Per-item outcome of one or more batch calls."""

    success_count: int = 0
    error_count: int = 0
    batch_requests: int = 0
    created_ids: List[int] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    def merge(self, other: "BatchResult") -> None:
        self.success_count += other.success_count
        self.error_count += other.error_count
        self.batch_requests += other.batch_requests
        self.created_ids.extend(other.created_ids)
        self.errors.update(other.errors)


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    size = max(1, min(size, MAX_BATCH_SIZE))
    return [items[i:i + size] for i in range(0, len(items), size)]


def _collect_items(
    response: Dict[str, Any], kind: str, sent: List[Dict[str, Any]], result: BatchResult
) -> None:
    """Count each echoed item as a success or an error."""
    echoed = [item for item in (response.get(kind) or []) if isinstance(item, dict)]
    for idx, item in enumerate(echoed):
        error = item.get("error")
        original = sent[idx] if idx < len(sent) else {}
        key = str(item.get("id") or original.get("id") or original.get("sku") or idx)
        if error:
            result.error_count += 1
            message = error.get("message", "Unknown") if isinstance(error, dict) else str(error)
            result.errors[key] = message
            logger.error(f"  Variation {kind} error [{key}]: {message}")
        else:
            result.success_count += 1
            if kind == "create" and item.get("id"):
                result.created_ids.append(int(item["id"]))

    # Items the store did not echo back are treated as failed
    missing = len(sent) - len(echoed)
    if missing > 0:
        result.error_count += missing
        logger.error(f"  {missing} {kind} items missing from batch response")


async def batch_upsert_variations(
    client: WooCommerceClient,
    product_id: int,
    create: Optional[List[Dict[str, Any]]] = None,
    update: Optional[List[Dict[str, Any]]] = None,
    batch_size: int = MAX_BATCH_SIZE,
) -> BatchResult:
    """
    Create/update variations of one product in chunks.

    Args:
        client: WooCommerceClient instance
        product_id: Parent product id
        create: New variation payloads
        update: Variation updates; each must carry "id"
        batch_size: Items per call, capped at 100

    Returns:
        BatchResult; one item's error never fails the others, and a failed
        call counts all of its items as errors
    """
    result = BatchResult()

    for kind, items in (("create", create or []), ("update", update or [])):
        for chunk in chunked(items, batch_size):
            try:
                payload = {kind: chunk}
                response = await client.batch_variations(product_id, **payload)
                result.batch_requests += 1
                _collect_items(response or {}, kind, chunk, result)
            except ApiClientError as e:
                result.error_count += len(chunk)
                result.errors[f"product:{product_id}"] = str(e)
                logger.error(f"  Variation batch {kind} failed [product:{product_id}]: {e}")

    logger.debug(
        f"Batch upsert for product {product_id}: "
        f"{result.success_count} succeeded, {result.error_count} failed"
    )
    return result
