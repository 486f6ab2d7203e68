"""
Change detection between the current feed and the last reconciled baseline.
"""

import hashlib
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from .models import DiffResult, EntitySnapshot, SyncAction

logger = logging.getLogger(__name__)


class DiffInputError(ValueError):
    """The feed or baseline is not a list of EntitySnapshots. Fatal for the run."""
    pass


def _price_key(price: Decimal) -> str:
    return str(Decimal(price).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def compute_signature(entity: EntitySnapshot) -> str:
    """
    Content hash over the significant fields of an entity.

    Covers name, brand, image URL and the sorted (size, price, quantity)
    tuples. Variant order, source ids and sync bookkeeping do not affect it.
    """
    variants = sorted(
        (v.size_key, _price_key(v.price), int(v.available_quantity))
        for v in entity.variants
    )
    payload = {
        "name": entity.display_name,
        "brand": entity.brand_name,
        "image": entity.primary_image_url or "",
        "variants": [list(v) for v in variants],
    }
    serialized = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _index_by_id(
    entities: Iterable[EntitySnapshot], label: str
) -> Tuple[Dict[str, EntitySnapshot], int]:
    indexed: Dict[str, EntitySnapshot] = {}
    skipped = 0
    for entity in entities:
        if not isinstance(entity, EntitySnapshot):
            raise DiffInputError(
                f"{label} contains {type(entity).__name__}, expected EntitySnapshot"
            )
        if not entity.id:
            skipped += 1
            continue
        indexed[entity.id] = entity
    return indexed, skipped


def diff(
    current: List[EntitySnapshot],
    baseline: Optional[List[EntitySnapshot]],
    force_full: bool = False,
) -> DiffResult:
    """
    Classify every entity as new, updated, removed or unchanged.

    Args:
        current: Entities in the feed right now
        baseline: Entities from the last reconciled run, None on first run
        force_full: Treat every current entity as new (backfills)

    Returns:
        DiffResult with tagged entities. Removed entities keep their variants
        with quantities zeroed. Entities without an id are only counted in
        skipped_count.

    Raises:
        DiffInputError: If either collection is malformed
    """
    if current is None or isinstance(current, (str, bytes, dict)):
        raise DiffInputError("current feed must be a list of EntitySnapshots")

    current_by_id, skipped = _index_by_id(current, "current feed")
    result = DiffResult(skipped_count=skipped)

    if baseline is None or force_full:
        reason = "First run" if baseline is None else "Force full"
        logger.info(f"{reason} - all {len(current_by_id)} products marked new")
        result.added = [e.with_action(SyncAction.NEW) for e in current_by_id.values()]
        return result

    if isinstance(baseline, (str, bytes, dict)):
        raise DiffInputError("baseline must be a list of EntitySnapshots")

    baseline_by_id, _ = _index_by_id(baseline, "baseline")

    for entity_id, entity in current_by_id.items():
        previous = baseline_by_id.get(entity_id)
        if previous is None:
            result.added.append(entity.with_action(SyncAction.NEW))
            logger.debug(f"   + NEW: {entity_id}")
        elif compute_signature(entity) != compute_signature(previous):
            result.updated.append(entity.with_action(SyncAction.UPDATED))
            logger.debug(f"   ~ CHANGED: {entity_id}")
        else:
            result.unchanged_count += 1

    for entity_id, entity in baseline_by_id.items():
        if entity_id not in current_by_id:
            result.removed.append(
                entity.out_of_stock().with_action(SyncAction.REMOVED)
            )
            logger.debug(f"   - REMOVED: {entity_id}")

    if skipped:
        logger.warning(f"Skipped {skipped} feed entries without a SKU")

    return result
