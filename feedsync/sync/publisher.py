"""
Pushes a DiffResult to the WooCommerce store.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..http.client import ApiClientError
from ..pricing.margin import MarginCalculator
from .models import DiffResult, EntitySnapshot
from ..woocommerce.batch_update import (
    MAX_BATCH_SIZE,
    BatchResult,
    batch_upsert_variations,
)
from ..woocommerce.client import WooCommerceClient
from ..woocommerce.variations import (
    build_product_create,
    build_variation_create,
    build_variation_update,
    variation_size,
)

logger = logging.getLogger(__name__)


@dataclass
class PublishResult:
    products_created: int = 0
    products_updated: int = 0
    products_zeroed: int = 0
    variations_created: int = 0
    variations_updated: int = 0
    errors: int = 0
    error_skus: List[str] = field(default_factory=list)

    def fail(self, sku: Optional[str]) -> None:
        self.errors += 1
        if sku:
            self.error_skus.append(sku)


class CatalogPublisher:
    """
    Applies new/updated/removed entities to the store.

    New entities become variable products with one variation per size.
    Updated entities get their variations' price and stock refreshed, and
    sizes the store lacks are created. Removed entities keep their product
    but every variation goes to zero stock.
    """

    def __init__(
        self,
        store: WooCommerceClient,
        calculator: MarginCalculator,
        batch_size: int = MAX_BATCH_SIZE,
    ):
        self.store = store
        self.calculator = calculator
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))

    async def publish(self, result: DiffResult) -> PublishResult:
        outcome = PublishResult()

        for entity in result.added:
            await self._publish_one(entity, outcome, create_missing=True)
        for entity in result.updated:
            await self._publish_one(entity, outcome, create_missing=False)
        for entity in result.removed:
            await self._zero(entity, outcome)

        logger.info(
            f"Publish finished: {outcome.products_created} created, "
            f"{outcome.products_updated} updated, {outcome.products_zeroed} zeroed, "
            f"{outcome.errors} errors"
        )
        return outcome

    async def _publish_one(
        self, entity: EntitySnapshot, outcome: PublishResult, create_missing: bool
    ) -> None:
        sku = entity.id
        try:
            product = await self.store.find_product_by_sku(sku)
            if product is None:
                if not create_missing:
                    logger.warning(f"  Updated product {sku} missing from store, creating it")
                product = await self._create_product(entity)
                if product is None:
                    outcome.fail(sku)
                    return
                outcome.products_created += 1
                existing: List[Dict[str, Any]] = []
            else:
                outcome.products_updated += 1
                existing = await self.store.list_variations(product["id"])
        except ApiClientError as e:
            logger.error(f"  Failed to publish {sku}: {e}")
            outcome.fail(sku)
            return

        by_size = {}
        for variation in existing:
            size = variation_size(variation)
            if size is not None:
                by_size[size] = variation

        create: List[Dict[str, Any]] = []
        update: List[Dict[str, Any]] = []
        for variant in entity.variants:
            selling = self.calculator.calculate(variant.price)
            current = by_size.get(variant.size_key)
            if current is None:
                create.append(build_variation_create(sku, variant, selling))
            else:
                update.append(build_variation_update(current["id"], variant, selling))

        batch = await batch_upsert_variations(
            self.store, product["id"], create=create, update=update,
            batch_size=self.batch_size,
        )
        self._count(batch, outcome, sku)

    async def _create_product(self, entity: EntitySnapshot) -> Optional[Dict[str, Any]]:
        response = await self.store.batch_products(create=[build_product_create(entity)])
        created = (response or {}).get("create") or []
        if not created or created[0].get("error"):
            error = created[0].get("error") if created else "empty response"
            logger.error(f"  Product create failed for {entity.id}: {error}")
            return None
        logger.info(f"  Created product {entity.id} (ID: {created[0].get('id')})")
        return created[0]

    async def _zero(self, entity: EntitySnapshot, outcome: PublishResult) -> None:
        sku = entity.id
        try:
            product = await self.store.find_product_by_sku(sku)
            if product is None:
                logger.info(f"  Removed product {sku} not in store, nothing to zero")
                return
            variations = await self.store.list_variations(product["id"])
        except ApiClientError as e:
            logger.error(f"  Failed to zero stock for {sku}: {e}")
            outcome.fail(sku)
            return

        updates = [
            {"id": v["id"], "stock_quantity": 0, "stock_status": "outofstock"}
            for v in variations
        ]
        batch = await batch_upsert_variations(
            self.store, product["id"], update=updates, batch_size=self.batch_size
        )
        if batch.error_count:
            outcome.fail(sku)
        outcome.products_zeroed += 1

    @staticmethod
    def _count(
        batch: BatchResult, outcome: PublishResult, sku: str
    ) -> None:
        created = len(batch.created_ids)
        outcome.variations_created += created
        outcome.variations_updated += batch.success_count - created
        if batch.error_count:
            logger.warning(f"  {batch.error_count} variation errors for {sku}")
            outcome.fail(sku)
