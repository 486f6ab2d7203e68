"""
KicksDB feed adapter: tracked SKUs -> EntitySnapshots.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..http.client import ApiClientError
from ..http.pacing import Pacer
from .client import KicksDbClient
from .variants import extract_eu_size, extract_standard_price
from ..pricing.margin import MarginCalculator
from ..pricing.stock import estimate_stock
from ..sync.models import EntitySnapshot, VariantSnapshot


@dataclass
class AdapterStats:
    total_skus: int = 0
    products_found: int = 0
    products_not_found: int = 0
    products_failed: int = 0
    variants_total: int = 0
    variants_with_price: int = 0
    variants_no_price: int = 0
    variants_no_eu_size: int = 0


class KicksDbFeedAdapter:
    """
    Fetches each SKU from KicksDB and normalizes it to an EntitySnapshot.

    One product lookup per SKU, paced to respect the API's rate limits.
    Variant prices are market prices; quantities are estimated from the
    selling price the margin rules would produce.
    """

    source_name = "KicksDB"
    requires_skus = True

    def __init__(
        self,
        client: KicksDbClient,
        calculator: MarginCalculator,
        pacer: Optional[Pacer] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.calculator = calculator
        self.pacer = pacer or Pacer()
        self.log = logger or logging.getLogger(__name__)
        self.stats = AdapterStats()

    async def fetch_snapshots(
        self, skus: Optional[Iterable[str]] = None
    ) -> List[EntitySnapshot]:
        """
        Fetch and normalize every SKU.

        SKUs unknown to KicksDB are logged and skipped. A SKU whose lookup
        fails after retries is also skipped and counted in products_failed.
        """
        sku_list = [s.strip() for s in skus or [] if s and s.strip()]
        self.stats = AdapterStats(total_skus=len(sku_list))
        snapshots: List[EntitySnapshot] = []

        for idx, sku in enumerate(sku_list, start=1):
            self.log.info(f"[{idx}/{len(sku_list)}] Fetching {sku}...")
            await self.pacer.wait()

            try:
                product = await self.client.get_product(sku)
            except ApiClientError as e:
                self.stats.products_failed += 1
                self.log.error(f"  KicksDB lookup failed for {sku}: {e}")
                continue

            if product is None:
                self.stats.products_not_found += 1
                self.log.warning(f"  Not found in KicksDB: {sku}")
                continue

            self.stats.products_found += 1
            variants = product.get("variants") or []
            if not variants:
                product_ref = product.get("id") or product.get("slug") or sku
                self.log.debug(f"  No embedded variants, trying variants endpoint for {product_ref}")
                await self.pacer.wait()
                try:
                    variants = await self.client.get_variants(product_ref)
                except ApiClientError as e:
                    self.log.error(f"  Variants lookup failed for {sku}: {e}")
                    variants = []

            snapshot = self.normalize(product, variants, sku)
            if snapshot is not None:
                snapshots.append(snapshot)

        self.log.info(
            f"Fetched {self.stats.products_found}/{self.stats.total_skus} products "
            f"({self.stats.products_not_found} not found, "
            f"{self.stats.products_failed} failed)"
        )
        return snapshots

    def normalize(
        self,
        product: Dict[str, Any],
        variants: List[Dict[str, Any]],
        requested_sku: str,
    ) -> Optional[EntitySnapshot]:
        """Convert a KicksDB product + variants into an EntitySnapshot."""
        sku = product.get("sku") or requested_sku
        name = product.get("title") or product.get("name") or ""
        if not name:
            self.log.warning(f"  Product {sku} has no title, skipping")
            return None

        by_size: Dict[str, VariantSnapshot] = {}
        for variant in variants:
            self.stats.variants_total += 1
            size = extract_eu_size(variant)
            if size is None:
                self.stats.variants_no_eu_size += 1
                continue

            price = extract_standard_price(variant)
            if price > 0:
                self.stats.variants_with_price += 1
                quantity = estimate_stock(self.calculator.calculate(price))
            else:
                self.stats.variants_no_price += 1
                quantity = 0

            # Keep the cheapest ask when a size appears twice
            existing = by_size.get(size)
            if existing is None or (0 < price < existing.price) or existing.price <= 0:
                by_size[size] = VariantSnapshot(
                    size_key=size, price=price, available_quantity=quantity
                )

        brand = product.get("brand") or ""
        self.log.info(f"  {name} ({brand}) - {sku}: {len(by_size)} sizes")

        return EntitySnapshot(
            id=sku,
            display_name=name,
            brand_name=brand,
            primary_image_url=product.get("image"),
            variants=list(by_size.values()),
            source_id=product.get("id"),
        )
