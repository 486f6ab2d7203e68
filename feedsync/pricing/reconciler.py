"""
Price reconciler: applies market prices to store variations idempotently.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from ..http.client import ApiClientError
from ..kicksdb.variants import build_price_map
from .alerts import AlertNotifier, PriceAlert
from .margin import MarginCalculator, format_price, to_decimal
from ..woocommerce.batch_update import MAX_BATCH_SIZE, batch_upsert_variations
from ..woocommerce.client import WooCommerceClient
from ..woocommerce.variations import variation_size

# Price differences below this are treated as no change
PRICE_TOLERANCE = Decimal("0.01")


@dataclass
class UpdateResult:
    """Outcome of reconciling one product."""
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    def __add__(self, other: "UpdateResult") -> "UpdateResult":
        return UpdateResult(
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
        )


@dataclass
class ReconcilerStats:
    products_checked: int = 0
    variations_checked: int = 0
    variations_updated: int = 0
    variations_skipped: int = 0
    alerts_sent: int = 0
    errors: int = 0
    batch_requests: int = 0
    errors_by_sku: Dict[str, str] = field(default_factory=dict)


class PriceReconciler:
    """
    Brings store variation prices in line with market prices.

    For one product: find it by SKU, fetch its variations, match each to a
    market price by size, compute the selling price and queue an update only
    when it differs by at least 0.01 from the current one. Large swings raise
    an alert before the update is queued. Updates go out as batch calls and
    a failed item never fails its siblings.
    """

    def __init__(
        self,
        store: WooCommerceClient,
        calculator: MarginCalculator,
        *,
        alert_threshold: float = 30,
        notifier: Optional[AlertNotifier] = None,
        batch_size: int = MAX_BATCH_SIZE,
        dry_run: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            store: WooCommerce client
            calculator: Margin calculator
            alert_threshold: Percent change that triggers an alert, 0 disables
            notifier: Alert delivery, defaults to log-only
            batch_size: Items per batch call, capped at 100
            dry_run: Log would-be updates without writing
            logger: Logger to use instead of the module logger
        """
        self.store = store
        self.calculator = calculator
        self.alert_threshold = to_decimal(alert_threshold)
        self.notifier = notifier or AlertNotifier()
        self.batch_size = max(1, min(batch_size, MAX_BATCH_SIZE))
        self.dry_run = dry_run
        self.log = logger or logging.getLogger(__name__)
        self.stats = ReconcilerStats()

    def reset_stats(self) -> None:
        self.stats = ReconcilerStats()

    async def update_prices(
        self, sku: str, market_variants: Iterable[Dict[str, Any]]
    ) -> UpdateResult:
        """
        Reconcile the selling prices of one product.

        Args:
            sku: Product SKU (style code)
            market_variants: KicksDB variant payloads (sizes + prices)

        Returns:
            UpdateResult; a product missing from the store is errors=1
        """
        result = UpdateResult()
        self.stats.products_checked += 1

        product = await self._find_product(sku)
        if product is None:
            result.errors += 1
            return self._record(sku, result, "not found in store")

        product_id = product["id"]
        product_name = product.get("name") or sku

        try:
            variations = await self.store.list_variations(product_id)
        except ApiClientError as e:
            self.log.error(f"Failed to fetch variations for {sku}: {e}")
            result.errors += 1
            return self._record(sku, result, str(e))

        if not variations:
            self.log.warning(f"No variations found for {sku} (ID: {product_id})")
            result.errors += 1
            return self._record(sku, result, "no variations")

        price_map = build_price_map(market_variants)
        to_update: List[Dict[str, Any]] = []
        bad_prices: List[str] = []

        for variation in variations:
            self.stats.variations_checked += 1

            size = variation_size(variation)
            if size is None:
                self.log.debug(f"  Variation {variation.get('id')} of {sku} has no size")
                result.skipped += 1
                continue

            market_price = price_map.get(size)
            if market_price is None:
                self.log.debug(f"  No market price for size {size} of {sku}")
                result.skipped += 1
                continue

            raw_current = variation.get("regular_price")
            try:
                current_price = to_decimal(raw_current)
            except ValueError:
                current_price = None
            if current_price is None or not current_price.is_finite():
                self.log.error(
                    f"  Variation {variation.get('id')} of {sku} has an invalid "
                    f"store price: {raw_current!r}"
                )
                result.errors += 1
                bad_prices.append(f"invalid store price {raw_current!r} for size {size}")
                continue

            breakdown = self.calculator.calculate_with_breakdown(market_price)
            new_price = breakdown.final_price

            if abs(current_price - new_price) < PRICE_TOLERANCE:
                result.skipped += 1
                continue

            if current_price > 0 and self.alert_threshold > 0:
                change_pct = abs(new_price - current_price) / current_price * 100
                if change_pct >= self.alert_threshold:
                    await self._alert(
                        PriceAlert(
                            sku=sku,
                            product_name=product_name,
                            size=size,
                            old_price=current_price,
                            new_price=new_price,
                            change_pct=change_pct,
                            breakdown=breakdown,
                            threshold=self.alert_threshold,
                        )
                    )

            to_update.append({"id": variation["id"], "regular_price": format_price(new_price)})

            var_sku = variation.get("sku") or f"{sku}-{size}"
            self.log.info(
                f"  Price update: {var_sku} size {size}: "
                f"€{format_price(current_price)} -> €{format_price(new_price)} "
                f"(market: €{breakdown.market_price}, margin: {breakdown.margin_pct}% "
                f"[{breakdown.margin_source}]"
                f"{', floor applied' if breakdown.floor_applied else ''})"
            )

        if not to_update:
            self.log.info(f"  No price changes for {sku}")
            return self._record(sku, result, "; ".join(bad_prices) or None)

        if self.dry_run:
            self.log.info(f"  [DRY RUN] Would update {len(to_update)} variations of {sku}")
            result.updated += len(to_update)
            return self._record(sku, result, "; ".join(bad_prices) or None)

        batch = await batch_upsert_variations(
            self.store, product_id, update=to_update, batch_size=self.batch_size
        )
        self.stats.batch_requests += batch.batch_requests
        result.updated += batch.success_count
        result.errors += batch.error_count

        return self._record(
            sku, result, "; ".join([*bad_prices, *batch.errors.values()]) or None
        )

    async def zero_stock(self, sku: str) -> UpdateResult:
        """Mark every variation of a product out of stock."""
        result = UpdateResult()

        product = await self._find_product(sku)
        if product is None:
            result.errors += 1
            return result

        product_id = product["id"]
        try:
            variations = await self.store.list_variations(product_id)
        except ApiClientError as e:
            self.log.error(f"Failed to fetch variations for {sku}: {e}")
            result.errors += 1
            return result

        updates = [
            {"id": v["id"], "stock_quantity": 0, "stock_status": "outofstock"}
            for v in variations
            if v.get("stock_quantity") != 0 or v.get("stock_status") != "outofstock"
        ]
        result.skipped = len(variations) - len(updates)

        if not updates:
            self.log.info(f"  {sku} already out of stock")
            return result

        if self.dry_run:
            self.log.info(f"  [DRY RUN] Would set {len(updates)} variations of {sku} out of stock")
            result.updated = len(updates)
            return result

        batch = await batch_upsert_variations(
            self.store, product_id, update=updates, batch_size=self.batch_size
        )
        self.stats.batch_requests += batch.batch_requests
        result.updated = batch.success_count
        result.errors = batch.error_count
        self.log.info(f"Set {result.updated} variations of {sku} out of stock")
        return result

    async def bulk_update(self, products: Iterable[Dict[str, Any]]) -> UpdateResult:
        """
        Reconcile many products.

        Args:
            products: Dicts with "sku" and "variants"

        Returns:
            Totals across all products
        """
        totals = UpdateResult()
        for item in products:
            sku = item.get("sku")
            if not sku:
                continue
            totals = totals + await self.update_prices(sku, item.get("variants") or [])
        return totals

    async def _find_product(self, sku: str) -> Optional[Dict[str, Any]]:
        try:
            product = await self.store.find_product_by_sku(sku)
        except ApiClientError as e:
            self.log.error(f"Store lookup failed for {sku}: {e}")
            return None
        if product is None:
            self.log.warning(f"Product not found in store: {sku}")
        return product

    async def _alert(self, alert: PriceAlert) -> None:
        if await self.notifier.send(alert):
            self.stats.alerts_sent += 1

    def _record(
        self, sku: str, result: UpdateResult, error: Optional[str] = None
    ) -> UpdateResult:
        self.stats.variations_updated += result.updated
        self.stats.variations_skipped += result.skipped
        self.stats.errors += result.errors
        if error and result.errors:
            self.stats.errors_by_sku[sku] = error
        return result
