"""
Golden Sneakers feed adapter: the wholesale assortment -> EntitySnapshots.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from .client import GoldenSneakersClient
from ..kicksdb.variants import normalize_size
from ..sync.models import EntitySnapshot, VariantSnapshot

# Letter sizes (S, M, XL, XXL, 3XL) mean apparel; numeric EU sizes mean shoes
CLOTHING_SIZE_RE = re.compile(r"^[XSML]{1,3}L?$|^\d*XL$", re.IGNORECASE)


@dataclass
class GoldenSneakersStats:
    total: int = 0
    fetched: int = 0
    sneakers: int = 0
    clothing: int = 0
    skipped: int = 0


def detect_product_type(sizes: List[Dict[str, Any]]) -> str:
    """'clothing' when the first size is a letter size, else 'sneakers'."""
    if not sizes:
        return "sneakers"
    first = str(sizes[0].get("size_eu") or "").strip()
    return "clothing" if CLOTHING_SIZE_RE.match(first) else "sneakers"


def _sizes(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [s for s in raw.get("sizes") or [] if isinstance(s, dict)]


def _price(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return price if price.is_finite() else Decimal("0")


def _quantity(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


class GoldenSneakersFeedAdapter:
    """
    Downloads the whole assortment and normalizes it.

    Unlike KicksDB the feed carries real stock: available_quantity is
    published as is. presented_price is taken as the market price the
    local margin rules apply to.
    """

    source_name = "GoldenSneakers"
    requires_skus = False

    def __init__(
        self,
        client: GoldenSneakersClient,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.log = logger or logging.getLogger(__name__)
        self.stats = GoldenSneakersStats()

    async def fetch_snapshots(
        self, skus: Optional[Iterable[str]] = None
    ) -> List[EntitySnapshot]:
        """
        Fetch the assortment.

        Args:
            skus: Keep only these SKUs; None keeps the whole assortment

        Raises:
            ApiClientError: If the assortment cannot be downloaded
        """
        self.log.info("Fetching from Golden Sneakers API...")
        feed = await self.client.get_assortment()
        self.stats = GoldenSneakersStats(total=len(feed))
        wanted = {s.strip() for s in skus if s and s.strip()} if skus is not None else None

        snapshots: List[EntitySnapshot] = []
        for raw in feed:
            snapshot = self.normalize(raw)
            if snapshot is None:
                self.stats.skipped += 1
                continue
            if wanted is not None and snapshot.id not in wanted:
                continue
            if detect_product_type(_sizes(raw)) == "clothing":
                self.stats.clothing += 1
            else:
                self.stats.sneakers += 1
            snapshots.append(snapshot)
            self.stats.fetched += 1

        self.log.info(
            f"Normalized {self.stats.fetched}/{self.stats.total} products "
            f"({self.stats.sneakers} sneakers, {self.stats.clothing} clothing, "
            f"{self.stats.skipped} skipped)"
        )
        return snapshots

    def normalize(self, raw: Any) -> Optional[EntitySnapshot]:
        """Convert one assortment entry. Entries without a SKU are skipped."""
        if not isinstance(raw, dict):
            self.log.warning(f"  Skipping non-object assortment entry: {raw!r}")
            return None
        sku = str(raw.get("sku") or "").strip()
        if not sku:
            self.log.debug(f"  Skipping product without SKU: {raw.get('name')!r}")
            return None

        sizes = _sizes(raw)
        by_size: Dict[str, VariantSnapshot] = {}
        for entry in sizes:
            if entry.get("size_eu") in (None, ""):
                continue
            size = normalize_size(entry["size_eu"])
            if size in by_size:
                self.log.debug(f"  Duplicate size {size} for {sku}, keeping the first")
                continue
            by_size[size] = VariantSnapshot(
                size_key=size,
                price=_price(entry.get("presented_price")),
                available_quantity=_quantity(entry.get("available_quantity")),
            )

        source_id = raw.get("id")
        return EntitySnapshot(
            id=sku,
            display_name=raw.get("name") or "",
            brand_name=raw.get("brand_name") or "",
            primary_image_url=raw.get("image_full_url"),
            variants=list(by_size.values()),
            source_id=str(source_id) if source_id is not None else None,
        )
