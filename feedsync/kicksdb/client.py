"""
KicksDB v3 API client.

Wraps the endpoints the sync needs:
- StockX product lookup by slug, UUID or style code (SKU)
- Batch market price lookup
- Push subscription (webhook) management
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..http.client import ApiClient, NotFoundError
from ..http.pacing import Pacer

logger = logging.getLogger(__name__)


class KicksDbClient(ApiClient):
    """
    Async client for the KicksDB market API.

    Lookups that find nothing return None; transport and API failures raise
    ApiClientError subclasses.
    """

    DEFAULT_BASE_URL = "https://api.kicks.dev/v3"
    DEFAULT_MARKET = "IT"
    PRICE_BATCH_SIZE = 50

    # Default display fields for product endpoints
    DISPLAY_FIELDS = {
        "display[variants]": "true",
        "display[traits]": "true",
        "display[identifiers]": "true",
    }

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        market: str = DEFAULT_MARKET,
        **kwargs: Any,
    ):
        """
        Initialize KicksDB client.

        Args:
            api_key: KicksDB API key (Bearer token)
            base_url: API root, defaults to the public v3 endpoint
            market: Market/region code used for pricing (IT, US, ...)
            **kwargs: Passed through to ApiClient (timeout, retries, session...)
        """
        super().__init__(
            base_url,
            name="KicksDB",
            headers={"Authorization": f"Bearer {api_key}"},
            **kwargs,
        )
        self.market = market

    # ===== Products =====

    async def get_product(
        self, identifier: str, market: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Get a StockX product by slug, UUID or style code.

        Tries a direct lookup first, then falls back to search, which is what
        resolves style codes like DD1503-101.

        Returns:
            The product object (unwrapped from its data envelope) or None
        """
        market = market or self.market
        params = {**self.DISPLAY_FIELDS, "market": market}

        try:
            result = await self.request("GET", f"/stockx/products/{identifier}", params)
            product = _unwrap(result)
            if product:
                return product
        except NotFoundError:
            logger.debug(f"Direct lookup missed for '{identifier}', trying search")

        try:
            search = await self.search_products(identifier, limit=5, market=market)
        except NotFoundError:
            return None
        items = search.get("data", search) if isinstance(search, dict) else search
        if not isinstance(items, list) or not items:
            return None

        # Prefer an exact SKU match, else the most relevant result
        match = next(
            (
                item for item in items
                if str(item.get("sku", "")).casefold() == identifier.casefold()
            ),
            items[0],
        )

        product_ref = match.get("slug") or match.get("id")
        if product_ref and product_ref != identifier and not match.get("variants"):
            try:
                full = await self.request("GET", f"/stockx/products/{product_ref}", params)
                full_product = _unwrap(full)
                if full_product:
                    return full_product
            except NotFoundError:
                logger.debug(f"Full product fetch missed for '{product_ref}'")

        return match

    async def search_products(
        self,
        query: str,
        limit: int = 10,
        market: Optional[str] = None,
        page: int = 1,
    ) -> Any:
        """Search StockX products by SKU, name, etc."""
        params = {
            **self.DISPLAY_FIELDS,
            "query": query,
            "limit": limit,
            "market": market or self.market,
            "page": page,
        }
        return await self.request("GET", "/stockx/products", params)

    async def get_variants(
        self, product_id: str, market: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Get variant/size data for a product. Empty list when unknown."""
        try:
            result = await self.request(
                "GET",
                f"/stockx/products/{product_id}/variants",
                {"market": market or self.market},
            )
        except NotFoundError:
            return []
        variants = result.get("data", result) if isinstance(result, dict) else result
        return variants if isinstance(variants, list) else []

    async def batch_get_prices(
        self,
        skus: Iterable[str],
        market: Optional[str] = None,
        pacer: Optional[Pacer] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """
        Fetch market prices for many SKUs via POST /stockx/prices.

        SKUs are sent in chunks of PRICE_BATCH_SIZE. SKUs missing from the
        response are simply absent from the result.

        Returns:
            Dict mapping SKU to product + variants data
        """
        sku_list = list(skus)
        results: Dict[str, Dict[str, Any]] = {}

        for start in range(0, len(sku_list), self.PRICE_BATCH_SIZE):
            chunk = sku_list[start:start + self.PRICE_BATCH_SIZE]
            if pacer:
                await pacer.wait()

            response = await self.request(
                "POST",
                "/stockx/prices",
                body={"market": market or self.market, "skus": chunk},
            )
            items = response.get("data", []) if isinstance(response, dict) else response
            for item in items or []:
                sku = item.get("sku")
                if sku:
                    results[sku] = item

        return results

    # ===== Webhooks =====

    async def register_webhook(
        self,
        callback_url: str,
        product_ids: List[str],
        events: Iterable[str] = ("price_change",),
    ) -> Dict[str, Any]:
        """Create a push subscription seeded with product ids."""
        result = await self.request(
            "POST",
            "/webhooks",
            body={
                "url": callback_url,
                "products": list(product_ids),
                "events": list(events),
            },
        )
        return _unwrap(result)

    async def add_products_to_webhook(
        self, webhook_id: str, product_ids: List[str]
    ) -> Dict[str, Any]:
        return await self.request(
            "POST",
            f"/webhooks/{webhook_id}/products",
            body={"products": list(product_ids)},
        )

    async def remove_products_from_webhook(
        self, webhook_id: str, product_ids: List[str]
    ) -> Dict[str, Any]:
        return await self.request(
            "DELETE",
            f"/webhooks/{webhook_id}/products",
            body={"products": list(product_ids)},
        )


def _unwrap(result: Any) -> Dict[str, Any]:
    """Strip the {"data": {...}} envelope KicksDB puts around single objects."""
    if isinstance(result, dict) and isinstance(result.get("data"), dict):
        return result["data"]
    return result if isinstance(result, dict) else {}
