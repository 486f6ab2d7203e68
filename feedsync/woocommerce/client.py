"""
WooCommerce REST API client (the downstream store).
"""

from typing import Any, Dict, List, Optional

import httpx

from ..http.client import ApiClient


class WooCommerceClient(ApiClient):
    """
    Async client for the WooCommerce REST API.

    Only the calls the sync needs: product lookup, paginated listing,
    variations and the batch upsert endpoints.
    """

    DEFAULT_VERSION = "wc/v3"
    PAGE_SIZE = 100

    def __init__(
        self,
        url: str,
        consumer_key: str,
        consumer_secret: str,
        version: str = DEFAULT_VERSION,
        **kwargs: Any,
    ):
        """
        Initialize WooCommerce client.

        Args:
            url: Store URL (e.g. "https://shop.example.com")
            consumer_key: REST API consumer key (ck_...)
            consumer_secret: REST API consumer secret (cs_...)
            version: API namespace
            **kwargs: Passed through to ApiClient
        """
        base_url = f"{url.rstrip('/')}/wp-json/{version.strip('/')}"
        super().__init__(
            base_url,
            name="WooCommerce",
            auth=httpx.BasicAuth(consumer_key, consumer_secret),
            **kwargs,
        )

    async def _get_all(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Follow page numbers until a short page comes back."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            batch = await self.request(
                "GET", path, {**params, "per_page": self.PAGE_SIZE, "page": page}
            )
            if not isinstance(batch, list):
                break
            items.extend(batch)
            if len(batch) < self.PAGE_SIZE:
                break
            page += 1
        return items

    async def find_product_by_sku(self, sku: str) -> Optional[Dict[str, Any]]:
        """Return the product with this SKU, or None."""
        products = await self.request("GET", "products", {"sku": sku, "per_page": 1})
        if isinstance(products, list) and products:
            return products[0]
        return None

    async def list_products(
        self, status: str = "publish", product_type: str = "variable"
    ) -> List[Dict[str, Any]]:
        """All products with the given status and type."""
        return await self._get_all(
            "products", {"status": status, "type": product_type}
        )

    async def list_variations(self, product_id: int) -> List[Dict[str, Any]]:
        """All variations of a variable product."""
        return await self._get_all(f"products/{product_id}/variations", {})

    async def batch_products(
        self,
        create: Optional[List[Dict[str, Any]]] = None,
        update: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """POST products/batch. Each echoed item carries either an id or an error."""
        return await self.request(
            "POST", "products/batch", body=_batch_body(create, update)
        )

    async def batch_variations(
        self,
        product_id: int,
        create: Optional[List[Dict[str, Any]]] = None,
        update: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """POST products/{id}/variations/batch."""
        return await self.request(
            "POST",
            f"products/{product_id}/variations/batch",
            body=_batch_body(create, update),
        )


def _batch_body(
    create: Optional[List[Dict[str, Any]]],
    update: Optional[List[Dict[str, Any]]],
) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if create:
        body["create"] = create
    if update:
        body["update"] = update
    return body
