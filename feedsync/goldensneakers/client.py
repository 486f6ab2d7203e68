"""
Golden Sneakers assortment API client.
"""

import logging
from typing import Any, Dict, List, Optional

from ..http.client import ApiClient, ApiClientError

logger = logging.getLogger(__name__)


class GoldenSneakersClient(ApiClient):
    """
    Async client for the Golden Sneakers wholesale assortment.

    The whole assortment comes back in one call. Prices in it are computed
    server-side from the markup, VAT and rounding parameters sent with the
    request.
    """

    DEFAULT_BASE_URL = "https://www.goldensneakers.net/api/assortment/"
    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        rounding_type: str = "whole",
        markup_percentage: float = 0,
        vat_percentage: float = 0,
        **kwargs: Any,
    ):
        """
        Args:
            api_key: Golden Sneakers JWT (Bearer token)
            base_url: Assortment endpoint
            rounding_type: Server-side price rounding
            markup_percentage: Markup the API adds to presented prices
            vat_percentage: VAT the API adds to presented prices
            **kwargs: Passed through to ApiClient (timeout, retries, session...)
        """
        kwargs.setdefault("timeout", self.DEFAULT_TIMEOUT)
        super().__init__(
            base_url,
            name="GoldenSneakers",
            headers={"Authorization": f"Bearer {api_key}"},
            **kwargs,
        )
        self.params: Dict[str, Any] = {
            "rounding_type": rounding_type,
            "markup_percentage": markup_percentage,
            "vat_percentage": vat_percentage,
        }

    async def get_assortment(
        self, params: Optional[Dict[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """
        Download the full assortment.

        Raises:
            ApiClientError: On transport failures or a non-list response
        """
        query = {**self.params, **(params or {})}
        # The endpoint is the directory itself, keep its trailing slash
        data = await self.request("GET", "/", query)
        if not isinstance(data, list):
            raise ApiClientError(
                f"GoldenSneakers assortment must be a JSON list, got {type(data).__name__}"
            )
        logger.info(f"  {len(data)} products fetched from Golden Sneakers")
        return data
