"""
Shared fixtures: in-memory stand-ins for the WooCommerce store and the
KicksDB source, plus helpers to build payloads.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from feedsync.http.client import NotFoundError
from feedsync.pricing.margin import MarginCalculator, MarginConfig
from feedsync.sync.models import EntitySnapshot, VariantSnapshot


def market_variant(size: str, price: Any, price_type: str = "standard") -> Dict[str, Any]:
    """A KicksDB variant with an EU size and one price entry."""
    return {
        "sizes": [{"type": "us m", "size": "9"}, {"type": "eu", "size": size}],
        "prices": [{"type": price_type, "price": price}],
    }


def entity(sku: Optional[str], sizes: Dict[str, Any], name: str = "Air Jordan 1") -> EntitySnapshot:
    return EntitySnapshot(
        id=sku,
        display_name=name,
        brand_name="Jordan",
        primary_image_url=f"https://img.example.com/{sku}.png",
        variants=[
            VariantSnapshot(size_key=size, price=Decimal(str(price)), available_quantity=80)
            for size, price in sizes.items()
        ],
    )


class RecordingSleep:
    """Async sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeStore:
    """In-memory WooCommerce store with the client's async interface."""

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.variations: Dict[int, List[Dict[str, Any]]] = {}
        self.batch_calls: List[Dict[str, Any]] = []
        self.failing_variation_ids: set = set()
        self._next_id = 1000

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def add_product(
        self,
        sku: str,
        prices: Dict[str, str],
        name: str = "Air Jordan 1",
        status: str = "publish",
        product_type: str = "variable",
    ) -> Dict[str, Any]:
        product = {
            "id": self._new_id(),
            "sku": sku,
            "name": name,
            "status": status,
            "type": product_type,
        }
        self.products[sku] = product
        self.variations[product["id"]] = [
            {
                "id": self._new_id(),
                "sku": f"{sku}-{size}",
                "regular_price": price,
                "stock_quantity": 10,
                "stock_status": "instock",
                "attributes": [{"id": 1, "name": "Taglia", "slug": "pa_taglia", "option": size}],
            }
            for size, price in prices.items()
        ]
        return product

    def variation(self, sku: str, size: str) -> Dict[str, Any]:
        product = self.products[sku]
        return next(
            v for v in self.variations[product["id"]]
            if v["attributes"][0]["option"] == size
        )

    async def find_product_by_sku(self, sku: str) -> Optional[Dict[str, Any]]:
        product = self.products.get(sku)
        return dict(product) if product else None

    async def list_products(self, status: str = "publish", product_type: str = "variable"):
        return [
            dict(p) for p in self.products.values()
            if p["status"] == status and p["type"] == product_type
        ]

    async def list_variations(self, product_id: int) -> List[Dict[str, Any]]:
        return [dict(v) for v in self.variations.get(product_id, [])]

    async def batch_variations(self, product_id: int, create=None, update=None):
        self.batch_calls.append({"product_id": product_id, "create": create, "update": update})
        response: Dict[str, Any] = {}
        if update:
            response["update"] = []
            for item in update:
                if item["id"] in self.failing_variation_ids:
                    response["update"].append(
                        {"id": item["id"], "error": {"code": "invalid", "message": "Invalid price"}}
                    )
                    continue
                for variation in self.variations.get(product_id, []):
                    if variation["id"] == item["id"]:
                        variation.update({k: v for k, v in item.items() if k != "id"})
                response["update"].append({"id": item["id"]})
        if create:
            response["create"] = []
            for item in create:
                new = {"id": self._new_id(), **item}
                self.variations.setdefault(product_id, []).append(new)
                response["create"].append({"id": new["id"], "sku": new.get("sku")})
        return response

    async def batch_products(self, create=None, update=None):
        response: Dict[str, Any] = {"create": []}
        for item in create or []:
            product = {
                "id": self._new_id(),
                "sku": item["sku"],
                "name": item["name"],
                "status": item.get("status", "publish"),
                "type": item.get("type", "variable"),
            }
            self.products[item["sku"]] = product
            self.variations[product["id"]] = []
            response["create"].append(dict(product))
        return response


class FakeSource:
    """In-memory KicksDB source with lookup and subscription calls."""

    def __init__(self):
        self.products: Dict[str, Dict[str, Any]] = {}
        self.prices: Dict[str, Dict[str, Any]] = {}
        self.webhooks: Dict[str, List[str]] = {}
        self.lookups: List[str] = []
        self.fail_subscription = False
        self.fail_removal = False

    def add_product(self, sku: str, product_id: str, variants=None, title: str = "Air Jordan 1"):
        self.products[sku] = {
            "id": product_id,
            "sku": sku,
            "title": title,
            "brand": "Jordan",
            "image": f"https://img.example.com/{sku}.png",
            "variants": variants or [],
        }

    async def get_product(self, identifier: str, market: Optional[str] = None):
        self.lookups.append(identifier)
        return self.products.get(identifier)

    async def get_variants(self, product_id: str, market: Optional[str] = None):
        return []

    async def batch_get_prices(self, skus, market=None, pacer=None):
        return {sku: self.prices[sku] for sku in skus if sku in self.prices}

    async def register_webhook(self, callback_url, product_ids, events=("price_change",)):
        if self.fail_subscription:
            raise NotFoundError("KicksDB POST /webhooks not found", status_code=404)
        webhook_id = f"wh_{len(self.webhooks) + 1}"
        self.webhooks[webhook_id] = list(product_ids)
        return {"id": webhook_id, "url": callback_url}

    async def add_products_to_webhook(self, webhook_id, product_ids):
        if self.fail_subscription:
            raise NotFoundError("KicksDB webhook not found", status_code=404)
        self.webhooks.setdefault(webhook_id, []).extend(product_ids)
        return {}

    async def remove_products_from_webhook(self, webhook_id, product_ids):
        if self.fail_subscription or self.fail_removal:
            raise NotFoundError("KicksDB webhook not found", status_code=404)
        remaining = [p for p in self.webhooks.get(webhook_id, []) if p not in product_ids]
        self.webhooks[webhook_id] = remaining
        return {}


class RecordingNotifier:
    """Alert notifier that remembers what it was asked to send."""

    def __init__(self, store: Optional[FakeStore] = None):
        self.alerts = []
        self.store = store
        self.batch_calls_at_send: List[int] = []

    async def send(self, alert) -> bool:
        self.alerts.append(alert)
        if self.store is not None:
            self.batch_calls_at_send.append(len(self.store.batch_calls))
        return True


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def identity_calculator() -> MarginCalculator:
    """Selling price == market price."""
    return MarginCalculator(MarginConfig.build(flat_margin_pct=0, rounding="none"))


@pytest.fixture
def flat_calculator() -> MarginCalculator:
    """Flat 25% margin, whole-euro rounding."""
    return MarginCalculator(MarginConfig.build(flat_margin_pct=25, rounding="whole"))
