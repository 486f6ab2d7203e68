"""
Tests for size/price extraction, variation payloads, batch upserts and
the feed adapter.
"""

from decimal import Decimal

import pytest

from conftest import FakeSource, FakeStore, market_variant
from feedsync.http.client import TransientApiError
from feedsync.http.pacing import Pacer
from feedsync.kicksdb.adapter import KicksDbFeedAdapter
from feedsync.kicksdb.variants import (
    build_price_map,
    extract_eu_size,
    extract_standard_price,
    normalize_size,
)
from feedsync.pricing.margin import MarginCalculator, MarginConfig
from feedsync.sync.models import VariantSnapshot
from feedsync.woocommerce.batch_update import MAX_BATCH_SIZE, batch_upsert_variations, chunked
from feedsync.woocommerce.variations import (
    build_variation_create,
    build_variation_update,
    sorted_sizes,
    variation_size,
)


class TestEuSize:
    """EU size extraction from KicksDB variants."""

    def test_sizes_entry(self):
        assert extract_eu_size({"size": "9", "sizes": [{"type": "eu", "size": "42.5"}]}) == "42.5"

    def test_size_eu_field(self):
        assert extract_eu_size({"size": "9", "size_eu": "EU 43"}) == "43"

    def test_title(self):
        assert extract_eu_size({"size": "10", "title": "Men's US 10 / EU 44"}) == "44"

    def test_us_size_never_used(self):
        assert extract_eu_size({"size": "10"}) is None

    @pytest.mark.parametrize("raw, key", [("42.0", "42"), (" EU 38.5 ", "38.5"), (44, "44")])
    def test_normalize(self, raw, key):
        assert normalize_size(raw) == key


class TestStandardPrice:
    """Market price extraction."""

    def test_standard_entry_wins(self):
        variant = {"prices": [{"type": "express", "price": 90}, {"type": "standard", "price": 110}]}

        assert extract_standard_price(variant) == Decimal("110")

    def test_lowest_positive_without_standard(self):
        variant = {"prices": [{"type": "express", "price": 130}, {"type": "x", "price": 0}, {"type": "y", "price": "120"}]}

        assert extract_standard_price(variant) == Decimal("120")

    def test_flat_fields(self):
        assert extract_standard_price({"lowest_ask": "99.5"}) == Decimal("99.5")
        assert extract_standard_price({}) == Decimal("0")

    def test_price_map_skips_unpriced_and_unsized(self):
        variants = [
            market_variant("42", 100),
            market_variant("43", 0),
            {"size": "11", "prices": [{"type": "standard", "price": 150}]},
            "garbage",
        ]

        assert build_price_map(variants) == {"42": Decimal("100")}


class TestVariationPayloads:
    """Reading and building WooCommerce variations."""

    def test_size_from_attribute(self):
        variation = {"sku": "X-99", "attributes": [{"name": "Taglia", "slug": "pa_taglia", "option": "42.0"}]}

        assert variation_size(variation) == "42"

    def test_size_from_sku_suffix(self):
        assert variation_size({"sku": "DD1873-102-38.5", "attributes": []}) == "38.5"

    def test_no_size(self):
        assert variation_size({"sku": "", "attributes": [{"name": "Color", "option": "Red"}]}) is None

    def test_create_payload(self):
        payload = build_variation_create("DD1873-102", VariantSnapshot("42", Decimal("100"), 80), Decimal("125"))

        assert payload["sku"] == "DD1873-102-42"
        assert payload["regular_price"] == "125.00"
        assert payload["stock_status"] == "instock"
        assert payload["attributes"] == [{"name": "Taglia", "option": "42"}]

    def test_update_payload_without_price(self):
        payload = build_variation_update(5, VariantSnapshot("42", Decimal("0"), 0), Decimal("0"))

        assert payload == {"id": 5, "manage_stock": True, "stock_quantity": 0, "stock_status": "outofstock"}

    def test_sorted_sizes(self):
        variants = [VariantSnapshot(s, Decimal("1")) for s in ("44", "38.5", "40", "XL")]

        assert sorted_sizes(variants) == ["38.5", "40", "44", "XL"]


class TestBatchUpsert:
    """Chunked batch calls with per-item error accounting."""

    def test_chunk_size_capped(self):
        chunks = chunked(list(range(250)), 500)

        assert [len(c) for c in chunks] == [MAX_BATCH_SIZE, MAX_BATCH_SIZE, 50]

    async def test_per_item_errors_do_not_fail_siblings(self, store: FakeStore):
        product = store.add_product("DD1873-102", {"42": "100.00", "43": "100.00", "44": "100.00"})
        failing = store.variation("DD1873-102", "43")["id"]
        store.failing_variation_ids.add(failing)
        updates = [{"id": v["id"], "regular_price": "110.00"} for v in store.variations[product["id"]]]

        result = await batch_upsert_variations(store, product["id"], update=updates)

        assert result.success_count == 2
        assert result.error_count == 1
        assert result.errors == {str(failing): "Invalid price"}
        assert store.variation("DD1873-102", "42")["regular_price"] == "110.00"
        assert store.variation("DD1873-102", "43")["regular_price"] == "100.00"

    async def test_large_updates_split(self, store: FakeStore):
        product = store.add_product("BIG", {str(s): "100.00" for s in range(150)})
        updates = [{"id": v["id"], "regular_price": "101.00"} for v in store.variations[product["id"]]]

        result = await batch_upsert_variations(store, product["id"], update=updates, batch_size=100)

        assert result.batch_requests == 2
        assert [len(c["update"]) for c in store.batch_calls] == [100, 50]
        assert result.success_count == 150

    async def test_failed_call_counts_whole_chunk(self, store: FakeStore):
        async def broken(product_id, create=None, update=None):
            raise TransientApiError("WooCommerce POST returned 502", status_code=502)

        store.batch_variations = broken

        result = await batch_upsert_variations(store, 1, update=[{"id": 1}, {"id": 2}])

        assert result.error_count == 2
        assert result.success_count == 0

    async def test_missing_echo_counts_as_error(self, store: FakeStore):
        async def short(product_id, create=None, update=None):
            return {"update": [{"id": update[0]["id"]}]}

        store.batch_variations = short

        result = await batch_upsert_variations(store, 1, update=[{"id": 1}, {"id": 2}])

        assert result.success_count == 1
        assert result.error_count == 1

    async def test_creates_report_ids(self, store: FakeStore):
        product = store.add_product("NEW", {})

        result = await batch_upsert_variations(
            store, product["id"], create=[{"sku": "NEW-42"}, {"sku": "NEW-43"}]
        )

        assert len(result.created_ids) == 2
        assert result.success_count == 2


class TestFeedAdapter:
    """KicksDB products -> EntitySnapshots."""

    @pytest.fixture
    def adapter(self, source: FakeSource) -> KicksDbFeedAdapter:
        calculator = MarginCalculator(MarginConfig.build(flat_margin_pct=25, rounding="whole"))
        return KicksDbFeedAdapter(source, calculator, Pacer(0))

    async def test_normalizes_products(self, adapter, source):
        source.add_product(
            "DD1873-102",
            "uuid-1",
            variants=[market_variant("42", 100), market_variant("43", 250), market_variant("44", 0)],
        )

        snapshots = await adapter.fetch_snapshots(["DD1873-102"])

        assert len(snapshots) == 1
        snap = snapshots[0]
        assert snap.id == "DD1873-102"
        assert snap.source_id == "uuid-1"
        assert snap.brand_name == "Jordan"
        quantities = {v.size_key: v.available_quantity for v in snap.variants}
        # 125 -> 80, 313 -> 30, unpriced -> 0
        assert quantities == {"42": 80, "43": 30, "44": 0}

    async def test_unknown_skus_skipped(self, adapter, source):
        source.add_product("KNOWN", "uuid-1", variants=[market_variant("42", 100)])

        snapshots = await adapter.fetch_snapshots(["KNOWN", "UNKNOWN", " "])

        assert [s.id for s in snapshots] == ["KNOWN"]
        assert adapter.stats.total_skus == 2
        assert adapter.stats.products_not_found == 1

    async def test_duplicate_size_keeps_cheapest(self, adapter, source):
        source.add_product(
            "DUP", "uuid-2", variants=[market_variant("42", 120), market_variant("42.0", 110)]
        )

        snapshots = await adapter.fetch_snapshots(["DUP"])

        assert snapshots[0].variants == [VariantSnapshot("42", Decimal("110"), 80)]

    async def test_lookup_failure_counted(self, adapter, source):
        async def failing(identifier, market=None):
            raise TransientApiError("KicksDB returned 503", status_code=503)

        source.get_product = failing

        assert await adapter.fetch_snapshots(["X"]) == []
        assert adapter.stats.products_failed == 1
