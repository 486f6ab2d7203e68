"""
Tests for the price reconciler and price alerts.
"""

import json
from decimal import Decimal

import httpx
import pytest
import respx

from conftest import FakeStore, RecordingNotifier, market_variant
from feedsync.http.client import TransientApiError
from feedsync.pricing.alerts import RESEND_URL, AlertNotifier, PriceAlert
from feedsync.pricing.reconciler import PriceReconciler, UpdateResult

SKU = "DD1873-102"


def make_reconciler(store, calculator, **kwargs) -> PriceReconciler:
    kwargs.setdefault("notifier", RecordingNotifier(store))
    return PriceReconciler(store, calculator, **kwargs)


class TestUpdatePrices:
    """update_prices() for one product."""

    async def test_updates_changed_sizes_only(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "125.00", "43": "100.00", "44": "100.00"})
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.update_prices(
            SKU, [market_variant("42", 100), market_variant("43", 100)]
        )

        # 42 already at 125, 43 moves to 125, 44 has no market price
        assert result == UpdateResult(updated=1, skipped=2, errors=0)
        assert store.variation(SKU, "43")["regular_price"] == "125.00"
        assert store.variation(SKU, "44")["regular_price"] == "100.00"
        assert store.batch_calls[0]["update"] == [
            {"id": store.variation(SKU, "43")["id"], "regular_price": "125.00"}
        ]

    async def test_second_run_is_a_no_op(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "90.00", "43": "90.00"})
        reconciler = make_reconciler(store, flat_calculator)
        market = [market_variant("42", 100), market_variant("43", 120)]

        first = await reconciler.update_prices(SKU, market)
        second = await reconciler.update_prices(SKU, market)

        assert first.updated == 2
        assert second.updated == 0
        assert second.skipped == 2
        assert len(store.batch_calls) == 1

    async def test_sub_cent_difference_skipped(self, store: FakeStore, identity_calculator):
        store.add_product(SKU, {"42": "99.995"})
        reconciler = make_reconciler(store, identity_calculator)

        result = await reconciler.update_prices(SKU, [market_variant("42", 100)])

        assert result.updated == 0
        assert result.skipped == 1

    async def test_product_not_in_store(self, store: FakeStore, flat_calculator):
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.update_prices("MISSING", [market_variant("42", 100)])

        assert result == UpdateResult(updated=0, skipped=0, errors=1)
        assert store.batch_calls == []
        assert "MISSING" in reconciler.stats.errors_by_sku

    async def test_store_lookup_failure_is_an_error(self, store: FakeStore, flat_calculator):
        async def broken(sku):
            raise TransientApiError("WooCommerce GET products returned 503", status_code=503)

        store.find_product_by_sku = broken
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.update_prices(SKU, [market_variant("42", 100)])

        assert result.errors == 1

    async def test_product_without_variations(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {})
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.update_prices(SKU, [market_variant("42", 100)])

        assert result.errors == 1

    async def test_per_item_errors_counted(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "90.00", "43": "90.00"})
        store.failing_variation_ids.add(store.variation(SKU, "43")["id"])
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.update_prices(
            SKU, [market_variant("42", 100), market_variant("43", 100)]
        )

        assert result.updated == 1
        assert result.errors == 1
        assert store.variation(SKU, "42")["regular_price"] == "125.00"
        assert reconciler.stats.errors_by_sku[SKU] == "Invalid price"

    async def test_invalid_store_price_is_a_per_size_error(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "n/a", "43": "150.00"})
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.update_prices(
            SKU, [market_variant("42", 100), market_variant("43", 100)]
        )

        assert result.updated == 1
        assert result.errors == 1
        assert store.variation(SKU, "43")["regular_price"] == "125.00"
        assert store.variation(SKU, "42")["regular_price"] == "n/a"
        assert "invalid store price" in reconciler.stats.errors_by_sku[SKU]

    async def test_dry_run_writes_nothing(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "90.00"})
        reconciler = make_reconciler(store, flat_calculator, dry_run=True)

        result = await reconciler.update_prices(SKU, [market_variant("42", 100)])

        assert result.updated == 1
        assert store.batch_calls == []
        assert store.variation(SKU, "42")["regular_price"] == "90.00"

    async def test_batch_size_capped(self, store: FakeStore, identity_calculator):
        sizes = {str(s): "10.00" for s in range(30, 180)}
        store.add_product(SKU, sizes)
        reconciler = make_reconciler(store, identity_calculator, batch_size=500)

        result = await reconciler.update_prices(SKU, [market_variant(s, 20) for s in sizes])

        assert result.updated == 150
        assert [len(c["update"]) for c in store.batch_calls] == [100, 50]
        assert reconciler.stats.batch_requests == 2

    async def test_stats_accumulate(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "90.00"})
        reconciler = make_reconciler(store, flat_calculator)

        await reconciler.update_prices(SKU, [market_variant("42", 100)])
        await reconciler.update_prices("MISSING", [])

        assert reconciler.stats.products_checked == 2
        assert reconciler.stats.variations_updated == 1
        assert reconciler.stats.errors == 1

    async def test_bulk_update_totals(self, store: FakeStore, flat_calculator):
        store.add_product("A", {"42": "90.00"})
        store.add_product("B", {"42": "125.00"})
        reconciler = make_reconciler(store, flat_calculator)

        totals = await reconciler.bulk_update(
            [
                {"sku": "A", "variants": [market_variant("42", 100)]},
                {"sku": "B", "variants": [market_variant("42", 100)]},
                {"sku": "C", "variants": []},
                {"variants": []},
            ]
        )

        assert totals == UpdateResult(updated=1, skipped=1, errors=1)


class TestAlerts:
    """Swing alerts fire before the update is queued."""

    async def test_large_drop_alerts(self, store: FakeStore, identity_calculator):
        store.add_product(SKU, {"42": "150.00"})
        notifier = RecordingNotifier(store)
        reconciler = make_reconciler(store, identity_calculator, alert_threshold=30, notifier=notifier)

        result = await reconciler.update_prices(SKU, [market_variant("42", 100)])

        assert result.updated == 1
        assert len(notifier.alerts) == 1
        alert = notifier.alerts[0]
        assert alert.old_price == Decimal("150.00")
        assert alert.new_price == Decimal("100.00")
        assert alert.direction == "decrease"
        assert round(alert.change_pct, 1) == Decimal("33.3")
        assert notifier.batch_calls_at_send == [0]
        assert reconciler.stats.alerts_sent == 1

    async def test_small_drop_does_not_alert(self, store: FakeStore, identity_calculator):
        store.add_product(SKU, {"42": "150.00"})
        notifier = RecordingNotifier(store)
        reconciler = make_reconciler(store, identity_calculator, alert_threshold=30, notifier=notifier)

        result = await reconciler.update_prices(SKU, [market_variant("42", 120)])

        assert result.updated == 1
        assert notifier.alerts == []

    async def test_no_alert_without_current_price(self, store: FakeStore, identity_calculator):
        store.add_product(SKU, {"42": ""})
        notifier = RecordingNotifier(store)
        reconciler = make_reconciler(store, identity_calculator, notifier=notifier)

        await reconciler.update_prices(SKU, [market_variant("42", 100)])

        assert notifier.alerts == []

    async def test_undeliverable_alert_does_not_block_update(self, store: FakeStore, identity_calculator):
        store.add_product(SKU, {"42": "150.00"})
        notifier = AlertNotifier("webhook", destination="http://hooks.example.com:notaport/alerts")
        reconciler = make_reconciler(store, identity_calculator, alert_threshold=30, notifier=notifier)

        async with respx.mock(assert_all_called=False):
            result = await reconciler.update_prices(SKU, [market_variant("42", 100)])

        assert result.updated == 1
        assert store.variation(SKU, "42")["regular_price"] == "100.00"
        assert notifier.sent == 0
        assert reconciler.stats.alerts_sent == 0

    async def test_zero_threshold_disables_alerts(self, store: FakeStore, identity_calculator):
        store.add_product(SKU, {"42": "150.00"})
        notifier = RecordingNotifier(store)
        reconciler = make_reconciler(store, identity_calculator, alert_threshold=0, notifier=notifier)

        await reconciler.update_prices(SKU, [market_variant("42", 10)])

        assert notifier.alerts == []


class TestZeroStock:
    """out_of_stock push handling."""

    async def test_sets_every_variation_out_of_stock(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "125.00", "43": "125.00"})
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.zero_stock(SKU)

        assert result.updated == 2
        for size in ("42", "43"):
            variation = store.variation(SKU, size)
            assert variation["stock_quantity"] == 0
            assert variation["stock_status"] == "outofstock"

    async def test_already_out_of_stock(self, store: FakeStore, flat_calculator):
        store.add_product(SKU, {"42": "125.00"})
        store.variation(SKU, "42").update(stock_quantity=0, stock_status="outofstock")
        reconciler = make_reconciler(store, flat_calculator)

        result = await reconciler.zero_stock(SKU)

        assert result == UpdateResult(updated=0, skipped=1, errors=0)
        assert store.batch_calls == []

    async def test_missing_product(self, store: FakeStore, flat_calculator):
        reconciler = make_reconciler(store, flat_calculator)

        assert (await reconciler.zero_stock("MISSING")).errors == 1


class TestNotifier:
    """Alert delivery providers."""

    @pytest.fixture
    def alert(self, identity_calculator) -> PriceAlert:
        return PriceAlert(
            sku=SKU,
            product_name="Air Jordan 1",
            size="42",
            old_price=Decimal("150"),
            new_price=Decimal("100"),
            change_pct=Decimal("33.33"),
            breakdown=identity_calculator.calculate_with_breakdown(100),
            threshold=Decimal("30"),
        )

    async def test_log_provider(self, alert):
        notifier = AlertNotifier()

        assert await notifier.send(alert) is True
        assert notifier.sent == 1

    async def test_webhook_provider(self, alert):
        async with respx.mock() as router:
            route = router.post("https://hooks.example.com/alerts").mock(
                return_value=httpx.Response(200)
            )
            notifier = AlertNotifier("webhook", destination="https://hooks.example.com/alerts")

            assert await notifier.send(alert) is True

        payload = json.loads(route.calls.last.request.read())
        assert payload["sku"] == SKU
        assert payload["direction"] == "decrease"
        assert payload["breakdown"]["margin_source"] == "flat"

    async def test_resend_provider(self, alert):
        async with respx.mock() as router:
            route = router.post(RESEND_URL).mock(return_value=httpx.Response(200, json={"id": "e1"}))
            notifier = AlertNotifier(
                "resend", destination="ops@example.com", api_key="re_123", store_name="shop"
            )

            assert await notifier.send(alert) is True

        request = route.calls.last.request
        assert request.headers["authorization"] == "Bearer re_123"
        email = json.loads(request.read())
        assert email["to"] == ["ops@example.com"]
        assert email["subject"].startswith("[shop] Price DECREASE")

    async def test_delivery_failure_returns_false(self, alert):
        async with respx.mock() as router:
            router.post("https://hooks.example.com/alerts").mock(return_value=httpx.Response(500))
            notifier = AlertNotifier("webhook", destination="https://hooks.example.com/alerts")

            assert await notifier.send(alert) is False
        assert notifier.sent == 0

    async def test_resend_without_key(self, alert):
        notifier = AlertNotifier("resend", destination="ops@example.com")

        assert await notifier.send(alert) is False

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            AlertNotifier("pager")
