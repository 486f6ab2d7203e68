"""
Tests for the tracking registry (push subscription bookkeeping).
"""

import json

import pytest

from conftest import FakeSource, FakeStore
from feedsync.http.pacing import Pacer
from feedsync.sync.registry import (
    RegistryState,
    RegistryStore,
    SubscriptionError,
    TrackingRegistry,
)
from feedsync.sync.snapshot_store import StateFileError

CALLBACK = "https://feedsync.example.com/webhooks/kicksdb"


@pytest.fixture
def registry_store(tmp_path) -> RegistryStore:
    return RegistryStore(tmp_path / "sku_registry.json")


@pytest.fixture
def registry(store: FakeStore, source: FakeSource, registry_store) -> TrackingRegistry:
    return TrackingRegistry(store, source, registry_store, CALLBACK, pacer=Pacer(0))


def seed(store: FakeStore, source: FakeSource, *skus: str) -> None:
    for sku in skus:
        store.add_product(sku, {"42": "100.00"}, name=f"Shoe {sku}")
        source.add_product(sku, f"uuid-{sku}")


class TestRegistryStore:
    """Registry file handling."""

    def test_missing_file_is_empty(self, registry_store):
        assert registry_store.load() == RegistryState()

    def test_save_sets_last_sync(self, registry_store):
        registry_store.save(RegistryState(skus={"A": {"kicksdb_id": "u1"}}, webhook_id="wh_1"))

        data = json.loads(registry_store.path.read_text())
        assert data["skus"] == {"A": {"kicksdb_id": "u1"}}
        assert data["webhook_id"] == "wh_1"
        assert data["last_sync"]

    def test_corrupt_file(self, registry_store):
        registry_store.path.write_text("{oops")

        with pytest.raises(StateFileError):
            registry_store.load()

    def test_wrong_shape(self, registry_store):
        registry_store.path.write_text(json.dumps({"skus": ["A", "B"]}))

        with pytest.raises(StateFileError):
            registry_store.load()


class TestSync:
    """Full registry sync against the store's catalog."""

    async def test_first_sync_creates_subscription(self, registry, store, source, registry_store):
        seed(store, source, "A", "B")

        result = await registry.sync()

        assert sorted(result.added) == ["A", "B"]
        assert result.total == 2
        assert source.webhooks == {"wh_1": ["uuid-A", "uuid-B"]}
        state = registry_store.load()
        assert state.webhook_id == "wh_1"
        assert state.skus["A"] == {"wc_id": store.products["A"]["id"], "name": "Shoe A", "kicksdb_id": "uuid-A"}

    async def test_second_sync_appends_and_removes(self, registry, store, source, registry_store):
        seed(store, source, "A", "B")
        await registry.sync()

        del store.products["B"]
        seed(store, source, "C")
        result = await registry.sync()

        assert result.added == ["C"]
        assert result.removed == ["B"]
        assert result.unchanged == 1
        assert source.webhooks["wh_1"] == ["uuid-A", "uuid-C"]
        assert sorted(registry_store.load().skus) == ["A", "C"]
        assert registry.registered_skus() == ["A", "C"]

    async def test_unchanged_catalog_makes_no_subscription_calls(self, registry, store, source):
        seed(store, source, "A")
        await registry.sync()
        lookups = len(source.lookups)

        result = await registry.sync()

        assert result.added == [] and result.removed == []
        assert len(source.lookups) == lookups

    async def test_unresolved_skus_skipped(self, registry, store, source, registry_store):
        seed(store, source, "A")
        store.add_product("UNKNOWN", {"42": "100.00"})

        result = await registry.sync()

        assert result.added == ["A"]
        assert result.unresolved == ["UNKNOWN"]
        assert "UNKNOWN" not in registry_store.load().skus

    async def test_only_published_variable_products(self, registry, store, source):
        seed(store, source, "A")
        store.add_product("DRAFT", {}, status="draft")
        store.add_product("SIMPLE", {}, product_type="simple")

        result = await registry.sync()

        assert result.total == 1

    async def test_failed_subscription_leaves_registry_unchanged(
        self, registry, store, source, registry_store
    ):
        seed(store, source, "A")
        source.fail_subscription = True

        with pytest.raises(SubscriptionError):
            await registry.sync()

        assert not registry_store.path.exists()

    async def test_failed_removal_keeps_applied_adds(self, registry, store, source, registry_store):
        seed(store, source, "A", "B")
        await registry.sync()
        del store.products["B"]
        seed(store, source, "C")
        source.fail_removal = True

        with pytest.raises(SubscriptionError):
            await registry.sync()

        state = registry_store.load()
        assert sorted(state.skus) == ["A", "B", "C"]
        assert state.webhook_id == "wh_1"

        source.fail_removal = False
        result = await registry.sync()

        assert result.added == []
        assert result.removed == ["B"]
        assert source.webhooks == {"wh_1": ["uuid-A", "uuid-C"]}

    async def test_new_subscription_is_not_asked_to_remove(self, registry, store, source, registry_store):
        registry_store.save(RegistryState(skus={"OLD": {"kicksdb_id": "uuid-OLD"}}))
        seed(store, source, "A")
        source.fail_removal = True

        result = await registry.sync()

        assert result.added == ["A"]
        assert result.removed == ["OLD"]
        state = registry_store.load()
        assert state.webhook_id == "wh_1"
        assert sorted(state.skus) == ["A"]

    async def test_missing_callback_url(self, store, source, registry_store):
        seed(store, source, "A")
        registry = TrackingRegistry(store, source, registry_store, "", pacer=Pacer(0))

        with pytest.raises(SubscriptionError, match="callback"):
            await registry.sync()

    async def test_configured_webhook_id_is_reused(self, store, source, registry_store):
        seed(store, source, "A")
        registry = TrackingRegistry(
            store, source, registry_store, CALLBACK, webhook_id="wh_existing", pacer=Pacer(0)
        )

        await registry.sync()

        assert source.webhooks == {"wh_existing": ["uuid-A"]}
        assert registry_store.load().webhook_id == "wh_existing"

    async def test_corrupt_registry_aborts_before_remote_calls(self, registry, store, source, registry_store):
        seed(store, source, "A")
        registry_store.path.write_text("not json")

        async def must_not_be_called(**kwargs):
            raise AssertionError("store was queried")

        store.list_products = must_not_be_called

        with pytest.raises(StateFileError):
            await registry.sync()

    async def test_dry_run(self, store, source, registry_store):
        seed(store, source, "A")
        registry = TrackingRegistry(store, source, registry_store, CALLBACK, pacer=Pacer(0), dry_run=True)

        result = await registry.sync()

        assert result.added == ["A"]
        assert source.webhooks == {}
        assert not registry_store.path.exists()


class TestSingle:
    """register_single / unregister_single from product webhooks."""

    async def test_register_single(self, registry, source, registry_store):
        source.add_product("NEW", "uuid-NEW")

        assert await registry.register_single("NEW", {"wc_id": 5, "name": "New shoe"}) is True

        state = registry_store.load()
        assert state.skus["NEW"] == {"wc_id": 5, "name": "New shoe", "kicksdb_id": "uuid-NEW"}
        assert source.webhooks == {"wh_1": ["uuid-NEW"]}

    async def test_register_twice_is_idempotent(self, registry, source):
        source.add_product("NEW", "uuid-NEW")
        await registry.register_single("NEW")

        assert await registry.register_single("NEW") is True
        assert source.webhooks["wh_1"] == ["uuid-NEW"]

    async def test_register_unknown(self, registry, registry_store):
        assert await registry.register_single("NOPE") is False
        assert not registry_store.path.exists()

    async def test_register_subscription_failure(self, registry, source, registry_store):
        source.add_product("NEW", "uuid-NEW")
        source.fail_subscription = True

        assert await registry.register_single("NEW") is False
        assert not registry_store.path.exists()

    async def test_unregister_single(self, registry, source, registry_store):
        source.add_product("A", "uuid-A")
        source.add_product("B", "uuid-B")
        await registry.register_single("A")
        await registry.register_single("B")

        assert await registry.unregister_single("A") is True

        assert registry.registered_skus() == ["B"]
        assert source.webhooks["wh_1"] == ["uuid-B"]

    async def test_unregister_unknown(self, registry):
        assert await registry.unregister_single("NOPE") is False
