"""
Tracking registry: which SKUs are subscribed to KicksDB push notifications.

The registry is a JSON file:

    {"skus": {"<sku>": {...metadata}}, "webhook_id": "...", "last_sync": "..."}

It is read once per cycle and replaced as a whole at the end of the cycle.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..http.client import ApiClientError
from ..http.pacing import Pacer
from ..kicksdb.client import KicksDbClient
from .snapshot_store import StateFileError, atomic_write_json, read_json
from ..woocommerce.client import WooCommerceClient


class SubscriptionError(Exception):
    """A push subscription create/update call failed. The registry is unchanged."""
    pass


@dataclass
class RegistryState:
    """Persisted registry contents."""

    skus: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    webhook_id: Optional[str] = None
    last_sync: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skus": self.skus,
            "webhook_id": self.webhook_id,
            "last_sync": self.last_sync,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryState":
        skus = data.get("skus") or {}
        if not isinstance(skus, dict):
            raise ValueError("'skus' must be an object")
        webhook_id = data.get("webhook_id")
        return cls(
            skus={str(k): dict(v or {}) for k, v in skus.items()},
            webhook_id=str(webhook_id) if webhook_id else None,
            last_sync=data.get("last_sync"),
        )


class RegistryStore:
    """Loads and atomically saves the registry file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> RegistryState:
        """
        Read the registry. A missing file is an empty registry.

        Raises:
            StateFileError: If the file exists but is corrupt
        """
        if not self.path.exists():
            return RegistryState()
        data = read_json(self.path)
        if not isinstance(data, dict):
            raise StateFileError(f"Registry {self.path} must hold a JSON object")
        try:
            return RegistryState.from_dict(data)
        except (TypeError, ValueError) as e:
            raise StateFileError(f"Registry {self.path} is malformed: {e}") from e

    def save(self, state: RegistryState) -> None:
        state.last_sync = datetime.now(timezone.utc).isoformat()
        atomic_write_json(self.path, state.to_dict())


@dataclass
class RegistrySyncResult:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    unchanged: int = 0
    unresolved: List[str] = field(default_factory=list)
    total: int = 0


class TrackingRegistry:
    """
    Keeps the KicksDB push subscription in step with the store's catalog.

    The subscription is created lazily on the first registration and reused
    afterwards. Every mutation (full sync or single add/remove) holds one
    lock, so two triggers can never create two subscriptions.
    """

    def __init__(
        self,
        store: WooCommerceClient,
        source: KicksDbClient,
        registry_store: RegistryStore,
        callback_url: str,
        *,
        webhook_id: Optional[str] = None,
        pacer: Optional[Pacer] = None,
        events: Iterable[str] = ("price_change",),
        dry_run: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            store: WooCommerce client, the authoritative SKU list
            source: KicksDB client, resolves SKUs and owns the subscription
            registry_store: Registry file
            callback_url: URL KicksDB posts push events to
            webhook_id: Subscription id to use when the file has none
            pacer: Spacing between KicksDB lookups
            events: Push event types to subscribe to
            dry_run: Compute changes without remote writes or persisting
            logger: Logger to use instead of the module logger
        """
        self.store = store
        self.source = source
        self.registry_store = registry_store
        self.callback_url = callback_url
        self.default_webhook_id = webhook_id
        self.pacer = pacer or Pacer()
        self.events = list(events)
        self.dry_run = dry_run
        self.log = logger or logging.getLogger(__name__)
        self._lock = asyncio.Lock()

    def _load(self) -> RegistryState:
        state = self.registry_store.load()
        if not state.webhook_id and self.default_webhook_id:
            state.webhook_id = self.default_webhook_id
        return state

    def registered_skus(self) -> List[str]:
        return sorted(self._load().skus)

    async def fetch_store_skus(self) -> Dict[str, Dict[str, Any]]:
        """Published variable products of the store, keyed by SKU."""
        products = await self.store.list_products(status="publish", product_type="variable")
        skus: Dict[str, Dict[str, Any]] = {}
        for product in products:
            sku = (product.get("sku") or "").strip()
            if sku:
                skus[sku] = {"wc_id": product.get("id"), "name": product.get("name", "")}
        return skus

    async def sync(self) -> RegistrySyncResult:
        """
        Reconcile the subscription with the store's current SKUs.

        Raises:
            SubscriptionError: If creating or editing the subscription failed.
                A failed add persists nothing; a failed removal keeps the
                adds already applied. The next run retries the rest
            StateFileError: If the registry file is corrupt
        """
        async with self._lock:
            state = self._load()
            current = await self.fetch_store_skus()

            added = sorted(set(current) - set(state.skus))
            removed = sorted(set(state.skus) - set(current))
            result = RegistrySyncResult(
                unchanged=len(set(current) & set(state.skus)),
                total=len(current),
            )

            self.log.info(
                f"Registry sync: {len(current)} store SKUs, {len(state.skus)} registered, "
                f"{len(added)} to add, {len(removed)} to remove"
            )

            if self.dry_run:
                result.added, result.removed = added, removed
                self.log.info("[DRY RUN] Registry not modified")
                return result

            previous_webhook_id = state.webhook_id

            if added:
                resolved = await self._resolve(added, current, result)
                if resolved:
                    await self._subscribe(state, list(resolved.values()))
                    for sku, source_id in resolved.items():
                        state.skus[sku] = {**current[sku], "kicksdb_id": source_id}
                        result.added.append(sku)
                    if removed:
                        # The subscription now holds the new ids; record them
                        # before the removal can fail
                        self.registry_store.save(state)

            if removed:
                source_ids = [
                    state.skus[sku].get("kicksdb_id") for sku in removed
                ]
                source_ids = [sid for sid in source_ids if sid]
                # A subscription created in this cycle never held the removed ids
                if source_ids and previous_webhook_id:
                    await self._unsubscribe(state, source_ids)
                for sku in removed:
                    state.skus.pop(sku, None)
                    result.removed.append(sku)

            # Refresh metadata for SKUs that stayed
            for sku, meta in current.items():
                if sku in state.skus:
                    state.skus[sku].update(meta)

            self.registry_store.save(state)
            self.log.info(
                f"Registry saved: {len(state.skus)} SKUs, "
                f"+{len(result.added)} / -{len(result.removed)}, "
                f"{len(result.unresolved)} unresolved"
            )
            return result

    async def register_single(
        self, sku: str, metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Add one SKU to the subscription (e.g. a product was just created).

        Returns:
            True if the SKU is registered afterwards
        """
        async with self._lock:
            state = self._load()
            if sku in state.skus:
                self.log.debug(f"{sku} already registered")
                return True

            if self.dry_run:
                self.log.info(f"[DRY RUN] Would register {sku}")
                return False

            result = RegistrySyncResult()
            resolved = await self._resolve([sku], {sku: metadata or {}}, result)
            if not resolved:
                return False

            try:
                await self._subscribe(state, [resolved[sku]])
            except SubscriptionError as e:
                self.log.error(str(e))
                return False

            state.skus[sku] = {**(metadata or {}), "kicksdb_id": resolved[sku]}
            self.registry_store.save(state)
            self.log.info(f"Registered {sku} for price webhooks")
            return True

    async def unregister_single(self, sku: str) -> bool:
        """
        Remove one SKU from the subscription.

        Returns:
            True if the SKU was registered and is now removed
        """
        async with self._lock:
            state = self._load()
            entry = state.skus.get(sku)
            if entry is None:
                self.log.debug(f"{sku} not registered")
                return False

            if self.dry_run:
                self.log.info(f"[DRY RUN] Would unregister {sku}")
                return False

            source_id = entry.get("kicksdb_id")
            if source_id and state.webhook_id:
                try:
                    await self._unsubscribe(state, [source_id])
                except SubscriptionError as e:
                    self.log.error(str(e))
                    return False

            del state.skus[sku]
            self.registry_store.save(state)
            self.log.info(f"Unregistered {sku} from price webhooks")
            return True

    async def _resolve(
        self,
        skus: List[str],
        metadata: Dict[str, Dict[str, Any]],
        result: RegistrySyncResult,
    ) -> Dict[str, str]:
        """Map SKUs to KicksDB product ids, one paced lookup each."""
        resolved: Dict[str, str] = {}
        for sku in skus:
            await self.pacer.wait()
            try:
                product = await self.source.get_product(sku)
            except ApiClientError as e:
                self.log.warning(f"  Could not resolve {sku}: {e}")
                result.unresolved.append(sku)
                continue

            if not product or not product.get("id"):
                self.log.warning(f"  Not found in KicksDB, skipping: {sku}")
                result.unresolved.append(sku)
                continue

            resolved[sku] = str(product["id"])
            self.log.debug(f"  Resolved {sku} -> {product['id']}")
        return resolved

    async def _subscribe(self, state: RegistryState, product_ids: List[str]) -> None:
        try:
            if state.webhook_id:
                await self.source.add_products_to_webhook(state.webhook_id, product_ids)
                self.log.info(f"Added {len(product_ids)} products to webhook {state.webhook_id}")
                return

            if not self.callback_url:
                raise SubscriptionError("No callback URL configured for the push subscription")
            webhook = await self.source.register_webhook(
                self.callback_url, product_ids, self.events
            )
        except ApiClientError as e:
            raise SubscriptionError(f"Failed to update push subscription: {e}") from e

        webhook_id = webhook.get("id") if isinstance(webhook, dict) else None
        if not webhook_id:
            raise SubscriptionError("Push subscription created without an id")
        state.webhook_id = str(webhook_id)
        self.log.info(f"Created webhook {state.webhook_id} with {len(product_ids)} products")

    async def _unsubscribe(self, state: RegistryState, product_ids: List[str]) -> None:
        try:
            await self.source.remove_products_from_webhook(state.webhook_id, product_ids)
        except ApiClientError as e:
            raise SubscriptionError(f"Failed to remove products from webhook: {e}") from e
        self.log.info(f"Removed {len(product_ids)} products from webhook {state.webhook_id}")
