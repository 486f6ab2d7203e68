"""
Wiring: builds every component from Settings.

The web app keeps one context for its lifetime; the CLIs build one per run.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

from .config import ConfigError, Settings, settings
from .db import SQLiteDatabase
from .goldensneakers import GoldenSneakersClient, GoldenSneakersFeedAdapter
from .http.pacing import Pacer
from .ingress import EventIngress, ProductListener
from .kicksdb.adapter import KicksDbFeedAdapter
from .kicksdb.client import KicksDbClient
from .pricing.alerts import AlertNotifier
from .pricing.margin import MarginCalculator
from .pricing.reconciler import PriceReconciler
from .sync.delta import DeltaSync
from .sync.feeds import FeedAdapter
from .sync.publisher import CatalogPublisher
from .sync.registry import RegistryStore, TrackingRegistry
from .sync.snapshot_store import SnapshotStore
from .woocommerce.client import WooCommerceClient

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Everything a run needs, built once from configuration."""
    settings: Settings
    db: SQLiteDatabase
    source: KicksDbClient
    store: WooCommerceClient
    pacer: Pacer
    calculator: MarginCalculator
    reconciler: PriceReconciler
    registry: TrackingRegistry
    ingress: EventIngress
    listener: ProductListener
    delta: DeltaSync
    feed_client: Optional[GoldenSneakersClient] = None

    async def close(self) -> None:
        await self.source.close()
        if self.feed_client:
            await self.feed_client.close()
        await self.store.close()
        await self.db.close()


async def build_context(
    config: Settings = settings,
    dry_run: bool = False,
) -> SyncContext:
    """
    Validate configuration and build the components.

    Raises:
        ConfigError: On missing credentials or malformed pricing options,
            before any remote call
    """
    config.require_source()
    config.require_store()
    config.require_feed()
    config.validate_alerts()
    margin = config.margin_config()

    client_options = {
        "timeout": config.request_timeout,
        "max_retries": config.max_retries,
    }
    source = KicksDbClient(
        config.kicksdb_api_key,
        base_url=config.kicksdb_base_url,
        market=config.kicksdb_market,
        **client_options,
    )
    store = WooCommerceClient(
        config.wc_url,
        config.wc_consumer_key,
        config.wc_consumer_secret,
        version=config.wc_api_version,
        **client_options,
    )

    pacer = Pacer(config.request_interval)
    calculator = MarginCalculator(margin)
    notifier = AlertNotifier(
        provider=config.alert_provider,
        destination=config.alert_destination or None,
        api_key=config.resend_api_key or None,
        store_name=config.store_name,
    )
    reconciler = PriceReconciler(
        store,
        calculator,
        alert_threshold=config.price_alert_threshold,
        notifier=notifier,
        batch_size=config.batch_size,
        dry_run=dry_run,
    )
    registry = TrackingRegistry(
        store,
        source,
        RegistryStore(config.registry_path),
        config.webhook_callback_url,
        webhook_id=config.kicksdb_webhook_id or None,
        pacer=pacer,
        dry_run=dry_run,
    )

    feed_client: Optional[GoldenSneakersClient] = None
    adapter: FeedAdapter
    if config.feed_source.strip().lower() == "goldensneakers":
        feed_client = GoldenSneakersClient(
            config.gs_api_key,
            base_url=config.gs_base_url,
            rounding_type=config.gs_rounding_type,
            markup_percentage=config.gs_markup_percentage,
            vat_percentage=config.gs_vat_percentage,
            **client_options,
        )
        adapter = GoldenSneakersFeedAdapter(feed_client)
    else:
        adapter = KicksDbFeedAdapter(source, calculator, pacer)

    db = SQLiteDatabase(config.database_path)
    await db.initialize()

    delta = DeltaSync(
        SnapshotStore(config.baseline_path, config.diff_path),
        CatalogPublisher(store, calculator, config.batch_size),
        adapter=adapter,
        registry=registry,
        db=db,
    )

    return SyncContext(
        settings=config,
        db=db,
        source=source,
        store=store,
        pacer=pacer,
        calculator=calculator,
        reconciler=reconciler,
        registry=registry,
        ingress=EventIngress(reconciler, config.webhook_secret, journal=db),
        listener=ProductListener(registry, config.wc_webhook_secret),
        delta=delta,
        feed_client=feed_client,
    )


# Global instance (initialized on startup)
_context: Optional[SyncContext] = None


async def init_dependencies() -> None:
    """Initialize global dependencies. Called on app startup."""
    global _context
    try:
        _context = await build_context(settings)
    except ConfigError as e:
        logger.error(f"Configuration error, sync endpoints disabled: {e}")
        _context = None


async def close_dependencies() -> None:
    """Close global dependencies. Called on app shutdown."""
    global _context
    if _context:
        await _context.close()
        _context = None


def require_context() -> SyncContext:
    """FastAPI dependency: the sync context, or 503 when it is not configured."""
    if _context is None:
        raise HTTPException(status_code=503, detail="Sync is not configured")
    return _context


def require_admin(authorization: Optional[str] = Header(None)) -> None:
    """FastAPI dependency: bearer ADMIN_TOKEN for the /api routes."""
    token = settings.admin_token
    if not token:
        raise HTTPException(status_code=403, detail="Admin API disabled (ADMIN_TOKEN not set)")
    provided = (authorization or "").removeprefix("Bearer ").strip()
    if not hmac.compare_digest(provided, token):
        raise HTTPException(status_code=401, detail="Not authenticated")
