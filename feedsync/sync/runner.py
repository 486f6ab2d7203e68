"""
Reconcile runner: registry sync followed by a price pass over every
tracked SKU.
"""

import logging
import time
import traceback
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..db import RunKind, RunLog, RunStatus, SQLiteDatabase, TriggerType
from ..db.models import utcnow
from ..http.client import ApiClientError
from ..http.pacing import Pacer
from ..kicksdb.client import KicksDbClient
from ..pricing.reconciler import PriceReconciler, UpdateResult
from .registry import (
    RegistrySyncResult,
    SubscriptionError,
    TrackingRegistry,
)

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Fatal error that aborted a run."""
    pass


@dataclass
class ReconcileOptions:
    dry_run: bool = False
    verbose: bool = False
    sku: Optional[str] = None
    limit: Optional[int] = None
    skip_registry: bool = False


@dataclass
class ReconcileSummary:
    """Run-level counters. The only externally observed outcome of a run."""
    registry: Optional[RegistrySyncResult] = None
    registry_error: Optional[str] = None
    skus_total: int = 0
    skus_with_prices: int = 0
    skus_without_prices: int = 0
    totals: UpdateResult = field(default_factory=UpdateResult)
    alerts_sent: int = 0
    duration_seconds: float = 0.0
    log_id: Optional[str] = None
    failed_skus: Dict[str, str] = field(default_factory=dict)


async def reconcile(
    source: KicksDbClient,
    reconciler: PriceReconciler,
    registry: Optional[TrackingRegistry] = None,
    options: Optional[ReconcileOptions] = None,
    db: Optional[SQLiteDatabase] = None,
    pacer: Optional[Pacer] = None,
    triggered_by: TriggerType = TriggerType.MANUAL,
) -> ReconcileSummary:
    """
    Run one full reconciliation.

    Steps:
    1. Registry sync (unless skip_registry); a subscription failure is
       logged and the price pass still runs
    2. Batch market price lookup for the tracked SKUs
    3. update_prices for each SKU

    Per-SKU errors only increment counters.

    Raises:
        SyncError: On fatal errors (corrupt registry, failed price lookup);
            nothing is persisted in that case
    """
    options = options or ReconcileOptions()
    summary = ReconcileSummary()
    started = time.monotonic()

    log: Optional[RunLog] = None
    if db:
        log = await db.create_log(RunKind.RECONCILE, triggered_by, options.dry_run)
        summary.log_id = log.id

    logger.info(f"Starting reconcile (triggered by {triggered_by.value})")
    if options.dry_run:
        logger.warning("DRY RUN - no changes will be written")
    logger.info(f"Pricing: {reconciler.calculator.config.summary()}")

    try:
        # Reading the registry first surfaces a corrupt file before any remote call
        tracked = registry.registered_skus() if registry else []

        if registry and not options.skip_registry and not options.sku:
            try:
                summary.registry = await registry.sync()
                tracked = registry.registered_skus()
            except (SubscriptionError, ApiClientError) as e:
                summary.registry_error = str(e)
                logger.error(f"Registry sync failed, continuing with price pass: {e}")

        skus = [options.sku] if options.sku else tracked
        if options.limit:
            skus = skus[:options.limit]
        summary.skus_total = len(skus)

        if not skus:
            logger.info("No tracked SKUs to reconcile")
        else:
            logger.info(f"Fetching market prices for {len(skus)} SKUs...")
            try:
                market = await source.batch_get_prices(skus, pacer=pacer)
            except ApiClientError as e:
                raise SyncError(f"Market price lookup failed: {e}") from e

            reconciler.reset_stats()
            for idx, sku in enumerate(skus, start=1):
                item = market.get(sku)
                variants = (item or {}).get("variants") or []
                if not variants:
                    summary.skus_without_prices += 1
                    logger.debug(f"[{idx}/{len(skus)}] No market data for {sku}")
                    continue

                summary.skus_with_prices += 1
                logger.info(f"[{idx}/{len(skus)}] {sku}: {len(variants)} variants")
                result = await reconciler.update_prices(sku, variants)
                summary.totals = summary.totals + result

            summary.alerts_sent = reconciler.stats.alerts_sent
            summary.failed_skus = dict(reconciler.stats.errors_by_sku)

    except Exception as e:
        logger.error(f"Reconcile aborted: {e}")
        logger.debug(traceback.format_exc())
        if log:
            await db.update_log(
                log.id,
                finished_at=utcnow(),
                status=RunStatus.FAILED,
                error_message=str(e),
                error_details=traceback.format_exc(),
            )
        if isinstance(e, SyncError):
            raise
        raise SyncError(f"Reconcile failed: {e}") from e

    summary.duration_seconds = round(time.monotonic() - started, 1)
    logger.info(
        f"Reconcile completed in {summary.duration_seconds}s: "
        f"{summary.totals.updated} updated, {summary.totals.skipped} skipped, "
        f"{summary.totals.errors} errors, {summary.alerts_sent} alerts"
    )

    if log:
        await db.update_log(
            log.id,
            finished_at=utcnow(),
            status=RunStatus.SUCCESS,
            products_processed=summary.skus_with_prices,
            items_updated=summary.totals.updated,
            items_skipped=summary.totals.skipped,
            items_errored=summary.totals.errors,
            error_message=summary.registry_error,
        )
    return summary


@dataclass
class RunResult:
    """Outcome of a background run."""
    summary: Optional[ReconcileSummary]
    error: Optional[str]

    @property
    def success(self) -> bool:
        return self.error is None


async def run_reconcile_safely(*args, **kwargs) -> RunResult:
    """reconcile() for background tasks: errors are logged, never raised."""
    try:
        return RunResult(summary=await reconcile(*args, **kwargs), error=None)
    except SyncError as e:
        return RunResult(summary=None, error=str(e))
    except Exception as e:
        logger.exception("Unexpected error during reconcile")
        return RunResult(summary=None, error=f"Unexpected error: {e}")


def failed_lines(summary: ReconcileSummary) -> List[str]:
    return [f"{sku}: {error}" for sku, error in sorted(summary.failed_skus.items())]
