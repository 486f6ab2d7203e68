"""
Delta sync: the poll path of the diff engine.

Load the current feed, diff it against the saved baseline, push only the
changes to the store, then replace the baseline.
"""

import json
import logging
import time
import traceback
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..db import RunKind, RunStatus, SQLiteDatabase, TriggerType
from ..db.models import utcnow
from .diff import diff
from .feeds import FeedAdapter
from .models import DiffResult, EntitySnapshot
from .publisher import CatalogPublisher, PublishResult
from .registry import TrackingRegistry
from .runner import SyncError
from .snapshot_store import SnapshotStore


@dataclass
class DeltaSyncOptions:
    dry_run: bool = False
    check_only: bool = False
    force_full: bool = False
    limit: Optional[int] = None
    feed_file: Optional[str] = None


@dataclass
class DeltaSyncSummary:
    source: str = "api"
    current_count: int = 0
    baseline_count: Optional[int] = None
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    skipped: int = 0
    published: Optional[PublishResult] = None
    baseline_saved: bool = False
    duration_seconds: float = 0.0
    log_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return self.added + self.updated + self.removed


class DeltaSync:
    """
    Runs one delta sync.

    The baseline is written once, after publishing finishes. Products whose
    publish failed keep their previous baseline entry so the next run sees
    them as changed again.
    """

    def __init__(
        self,
        snapshot_store: SnapshotStore,
        publisher: CatalogPublisher,
        adapter: Optional[FeedAdapter] = None,
        registry: Optional[TrackingRegistry] = None,
        db: Optional[SQLiteDatabase] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.snapshot_store = snapshot_store
        self.publisher = publisher
        self.adapter = adapter
        self.registry = registry
        self.db = db
        self.log = logger or logging.getLogger(__name__)

    async def run(
        self,
        options: Optional[DeltaSyncOptions] = None,
        triggered_by: TriggerType = TriggerType.MANUAL,
    ) -> DeltaSyncSummary:
        """
        Execute the delta sync.

        Raises:
            SyncError: On fatal errors (corrupt baseline, unreadable feed,
                malformed entities); nothing is written in that case
        """
        options = options or DeltaSyncOptions()
        started = time.monotonic()
        summary = DeltaSyncSummary(source=options.feed_file or "api")

        log = None
        if self.db:
            log = await self.db.create_log(RunKind.DELTA, triggered_by, options.dry_run)
            summary.log_id = log.id

        self._banner(options)

        try:
            await self._run(options, summary)
        except Exception as e:
            self.log.error(f"Delta sync aborted: {e}")
            self.log.debug(traceback.format_exc())
            if log:
                await self.db.update_log(
                    log.id,
                    finished_at=utcnow(),
                    status=RunStatus.FAILED,
                    error_message=str(e),
                    error_details=traceback.format_exc(),
                )
            if isinstance(e, SyncError):
                raise
            raise SyncError(f"Delta sync failed: {e}") from e

        summary.duration_seconds = round(time.monotonic() - started, 1)
        self.log.info(f"Done in {summary.duration_seconds}s")

        if log:
            published = summary.published
            await self.db.update_log(
                log.id,
                finished_at=utcnow(),
                status=RunStatus.SUCCESS,
                products_processed=summary.current_count,
                items_created=published.products_created if published else summary.added,
                items_updated=(
                    published.products_updated + published.products_zeroed
                    if published else summary.updated + summary.removed
                ),
                items_skipped=summary.unchanged + summary.skipped,
                items_errored=published.errors if published else 0,
            )
        return summary

    async def _run(self, options: DeltaSyncOptions, summary: DeltaSyncSummary) -> None:
        # Fatal checks first: nothing remote happens if the baseline is corrupt
        baseline = self.snapshot_store.load()

        current = await self._load_feed(options)
        if options.limit:
            current = current[:options.limit]
        summary.current_count = len(current)
        self.log.info(f"   {len(current)} products")

        if not current:
            raise SyncError("Feed is empty, refusing to diff against the baseline")

        if baseline is None:
            self.log.info("   No baseline - first run, all products are new")
        else:
            summary.baseline_count = len(baseline)
            saved_at = self.snapshot_store.saved_at()
            self.log.info(
                f"   Baseline: {len(baseline)} products"
                f"{f' from {saved_at:%Y-%m-%d %H:%M:%S}' if saved_at else ''}"
            )

        compare_against = baseline
        if baseline is not None and options.limit:
            # A partial feed must not mark the rest of the catalog as removed
            limited_ids = {e.id for e in current}
            compare_against = [e for e in baseline if e.id in limited_ids]

        result = diff(current, compare_against, force_full=options.force_full)
        self._fill_summary(summary, result)
        self._print_summary(result)

        if result.total_changes == 0:
            self.log.info("Nothing to sync")
            return

        if options.check_only:
            self.log.info("[CHECK ONLY] No changes applied")
            return

        if options.dry_run:
            for entity in result.changed:
                self.log.info(
                    f"  [DRY RUN] {entity.action.value:8} {entity.id} "
                    f"({len(entity.variants)} sizes)"
                )
            return

        self.snapshot_store.save_diff(result.changed)

        self.log.info("Publishing changes...")
        summary.published = await self.publisher.publish(result)

        next_baseline = self._next_baseline(
            current, baseline, set(summary.published.error_skus), partial=bool(options.limit)
        )
        self.snapshot_store.replace(next_baseline)
        summary.baseline_saved = True

    async def _load_feed(self, options: DeltaSyncOptions) -> List[EntitySnapshot]:
        if options.feed_file:
            self.log.info(f"Loading feed from {options.feed_file}...")
            return load_feed_file(options.feed_file)

        if self.adapter is None:
            raise SyncError("No feed file given and no feed adapter configured")

        if not self.adapter.requires_skus:
            self.log.info(f"Fetching feed from {self.adapter.source_name}...")
            return await self.adapter.fetch_snapshots()

        if self.registry is None:
            raise SyncError(f"{self.adapter.source_name} feed needs the tracking registry")
        skus = self.registry.registered_skus()
        if options.limit:
            skus = skus[:options.limit]
        self.log.info(f"Fetching feed from {self.adapter.source_name} for {len(skus)} SKUs...")
        return await self.adapter.fetch_snapshots(skus)

    @staticmethod
    def _next_baseline(
        current: List[EntitySnapshot],
        baseline: Optional[List[EntitySnapshot]],
        failed_skus: set,
        partial: bool = False,
    ) -> List[EntitySnapshot]:
        previous: Dict[str, EntitySnapshot] = {e.id: e for e in baseline or [] if e.id}

        merged: Dict[str, EntitySnapshot] = dict(previous) if partial else {}
        for entity in current:
            if not entity.id:
                continue
            if entity.id in failed_skus:
                if entity.id in previous:
                    merged[entity.id] = previous[entity.id]
                else:
                    merged.pop(entity.id, None)
                continue
            merged[entity.id] = entity

        # Removed products that failed to zero stay in the baseline
        for sku in failed_skus:
            if sku in previous and sku not in merged:
                merged[sku] = previous[sku]

        return list(merged.values())

    def _fill_summary(self, summary: DeltaSyncSummary, result: DiffResult) -> None:
        summary.added = len(result.added)
        summary.updated = len(result.updated)
        summary.removed = len(result.removed)
        summary.unchanged = result.unchanged_count
        summary.skipped = result.skipped_count

    def _banner(self, options: DeltaSyncOptions) -> None:
        self.log.info("================================")
        self.log.info("  WooCommerce Delta Sync")
        self.log.info("================================")
        if options.feed_file:
            source = options.feed_file
        elif self.adapter is not None:
            source = f"{self.adapter.source_name} API"
        else:
            source = "none"
        self.log.info(f"  Source: {source}")
        if options.dry_run:
            self.log.warning("  DRY RUN")
        if options.check_only:
            self.log.info("  CHECK ONLY")
        if options.force_full:
            self.log.warning("  FORCE FULL")

    def _print_summary(self, result: DiffResult) -> None:
        self.log.info(f"   New:       {len(result.added)}")
        self.log.info(f"   Updated:   {len(result.updated)}")
        self.log.info(f"   Removed:   {len(result.removed)}")
        self.log.info(f"   Unchanged: {result.unchanged_count}")
        if result.skipped_count:
            self.log.warning(f"   Skipped (no SKU): {result.skipped_count}")


def load_feed_file(path: str) -> List[EntitySnapshot]:
    """
    Read a JSON feed file: a list of products in the baseline layout.

    Raises:
        SyncError: If the file is missing or not a list of product objects
    """
    feed_path = Path(path)
    if not feed_path.exists():
        raise SyncError(f"Feed file not found: {path}")
    try:
        data = json.loads(feed_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise SyncError(f"Feed file {path} is not valid JSON: {e}") from e

    if isinstance(data, dict) and isinstance(data.get("products"), list):
        data = data["products"]
    if not isinstance(data, list):
        raise SyncError(f"Feed file {path} must hold a list of products")

    try:
        return [EntitySnapshot.from_dict(item) for item in data]
    except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise SyncError(f"Feed file {path} has a malformed product: {e}") from e
