"""
Command-line entry points (cron jobs and manual runs).

    feedsync-reconcile [--dry-run] [--verbose] [--sku=X] [--limit=N] [--skip-registry]
    feedsync-delta     [--dry-run] [--check-only] [--force-full] [--feed=FILE] [--limit=N]
    feedsync-webhooks  [--limit=N]

Exit code 0 when the run completed (even with per-item errors), 1 on a
fatal or configuration error.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .config import ConfigError, settings
from .db import TriggerType
from .dependencies import build_context
from .sync.delta import DeltaSyncOptions
from .sync.runner import ReconcileOptions, SyncError, failed_lines, reconcile

logger = logging.getLogger("feedsync.cli")


def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def _trigger(manual: bool) -> TriggerType:
    return TriggerType.MANUAL if manual else TriggerType.SCHEDULER


# ===== Reconcile =====

async def _reconcile(args: argparse.Namespace) -> int:
    try:
        context = await build_context(settings, dry_run=args.dry_run)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    options = ReconcileOptions(
        dry_run=args.dry_run,
        verbose=args.verbose,
        sku=args.sku,
        limit=args.limit,
        skip_registry=args.skip_registry,
    )

    try:
        summary = await reconcile(
            context.source,
            context.reconciler,
            context.registry,
            options,
            db=context.db,
            pacer=context.pacer,
            triggered_by=_trigger(args.manual),
        )
    except SyncError as e:
        logger.error(f"Reconcile failed: {e}")
        return 1
    finally:
        await context.close()

    registry = summary.registry
    logger.info("=" * 40)
    if registry:
        logger.info(
            f"Registry: +{len(registry.added)} / -{len(registry.removed)}, "
            f"{registry.unchanged} unchanged, {len(registry.unresolved)} unresolved"
        )
    elif summary.registry_error:
        logger.info(f"Registry: FAILED ({summary.registry_error})")
    logger.info(
        f"SKUs: {summary.skus_total} total, {summary.skus_with_prices} with prices, "
        f"{summary.skus_without_prices} without"
    )
    logger.info(
        f"Variations: {summary.totals.updated} updated, {summary.totals.skipped} skipped, "
        f"{summary.totals.errors} errors"
    )
    logger.info(f"Alerts: {summary.alerts_sent}")
    for line in failed_lines(summary):
        logger.error(f"  {line}")
    return 0


def build_reconcile_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedsync-reconcile",
        description="Sync the SKU registry, then reconcile store prices with KicksDB.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Log changes without writing")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--sku", help="Reconcile a single SKU")
    parser.add_argument("--limit", type=int, help="Reconcile at most N SKUs")
    parser.add_argument("--skip-registry", action="store_true", help="Price pass only")
    parser.add_argument("--manual", action="store_true", help="Record the run as manual, not scheduled")
    return parser


def reconcile_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_reconcile_parser().parse_args(argv)
    configure_logging(args.verbose)
    return asyncio.run(_reconcile(args))


# ===== Delta sync =====

async def _delta(args: argparse.Namespace) -> int:
    try:
        context = await build_context(settings, dry_run=args.dry_run)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    options = DeltaSyncOptions(
        dry_run=args.dry_run,
        check_only=args.check_only,
        force_full=args.force_full,
        limit=args.limit,
        feed_file=args.feed,
    )

    try:
        summary = await context.delta.run(options, _trigger(args.manual))
    except SyncError as e:
        logger.error(f"Delta sync failed: {e}")
        return 1
    finally:
        await context.close()

    published = summary.published
    if published:
        logger.info(
            f"Published: {published.products_created} created, "
            f"{published.products_updated} updated, {published.products_zeroed} zeroed, "
            f"{published.errors} errors"
        )
        for sku in published.error_skus:
            logger.error(f"  Failed: {sku}")
    return 0


def build_delta_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedsync-delta",
        description="Diff the feed against the saved baseline and publish only the changes.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show changes without writing")
    parser.add_argument("--check-only", action="store_true", help="Only report the diff")
    parser.add_argument("--force-full", action="store_true", help="Treat every product as new")
    parser.add_argument("--feed", help="Read the feed from a JSON file instead of FEED_SOURCE")
    parser.add_argument("--limit", type=int, help="Process at most N products")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--manual", action="store_true", help="Record the run as manual, not scheduled")
    return parser


def delta_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_delta_parser().parse_args(argv)
    configure_logging(args.verbose)
    return asyncio.run(_delta(args))


# ===== Webhook journal =====

async def _webhooks(args: argparse.Namespace) -> int:
    try:
        context = await build_context(settings)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    try:
        processed = await context.ingress.process_pending(args.limit)
    finally:
        await context.close()

    logger.info(f"Processed {processed} pending webhook events")
    return 0


def webhooks_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="feedsync-webhooks",
        description="Retry journaled push events that are pending or failed.",
    )
    parser.add_argument("--limit", type=int, default=50, help="Events per run")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    return asyncio.run(_webhooks(args))


if __name__ == "__main__":
    sys.exit(reconcile_main())
