"""
Sync trigger API routes.
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..db import RunKind, RunLog, TriggerType
from ..dependencies import SyncContext, require_admin, require_context
from ..sync.delta import DeltaSyncOptions
from ..sync.runner import ReconcileOptions, SyncError, run_reconcile_safely

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_admin)])

# Background runs keep a reference so they are not garbage collected
_running: set = set()


class ReconcileRequest(BaseModel):
    sku: Optional[str] = None
    limit: Optional[int] = None
    skip_registry: bool = False


class SyncResponse(BaseModel):
    message: str
    success: bool


def _spawn(coro) -> None:
    task = asyncio.create_task(coro)
    _running.add(task)
    task.add_done_callback(_running.discard)


@router.post("/reconcile", response_model=SyncResponse)
async def trigger_reconcile(
    body: Optional[ReconcileRequest] = None,
    context: SyncContext = Depends(require_context),
):
    """Start a reconcile run in the background."""
    body = body or ReconcileRequest()
    options = ReconcileOptions(
        sku=body.sku, limit=body.limit, skip_registry=body.skip_registry
    )
    _spawn(
        run_reconcile_safely(
            context.source,
            context.reconciler,
            context.registry,
            options,
            db=context.db,
            pacer=context.pacer,
            triggered_by=TriggerType.MANUAL,
        )
    )
    target = f"SKU {body.sku}" if body.sku else "all tracked SKUs"
    return SyncResponse(message=f"Reconcile started for {target}", success=True)


@router.post("/delta", response_model=SyncResponse)
async def trigger_delta(context: SyncContext = Depends(require_context)):
    """Start a delta sync in the background."""

    async def run() -> None:
        try:
            await context.delta.run(DeltaSyncOptions(), TriggerType.MANUAL)
        except SyncError as e:
            logger.error(f"Background delta sync failed: {e}")

    _spawn(run())
    return SyncResponse(message="Delta sync started", success=True)


@router.post("/webhooks/retry")
async def retry_webhooks(limit: int = 50, context: SyncContext = Depends(require_context)):
    """Re-dispatch journaled push events that are pending or failed."""
    processed = await context.ingress.process_pending(limit)
    return {"processed": processed}


@router.get("/runs", response_model=List[RunLog])
async def list_runs(
    kind: Optional[RunKind] = None,
    limit: int = 50,
    offset: int = 0,
    context: SyncContext = Depends(require_context),
):
    """Recent run logs, newest first."""
    return await context.db.get_logs(kind=kind, limit=limit, offset=offset)


@router.get("/runs/{log_id}", response_model=RunLog)
async def get_run(log_id: str, context: SyncContext = Depends(require_context)):
    log = await context.db.get_log(log_id)
    if not log:
        raise HTTPException(status_code=404, detail="Run not found")
    return log


@router.get("/registry")
async def get_registry(context: SyncContext = Depends(require_context)):
    """Currently tracked SKUs."""
    skus = context.registry.registered_skus()
    return {"count": len(skus), "skus": skus}
