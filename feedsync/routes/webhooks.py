"""
Inbound webhook routes.

Requests are validated and acknowledged first; processing runs as a
background task after the response is sent.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request
from fastapi.responses import JSONResponse

from ..dependencies import SyncContext, require_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


@router.get("/kicksdb")
@router.get("/woocommerce")
async def webhook_ping():
    """Some providers ping the callback URL with GET before subscribing."""
    return {"status": "ok"}


@router.post("/kicksdb")
async def kicksdb_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_kicksdb_signature: Optional[str] = Header(None),
    x_webhook_signature: Optional[str] = Header(None),
    x_delivery_id: Optional[str] = Header(None),
    context: SyncContext = Depends(require_context),
):
    """KicksDB price_change / out_of_stock push."""
    raw_body = await request.body()
    ack = await context.ingress.receive(
        raw_body,
        x_kicksdb_signature or x_webhook_signature,
        delivery_id=x_delivery_id,
    )

    if ack.should_dispatch:
        background_tasks.add_task(context.ingress.dispatch, ack.event, ack.event_id)

    return JSONResponse(status_code=ack.status, content=ack.model_dump())


@router.post("/woocommerce")
async def woocommerce_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_wc_webhook_signature: Optional[str] = Header(None),
    x_wc_webhook_event: Optional[str] = Header(None),
    x_wc_webhook_topic: Optional[str] = Header(None),
    context: SyncContext = Depends(require_context),
):
    """WooCommerce product created/updated/deleted webhook."""
    raw_body = await request.body()
    ack, payload = context.listener.receive(raw_body, x_wc_webhook_signature)

    if ack.status == 200 and payload is not None:
        event = x_wc_webhook_event or (x_wc_webhook_topic or "").rpartition(".")[2]
        logger.info(
            f"WC webhook received: {x_wc_webhook_topic or event} "
            f"(product {payload.get('id', 'unknown')})"
        )
        background_tasks.add_task(context.listener.handle, event or "unknown", payload)

    return JSONResponse(status_code=ack.status, content=ack.model_dump())
