"""
Inbound push notifications.

EventIngress validates KicksDB price webhooks, journals them and hands
them to the price reconciler. ProductListener handles WooCommerce product
webhooks and keeps the tracking registry current.

Both acknowledge before doing any downstream work: receive() only
validates and records, the caller schedules dispatch() afterwards.
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .db import EventStatus, SQLiteDatabase, WebhookEvent
from .pricing.reconciler import PriceReconciler, UpdateResult
from .sync.registry import TrackingRegistry

PRICE_CHANGE = "price_change"
OUT_OF_STOCK = "out_of_stock"


class PushProduct(BaseModel):
    model_config = ConfigDict(extra="allow")

    sku: Optional[str] = None
    id: Optional[str] = None
    variants: List[Dict[str, Any]] = Field(default_factory=list)


class PushEvent(BaseModel):
    """A KicksDB webhook payload."""

    model_config = ConfigDict(extra="allow")

    event: str = PRICE_CHANGE
    product: Optional[PushProduct] = None
    variants: List[Dict[str, Any]] = Field(default_factory=list)
    timestamp: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "PushEvent":
        raw_product = data.get("product")
        product = None
        if isinstance(raw_product, dict):
            product = PushProduct(
                sku=_as_str(raw_product.get("sku")),
                id=_as_str(raw_product.get("id")),
                variants=_dicts(raw_product.get("variants")),
            )
        return cls(
            event=str(data.get("event") or data.get("type") or PRICE_CHANGE),
            product=product,
            variants=_dicts(data.get("variants") or data.get("sizes")),
            timestamp=_as_str(data.get("timestamp")),
            **{
                k: _as_str(v) for k, v in data.items()
                if k in ("sku", "style_id")
            },
        )

    @property
    def sku(self) -> Optional[str]:
        """SKU from product.sku, else top-level sku or style_id."""
        extra = self.model_extra or {}
        candidates = [
            self.product.sku if self.product else None,
            extra.get("sku"),
            extra.get("style_id"),
        ]
        for candidate in candidates:
            if candidate and str(candidate).strip():
                return str(candidate).strip()
        return None

    @property
    def market_variants(self) -> List[Dict[str, Any]]:
        if self.variants:
            return self.variants
        return self.product.variants if self.product else []


class Acknowledgement(BaseModel):
    """What the webhook endpoint answers."""

    status: int = 200
    message: str = "accepted"
    event_id: Optional[str] = None
    duplicate: bool = False

    # Filled on success so the route can schedule processing
    event: Optional[PushEvent] = Field(default=None, exclude=True)

    @property
    def should_dispatch(self) -> bool:
        return self.status == 200 and self.event is not None and not self.duplicate


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _dicts(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def hex_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def base64_signature(secret: str, raw_body: bytes) -> str:
    digest = hmac.new(secret.encode(), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class EventIngress:
    """Receives KicksDB push events and dispatches them to the reconciler."""

    def __init__(
        self,
        reconciler: PriceReconciler,
        secret: str = "",
        journal: Optional[SQLiteDatabase] = None,
        max_attempts: int = 3,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            reconciler: Applies price_change / out_of_stock events
            secret: Shared HMAC secret; empty accepts every request
            journal: Event journal for dedupe and retries
            max_attempts: Attempts before a journaled event is given up
            logger: Logger to use instead of the module logger
        """
        self.reconciler = reconciler
        self.secret = secret
        self.journal = journal
        self.max_attempts = max_attempts
        self.log = logger or logging.getLogger(__name__)
        if not secret:
            self.log.warning("WEBHOOK_SECRET not set - push signatures are NOT verified")

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Constant-time check of hex HMAC-SHA256(secret, raw body)."""
        if not self.secret:
            return True
        if not signature:
            return False
        expected = hex_signature(self.secret, raw_body)
        provided = signature.strip()
        if provided.startswith("sha256="):
            provided = provided[len("sha256="):]
        return hmac.compare_digest(expected, provided.lower())

    async def receive(
        self,
        raw_body: bytes,
        signature: Optional[str],
        delivery_id: Optional[str] = None,
    ) -> Acknowledgement:
        """
        Validate and journal one push request. Never processes it.

        Returns:
            Acknowledgement with 400 (empty body, bad JSON, no SKU),
            401 (bad signature) or 200
        """
        if not raw_body:
            return Acknowledgement(status=400, message="Empty body")

        if not self.verify_signature(raw_body, signature):
            self.log.warning("Push webhook signature mismatch")
            return Acknowledgement(status=401, message="Invalid signature")

        try:
            data = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self.log.error(f"Push webhook with invalid JSON: {e}")
            return Acknowledgement(status=400, message="Invalid JSON")

        if not isinstance(data, dict):
            self.log.error("Push webhook body is not a JSON object")
            return Acknowledgement(status=400, message="Invalid payload")

        event = PushEvent.from_payload(data)
        if event.sku is None:
            self.log.error(f"Push webhook missing SKU (keys: {sorted(data)})")
            return Acknowledgement(status=400, message="Missing SKU")

        self.log.info(f"Push event received: {event.event} for {event.sku}")

        if self.journal is None:
            return Acknowledgement(event=event)

        record = WebhookEvent(
            dedupe_key=delivery_id or hashlib.sha256(raw_body).hexdigest(),
            event_type=event.event,
            sku=event.sku,
            payload=raw_body.decode("utf-8", errors="replace"),
        )
        if not await self.journal.record_event(record):
            self.log.info(f"Duplicate delivery for {event.sku}, already journaled")
            return Acknowledgement(message="duplicate", duplicate=True)

        return Acknowledgement(event_id=record.id, event=event)

    async def dispatch(
        self, event: PushEvent, event_id: Optional[str] = None
    ) -> Optional[UpdateResult]:
        """
        Apply one accepted event. Errors are journaled and logged, not raised.
        """
        if event_id and self.journal:
            await self.journal.mark_event(event_id, EventStatus.PROCESSING)

        sku = event.sku
        try:
            if event.event == PRICE_CHANGE:
                variants = event.market_variants
                if not variants:
                    self.log.warning(f"Price change for {sku} has no variant data")
                    result = None
                else:
                    self.log.info(f"Processing price change for {sku}: {len(variants)} variants")
                    result = await self.reconciler.update_prices(sku, variants)
            elif event.event == OUT_OF_STOCK:
                self.log.info(f"Processing out_of_stock for {sku}")
                result = await self.reconciler.zero_stock(sku)
            else:
                self.log.info(f"Ignoring unknown push event '{event.event}' for {sku}")
                result = None
        except Exception as e:
            self.log.exception(f"Push event processing failed for {sku}")
            if event_id and self.journal:
                await self.journal.mark_event(event_id, EventStatus.FAILED, str(e))
            return None

        if result is not None:
            self.log.info(
                f"Push event processed for {sku}: {result.updated} updated, "
                f"{result.skipped} skipped, {result.errors} errors"
            )

        if event_id and self.journal:
            if result is not None and result.errors:
                await self.journal.mark_event(
                    event_id, EventStatus.FAILED, f"{result.errors} errors"
                )
            else:
                await self.journal.mark_event(event_id, EventStatus.COMPLETED)
        return result

    async def process_pending(self, limit: int = 50) -> int:
        """
        Retry journaled events that are pending or failed.

        Returns:
            Number of events dispatched
        """
        if self.journal is None:
            return 0

        events = await self.journal.get_pending_events(limit, self.max_attempts)
        self.log.info(f"Processing {len(events)} pending push events")

        for record in events:
            try:
                data = json.loads(record.payload)
            except json.JSONDecodeError as e:
                await self.journal.mark_event(record.id, EventStatus.FAILED, str(e))
                continue
            await self.dispatch(PushEvent.from_payload(data), record.id)

        return len(events)


class ProductListener:
    """
    Handles WooCommerce product webhooks.

    created -> register the SKU; deleted/trashed, or updated to trash/draft
    -> unregister it. Only variable products with a SKU are considered.
    """

    def __init__(
        self,
        registry: TrackingRegistry,
        secret: str = "",
        logger: Optional[logging.Logger] = None,
    ):
        self.registry = registry
        self.secret = secret
        self.log = logger or logging.getLogger(__name__)

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """WooCommerce signs with base64(HMAC-SHA256(secret, raw body))."""
        if not self.secret:
            return True
        if not signature:
            return False
        return hmac.compare_digest(base64_signature(self.secret, raw_body), signature.strip())

    def receive(
        self, raw_body: bytes, signature: Optional[str]
    ) -> Tuple[Acknowledgement, Optional[Dict[str, Any]]]:
        """
        Validate a product webhook.

        Returns:
            (acknowledgement, product payload to handle or None)
        """
        if not raw_body:
            return Acknowledgement(status=400, message="Empty body"), None

        # WooCommerce pings a new webhook with a form body: webhook_id=<n>
        if raw_body.startswith(b"webhook_id="):
            self.log.info(f"WooCommerce webhook ping: {raw_body.decode(errors='replace')}")
            return Acknowledgement(message="ping"), None

        if not self.verify_signature(raw_body, signature):
            self.log.warning("WC webhook signature mismatch")
            return Acknowledgement(status=401, message="Invalid signature"), None

        try:
            payload = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return Acknowledgement(status=400, message="Invalid JSON"), None
        if not isinstance(payload, dict):
            return Acknowledgement(status=400, message="Invalid payload"), None

        return Acknowledgement(), payload

    async def handle(self, event: str, payload: Dict[str, Any]) -> Optional[bool]:
        """
        Apply a product event to the registry.

        Args:
            event: X-WC-Webhook-Event (created, updated, deleted...)
            payload: Product JSON

        Returns:
            The registry call's result, None when nothing was done
        """
        sku = (payload.get("sku") or "").strip()
        product_id = payload.get("id")
        product_type = payload.get("type") or ""

        if product_type and product_type != "variable":
            self.log.info(f"Skipping non-variable product: {sku} (type: {product_type})")
            return None
        if not sku:
            self.log.warning(f"WC webhook product has no SKU (ID: {product_id})")
            return None

        if event == "created":
            self.log.info(f"New product detected: {sku} ({payload.get('name', '')})")
            return await self.registry.register_single(
                sku, {"wc_id": product_id, "name": payload.get("name", "")}
            )
        if event in ("deleted", "trashed"):
            self.log.info(f"Product removed: {sku}")
            return await self.registry.unregister_single(sku)
        if event == "updated":
            if payload.get("status", "publish") in ("trash", "draft"):
                self.log.info(f"Product unpublished/trashed: {sku}")
                return await self.registry.unregister_single(sku)
            return None

        self.log.info(f"Unhandled WC event: {event} for {sku}")
        return None
