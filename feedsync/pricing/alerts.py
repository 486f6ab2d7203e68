"""
Price swing alerts.

Every alert is logged at WARNING. A notifier can additionally deliver it
as a JSON webhook or as an email through Resend.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from .margin import PriceBreakdown, format_price

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
ALERT_PROVIDERS = ("log", "webhook", "resend")


@dataclass
class PriceAlert:
    """An anomalous selling price change for one size of one product."""

    sku: str
    product_name: str
    size: str
    old_price: Decimal
    new_price: Decimal
    change_pct: Decimal
    breakdown: PriceBreakdown
    threshold: Decimal

    @property
    def direction(self) -> str:
        return "increase" if self.new_price > self.old_price else "decrease"

    @property
    def subject(self) -> str:
        return (
            f"Price {self.direction.upper()}: {self.sku} size {self.size} "
            f"({self.change_pct:.1f}%)"
        )

    def body(self, store_name: str = "") -> str:
        b = self.breakdown
        lines = [
            f"Price Alert - {store_name}" if store_name else "Price Alert",
            "=" * 50,
            "",
            f"Product: {self.product_name}",
            f"SKU: {self.sku}",
            f"Size: {self.size}",
            "",
            f"Price Change: {self.direction.upper()} ({self.change_pct:.1f}%)",
            f"  Old Price: €{format_price(self.old_price)}",
            f"  New Price: €{format_price(self.new_price)}",
            "",
            "Breakdown:",
            f"  Market Price: €{format_price(b.market_price)}",
            f"  Margin Applied: {b.margin_pct}% ({b.margin_source})",
            f"  Floor Price Applied: {'YES' if b.floor_applied else 'No'}",
            "",
            f"Threshold: {self.threshold}%",
            f"Time: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S %Z')}",
        ]
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku": self.sku,
            "product_name": self.product_name,
            "size": self.size,
            "old_price": format_price(self.old_price),
            "new_price": format_price(self.new_price),
            "change_pct": f"{self.change_pct:.1f}",
            "direction": self.direction,
            "threshold": str(self.threshold),
            "breakdown": self.breakdown.to_dict(),
        }


class AlertNotifier:
    """Delivers price alerts. Delivery failures are logged, never raised."""

    def __init__(
        self,
        provider: str = "log",
        destination: Optional[str] = None,
        api_key: Optional[str] = None,
        store_name: str = "",
        sender: Optional[str] = None,
        session: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        """
        Args:
            provider: "log", "webhook" (JSON POST) or "resend" (email)
            destination: Webhook URL or email address
            api_key: Resend API key
            store_name: Shown in subjects and bodies
            sender: From address for email
            session: Shared httpx client (tests)
            timeout: Per-delivery timeout in seconds
        """
        if provider not in ALERT_PROVIDERS:
            raise ValueError(f"Unknown alert provider: {provider}")
        self.provider = provider
        self.destination = destination
        self.api_key = api_key
        self.store_name = store_name
        self.sender = sender or f"Price Alerts <alerts@{store_name or 'localhost'}>"
        self._session = session
        self.timeout = timeout
        self.sent = 0

    async def send(self, alert: PriceAlert) -> bool:
        """
        Log the alert and deliver it through the configured provider.

        Returns:
            True if the alert was delivered (always True for "log")
        """
        logger.warning(
            f"  ALERT: {alert.sku} size {alert.size} price {alert.direction.upper()} "
            f"{alert.change_pct:.1f}%: €{format_price(alert.old_price)} -> "
            f"€{format_price(alert.new_price)}"
        )

        if self.provider == "log":
            self.sent += 1
            return True

        if not self.destination:
            logger.debug(f"No alert destination configured for provider {self.provider}")
            return False
        if self.provider == "resend" and not self.api_key:
            logger.error("  Resend alerts need RESEND_API_KEY, alert not delivered")
            return False

        try:
            if self.provider == "webhook":
                await self._post(self.destination, alert.to_dict())
            else:
                await self._send_resend(alert)
        except Exception as e:
            # Delivery must never stop the price update that raised the alert
            logger.error(f"  Failed to deliver price alert for {alert.sku}: {e!r}")
            return False

        self.sent += 1
        logger.info(f"  Alert sent to {self.destination}")
        return True

    async def _send_resend(self, alert: PriceAlert) -> None:
        subject = f"[{self.store_name}] {alert.subject}" if self.store_name else alert.subject
        payload = {
            "from": self.sender,
            "to": [self.destination],
            "subject": subject,
            "text": alert.body(self.store_name),
        }
        await self._post(
            RESEND_URL, payload, headers={"Authorization": f"Bearer {self.api_key}"}
        )

    async def _post(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> None:
        if self._session is not None:
            response = await self._session.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
