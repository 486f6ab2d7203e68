"""
Configuration management.
Loaded from environment variables / .env once, then handed to components
as typed objects.
"""

import json
from pathlib import Path
from typing import List

import httpx
from pydantic_settings import BaseSettings, SettingsConfigDict

from .pricing.alerts import ALERT_PROVIDERS
from .pricing.margin import MarginConfig, MarginConfigError

FEED_SOURCES = ("kicksdb", "goldensneakers")


class ConfigError(Exception):
    """Missing or malformed configuration. Aborts the run before any remote call."""
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    admin_token: str = ""  # bearer token for /api routes, empty disables them

    # KicksDB
    kicksdb_api_key: str = ""
    kicksdb_base_url: str = "https://api.kicks.dev/v3"
    kicksdb_market: str = "IT"
    kicksdb_webhook_id: str = ""

    # Delta sync feed
    feed_source: str = "kicksdb"  # kicksdb | goldensneakers
    gs_api_key: str = ""
    gs_base_url: str = "https://www.goldensneakers.net/api/assortment/"
    gs_rounding_type: str = "whole"
    # Left at 0 so presented prices stay market prices for the local margin rules
    gs_markup_percentage: float = 0.0
    gs_vat_percentage: float = 0.0

    # Push webhooks
    webhook_callback_url: str = ""
    webhook_secret: str = ""
    wc_webhook_secret: str = ""

    # WooCommerce
    wc_url: str = ""
    wc_consumer_key: str = ""
    wc_consumer_secret: str = ""
    wc_api_version: str = "wc/v3"

    # Pricing
    pricing_flat_margin: float = 25.0
    pricing_tiers: str = ""  # JSON array of {"min", "max", "margin"}
    pricing_floor_price: float = 0.0
    pricing_rounding: str = "whole"
    price_alert_threshold: float = 30.0

    # Alerts
    alert_provider: str = "log"  # log | webhook | resend
    alert_destination: str = ""
    resend_api_key: str = ""
    store_name: str = "feedsync"

    # HTTP
    batch_size: int = 100
    request_timeout: float = 30.0
    max_retries: int = 3
    request_interval: float = 0.2  # seconds between paced calls

    # Storage
    data_dir: str = "./data"
    database_path: str = "./data/feedsync.db"

    # Logging
    log_level: str = "INFO"

    @property
    def baseline_path(self) -> Path:
        return Path(self.data_dir) / "feed_baseline.json"

    @property
    def diff_path(self) -> Path:
        return Path(self.data_dir) / "feed_diff.json"

    @property
    def registry_path(self) -> Path:
        return Path(self.data_dir) / "sku_registry.json"

    def margin_config(self) -> MarginConfig:
        """
        Parse the pricing options into a MarginConfig.

        Raises:
            ConfigError: If PRICING_TIERS is not a JSON array or the tiers,
                margins or rounding mode are invalid
        """
        tiers: List[dict] = []
        if self.pricing_tiers.strip():
            try:
                tiers = json.loads(self.pricing_tiers)
            except json.JSONDecodeError as e:
                raise ConfigError(f"PRICING_TIERS is not valid JSON: {e}") from e
            if not isinstance(tiers, list):
                raise ConfigError("PRICING_TIERS must be a JSON array")

        try:
            return MarginConfig.build(
                flat_margin_pct=self.pricing_flat_margin,
                tiers=tiers,
                floor_price=self.pricing_floor_price,
                rounding=self.pricing_rounding.strip().lower(),
            )
        except MarginConfigError as e:
            raise ConfigError(f"Invalid pricing configuration: {e}") from e

    def require_source(self) -> None:
        """Fail fast when KicksDB credentials are missing."""
        if not self.kicksdb_api_key:
            raise ConfigError("KICKSDB_API_KEY is not set")

    def require_feed(self) -> None:
        """Fail fast on an unknown feed source or missing feed credentials."""
        source = self.feed_source.strip().lower()
        if source not in FEED_SOURCES:
            raise ConfigError(
                f"Unknown FEED_SOURCE: {self.feed_source} (expected one of {', '.join(FEED_SOURCES)})"
            )
        if source == "goldensneakers" and not self.gs_api_key:
            raise ConfigError("GS_API_KEY is not set")

    def require_store(self) -> None:
        """Fail fast when WooCommerce credentials are missing."""
        missing = [
            name for name, value in (
                ("WC_URL", self.wc_url),
                ("WC_CONSUMER_KEY", self.wc_consumer_key),
                ("WC_CONSUMER_SECRET", self.wc_consumer_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing WooCommerce configuration: {', '.join(missing)}")

    def validate_alerts(self) -> None:
        if self.alert_provider not in ALERT_PROVIDERS:
            raise ConfigError(f"Unknown ALERT_PROVIDER: {self.alert_provider}")
        if self.alert_provider != "webhook" or not self.alert_destination:
            return
        try:
            url = httpx.URL(self.alert_destination)
        except httpx.InvalidURL as e:
            raise ConfigError(f"ALERT_DESTINATION is not a valid URL: {e}") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigError(f"ALERT_DESTINATION must be an http(s) URL: {self.alert_destination}")


# Global settings instance
settings = Settings()
