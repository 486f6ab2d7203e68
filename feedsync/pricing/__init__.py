"""
Pricing module: margin rules, virtual stock and price alerts.
"""

from .margin import (
    MarginCalculator,
    MarginConfig,
    MarginConfigError,
    MarginTier,
    PriceBreakdown,
    RoundingMode,
    format_price,
)
from .stock import estimate_stock
from .alerts import AlertNotifier, PriceAlert

__all__ = [
    "MarginCalculator",
    "MarginConfig",
    "MarginConfigError",
    "MarginTier",
    "PriceBreakdown",
    "RoundingMode",
    "format_price",
    "estimate_stock",
    "AlertNotifier",
    "PriceAlert",
]
