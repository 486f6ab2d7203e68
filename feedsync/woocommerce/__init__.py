"""
WooCommerce store module.
"""

from .client import WooCommerceClient
from .batch_update import (
    BatchResult,
    batch_upsert_variations,
    MAX_BATCH_SIZE,
)
from .variations import variation_size

__all__ = [
    "WooCommerceClient",
    "BatchResult",
    "batch_upsert_variations",
    "MAX_BATCH_SIZE",
    "variation_size",
]
