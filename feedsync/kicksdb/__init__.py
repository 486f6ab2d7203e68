"""
KicksDB market API module.
"""

from .adapter import AdapterStats, KicksDbFeedAdapter
from .client import KicksDbClient
from .variants import (
    build_price_map,
    extract_eu_size,
    extract_standard_price,
    normalize_size,
)

__all__ = [
    "AdapterStats",
    "KicksDbFeedAdapter",
    "KicksDbClient",
    "build_price_map",
    "extract_eu_size",
    "extract_standard_price",
    "normalize_size",
]
