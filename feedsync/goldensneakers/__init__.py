"""
Golden Sneakers wholesale feed module.
"""

from .adapter import GoldenSneakersFeedAdapter, GoldenSneakersStats, detect_product_type
from .client import GoldenSneakersClient

__all__ = [
    "GoldenSneakersFeedAdapter",
    "GoldenSneakersStats",
    "GoldenSneakersClient",
    "detect_product_type",
]
