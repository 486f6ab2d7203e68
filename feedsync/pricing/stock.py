"""
Virtual stock for feeds that publish prices but no quantities.
"""

from decimal import Decimal
from typing import Union

# (exclusive upper bound on selling price, quantity); cheaper sells faster
STOCK_BANDS = (
    (Decimal("140"), 80),
    (Decimal("240"), 50),
    (Decimal("340"), 30),
)
TOP_BAND_QUANTITY = 13


def estimate_stock(selling_price: Union[Decimal, float, int]) -> int:
    """Quantity to publish for a size with the given selling price. 0 if unpriced."""
    price = Decimal(str(selling_price))
    if price <= 0:
        return 0
    for upper, quantity in STOCK_BANDS:
        if price < upper:
            return quantity
    return TOP_BAND_QUANTITY
