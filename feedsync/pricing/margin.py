"""
Margin rules: market price -> selling price.

Strategies stack in a fixed order:
1. market price <= 0 -> 0
2. margin from the first matching tier, else the flat margin
3. raw = market * (1 + margin / 100)
4. floor price enforced on the raw price
5. rounding (whole / half / none)

Floor before rounding means rounding can push a floored price up, never down.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

Number = Union[Decimal, float, int, str]

CENT = Decimal("0.01")
ZERO = Decimal("0")


class RoundingMode(str, Enum):
    """How the final selling price is rounded."""
    WHOLE = "whole"
    HALF = "half"
    NONE = "none"


class MarginConfigError(ValueError):
    """Invalid margin configuration."""
    pass


def to_decimal(value: Optional[Number]) -> Decimal:
    """Convert a price-ish value to Decimal (None / "" -> 0)."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise MarginConfigError(f"Invalid number: {value!r}") from e


def format_price(value: Number) -> str:
    """Format a price with 2 decimal places (e.g. "111.00")."""
    return str(to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class MarginTier:
    """Margin applied to market prices in [min, max). max=None is unbounded."""

    min: Decimal
    max: Optional[Decimal]
    margin_pct: Decimal

    def matches(self, price: Decimal) -> bool:
        return price >= self.min and (self.max is None or price < self.max)

    def describe(self) -> str:
        upper = f"€{self.max}" if self.max is not None else "∞"
        return f"€{self.min}-{upper}: +{self.margin_pct}%"


@dataclass(frozen=True)
class MarginConfig:
    """Complete pricing strategy. Tiers are sorted and validated at build time."""

    flat_margin_pct: Decimal = Decimal("25")
    tiers: Tuple[MarginTier, ...] = field(default_factory=tuple)
    floor_price: Decimal = ZERO
    rounding: RoundingMode = RoundingMode.WHOLE

    @classmethod
    def build(
        cls,
        flat_margin_pct: Number = 25,
        tiers: Optional[Iterable[Dict[str, Any]]] = None,
        floor_price: Number = 0,
        rounding: Union[str, RoundingMode] = RoundingMode.WHOLE,
    ) -> "MarginConfig":
        """
        Build a config from plain values.

        Args:
            flat_margin_pct: Fallback margin percentage
            tiers: Dicts with "min", optional "max" and "margin" keys
            floor_price: Minimum selling price, 0 disables it
            rounding: "whole", "half" or "none"

        Raises:
            MarginConfigError: On unknown rounding, bad numbers or overlapping tiers
        """
        flat = to_decimal(flat_margin_pct)

        parsed: List[MarginTier] = []
        for raw in tiers or []:
            if not isinstance(raw, dict):
                raise MarginConfigError(f"Tier must be an object, got {raw!r}")
            upper = raw.get("max")
            margin = raw.get("margin", raw.get("margin_pct"))
            parsed.append(
                MarginTier(
                    min=to_decimal(raw.get("min", 0)),
                    max=to_decimal(upper) if upper not in (None, "") else None,
                    margin_pct=to_decimal(margin) if margin is not None else flat,
                )
            )
        parsed.sort(key=lambda t: t.min)

        for tier in parsed:
            if tier.max is not None and tier.max <= tier.min:
                raise MarginConfigError(f"Tier {tier.describe()} is empty")
        for lower, upper in zip(parsed, parsed[1:]):
            if lower.max is None or lower.max > upper.min:
                raise MarginConfigError(
                    f"Tiers overlap: {lower.describe()} and {upper.describe()}"
                )

        try:
            mode = RoundingMode(rounding)
        except ValueError as e:
            raise MarginConfigError(f"Unknown rounding mode: {rounding!r}") from e

        return cls(
            flat_margin_pct=flat,
            tiers=tuple(parsed),
            floor_price=to_decimal(floor_price),
            rounding=mode,
        )

    def summary(self) -> Dict[str, Any]:
        """Human-readable configuration for run banners."""
        return {
            "flat_margin": f"{self.flat_margin_pct}%",
            "tiers": [t.describe() for t in self.tiers],
            "floor_price": f"€{self.floor_price}" if self.floor_price > 0 else "disabled",
            "rounding": self.rounding.value,
        }


@dataclass(frozen=True)
class PriceBreakdown:
    """Audit record of one price calculation."""

    market_price: Decimal
    margin_pct: Decimal
    margin_source: str
    raw_price: Decimal
    floor_applied: bool
    final_price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market_price": str(self.market_price),
            "margin_pct": str(self.margin_pct),
            "margin_source": self.margin_source,
            "raw_price": str(self.raw_price),
            "floor_applied": self.floor_applied,
            "final_price": str(self.final_price),
        }


class MarginCalculator:
    """Deterministic market price -> selling price conversion."""

    def __init__(self, config: Optional[MarginConfig] = None):
        self.config = config or MarginConfig()

    def calculate(self, market_price: Number) -> Decimal:
        """Selling price for a market price."""
        return self.calculate_with_breakdown(market_price).final_price

    def calculate_with_breakdown(self, market_price: Number) -> PriceBreakdown:
        """Selling price plus the steps that produced it."""
        price = to_decimal(market_price)
        if price <= 0:
            return PriceBreakdown(
                market_price=ZERO,
                margin_pct=ZERO,
                margin_source="none",
                raw_price=ZERO,
                floor_applied=False,
                final_price=ZERO,
            )

        margin, source = self.resolve_margin(price)
        raw = price * (1 + margin / 100)

        floor_applied = False
        floor = self.config.floor_price
        if floor > 0 and raw < floor:
            raw = floor
            floor_applied = True

        return PriceBreakdown(
            market_price=price.quantize(CENT, rounding=ROUND_HALF_UP),
            margin_pct=margin,
            margin_source=source,
            raw_price=raw.quantize(CENT, rounding=ROUND_HALF_UP),
            floor_applied=floor_applied,
            final_price=self.apply_rounding(raw),
        )

    def resolve_margin(self, price: Decimal) -> Tuple[Decimal, str]:
        """Margin percentage and its source ("tier_<i>" or "flat")."""
        for idx, tier in enumerate(self.config.tiers):
            if tier.matches(price):
                return tier.margin_pct, f"tier_{idx}"
        return self.config.flat_margin_pct, "flat"

    def apply_rounding(self, price: Decimal) -> Decimal:
        mode = self.config.rounding
        if mode == RoundingMode.WHOLE:
            rounded = price.to_integral_value(rounding=ROUND_CEILING)
        elif mode == RoundingMode.HALF:
            rounded = (price * 2).to_integral_value(rounding=ROUND_CEILING) / 2
        else:
            rounded = price
        return rounded.quantize(CENT, rounding=ROUND_HALF_UP)
