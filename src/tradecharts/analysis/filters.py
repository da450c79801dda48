"""Outlier filters applied to a pair's trades before charting.

Two interchangeable policies, both pure functions that return a new list
and never touch the input:

- percentile clipping: keep trades whose price lies between two quantiles
  of the price distribution.
- weighted-average banding: keep trades whose price lies within a
  multiplicative band around the quantity-weighted mean price.

Trades that are not valid for pricing (non-positive quantity, non-finite or
non-positive price) are dropped before ranking or averaging.

CRITICAL: All price math uses Decimal. Quantiles and tolerance arrive as
floats from configuration and are converted at the edge.
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from tradecharts.config import FilterSettings
from tradecharts.models import Trade

FilterKind = Literal["percentile", "weighted_average", "none"]

#: Below this many priced trades percentile clipping has too little signal.
DEFAULT_MIN_SAMPLES = 200


def priced(trades: list[Trade]) -> list[tuple[Trade, Decimal]]:
    """Pair every trade that is valid for pricing with its price, in input order."""
    result = []
    for t in trades:
        price = t.price
        if price is not None:
            result.append((t, price))
    return result


def count_unpriceable(trades: list[Trade]) -> int:
    """Number of trades a filter or aggregation would silently drop."""
    return sum(1 for t in trades if not t.is_priceable)


def percentile_filter(
    trades: list[Trade],
    lower: float = 0.01,
    upper: float = 0.99,
    min_samples: int = DEFAULT_MIN_SAMPLES,
) -> list[Trade]:
    """Keep trades priced within the [lower, upper] quantile range.

    With n priced trades sorted by price, the kept range is
    ``[prices[floor(n * lower)], prices[ceil(n * upper) - 1]]`` inclusive.
    When fewer than ``min_samples`` trades can be priced the input is
    returned unchanged.

    Raises:
        ValueError: if the quantiles are outside [0, 1] or lower > upper.
    """
    if not 0.0 <= lower <= upper <= 1.0:
        raise ValueError(f"Invalid quantile range: lower={lower}, upper={upper}")

    valid = priced(trades)
    if len(valid) < min_samples or not valid:
        return list(trades)

    prices = sorted(price for _, price in valid)
    n = len(prices)
    lo_idx = min(max(math.floor(n * lower), 0), n - 1)
    hi_idx = min(max(math.ceil(n * upper) - 1, lo_idx), n - 1)
    floor_price = prices[lo_idx]
    ceiling_price = prices[hi_idx]

    return [t for t, price in valid if floor_price <= price <= ceiling_price]


def weighted_mean_price(trades: list[Trade]) -> Decimal | None:
    """Quantity-weighted mean price ``sum(q * p) / sum(q)``, None if nothing is priced."""
    total_qty = Decimal("0")
    total_value = Decimal("0")
    for t, price in priced(trades):
        qty = t.qort
        assert qty is not None  # priced() only yields trades with a valid quantity
        total_qty += qty
        total_value += qty * price
    if total_qty == 0:
        return None
    return total_value / total_qty


def weighted_average_filter(trades: list[Trade], tolerance: float = 0.5) -> list[Trade]:
    """Keep trades priced within ``[mean / (1 + tol), mean * (1 + tol)]``.

    The mean is the quantity-weighted mean over all priced input trades.

    Raises:
        ValueError: if tolerance is negative.
    """
    if tolerance < 0:
        raise ValueError(f"Tolerance must be non-negative, got {tolerance}")

    mean = weighted_mean_price(trades)
    if mean is None:
        return []

    factor = Decimal("1") + Decimal(str(tolerance))
    band_low = mean / factor
    band_high = mean * factor
    return [t for t, price in priced(trades) if band_low <= price <= band_high]


@dataclass(frozen=True)
class FilterPolicy:
    """Caller-selected outlier policy and its parameters."""

    kind: FilterKind = "percentile"
    lower: float = 0.01
    upper: float = 0.99
    min_samples: int = DEFAULT_MIN_SAMPLES
    tolerance: float = 0.5

    @classmethod
    def from_settings(cls, settings: FilterSettings) -> "FilterPolicy":
        return cls(
            kind=settings.policy,
            lower=settings.lower_quantile,
            upper=settings.upper_quantile,
            min_samples=settings.min_samples,
            tolerance=settings.tolerance,
        )


def apply_filter(trades: list[Trade], policy: FilterPolicy) -> list[Trade]:
    """Dispatch to the filter named by the policy. ``none`` only drops unpriceable trades."""
    if policy.kind == "percentile":
        return percentile_filter(trades, policy.lower, policy.upper, policy.min_samples)
    if policy.kind == "weighted_average":
        return weighted_average_filter(trades, policy.tolerance)
    if policy.kind == "none":
        return [t for t, _ in priced(trades)]
    raise ValueError(f"Unknown filter policy: {policy.kind}")
