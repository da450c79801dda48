"""Pure trade analysis: outlier filters, candle aggregation, periods and summaries."""

from tradecharts.analysis.candles import (
    aggregate_candles,
    aggregate_daily_candles,
    simple_moving_average,
)
from tradecharts.analysis.filters import (
    FilterPolicy,
    apply_filter,
    percentile_filter,
    weighted_average_filter,
)
from tradecharts.analysis.summary import summarize

__all__ = [
    "FilterPolicy",
    "aggregate_candles",
    "aggregate_daily_candles",
    "apply_filter",
    "percentile_filter",
    "simple_moving_average",
    "summarize",
    "weighted_average_filter",
]
