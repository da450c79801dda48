"""OHLCV candle aggregation over a pair's trades.

Both aggregators are pure: they sort a copy of the input, skip trades that
are not valid for pricing, and return candles ordered by bucket start.
Volume is measured in the base asset (sum of qortAmount).
"""

from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import groupby

from tradecharts.models import Candle, Trade

ONE_HOUR_MS = 3_600_000
ONE_DAY_MS = 24 * ONE_HOUR_MS


def bucket_start(timestamp_ms: int, interval_ms: int) -> int:
    """Start of the fixed-width bucket containing a timestamp."""
    return (timestamp_ms // interval_ms) * interval_ms


def _priced_in_time_order(trades: Iterable[Trade]) -> list[tuple[int, Decimal, Decimal]]:
    """(timestamp, price, quantity) for every priceable trade, oldest first.

    The sort is stable so trades sharing a timestamp keep their input order.
    """
    rows = []
    for t in sorted(trades, key=lambda t: t.trade_timestamp):
        price = t.price
        if price is None:
            continue
        qty = t.qort
        assert qty is not None
        rows.append((t.trade_timestamp, price, qty))
    return rows


def aggregate_candles(trades: Iterable[Trade], interval_ms: int) -> list[Candle]:
    """Bucket trades into fixed ``interval_ms`` windows and compute OHLCV per window.

    Single pass over the time-sorted trades with one open accumulator that is
    flushed whenever the bucket changes. Empty input yields an empty list.

    Raises:
        ValueError: if interval_ms is not positive.
    """
    if interval_ms <= 0:
        raise ValueError(f"interval_ms must be positive, got {interval_ms}")

    candles: list[Candle] = []
    current: Candle | None = None

    for timestamp, price, qty in _priced_in_time_order(trades):
        bucket = bucket_start(timestamp, interval_ms)
        if current is None or current.bucket_start != bucket:
            if current is not None:
                candles.append(current)
            current = Candle(
                bucket_start=bucket,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=qty,
            )
        else:
            current.high = max(current.high, price)
            current.low = min(current.low, price)
            current.close = price
            current.volume += qty

    if current is not None:
        candles.append(current)

    return candles


def _utc_day(timestamp_ms: int) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()


def _day_start_ms(day: date) -> int:
    midnight = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return int(midnight.timestamp()) * 1000


def aggregate_daily_candles(trades: Iterable[Trade]) -> list[Candle]:
    """One candle per UTC calendar day, keyed at that day's midnight.

    Open and close are the prices of the day's first and last trade, high
    and low the day's price extremes.
    """
    candles = []
    rows = _priced_in_time_order(trades)
    for day, group in groupby(rows, key=lambda row: _utc_day(row[0])):
        day_rows = list(group)
        prices = [price for _, price, _ in day_rows]
        candles.append(
            Candle(
                bucket_start=_day_start_ms(day),
                open=prices[0],
                high=max(prices),
                low=min(prices),
                close=prices[-1],
                volume=sum((qty for _, _, qty in day_rows), Decimal("0")),
            )
        )
    return candles


def simple_moving_average(candles: list[Candle], window: int = 7) -> list[tuple[int, Decimal]]:
    """Trailing mean of candle closes as ``(bucket_start, value)`` points.

    The first point sits on the ``window``-th candle; fewer candles than
    ``window`` yield no points.

    Raises:
        ValueError: if window is not positive.
    """
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    points = []
    for i in range(window - 1, len(candles)):
        closes = (c.close for c in candles[i - window + 1 : i + 1])
        points.append((candles[i].bucket_start, sum(closes, Decimal("0")) / window))
    return points
