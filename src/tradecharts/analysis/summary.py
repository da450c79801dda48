"""Per-pair summary statistics and the merged cross-pair trade history."""

import math
from collections import defaultdict
from collections.abc import Mapping
from decimal import Decimal

from tradecharts.models import PairSummary, Trade


def _top(volumes: dict[str, Decimal]) -> tuple[str | None, Decimal]:
    if not volumes:
        return None, Decimal("0")
    # Ties go to the lexicographically smallest address so the result is stable
    address = min(volumes, key=lambda a: (-volumes[a], a))
    return address, volumes[address]


def summarize(
    pair: str,
    trades: list[Trade],
    names: Mapping[str, str] | None = None,
) -> PairSummary:
    """Volume, price range, last price and top counterparties for one pair.

    Price statistics only consider trades valid for pricing; volume and the
    counterparty ranking count every trade with a positive quantity.
    """
    names = names or {}
    volume = Decimal("0")
    foreign_volume = Decimal("0")
    buyers: dict[str, Decimal] = defaultdict(Decimal)
    sellers: dict[str, Decimal] = defaultdict(Decimal)
    high: Decimal | None = None
    low: Decimal | None = None
    last: tuple[int, Decimal] | None = None

    for t in trades:
        qty = t.qort
        if qty is None:
            continue
        volume += qty
        price = t.price
        if price is not None:
            foreign_volume += price * qty
            high = price if high is None else max(high, price)
            low = price if low is None else min(low, price)
            if last is None or t.trade_timestamp >= last[0]:
                last = (t.trade_timestamp, price)
        if t.buyer_receiving_address:
            buyers[t.buyer_receiving_address] += qty
        if t.seller_address:
            sellers[t.seller_address] += qty

    top_buyer, top_buyer_volume = _top(buyers)
    top_seller, top_seller_volume = _top(sellers)
    timestamps = [t.trade_timestamp for t in trades]

    return PairSummary(
        pair=pair,
        trade_count=len(trades),
        volume=volume,
        foreign_volume=foreign_volume,
        high=high,
        low=low,
        last_price=last[1] if last is not None else None,
        first_timestamp=min(timestamps) if timestamps else None,
        last_timestamp=max(timestamps) if timestamps else None,
        top_buyer=top_buyer,
        top_buyer_name=names.get(top_buyer) if top_buyer else None,
        top_buyer_volume=top_buyer_volume,
        top_seller=top_seller,
        top_seller_name=names.get(top_seller) if top_seller else None,
        top_seller_volume=top_seller_volume,
    )


def merged_history(
    pair_trades: Mapping[str, list[Trade]],
    page: int = 1,
    per_page: int = 100,
) -> tuple[list[tuple[str, Trade]], int]:
    """All pairs' trades merged newest first, paginated.

    Returns the requested page of ``(pair, trade)`` rows and the total page
    count. Pages are 1-based; a page past the end is empty.
    """
    if page < 1 or per_page < 1:
        raise ValueError("page and per_page must be positive")
    merged = [(pair, t) for pair, trades in pair_trades.items() for t in trades]
    merged.sort(key=lambda row: row[1].trade_timestamp, reverse=True)
    total_pages = math.ceil(len(merged) / per_page)
    start = (page - 1) * per_page
    return merged[start : start + per_page], total_pages
