"""Shared test fixtures for the trade candle pipeline."""

import asyncio

import pytest
import pytest_asyncio

from tradecharts.config import AppSettings, CacheSettings, FilterSettings, SourceSettings
from tradecharts.data.store import TradeStore
from tradecharts.exceptions import TransportError
from tradecharts.models import NameEntry, Trade
from tradecharts.source.client import NameLookup, TradeSource


def make_trade(
    timestamp: int,
    qort: str = "1",
    foreign: str = "0.01",
    buyer: str | None = None,
    seller: str | None = None,
) -> Trade:
    return Trade(
        tradeTimestamp=timestamp,
        qortAmount=qort,
        foreignAmount=foreign,
        buyerReceivingAddress=buyer,
        sellerAddress=seller,
    )


class FakeTradeSource(TradeSource):
    """In-memory stand-in for the node's /crosschain/trades endpoint.

    Honors limit/offset/reverse and the timestamp bounds the same way the
    node does, and records every call for assertions.
    """

    def __init__(self, trades: list[Trade] | None = None) -> None:
        self.trades: list[Trade] = list(trades or [])
        self.calls: list[dict] = []
        self.fail_on_call: int | None = None  # 1-based call number that raises
        self.honor_minimum = True
        self.gate: asyncio.Event | None = None  # when set, every call waits for it
        self.entered = asyncio.Event()
        self.closed = False

    async def fetch_trades(
        self,
        pair: str,
        *,
        limit: int,
        offset: int = 0,
        reverse: bool = False,
        minimum_timestamp: int | None = None,
        maximum_timestamp: int | None = None,
    ) -> list[Trade]:
        self.calls.append(
            {
                "pair": pair,
                "limit": limit,
                "offset": offset,
                "reverse": reverse,
                "minimum_timestamp": minimum_timestamp,
                "maximum_timestamp": maximum_timestamp,
            }
        )
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_call == len(self.calls):
            raise TransportError("HTTP 503 from /crosschain/trades", status=503)

        selected = self.trades
        if minimum_timestamp and self.honor_minimum:
            selected = [t for t in selected if t.trade_timestamp >= minimum_timestamp]
        if maximum_timestamp is not None:
            selected = [t for t in selected if t.trade_timestamp <= maximum_timestamp]
        selected = sorted(selected, key=lambda t: t.trade_timestamp, reverse=reverse)
        return selected[offset : offset + limit]

    async def close(self) -> None:
        self.closed = True


class FakeNameLookup(NameLookup):
    """Canned name registry that tracks calls and concurrency."""

    def __init__(self, names: dict[str, list[NameEntry]] | None = None) -> None:
        self.names = names or {}
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.active = 0
        self.max_active = 0
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.closed = False

    async def lookup(self, address: str) -> list[NameEntry]:
        self.calls.append(address)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)
            if address in self.failing:
                raise TransportError(f"HTTP 500 from /names/address/{address}", status=500)
            return self.names.get(address, [])
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    """AppSettings pointing the cache at a temporary SQLite file."""
    return AppSettings(
        log_level="DEBUG",
        pairs=["LITECOIN", "BITCOIN"],
        source=SourceSettings(base_url="http://node.test", page_size=100),
        cache=CacheSettings(db_path=str(tmp_path / "cache.db")),
        filter=FilterSettings(policy="none"),
    )


@pytest.fixture
def source() -> FakeTradeSource:
    return FakeTradeSource()


@pytest_asyncio.fixture
async def store() -> TradeStore:
    """Loaded in-memory TradeStore (no persistent cache)."""
    trade_store = TradeStore()
    await trade_store.load()
    return trade_store
