"""Tests for the TradePipeline facade wiring store, fetcher and resolver together."""

import asyncio
import time
from decimal import Decimal

import pytest
import pytest_asyncio

from tests.conftest import FakeNameLookup, FakeTradeSource, make_trade
from tradecharts.analysis.candles import ONE_DAY_MS, ONE_HOUR_MS
from tradecharts.analysis.filters import FilterPolicy
from tradecharts.config import AppSettings
from tradecharts.data.cache import PersistentCache
from tradecharts.data.database import CacheDatabase
from tradecharts.data.fetcher import TradeFetcher
from tradecharts.data.store import TradeStore
from tradecharts.exceptions import FetchInProgressError
from tradecharts.models import NO_NAME, FetchStrategy, NameEntry, PairStatus
from tradecharts.names.resolver import NameResolver
from tradecharts.pipeline import TradePipeline

PAIR = "LITECOIN"


def _build(
    source: FakeTradeSource,
    store: TradeStore,
    lookup: FakeNameLookup | None = None,
    **kwargs,
) -> TradePipeline:
    lookup = lookup or FakeNameLookup()
    return TradePipeline(
        store=store,
        fetcher=TradeFetcher(source, store, page_size=100),
        resolver=NameResolver(lookup, store),
        default_filter=FilterPolicy(kind="none"),
        pairs=["LITECOIN", "BITCOIN"],
        **kwargs,
    )


async def _drain(pipeline: TradePipeline) -> None:
    """Wait for every background task the pipeline has spawned."""
    while pipeline._tasks:
        await asyncio.gather(*list(pipeline._tasks))


@pytest_asyncio.fixture
async def pipeline(source: FakeTradeSource, store: TradeStore) -> TradePipeline:
    return _build(source, store, auto_resolve_names=False)


class TestCandles:
    @pytest.mark.asyncio
    async def test_fetched_trades_become_candles(
        self, pipeline: TradePipeline, source: FakeTradeSource
    ) -> None:
        source.trades = [
            make_trade(0, "10", "1"),
            make_trade(0, "5", "0.6"),
            make_trade(3_600_000, "20", "1.8"),
        ]
        await pipeline.fetch_full(PAIR)

        candles = pipeline.get_candles(PAIR, ONE_HOUR_MS)

        assert [c.bucket_start for c in candles] == [0, 3_600_000]
        assert candles[0].high == Decimal("0.12")
        assert candles[0].volume == Decimal("15")
        assert candles[1].close == Decimal("0.09")

    @pytest.mark.asyncio
    async def test_cutoff_excludes_older_trades(
        self, pipeline: TradePipeline, source: FakeTradeSource
    ) -> None:
        source.trades = [make_trade(10, "1", "1"), make_trade(3_600_010, "1", "2")]
        await pipeline.fetch_full(PAIR)

        candles = pipeline.get_candles(PAIR, ONE_HOUR_MS, period_cutoff_ms=3_600_000)

        assert len(candles) == 1
        assert candles[0].open == Decimal("2")

    @pytest.mark.asyncio
    async def test_filter_policy_override(
        self, pipeline: TradePipeline, source: FakeTradeSource
    ) -> None:
        source.trades = [make_trade(i, "1", "1") for i in range(9)] + [make_trade(9, "1", "5")]
        await pipeline.fetch_full(PAIR)

        unfiltered = pipeline.get_candles(PAIR, ONE_HOUR_MS)
        banded = pipeline.get_candles(
            PAIR, ONE_HOUR_MS, filter_policy=FilterPolicy(kind="weighted_average", tolerance=0.5)
        )

        assert unfiltered[0].high == Decimal("5")
        assert banded[0].high == Decimal("1")
        assert banded[0].volume == Decimal("9")

    @pytest.mark.asyncio
    async def test_period_candles(self, pipeline: TradePipeline, source: FakeTradeSource) -> None:
        now_ms = int(time.time() * 1000)
        old_day = 1_714_521_600_000  # 2024-05-01T00:00:00Z
        source.trades = [
            make_trade(old_day + ONE_HOUR_MS, "1", "1"),
            make_trade(old_day + 5 * ONE_HOUR_MS, "1", "3"),
            make_trade(now_ms - 60_000, "1", "2"),
        ]
        await pipeline.fetch_full(PAIR)

        recent = pipeline.get_period_candles(PAIR, "1D", ONE_HOUR_MS)
        everything = pipeline.get_period_candles(PAIR, "All", ONE_HOUR_MS)

        assert len(recent) == 1
        assert recent[0].close == Decimal("2")
        # all history is charted one candle per UTC day
        assert len(everything) == 2
        assert everything[0].bucket_start == old_day
        assert (everything[0].open, everything[0].close) == (Decimal("1"), Decimal("3"))
        assert all(c.bucket_start % ONE_DAY_MS == 0 for c in everything)

    @pytest.mark.asyncio
    async def test_unknown_pair_has_no_candles(self, pipeline: TradePipeline) -> None:
        assert pipeline.get_candles("DOGECOIN", ONE_HOUR_MS) == []


class TestFetchLifecycle:
    @pytest.mark.asyncio
    async def test_fetch_resolves_new_counterparties(
        self, source: FakeTradeSource, store: TradeStore
    ) -> None:
        lookup = FakeNameLookup({"Qseller": [NameEntry(name="bob", owner="Qseller")]})
        pipeline = _build(source, store, lookup)
        source.trades = [make_trade(1, buyer="Qbuyer", seller="Qseller")]

        await pipeline.fetch_incremental(PAIR)
        await _drain(pipeline)

        assert pipeline.display_names() == {"Qbuyer": NO_NAME, "Qseller": "bob"}
        assert pipeline.get_summary(PAIR).top_seller_name == "bob"

    @pytest.mark.asyncio
    async def test_no_resolution_when_nothing_fetched(
        self, source: FakeTradeSource, store: TradeStore
    ) -> None:
        lookup = FakeNameLookup()
        pipeline = _build(source, store, lookup)

        await pipeline.fetch_full(PAIR)
        await _drain(pipeline)

        assert lookup.calls == []

    @pytest.mark.asyncio
    async def test_start_fetch_rejects_second_fetch(
        self, pipeline: TradePipeline, source: FakeTradeSource
    ) -> None:
        source.trades = [make_trade(1)]
        source.gate = asyncio.Event()

        task = pipeline.start_fetch(PAIR, FetchStrategy.FULL)
        with pytest.raises(FetchInProgressError):
            pipeline.start_fetch(PAIR, FetchStrategy.INCREMENTAL)

        await source.entered.wait()
        assert pipeline.is_fetching(PAIR)
        with pytest.raises(FetchInProgressError):
            pipeline.start_fetch(PAIR, FetchStrategy.HISTORICAL)

        source.gate.set()
        result = await task

        assert result.fetched == 1
        assert not pipeline.is_fetching(PAIR)
        # another pair is independent
        other = pipeline.start_fetch("BITCOIN", FetchStrategy.FULL)
        await other

    @pytest.mark.asyncio
    async def test_cancel_fetch(self, pipeline: TradePipeline, source: FakeTradeSource) -> None:
        assert pipeline.cancel_fetch(PAIR) is False

        source.trades = [make_trade(ts) for ts in range(1, 301)]
        source.gate = asyncio.Event()
        task = pipeline.start_fetch(PAIR, FetchStrategy.FULL)
        await source.entered.wait()

        assert pipeline.cancel_fetch(PAIR) is True
        source.gate.set()
        result = await task

        assert result.cancelled is True
        assert pipeline.state(PAIR).status is not PairStatus.FETCHING

    @pytest.mark.asyncio
    async def test_clear_cache_while_fetching(
        self, pipeline: TradePipeline, source: FakeTradeSource
    ) -> None:
        source.trades = [make_trade(ts) for ts in range(1, 6)]
        await pipeline.fetch_full(PAIR)
        assert pipeline.state(PAIR).status is PairStatus.UP_TO_DATE

        source.gate = asyncio.Event()
        source.entered.clear()
        task = pipeline.start_fetch(PAIR, FetchStrategy.INCREMENTAL)
        await source.entered.wait()
        await pipeline.clear_cache()
        source.gate.set()
        result = await task

        assert result.cancelled is True
        assert pipeline.trade_count(PAIR) == 0
        assert pipeline.state(PAIR).status is PairStatus.IDLE

    @pytest.mark.asyncio
    async def test_clear_cache(self, pipeline: TradePipeline, source: FakeTradeSource) -> None:
        source.trades = [make_trade(1, buyer="Qa")]
        await pipeline.fetch_full(PAIR)
        await pipeline.resolve_names(["Qa"])

        await pipeline.clear_cache()

        assert pipeline.trades(PAIR) == []
        assert pipeline.trade_count(PAIR) == 0
        assert pipeline.display_names() == {}
        assert pipeline.state(PAIR).status is PairStatus.IDLE

    @pytest.mark.asyncio
    async def test_pairs_lists_configured_then_cached(
        self, pipeline: TradePipeline, source: FakeTradeSource
    ) -> None:
        source.trades = [make_trade(1)]
        await pipeline.fetch_full("PIRATECHAIN")

        assert pipeline.pairs() == ["LITECOIN", "BITCOIN", "PIRATECHAIN"]

    @pytest.mark.asyncio
    async def test_history_merges_pairs(
        self, pipeline: TradePipeline, source: FakeTradeSource
    ) -> None:
        source.trades = [make_trade(1), make_trade(3)]
        await pipeline.fetch_full(PAIR)
        source.trades = [make_trade(2)]
        await pipeline.fetch_full("BITCOIN")

        rows, total_pages = pipeline.get_history(page=1, per_page=2)

        assert [(p, t.trade_timestamp) for p, t in rows] == [(PAIR, 3), ("BITCOIN", 2)]
        assert total_pages == 2


class TestPersistence:
    @pytest.mark.asyncio
    async def test_trades_survive_restart(
        self, settings: AppSettings, source: FakeTradeSource
    ) -> None:
        database = CacheDatabase(settings.cache.db_path)
        store = TradeStore(PersistentCache(database, settings.cache.key, settings.cache.version))
        source.trades = [make_trade(ts, buyer="Qa") for ts in (1_000, 2_000)]

        async with _build(source, store, database=database, auto_resolve_names=False) as first:
            await first.fetch_full(PAIR)
            await first.resolve_names(["Qa"])

        async with TradePipeline.from_settings(settings) as second:
            assert second.cache_loaded
            assert [t.trade_timestamp for t in second.trades(PAIR)] == [2_000, 1_000]
            assert second.display_names() == {"Qa": NO_NAME}
            # stored trades are years old
            assert second.needs_update(PAIR)
            assert second.show_stale_warning

    @pytest.mark.asyncio
    async def test_empty_cache_has_no_stale_warning(self, settings: AppSettings) -> None:
        async with TradePipeline.from_settings(settings) as pipeline:
            assert pipeline.cache_loaded
            assert not pipeline.show_stale_warning
            assert pipeline.pairs() == ["LITECOIN", "BITCOIN"]
