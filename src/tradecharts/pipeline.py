"""Trade pipeline facade: the single entry point the UI layer talks to.

Wires the persistent store, the fetch orchestrator and the name resolver
together and exposes fetch, charting, summary and name operations plus
read-only state accessors. Only this object (through the orchestrator and
the resolver) mutates the store.

Lifecycle:
    async with TradePipeline.from_settings(settings) as pipeline:
        await pipeline.fetch_incremental("LITECOIN")
        candles = pipeline.get_candles("LITECOIN", ONE_HOUR_MS)
"""

import asyncio
import time
from typing import Self

from tradecharts.analysis.candles import aggregate_candles, aggregate_daily_candles
from tradecharts.analysis.filters import FilterPolicy, apply_filter, count_unpriceable
from tradecharts.analysis.periods import get_period, period_cutoff
from tradecharts.analysis.summary import merged_history, summarize
from tradecharts.config import AppSettings
from tradecharts.data.cache import PersistentCache
from tradecharts.data.database import CacheDatabase
from tradecharts.data.fetcher import ProgressCallback, TradeFetcher
from tradecharts.data.store import TradeStore
from tradecharts.exceptions import FetchInProgressError
from tradecharts.logging import get_logger
from tradecharts.models import (
    Candle,
    FetchResult,
    FetchStrategy,
    PairState,
    PairSummary,
    Trade,
)
from tradecharts.names.resolver import NameResolver
from tradecharts.source.client import NameLookup, TradeSource
from tradecharts.source.http_client import NodeApiClient

logger = get_logger(__name__)

_ONE_DAY_MS = 86_400 * 1000


class TradePipeline:
    """Owns the trade data pipeline components and their lifecycle."""

    def __init__(
        self,
        store: TradeStore,
        fetcher: TradeFetcher,
        resolver: NameResolver,
        default_filter: FilterPolicy | None = None,
        pairs: list[str] | None = None,
        auto_resolve_names: bool = True,
        stale_after_days: int = 7,
        database: CacheDatabase | None = None,
        clients: list[TradeSource | NameLookup] | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._resolver = resolver
        self._default_filter = default_filter or FilterPolicy()
        self._pairs = list(pairs or [])
        self._auto_resolve_names = auto_resolve_names
        self._stale_after_ms = stale_after_days * _ONE_DAY_MS
        self._database = database
        self._clients = clients or []
        self._tasks: set[asyncio.Task] = set()
        self._fetch_tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "TradePipeline":
        """Build the production wiring: SQLite cache plus the node HTTP API."""
        database = CacheDatabase(settings.cache.db_path)
        store = TradeStore(
            PersistentCache(database, settings.cache.key, settings.cache.version)
        )
        client = NodeApiClient(settings.source, lookup_limit=settings.names.lookup_limit)
        fetcher = TradeFetcher(
            client,
            store,
            page_size=settings.source.page_size,
            stale_after_days=settings.cache.stale_after_days,
        )
        resolver = NameResolver(client, store, batch_size=settings.names.batch_size)
        return cls(
            store=store,
            fetcher=fetcher,
            resolver=resolver,
            default_filter=FilterPolicy.from_settings(settings.filter),
            pairs=settings.pairs,
            auto_resolve_names=settings.names.auto_resolve,
            stale_after_days=settings.cache.stale_after_days,
            database=database,
            clients=[client],
        )

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def load(self) -> None:
        """Open the cache and restore the store. Must finish before any write."""
        if self._database is not None and not self._database.is_connected:
            await self._database.connect()
        await self._store.load()
        self._fetcher.refresh_staleness()
        logger.info(
            "pipeline_loaded",
            pairs=len(self._store.pairs()),
            stale_warning=self.show_stale_warning,
        )

    async def close(self) -> None:
        """Stop background work, flush the store and release connections."""
        self._fetcher.cancel_all()
        self._resolver.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._store.close()
        for client in self._clients:
            await client.close()
        if self._database is not None:
            await self._database.close()
        logger.info("pipeline_closed")

    async def __aenter__(self) -> Self:
        await self.load()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    # ──────────────────────────────────────────────
    # Read-only state
    # ──────────────────────────────────────────────

    @property
    def cache_loaded(self) -> bool:
        return self._store.is_loaded

    @property
    def show_stale_warning(self) -> bool:
        """True when the cache holds trades but none of them are recent."""
        if not any(self._store.count(p) for p in self._store.pairs()):
            return False
        now_ms = int(time.time() * 1000)
        return not self._store.has_recent_trades(now_ms, self._stale_after_ms)

    @property
    def default_filter(self) -> FilterPolicy:
        return self._default_filter

    @property
    def names_loading(self) -> bool:
        return self._resolver.names_loading

    @property
    def names_remaining(self) -> int:
        return self._resolver.names_remaining

    def pairs(self) -> list[str]:
        """Configured pairs followed by any other pair present in the cache."""
        extra = [p for p in self._store.pairs() if p not in self._pairs]
        return self._pairs + extra

    def trades(self, pair: str) -> list[Trade]:
        return self._store.trades(pair)

    def trade_count(self, pair: str) -> int:
        return self._store.count(pair)

    def state(self, pair: str) -> PairState:
        return self._fetcher.state(pair)

    def is_fetching(self, pair: str) -> bool:
        return self._fetcher.is_fetching(pair)

    def fetch_progress(self, pair: str) -> int:
        return self._fetcher.fetch_progress(pair)

    def needs_update(self, pair: str) -> bool:
        return self._fetcher.needs_update(pair)

    def display_names(self) -> dict[str, str]:
        return self._store.display_names()

    # ──────────────────────────────────────────────
    # Fetching
    # ──────────────────────────────────────────────

    async def fetch_full(
        self, pair: str, progress_callback: ProgressCallback | None = None
    ) -> FetchResult:
        return await self.fetch(pair, FetchStrategy.FULL, progress_callback)

    async def fetch_incremental(
        self, pair: str, progress_callback: ProgressCallback | None = None
    ) -> FetchResult:
        return await self.fetch(pair, FetchStrategy.INCREMENTAL, progress_callback)

    async def fetch_historical(
        self, pair: str, progress_callback: ProgressCallback | None = None
    ) -> FetchResult:
        return await self.fetch(pair, FetchStrategy.HISTORICAL, progress_callback)

    async def fetch(
        self,
        pair: str,
        strategy: FetchStrategy,
        progress_callback: ProgressCallback | None = None,
    ) -> FetchResult:
        """Run a fetch strategy and, if enabled, queue name resolution for new counterparties."""
        result = await self._fetcher.fetch(pair, strategy, progress_callback)
        if self._auto_resolve_names and result.fetched:
            self._spawn(self._resolver.resolve_known_addresses(), name=f"names:{pair}")
        return result

    def start_fetch(self, pair: str, strategy: FetchStrategy) -> asyncio.Task:
        """Run a fetch in the background and return its task.

        Raises FetchInProgressError immediately instead of queueing a second
        fetch behind the running one.
        """
        pending = self._fetch_tasks.get(pair)
        if self._fetcher.is_fetching(pair) or (pending is not None and not pending.done()):
            raise FetchInProgressError(pair)
        task = self._spawn(self.fetch(pair, strategy), name=f"fetch:{strategy.value}:{pair}")
        self._fetch_tasks[pair] = task
        return task

    def cancel_fetch(self, pair: str) -> bool:
        return self._fetcher.cancel(pair)

    async def clear_cache(self) -> None:
        """Cancel in-flight work and drop every stored trade and name."""
        self._fetcher.cancel_all()
        self._resolver.cancel()
        await self._store.clear()
        self._fetcher.reset()

    # ──────────────────────────────────────────────
    # Charting and summaries
    # ──────────────────────────────────────────────

    def get_candles(
        self,
        pair: str,
        interval_ms: int,
        period_cutoff_ms: int = 0,
        filter_policy: FilterPolicy | None = None,
        daily: bool = False,
    ) -> list[Candle]:
        """Candles for a pair's trades at or after the cutoff, outliers removed first."""
        trades = self._store.trades(pair)
        if period_cutoff_ms:
            trades = [t for t in trades if t.trade_timestamp >= period_cutoff_ms]

        dropped = count_unpriceable(trades)
        if dropped:
            logger.debug("unpriceable_trades_skipped", pair=pair, dropped=dropped)

        policy = filter_policy or self._default_filter
        filtered = apply_filter(trades, policy)
        logger.debug(
            "trades_filtered",
            pair=pair,
            policy=policy.kind,
            kept=len(filtered),
            total=len(trades),
        )
        if daily:
            return aggregate_daily_candles(filtered)
        return aggregate_candles(filtered, interval_ms)

    def get_period_candles(
        self,
        pair: str,
        period: str,
        interval_ms: int,
        filter_policy: FilterPolicy | None = None,
    ) -> list[Candle]:
        """Candles for a named chart period; month-scale periods use daily candles."""
        return self.get_candles(
            pair,
            interval_ms,
            period_cutoff(period),
            filter_policy,
            daily=get_period(period).uses_daily_candles,
        )

    def get_summary(self, pair: str) -> PairSummary:
        return summarize(pair, self._store.trades(pair), self._store.display_names())

    def get_history(self, page: int = 1, per_page: int = 100) -> tuple[list[tuple[str, Trade]], int]:
        pair_trades = {p: self._store.trades(p) for p in self._store.pairs()}
        return merged_history(pair_trades, page, per_page)

    async def resolve_names(self, addresses: list[str]) -> dict[str, str]:
        return await self._resolver.resolve(addresses)

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    def _spawn(self, coro, name: str) -> asyncio.Task:  # type: ignore[no-untyped-def]
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # The fetcher already moved the pair to ERROR; this only records the failure
            logger.warning("background_task_failed", task=task.get_name(), error=str(error))
