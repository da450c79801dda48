"""Paginated trade fetch orchestrator with three strategies.

Pages through the node's /crosschain/trades endpoint and merges the results
into the TradeStore:

- FULL: newest-first from the beginning of time until a short page.
- INCREMENTAL: newest-first, only trades after the latest stored timestamp;
  new trades are prepended.
- HISTORICAL: oldest-first, only trades before the earliest stored timestamp,
  until an empty page; old trades are appended. Degrades to FULL on an
  empty store.

CRITICAL implementation notes:
- A page shorter than page_size is the only exhaustion signal the node gives
  (no total count is available).
- Pages are committed one at a time. Each commit is a single set_trades()
  call, so a failure or cancellation mid-fetch leaves the last committed page
  in place and never a half-merged set.
- One fetch per pair at a time. A second request while one is running raises
  FetchInProgressError instead of racing on the store.
- No automatic retry. Transport errors put the pair in ERROR and propagate.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable

from tradecharts.data.store import TradeStore
from tradecharts.exceptions import FetchInProgressError
from tradecharts.logging import get_logger
from tradecharts.models import (
    FetchProgress,
    FetchResult,
    FetchStrategy,
    PairState,
    PairStatus,
    Trade,
)
from tradecharts.source.client import TradeSource

logger = get_logger(__name__)

ProgressCallback = Callable[[FetchProgress], Awaitable[None]]

DEFAULT_PAGE_SIZE = 100
_ONE_DAY_MS = 86_400 * 1000


class TradeFetcher:
    """Runs fetch strategies against a TradeSource and owns per-pair fetch state.

    Usage:
        fetcher = TradeFetcher(source, store)
        result = await fetcher.fetch("LITECOIN", FetchStrategy.INCREMENTAL)
    """

    def __init__(
        self,
        source: TradeSource,
        store: TradeStore,
        page_size: int = DEFAULT_PAGE_SIZE,
        stale_after_days: int = 7,
    ) -> None:
        self._source = source
        self._store = store
        self._page_size = page_size
        self._stale_after_ms = stale_after_days * _ONE_DAY_MS
        self._states: dict[str, PairState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._generation = 0  # bumped by reset()

    # ──────────────────────────────────────────────
    # State accessors
    # ──────────────────────────────────────────────

    def state(self, pair: str) -> PairState:
        return self._states.get(pair) or PairState()

    def states(self) -> dict[str, PairState]:
        return dict(self._states)

    def is_fetching(self, pair: str) -> bool:
        return self.state(pair).status is PairStatus.FETCHING

    def fetch_progress(self, pair: str) -> int:
        return self.state(pair).progress

    def needs_update(self, pair: str) -> bool:
        return self.state(pair).status is PairStatus.STALE

    def refresh_staleness(self, now_ms: int | None = None) -> None:
        """Mark idle pairs whose newest stored trade is too old as STALE.

        Called after the cache is loaded and whenever the caller wants the
        freshness flags re-evaluated. Pairs that are fetching or in error are
        left alone.
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        for pair in self._store.pairs():
            current = self.state(pair).status
            if current not in (PairStatus.IDLE, PairStatus.UP_TO_DATE, PairStatus.STALE):
                continue
            if not self._store.count(pair):
                continue
            age = now_ms - self._store.latest_timestamp(pair)
            status = PairStatus.STALE if age >= self._stale_after_ms else PairStatus.UP_TO_DATE
            if status is not current:
                self._set_state(pair, status)

    def reset(self) -> None:
        """Forget the state of every pair that is not currently fetching.

        Fetches still running when this is called finish as IDLE, whatever
        the pair's status was before they started.
        """
        self._generation += 1
        self._states = {
            pair: state
            for pair, state in self._states.items()
            if state.status is PairStatus.FETCHING
        }

    # ──────────────────────────────────────────────
    # Cancellation
    # ──────────────────────────────────────────────

    def cancel(self, pair: str) -> bool:
        """Ask the running fetch for a pair to stop after its current page.

        Returns False when nothing is running for the pair.
        """
        event = self._cancel_events.get(pair)
        if event is None:
            return False
        event.set()
        logger.info("fetch_cancel_requested", pair=pair)
        return True

    def cancel_all(self) -> int:
        for event in self._cancel_events.values():
            event.set()
        return len(self._cancel_events)

    # ──────────────────────────────────────────────
    # Public fetch entry points
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
        """Run one strategy to completion, cancellation or failure.

        Raises FetchInProgressError when the pair already has a fetch running,
        and re-raises whatever aborted the strategy after moving the pair to
        ERROR.
        """
        lock = self._locks.setdefault(pair, asyncio.Lock())
        if lock.locked():
            raise FetchInProgressError(pair)

        async with lock:
            if strategy is FetchStrategy.HISTORICAL and not self._store.count(pair):
                logger.info("historical_fetch_degraded_to_full", pair=pair)
                strategy = FetchStrategy.FULL

            previous = self.state(pair).status
            generation = self._generation
            cancel = asyncio.Event()
            self._cancel_events[pair] = cancel
            self._set_state(pair, PairStatus.FETCHING, strategy=strategy)
            start_time = time.monotonic()
            logger.info("fetch_started", pair=pair, strategy=strategy.value)

            try:
                if strategy is FetchStrategy.FULL:
                    result = await self._fetch_full(pair, cancel, progress_callback)
                elif strategy is FetchStrategy.INCREMENTAL:
                    result = await self._fetch_incremental(pair, cancel, progress_callback)
                else:
                    result = await self._fetch_historical(pair, cancel, progress_callback)
            except asyncio.CancelledError:
                self._set_state(pair, PairStatus.IDLE, strategy=strategy)
                logger.warning("fetch_task_cancelled", pair=pair, strategy=strategy.value)
                raise
            except Exception as e:
                self._set_state(
                    pair,
                    PairStatus.ERROR,
                    strategy=strategy,
                    error=str(e) or type(e).__name__,
                )
                logger.error(
                    "fetch_failed",
                    pair=pair,
                    strategy=strategy.value,
                    error=str(e),
                    committed=self._store.count(pair),
                )
                raise
            finally:
                self._cancel_events.pop(pair, None)

            if generation != self._generation:
                # The store was reset under this fetch; its old freshness is gone
                previous = PairStatus.IDLE
            self._set_state(
                pair,
                self._final_status(strategy, previous, result.cancelled),
                strategy=strategy,
                progress=result.fetched,
            )
            logger.info(
                "fetch_cancelled" if result.cancelled else "fetch_complete",
                pair=pair,
                strategy=strategy.value,
                fetched=result.fetched,
                stored=result.stored,
                pages=result.pages,
                duration_seconds=round(time.monotonic() - start_time, 2),
            )
            return result

    # ──────────────────────────────────────────────
    # Strategies
    # ──────────────────────────────────────────────

    async def _fetch_full(
        self,
        pair: str,
        cancel: asyncio.Event,
        progress_callback: ProgressCallback | None,
    ) -> FetchResult:
        """Fetch the whole history newest-first and replace the stored set.

        Intermediate commits keep any previously stored trades older than
        what has been re-fetched so far, so a cancelled or failed full fetch
        never leaves less data than it started with. The final commit is
        exactly the fetched set.
        """
        existing = self._store.trades(pair)
        accumulated: list[Trade] = []
        pages = 0
        exhausted = False

        async for page in self._pages(pair, cancel, reverse=True):
            if cancel.is_set():
                break
            pages += 1
            accumulated.extend(page)
            exhausted = len(page) < self._page_size
            if exhausted:
                await self._store.set_trades(pair, accumulated)
            else:
                await self._store.set_trades(
                    pair, accumulated + _older_unfetched(existing, accumulated)
                )
            await self._report(pair, FetchStrategy.FULL, pages, len(accumulated), progress_callback)

        return FetchResult(
            pair=pair,
            strategy=FetchStrategy.FULL,
            fetched=len(accumulated),
            stored=self._store.count(pair),
            pages=pages,
            cancelled=not exhausted,
        )

    async def _fetch_incremental(
        self,
        pair: str,
        cancel: asyncio.Event,
        progress_callback: ProgressCallback | None,
    ) -> FetchResult:
        """Fetch trades strictly newer than the latest stored one and prepend them."""
        existing = self._store.trades(pair)
        latest = self._store.latest_timestamp(pair)
        new_trades: list[Trade] = []
        pages = 0
        exhausted = False

        async for page in self._pages(pair, cancel, reverse=True, minimum_timestamp=latest + 1):
            if cancel.is_set():
                break
            pages += 1
            exhausted = len(page) < self._page_size
            fresh = [t for t in page if t.trade_timestamp > latest]
            if fresh:
                new_trades.extend(fresh)
                await self._store.set_trades(pair, new_trades + existing)
            await self._report(
                pair, FetchStrategy.INCREMENTAL, pages, len(new_trades), progress_callback
            )

        return FetchResult(
            pair=pair,
            strategy=FetchStrategy.INCREMENTAL,
            fetched=len(new_trades),
            stored=self._store.count(pair),
            pages=pages,
            cancelled=not exhausted,
        )

    async def _fetch_historical(
        self,
        pair: str,
        cancel: asyncio.Event,
        progress_callback: ProgressCallback | None,
    ) -> FetchResult:
        """Fetch trades older than the earliest stored one and append them."""
        existing = self._store.trades(pair)
        earliest = self._store.earliest_timestamp(pair)
        assert earliest is not None  # empty stores were degraded to FULL
        older_trades: list[Trade] = []
        pages = 0
        exhausted = False

        async for page in self._pages(
            pair,
            cancel,
            reverse=False,
            maximum_timestamp=earliest - 1,
            until_empty=True,
        ):
            if cancel.is_set():
                break
            if not page:
                exhausted = True
                break
            pages += 1
            older = [t for t in page if t.trade_timestamp < earliest]
            if older:
                older_trades.extend(older)
                await self._store.set_trades(pair, existing + older_trades)
            await self._report(
                pair, FetchStrategy.HISTORICAL, pages, len(older_trades), progress_callback
            )

        return FetchResult(
            pair=pair,
            strategy=FetchStrategy.HISTORICAL,
            fetched=len(older_trades),
            stored=self._store.count(pair),
            pages=pages,
            cancelled=not exhausted,
        )

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    async def _pages(
        self,
        pair: str,
        cancel: asyncio.Event,
        *,
        reverse: bool,
        minimum_timestamp: int | None = None,
        maximum_timestamp: int | None = None,
        until_empty: bool = False,
    ) -> AsyncIterator[list[Trade]]:
        """Yield successive pages, one request at a time.

        Stops after a short page, or after an empty page when ``until_empty``
        is set (the empty page is still yielded). Checks the cancel flag
        before every request.
        """
        offset = 0
        while not cancel.is_set():
            page = await self._source.fetch_trades(
                pair,
                limit=self._page_size,
                offset=offset,
                reverse=reverse,
                minimum_timestamp=minimum_timestamp,
                maximum_timestamp=maximum_timestamp,
            )
            logger.debug(
                "trade_page_fetched",
                pair=pair,
                offset=offset,
                records=len(page),
            )
            yield page
            if until_empty:
                if not page:
                    return
            elif len(page) < self._page_size:
                return
            offset += len(page)

    async def _report(
        self,
        pair: str,
        strategy: FetchStrategy,
        page: int,
        fetched: int,
        progress_callback: ProgressCallback | None,
    ) -> None:
        self._set_state(pair, PairStatus.FETCHING, strategy=strategy, progress=fetched)
        if progress_callback is not None:
            await progress_callback(
                FetchProgress(pair=pair, strategy=strategy, page=page, fetched=fetched)
            )

    def _set_state(
        self,
        pair: str,
        status: PairStatus,
        strategy: FetchStrategy | None = None,
        progress: int | None = None,
        error: str | None = None,
    ) -> None:
        current = self.state(pair)
        if progress is None:
            starting = status is PairStatus.FETCHING and current.status is not PairStatus.FETCHING
            progress = 0 if starting else current.progress
        self._states[pair] = PairState(
            status=status,
            strategy=strategy if strategy is not None else current.strategy,
            progress=progress,
            error=error,
        )

    @staticmethod
    def _final_status(
        strategy: FetchStrategy, previous: PairStatus, cancelled: bool
    ) -> PairStatus:
        if not cancelled and strategy is not FetchStrategy.HISTORICAL:
            return PairStatus.UP_TO_DATE
        # Historical fetches and cancelled runs do not change freshness
        if previous in (PairStatus.UP_TO_DATE, PairStatus.STALE):
            return previous
        return PairStatus.IDLE


def _older_unfetched(existing: list[Trade], fetched: list[Trade]) -> list[Trade]:
    """Stored trades at or below the oldest fetched timestamp not yet re-fetched."""
    if not fetched:
        return list(existing)
    boundary = min(t.trade_timestamp for t in fetched)
    seen = set(fetched)
    return [t for t in existing if t.trade_timestamp <= boundary and t not in seen]
