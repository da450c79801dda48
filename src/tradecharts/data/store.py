"""In-memory trade store mirrored to the persistent cache.

TradeStore is the single owner of the per-pair trade sets and the display
name map. Every mutation updates memory synchronously and then persists the
whole record, so between two awaits the store is always consistent.

The store refuses to write anything until load() has completed. A save that
ran ahead of the load would replace the durable cache with an empty one.
"""

import asyncio
from collections.abc import Iterable, Mapping

from tradecharts.data.cache import CacheRecord, PersistentCache
from tradecharts.exceptions import CacheNotLoadedError
from tradecharts.logging import get_logger
from tradecharts.models import Trade

logger = get_logger(__name__)


class TradeStore:
    """Pair-keyed trade sets plus resolved display names.

    Usage:
        store = TradeStore(PersistentCache(database, key, version))
        await store.load()
        await store.set_trades("LITECOIN", trades)
        ...
        await store.close()

    Passing ``cache=None`` gives a purely in-memory store (still subject to
    the load-before-write rule).
    """

    def __init__(self, cache: PersistentCache | None = None) -> None:
        self._cache = cache
        self._pair_trades: dict[str, list[Trade]] = {}
        self._display_names: dict[str, str] = {}
        self._loaded = False
        self._save_lock = asyncio.Lock()

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """Restore state from the cache. Safe to call once at startup."""
        record = await self._cache.load() if self._cache is not None else None
        if record is not None:
            self._pair_trades = {p: list(t) for p, t in record.pair_trades.items()}
            self._display_names = dict(record.display_names)
        else:
            self._pair_trades = {}
            self._display_names = {}
        self._loaded = True

    async def flush(self) -> None:
        """Write the current state to the cache."""
        self._require_loaded()
        if self._cache is None:
            return
        async with self._save_lock:
            # Snapshot under the lock so the last writer always carries the newest state
            await self._cache.save(self._snapshot())

    async def close(self) -> None:
        """Flush and stop accepting writes until the next load()."""
        if self._loaded:
            await self.flush()
        self._loaded = False

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    def pairs(self) -> list[str]:
        return list(self._pair_trades)

    def has_pair(self, pair: str) -> bool:
        return pair in self._pair_trades

    def trades(self, pair: str) -> list[Trade]:
        """Return a copy of the pair's trade set in stored order."""
        return list(self._pair_trades.get(pair, ()))

    def count(self, pair: str) -> int:
        return len(self._pair_trades.get(pair, ()))

    def latest_timestamp(self, pair: str) -> int:
        """Newest stored trade timestamp for a pair, 0 when there are none."""
        trades = self._pair_trades.get(pair)
        if not trades:
            return 0
        return max(t.trade_timestamp for t in trades)

    def earliest_timestamp(self, pair: str) -> int | None:
        """Oldest stored trade timestamp for a pair, None when there are none."""
        trades = self._pair_trades.get(pair)
        if not trades:
            return None
        return min(t.trade_timestamp for t in trades)

    def display_name(self, address: str) -> str | None:
        return self._display_names.get(address)

    def display_names(self) -> dict[str, str]:
        return dict(self._display_names)

    def addresses(self) -> set[str]:
        """Every buyer and seller address seen across all pairs."""
        found: set[str] = set()
        for trades in self._pair_trades.values():
            for t in trades:
                if t.buyer_receiving_address:
                    found.add(t.buyer_receiving_address)
                if t.seller_address:
                    found.add(t.seller_address)
        return found

    def has_recent_trades(self, now_ms: int, max_age_ms: int) -> bool:
        """True when at least one pair has a trade newer than max_age_ms."""
        return any(
            now_ms - self.latest_timestamp(pair) < max_age_ms
            for pair, trades in self._pair_trades.items()
            if trades
        )

    # ──────────────────────────────────────────────
    # Writes
    # ──────────────────────────────────────────────

    async def set_trades(self, pair: str, trades: Iterable[Trade]) -> None:
        """Replace a pair's trade set wholesale and persist."""
        self._require_loaded()
        self._pair_trades[pair] = list(trades)
        await self.flush()

    async def record_names(self, names: Mapping[str, str]) -> None:
        """Add resolved display names. Existing entries are never overwritten."""
        self._require_loaded()
        added = {a: n for a, n in names.items() if a not in self._display_names}
        if not added:
            return
        self._display_names.update(added)
        await self.flush()

    async def clear(self) -> None:
        """Drop every pair and name, in memory and in the cache slot."""
        self._require_loaded()
        self._pair_trades = {}
        self._display_names = {}
        if self._cache is not None:
            async with self._save_lock:
                await self._cache.clear()
        logger.info("trade_store_cleared")

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    def _require_loaded(self) -> None:
        if not self._loaded:
            raise CacheNotLoadedError("Trade store written before load() completed")

    def _snapshot(self) -> CacheRecord:
        # Lists are shared, not copied: writes always install a new list, which
        # lets the cache skip re-encoding pairs that did not change
        return CacheRecord(
            pair_trades=dict(self._pair_trades),
            display_names=dict(self._display_names),
        )
