"""Trade data persistence and fetching.

Provides the SQLite-backed cache slot, the in-memory trade store that
mirrors it, and the paginated fetch orchestrator that fills the store.
"""

from tradecharts.data.cache import CacheRecord, PersistentCache
from tradecharts.data.database import CacheDatabase
from tradecharts.data.fetcher import TradeFetcher
from tradecharts.data.store import TradeStore

__all__ = [
    "CacheDatabase",
    "CacheRecord",
    "PersistentCache",
    "TradeFetcher",
    "TradeStore",
]
