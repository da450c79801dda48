"""Counterparty address to display-name resolution.

Looks up each unknown address once through the NameLookup service and
records the answer in the TradeStore forever. A failed or empty lookup is a
final answer too (the "No Name" sentinel); it is cached like any other name
and never retried automatically.

Large sets are resolved in fixed-size batches so at most ``batch_size``
lookups are outstanding at once. A running "remaining" counter and a
cancel flag checked between batches support progress reporting and clean
shutdown.
"""

import asyncio
from collections.abc import Iterable

from tradecharts.data.store import TradeStore
from tradecharts.exceptions import PipelineError
from tradecharts.logging import get_logger
from tradecharts.models import NO_NAME, NameEntry
from tradecharts.source.client import NameLookup

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 25


def choose_name(address: str, entries: list[NameEntry]) -> str:
    """Pick the name owned by the address, else the first entry, else the sentinel."""
    entry = next((e for e in entries if e.owner == address), None)
    if entry is None and entries:
        entry = entries[0]
    name = entry.name.strip() if entry is not None else ""
    return name or NO_NAME


class NameResolver:
    """Deduplicating, batching resolver backed by the trade store's name map."""

    def __init__(
        self,
        lookup: NameLookup,
        store: TradeStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._lookup = lookup
        self._store = store
        self._batch_size = batch_size
        self._inflight: dict[str, asyncio.Task[str]] = {}
        self._cancel_events: set[asyncio.Event] = set()
        self._remaining = 0

    @property
    def names_loading(self) -> bool:
        return bool(self._cancel_events)

    @property
    def names_remaining(self) -> int:
        return self._remaining

    def cancel(self) -> None:
        """Stop every running resolve() after its current batch."""
        for event in self._cancel_events:
            event.set()

    async def resolve_known_addresses(self) -> dict[str, str]:
        """Resolve every buyer and seller address currently in the store."""
        return await self.resolve(self._store.addresses())

    async def resolve(self, addresses: Iterable[str]) -> dict[str, str]:
        """Return display names for the given addresses.

        Known addresses come straight from the store. The rest are looked up
        in batches and recorded in the store batch by batch. If cancelled,
        returns whatever was resolved before the cancel.
        """
        unique = list(dict.fromkeys(a for a in addresses if a))
        result: dict[str, str] = {}
        pending: list[str] = []
        for address in unique:
            known = self._store.display_name(address)
            if known is not None:
                result[address] = known
            else:
                pending.append(address)

        if not pending:
            return result

        cancel = asyncio.Event()
        self._cancel_events.add(cancel)
        self._remaining += len(pending)
        logger.info("name_resolution_started", unresolved=len(pending), known=len(result))

        done = 0
        try:
            for i in range(0, len(pending), self._batch_size):
                if cancel.is_set():
                    break
                batch = pending[i : i + self._batch_size]
                names = await asyncio.gather(*(self._resolve_one(a) for a in batch))
                if cancel.is_set():
                    break
                resolved = dict(zip(batch, names))
                await self._store.record_names(resolved)
                result.update(resolved)
                done += len(batch)
                self._remaining = max(self._remaining - len(batch), 0)
                logger.debug(
                    "name_batch_resolved",
                    batch=len(batch),
                    remaining=self._remaining,
                )
        finally:
            self._cancel_events.discard(cancel)
            self._remaining = max(self._remaining - (len(pending) - done), 0)

        logger.info(
            "name_resolution_cancelled" if cancel.is_set() else "name_resolution_complete",
            resolved=done,
            skipped=len(pending) - done,
        )
        return result

    async def _resolve_one(self, address: str) -> str:
        """Resolve one address, sharing the lookup with any concurrent caller."""
        task = self._inflight.get(address)
        if task is not None:
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._lookup_name(address))
        self._inflight[address] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._inflight.pop(address, None)
            else:
                task.add_done_callback(lambda _: self._inflight.pop(address, None))

    async def _lookup_name(self, address: str) -> str:
        try:
            entries = await self._lookup.lookup(address)
        except PipelineError as e:
            logger.warning("name_lookup_failed", address=address, error=str(e))
            return NO_NAME
        return choose_name(address, entries)
