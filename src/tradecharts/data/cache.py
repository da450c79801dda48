"""Versioned persistent cache slot for the trade store.

Serializes ``{version, pairTrades, displayNames}`` as one JSON document under
a single key. A payload that is missing, unparsable, the wrong shape or the
wrong version is treated as absent: the caller starts from an empty store
and the next save overwrites it. There is no migration path between versions.
"""

import json
import time
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tradecharts.data.database import CacheDatabase
from tradecharts.logging import get_logger
from tradecharts.models import Trade

logger = get_logger(__name__)


@dataclass
class CacheRecord:
    """In-memory form of the cache slot."""

    pair_trades: dict[str, list[Trade]] = field(default_factory=dict)
    display_names: dict[str, str] = field(default_factory=dict)


class _CachePayload(BaseModel):
    """Wire shape of the persisted document, used for strict validation on load."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: int
    pair_trades: dict[str, list[Trade]] = Field(alias="pairTrades")
    display_names: dict[str, str] = Field(default_factory=dict, alias="displayNames")


class PersistentCache:
    """Reads and writes the cache record through a CacheDatabase."""

    def __init__(self, database: CacheDatabase, key: str, version: int) -> None:
        self._database = database
        self._key = key
        self._version = version
        # pair -> (trade list it was encoded from, JSON array text)
        self._encoded: dict[str, tuple[list[Trade], str]] = {}

    @property
    def version(self) -> int:
        return self._version

    async def load(self) -> CacheRecord | None:
        """Return the stored record, or None when absent or unusable."""
        raw = await self._database.get(self._key)
        if raw is None:
            logger.info("cache_empty", key=self._key)
            return None

        try:
            document = json.loads(raw)
        except ValueError as e:
            logger.warning("cache_discarded", key=self._key, reason="malformed_json", error=str(e))
            return None

        if not isinstance(document, dict) or document.get("version") != self._version:
            found = document.get("version") if isinstance(document, dict) else None
            logger.warning(
                "cache_discarded",
                key=self._key,
                reason="version_mismatch",
                expected=self._version,
                found=found,
            )
            return None

        try:
            payload = _CachePayload.model_validate(document)
        except ValidationError as e:
            logger.warning(
                "cache_discarded",
                key=self._key,
                reason="invalid_shape",
                errors=e.error_count(),
            )
            return None

        record = CacheRecord(
            pair_trades=payload.pair_trades,
            display_names=payload.display_names,
        )
        logger.info(
            "cache_loaded",
            key=self._key,
            pairs=len(record.pair_trades),
            trades=sum(len(t) for t in record.pair_trades.values()),
            names=len(record.display_names),
        )
        return record

    async def save(self, record: CacheRecord) -> None:
        """Write the record, re-encoding only pairs whose trade list changed.

        A pair is re-encoded when its list is a different object from the one
        saved last time, so callers must replace lists rather than mutate them
        in place (TradeStore always does).
        """
        fragments = {
            pair: self._encode_pair(pair, trades)
            for pair, trades in record.pair_trades.items()
        }
        for pair in set(self._encoded) - set(fragments):
            del self._encoded[pair]

        pair_trades = ",".join(
            f"{json.dumps(pair)}:{fragment}" for pair, fragment in fragments.items()
        )
        document = (
            f'{{"version":{json.dumps(self._version)},'
            f'"pairTrades":{{{pair_trades}}},'
            f'"displayNames":{json.dumps(record.display_names)}}}'
        )
        await self._database.put(self._key, document, int(time.time() * 1000))

    async def clear(self) -> None:
        self._encoded.clear()
        await self._database.delete(self._key)
        logger.info("cache_cleared", key=self._key)

    def _encode_pair(self, pair: str, trades: list[Trade]) -> str:
        cached = self._encoded.get(pair)
        if cached is not None and cached[0] is trades:
            return cached[1]
        fragment = _encode_trades(trades)
        self._encoded[pair] = (trades, fragment)
        return fragment


def _encode_trades(trades: list[Trade]) -> str:
    return json.dumps([t.to_wire() for t in trades])
