"""aiohttp implementations of the trade source and name lookup.

Both talk to the same node REST API and share one ClientSession. Responses
are validated with pydantic before anything downstream sees them, so a
malformed payload surfaces as InvalidResponseError instead of NaN prices.
"""

import asyncio
from typing import Any, Self

import aiohttp
from pydantic import TypeAdapter, ValidationError

from tradecharts.config import SourceSettings
from tradecharts.exceptions import InvalidResponseError, TransportError
from tradecharts.logging import get_logger
from tradecharts.models import NameEntry, Trade
from tradecharts.source.client import NameLookup, TradeSource

logger = get_logger(__name__)

_TRADES = TypeAdapter(list[Trade])
_NAMES = TypeAdapter(list[NameEntry])


class NodeApiClient(TradeSource, NameLookup):
    """Async client for the node's /crosschain/trades and /names endpoints.

    Usage:
        async with NodeApiClient(settings.source) as client:
            page = await client.fetch_trades("LITECOIN", limit=100)
    """

    def __init__(
        self,
        settings: SourceSettings,
        session: aiohttp.ClientSession | None = None,
        lookup_limit: int = 1,
    ) -> None:
        self._base_url = settings.base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=settings.request_timeout)
        self._session = session
        self._owns_session = session is None
        self._lookup_limit = lookup_limit

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("node_api_session_closed")

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    # ──────────────────────────────────────────────
    # Endpoints
    # ──────────────────────────────────────────────

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
        params: dict[str, str] = {
            "foreignBlockchain": pair,
            "limit": str(limit),
            "offset": str(offset),
            "reverse": "true" if reverse else "false",
        }
        # A zero lower bound means "no bound" to the node
        if minimum_timestamp:
            params["minimumTimestamp"] = str(minimum_timestamp)
        if maximum_timestamp is not None:
            params["maximumTimestamp"] = str(maximum_timestamp)

        payload = await self._get_json("/crosschain/trades", params)
        try:
            return _TRADES.validate_python(payload)
        except ValidationError as e:
            raise InvalidResponseError(
                f"Malformed trade page for {pair}: {e.error_count()} validation errors"
            ) from e

    async def lookup(self, address: str) -> list[NameEntry]:
        params = {
            "limit": str(self._lookup_limit),
            "offset": "0",
            "reverse": "false",
        }
        payload = await self._get_json(f"/names/address/{address}", params)
        try:
            return _NAMES.validate_python(payload)
        except ValidationError as e:
            raise InvalidResponseError(f"Malformed name list for {address}") from e

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    async def _get_json(self, path: str, params: dict[str, str]) -> Any:
        """GET a JSON document, mapping every transport failure to TransportError."""
        session = await self._get_session()
        url = f"{self._base_url}{path}"
        try:
            async with session.get(url, params=params, timeout=self._timeout) as resp:
                if resp.status < 200 or resp.status >= 300:
                    raise TransportError(f"HTTP {resp.status} from {path}", status=resp.status)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise InvalidResponseError(f"Non-JSON body from {path}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Request to {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request to {path} timed out") from e
