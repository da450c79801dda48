"""Abstract interfaces for the remote collaborators the pipeline reads from.

The fetch orchestrator and the name resolver depend only on these, keeping
HTTP details isolated in the concrete implementations.
"""

from abc import ABC, abstractmethod

from tradecharts.models import NameEntry, Trade


class TradeSource(ABC):
    """Read-only, paginated source of executed trades."""

    @abstractmethod
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
        """Fetch one page of trades for a pair.

        Raises TransportError on network failure or non-2xx status and
        InvalidResponseError when the body does not validate.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...


class NameLookup(ABC):
    """External registered-name service."""

    @abstractmethod
    async def lookup(self, address: str) -> list[NameEntry]:
        """Return zero or more names registered to an address."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...
