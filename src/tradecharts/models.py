"""Core data models for the trade candle pipeline.

Trade records cross the process boundary (node API, cache slot, HTTP API)
and are therefore pydantic models validated strictly on the way in. Everything
derived from them is a plain dataclass.

CRITICAL: All prices and amounts use Decimal. Never use float for price math.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

NO_NAME = "No Name"


class Trade(BaseModel):
    """A single executed cross-chain trade as reported by the node.

    Immutable once fetched. Unknown wire fields (``btcAmount`` and friends)
    are dropped; amounts stay as the decimal strings the node sends.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    trade_timestamp: int = Field(alias="tradeTimestamp")
    qort_amount: str = Field(alias="qortAmount")
    foreign_amount: str = Field(alias="foreignAmount")
    buyer_receiving_address: str | None = Field(default=None, alias="buyerReceivingAddress")
    seller_address: str | None = Field(default=None, alias="sellerAddress")

    @property
    def qort(self) -> Decimal | None:
        """Base-asset quantity, or None when it is not a finite positive number."""
        try:
            qort = Decimal(self.qort_amount)
        except InvalidOperation:
            return None
        if not qort.is_finite() or qort <= 0:
            return None
        return qort

    @property
    def price(self) -> Decimal | None:
        """Quote per base unit, or None when the trade is not valid for pricing."""
        qort = self.qort
        if qort is None:
            return None
        try:
            foreign = Decimal(self.foreign_amount)
        except InvalidOperation:
            return None
        if not foreign.is_finite():
            return None
        try:
            price = foreign / qort
        except ArithmeticError:
            # Ratio outside the decimal context (Overflow and friends)
            return None
        if not price.is_finite() or price <= 0:
            return None
        return price

    @property
    def is_priceable(self) -> bool:
        return self.price is not None

    def to_wire(self) -> dict:
        """Serialize back to the camelCase shape the node and the cache use."""
        return self.model_dump(by_alias=True, exclude_none=True)


class NameEntry(BaseModel):
    """One registered name returned by the name lookup service."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    owner: str


@dataclass
class Candle:
    """OHLCV summary of one time bucket.

    Derived from trades on demand and never persisted.
    """

    bucket_start: int  # epoch ms
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal

    def to_dict(self) -> dict:
        return {
            "bucket_start": self.bucket_start,
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": str(self.volume),
        }


class FetchStrategy(str, Enum):
    """How the fetch orchestrator pages through the trade source."""

    FULL = "full"
    INCREMENTAL = "incremental"
    HISTORICAL = "historical"


class PairStatus(str, Enum):
    """Lifecycle state of a single pair, driven only by the fetch orchestrator."""

    IDLE = "idle"
    FETCHING = "fetching"
    ERROR = "error"
    UP_TO_DATE = "up_to_date"
    STALE = "stale"


@dataclass
class PairState:
    """Current fetch state of one pair."""

    status: PairStatus = PairStatus.IDLE
    strategy: FetchStrategy | None = None
    progress: int = 0  # records fetched so far by the running (or last) fetch
    error: str | None = None
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "strategy": self.strategy.value if self.strategy else None,
            "progress": self.progress,
            "error": self.error,
            "updated_at": self.updated_at,
        }


@dataclass
class FetchProgress:
    """Progress event emitted after every committed page."""

    pair: str
    strategy: FetchStrategy
    page: int
    fetched: int


@dataclass
class FetchResult:
    """Terminal outcome of one fetch strategy run."""

    pair: str
    strategy: FetchStrategy
    fetched: int
    stored: int
    pages: int
    cancelled: bool = False


@dataclass
class PairSummary:
    """Simple per-pair aggregates for the trade summary view."""

    pair: str
    trade_count: int
    volume: Decimal  # base asset
    foreign_volume: Decimal  # quote asset
    high: Decimal | None = None
    low: Decimal | None = None
    last_price: Decimal | None = None
    first_timestamp: int | None = None
    last_timestamp: int | None = None
    top_buyer: str | None = None
    top_buyer_name: str | None = None
    top_buyer_volume: Decimal = Decimal("0")
    top_seller: str | None = None
    top_seller_name: str | None = None
    top_seller_volume: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        def _opt(value: Decimal | None) -> str | None:
            return str(value) if value is not None else None

        return {
            "pair": self.pair,
            "trade_count": self.trade_count,
            "volume": str(self.volume),
            "foreign_volume": str(self.foreign_volume),
            "high": _opt(self.high),
            "low": _opt(self.low),
            "last_price": _opt(self.last_price),
            "first_timestamp": self.first_timestamp,
            "last_timestamp": self.last_timestamp,
            "top_buyer": self.top_buyer,
            "top_buyer_name": self.top_buyer_name,
            "top_buyer_volume": str(self.top_buyer_volume),
            "top_seller": self.top_seller,
            "top_seller_name": self.top_seller_name,
            "top_seller_volume": str(self.top_seller_volume),
        }
