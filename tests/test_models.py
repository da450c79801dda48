"""Tests for trade validation, pricing and wire serialization."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from tests.conftest import make_trade
from tradecharts.analysis.candles import ONE_HOUR_MS, aggregate_candles
from tradecharts.analysis.filters import percentile_filter, weighted_average_filter
from tradecharts.analysis.summary import summarize
from tradecharts.models import FetchStrategy, PairState, PairStatus, Trade


class TestTrade:
    def test_parses_wire_shape(self) -> None:
        trade = Trade.model_validate(
            {
                "tradeTimestamp": 1_700_000_000_000,
                "qortAmount": "100",
                "foreignAmount": "0.5",
                "btcAmount": "0.5",
                "sellerAddress": "Qseller",
            }
        )

        assert trade.trade_timestamp == 1_700_000_000_000
        assert trade.seller_address == "Qseller"
        assert trade.buyer_receiving_address is None
        assert trade.price == Decimal("0.005")

    def test_numbers_are_kept_as_decimal_strings(self) -> None:
        trade = Trade.model_validate({"tradeTimestamp": 1, "qortAmount": 4, "foreignAmount": 0.1})

        assert trade.qort_amount == "4"
        assert trade.foreign_amount == "0.1"
        assert trade.price == Decimal("0.025")

    def test_missing_timestamp_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Trade.model_validate({"qortAmount": "1", "foreignAmount": "1"})

    @pytest.mark.parametrize(
        ("qort", "foreign"),
        [("0", "1"), ("-1", "1"), ("1", "0"), ("1", "-2"), ("x", "1"), ("1", "Infinity"), ("NaN", "1"),
         ("1e-999999", "1e999999"), ("1e999999", "1e-999999")],
    )
    def test_unpriceable(self, qort: str, foreign: str) -> None:
        trade = make_trade(1, qort, foreign)
        assert trade.price is None
        assert not trade.is_priceable

    def test_out_of_range_ratio_is_skipped_downstream(self) -> None:
        trades = [make_trade(0, "10", "1"), make_trade(1, "1e-999999", "1e999999")]

        candles = aggregate_candles(trades, ONE_HOUR_MS)
        summary = summarize("LITECOIN", trades)

        assert len(candles) == 1
        assert candles[0].close == Decimal("0.1")
        assert summary.high == summary.low == Decimal("0.1")
        assert percentile_filter(trades, 0.0, 1.0, min_samples=1) == trades[:1]
        assert weighted_average_filter(trades, 0.5) == trades[:1]

    def test_to_wire_drops_missing_addresses(self) -> None:
        assert make_trade(7, "2", "0.2").to_wire() == {
            "tradeTimestamp": 7,
            "qortAmount": "2",
            "foreignAmount": "0.2",
        }

    def test_frozen(self) -> None:
        trade = make_trade(1)
        with pytest.raises(ValidationError):
            trade.qort_amount = "5"  # type: ignore[misc]


class TestPairState:
    def test_to_dict(self) -> None:
        state = PairState(status=PairStatus.ERROR, strategy=FetchStrategy.FULL, error="HTTP 503")

        data = state.to_dict()

        assert data["status"] == "error"
        assert data["strategy"] == "full"
        assert data["error"] == "HTTP 503"
        assert data["progress"] == 0
