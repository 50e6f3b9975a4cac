from __future__ import annotations

from datetime import datetime
from decimal import Decimal

import pytest

from tradenorm.domain.errors import ParseError
from tradenorm.io.fill_parser import FillParser


def test_parse_csv_smoke(parsed_executions):
    assert len(parsed_executions) == 2

    e0 = parsed_executions[0]
    assert e0.exchange_trade_id == "0000a1"
    assert e0.symbol == "BTCUSDT"
    assert e0.side == "BUY"
    assert e0.price == Decimal("42000.5")
    assert e0.amount == Decimal("0.010")
    assert e0.fee == Decimal("0.168")
    assert e0.fee_currency == "USDT"
    assert e0.market_type == "swap"
    assert e0.ts_raw.startswith("2025-01-02T09:31:00")
    # -05:00 offset converted to naive UTC
    assert e0.ts_utc == datetime(2025, 1, 2, 14, 31, 0)
    assert e0.ts_utc.tzinfo is None

    e1 = parsed_executions[1]
    assert e1.exchange_trade_id == "0000a2"
    assert e1.side == "SELL"
    assert e1.amount == Decimal("0.004")


def test_bad_rows_are_reported(sample_csv):
    _, warnings = FillParser.parse_csv(sample_csv, source_tz="UTC")
    assert len(warnings) == 2
    assert warnings[0].startswith("line 4:")
    assert "HOLD" in warnings[0]
    assert warnings[1].startswith("line 5:")


def test_naive_timestamps_use_source_timezone():
    assert FillParser.parse_timestamp("2025-07-01 09:30:00", "US/Eastern") == datetime(2025, 7, 1, 13, 30)
    assert FillParser.parse_timestamp("20250701 09:30:00", "UTC") == datetime(2025, 7, 1, 9, 30)
    assert FillParser.parse_timestamp("1735689600000") == datetime(2025, 1, 1, 0, 0)
    with pytest.raises(ParseError):
        FillParser.parse_timestamp("not a time")


def test_missing_columns_raise():
    with pytest.raises(ParseError):
        FillParser.parse_csv("symbol,side\nBTCUSDT,BUY\n")


def test_parse_funding_csv():
    content = "symbol,funding_fee,timestamp\nBTCUSDT,-0.0125,2025-01-02T08:00:00Z\nBTCUSDT,oops,2025-01-02T16:00:00Z\n"
    fundings, warnings = FillParser.parse_funding_csv(content)

    assert len(fundings) == 1
    assert fundings[0].funding_fee == Decimal("-0.0125")
    assert fundings[0].ts_utc == datetime(2025, 1, 2, 8, 0)
    assert len(warnings) == 1
