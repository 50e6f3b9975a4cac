from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

from tradenorm.domain.errors import FundingLedgerError
from tradenorm.domain.funding import FundingAllocator, SqlFundingLedger
from tradenorm.domain.models import LONG, DraftTrade

from conftest import T0


def closed_trade(symbol="BTCUSDT", start=0, end=60):
    return DraftTrade(
        symbol=symbol,
        side=LONG,
        entry_time=T0 + timedelta(minutes=start),
        entry_price=Decimal(100),
        size=Decimal(0),
        exit_time=T0 + timedelta(minutes=end),
        exit_price=Decimal(110),
    )


class RecordingLedger:
    def __init__(self, fees):
        self.fees = fees
        self.calls = []

    def entries(self, account_id, symbol, start, end):
        self.calls.append((account_id, symbol, start, end))
        return self.fees


class BrokenLedger:
    def entries(self, account_id, symbol, start, end):
        raise FundingLedgerError("ledger offline")


def test_window_is_inclusive_and_scoped(session, test_account, add_funding):
    add_funding(
        test_account,
        [
            ("BTCUSDT", "-0.5", -1),   # before entry
            ("BTCUSDT", "-1.25", 0),   # at entry
            ("BTCUSDT", "0.75", 30),
            ("BTCUSDT", "-2", 60),     # at exit
            ("BTCUSDT", "-9", 61),     # after exit
            ("ETHUSDT", "-4", 30),     # other symbol
        ],
    )
    allocator = FundingAllocator(SqlFundingLedger(session))

    assert allocator.allocate(test_account.id, closed_trade()) == Decimal("-2.5")


def test_open_trades_are_not_queried():
    ledger = RecordingLedger([Decimal(1)])
    trade = closed_trade()
    trade.exit_time = None

    assert FundingAllocator(ledger).allocate("acct", trade) == 0
    assert ledger.calls == []


def test_ledger_failure_yields_zero(caplog):
    allocator = FundingAllocator(BrokenLedger())

    assert allocator.allocate("acct", closed_trade()) == 0
    assert "Funding lookup failed" in caplog.text


def test_no_entries_sums_to_zero():
    ledger = RecordingLedger([])
    trade = closed_trade()
    assert FundingAllocator(ledger).allocate("acct", trade) == 0
    assert ledger.calls == [("acct", "BTCUSDT", trade.entry_time, trade.exit_time)]
