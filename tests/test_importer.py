from __future__ import annotations

from sqlmodel import select

from tradenorm.db.models import RawExecution, RawFunding
from tradenorm.io.fill_parser import FillParser
from tradenorm.io.importer import ExecutionImporter


def test_import_is_idempotent(session, test_account, parsed_executions):
    total, new, warnings = ExecutionImporter.import_executions(session, test_account, parsed_executions)
    assert (total, new, warnings) == (2, 2, [])

    total, new, warnings = ExecutionImporter.import_executions(session, test_account, parsed_executions)
    assert (total, new) == (2, 0)
    assert len(warnings) == 2

    rows = session.exec(select(RawExecution).order_by(RawExecution.id)).all()
    assert [r.exchange_trade_id for r in rows] == ["0000a1", "0000a2"]
    assert rows[0].price == parsed_executions[0].price


def test_duplicates_within_batch_and_missing_ids(session, test_account, parsed_executions):
    dup = parsed_executions + [parsed_executions[0]]
    blank = FillParser.parse_csv(
        "exchange_trade_id,symbol,side,price,amount,timestamp\n,BTCUSDT,BUY,1,1,2025-01-01 00:00:00\n"
    )[0]

    total, new, warnings = ExecutionImporter.import_executions(session, test_account, dup + blank)

    assert (total, new) == (4, 2)
    assert any("duplicate" in w for w in warnings)
    assert any("missing exchange_trade_id" in w for w in warnings)


def test_same_trade_id_on_different_symbols_is_kept(session, test_account):
    parsed, _ = FillParser.parse_csv(
        "exchange_trade_id,symbol,side,price,amount,timestamp\n"
        "1,BTCUSDT,BUY,1,1,2025-01-01 00:00:00\n"
        "1,ETHUSDT,BUY,1,1,2025-01-01 00:00:00\n"
    )
    _, new, _ = ExecutionImporter.import_executions(session, test_account, parsed)
    assert new == 2


def test_import_funding_skips_duplicates(session, test_account):
    fundings, _ = FillParser.parse_funding_csv(
        "symbol,funding_fee,timestamp\nBTCUSDT,-0.1,2025-01-02T08:00:00Z\nBTCUSDT,-0.1,2025-01-02T08:00:00Z\n"
    )
    total, new, warnings = ExecutionImporter.import_funding(session, test_account, fundings)

    assert (total, new, len(warnings)) == (2, 1, 1)
    assert len(session.exec(select(RawFunding)).all()) == 1
