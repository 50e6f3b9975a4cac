from __future__ import annotations

import json

from sqlmodel import select

from tradenorm.cli import main
from tradenorm.db.models import Trade


def test_import_and_rebuild(session, test_account, sample_csv, tmp_path, capsys):
    fills = tmp_path / "fills.csv"
    fills.write_text(sample_csv, encoding="utf-8")

    def factory():
        return session

    assert main(["import-fills", test_account.id, str(fills), "--tz", "UTC", "--rebuild"], session_factory=factory) == 0

    out = capsys.readouterr().out
    assert "Imported 2 new fills" in out
    assert "[1/1] BTCUSDT" in out
    assert json.loads(out.strip().splitlines()[-1]) == {"tradesCreated": 1}

    trade = session.exec(select(Trade)).one()
    assert trade.status == "OPEN"


def test_unknown_account_fails(session, capsys):
    assert main(["rebuild", "nope"], session_factory=lambda: session) == 1
    assert "Unknown account" in capsys.readouterr().err
