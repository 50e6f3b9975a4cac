"""Test configuration and fixtures."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlmodel import Session, create_engine, SQLModel
from sqlmodel.pool import StaticPool

from tradenorm.db.models import Account, RawExecution, RawFunding
from tradenorm.io.fill_parser import FillParser

T0 = datetime(2025, 1, 2, 14, 30, 0)


@pytest.fixture(name="session")
def session_fixture():
    """Create in-memory SQLite test database."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture(name="test_account")
def test_account_fixture(session: Session):
    """Create test account."""
    account = Account(name="main", exchange="binance")
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


@pytest.fixture(name="add_fills")
def add_fills_fixture(session: Session):
    """
    Insert raw fills in order. Each row is
    (symbol, side, amount, price, fee, minutes after T0).
    """
    counter = {"n": 0}

    def _add(account: Account, rows):
        for symbol, side, amount, price, fee, minutes in rows:
            counter["n"] += 1
            session.add(
                RawExecution(
                    account_id=account.id,
                    exchange_trade_id=f"X{counter['n']}",
                    symbol=symbol,
                    market_type="swap",
                    side=side,
                    amount=Decimal(str(amount)),
                    price=Decimal(str(price)),
                    fee=None if fee is None else Decimal(str(fee)),
                    fee_currency="USDT",
                    ts_utc=T0 + timedelta(minutes=minutes),
                )
            )
            session.flush()
        session.commit()

    return _add


@pytest.fixture(name="add_funding")
def add_funding_fixture(session: Session):
    """Insert funding rows: (symbol, fee, minutes after T0)."""

    def _add(account: Account, rows):
        for symbol, fee, minutes in rows:
            session.add(
                RawFunding(
                    account_id=account.id,
                    symbol=symbol,
                    funding_fee=Decimal(str(fee)),
                    ts_utc=T0 + timedelta(minutes=minutes),
                )
            )
        session.commit()

    return _add


@pytest.fixture(name="sample_csv")
def sample_csv_fixture():
    """Provide a canonical fills export."""
    return """exchange_trade_id,symbol,side,price,amount,fee,fee_currency,timestamp,market_type
0000a1,BTCUSDT,buy,42000.5,0.010,0.168,USDT,2025-01-02T09:31:00-05:00,swap
0000a2,BTCUSDT,SELL,42100,0.004,0.0672,USDT,2025-01-02 15:00:00,swap
0000a3,BTCUSDT,HOLD,42100,0.004,0.0672,USDT,2025-01-02 15:00:00,swap
0000a4,BTCUSDT,SELL,42100,abc,,USDT,2025-01-02 15:01:00,swap
"""


@pytest.fixture(name="parsed_executions")
def parsed_executions_fixture(sample_csv):
    executions, _ = FillParser.parse_csv(sample_csv, source_tz="UTC")
    return executions
