# tradenorm/db/models.py
"""
SQLModel definitions for fill normalization.
Designed for SQLite locally, PostgreSQL in production.

Monetary and quantity columns are stored as exact decimal text so that
SQLite (which has no native decimal type) never rounds through float.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from sqlalchemy import String, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field, Relationship, Column
import uuid


class DecimalText(TypeDecorator):
    """Stores Decimal values as their exact string form."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return format(value, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


def DecimalField(default=None, nullable: bool = False):
    return Field(default=default, sa_column=Column(DecimalText(), nullable=nullable))


class Account(SQLModel, table=True):
    """Exchange account whose fills are normalized."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(index=True)
    exchange: str = Field(default="unknown")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    executions: List["RawExecution"] = Relationship(back_populates="account", cascade_delete=True)
    fundings: List["RawFunding"] = Relationship(back_populates="account", cascade_delete=True)
    trades: List["Trade"] = Relationship(back_populates="account", cascade_delete=True)


class RawExecution(SQLModel, table=True):
    """Individual fill (buy/sell) as delivered by ingestion. Append-only."""
    __tablename__ = "raw_execution"

    # Autoincrement id doubles as the ingestion sequence (tiebreak for equal timestamps)
    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(foreign_key="account.id", index=True)

    exchange_trade_id: str = Field(index=True)
    symbol: str = Field(index=True)
    market_type: str = Field(default="unknown")

    side: str = Field()  # BUY or SELL
    price: Decimal = DecimalField()
    amount: Decimal = DecimalField()
    fee: Optional[Decimal] = DecimalField(nullable=True)
    fee_currency: Optional[str] = Field(default=None)

    # Timestamp (stored as naive UTC)
    ts_utc: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('account_id', 'symbol', 'exchange_trade_id', name='uq_account_symbol_trade'),
    )

    account: Account = Relationship(back_populates="executions")


class RawFunding(SQLModel, table=True):
    """Periodic funding fee charged or paid on an open perpetual position."""
    __tablename__ = "raw_funding"

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(foreign_key="account.id", index=True)
    symbol: str = Field(index=True)
    funding_fee: Decimal = DecimalField()
    ts_utc: datetime = Field(index=True)

    __table_args__ = (
        UniqueConstraint('account_id', 'symbol', 'ts_utc', name='uq_account_symbol_funding'),
    )

    account: Account = Relationship(back_populates="fundings")


class Trade(SQLModel, table=True):
    """Reconstructed round-trip trade (may span many fills)."""
    __tablename__ = "trade"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    account_id: str = Field(foreign_key="account.id", index=True)

    symbol: str = Field(index=True)
    market_type: str = Field(default="unknown")

    side: str = Field()  # LONG or SHORT
    status: str = Field(default="OPEN", index=True)  # OPEN, CLOSED

    # Lifecycle timestamps (UTC)
    entry_time: datetime = Field(index=True)
    exit_time: Optional[datetime] = Field(default=None, index=True)
    duration_seconds: Optional[int] = Field(default=None)

    entry_price: Decimal = DecimalField()
    exit_price: Optional[Decimal] = DecimalField(nullable=True)

    # Position tracking
    size: Decimal = DecimalField()  # Net open quantity, 0 once closed
    quantity_opened: Decimal = DecimalField()  # Total qty ever opened on this trade

    # Aggregated metrics
    realized_pnl: Decimal = DecimalField()
    fee_total: Decimal = DecimalField()
    funding_total: Decimal = DecimalField()

    created_at: datetime = Field(default_factory=datetime.utcnow)

    account: Account = Relationship(back_populates="trades")
    legs: List["TradeLeg"] = Relationship(back_populates="trade", cascade_delete=True)
    executions: List["TradeExecution"] = Relationship(back_populates="trade", cascade_delete=True)


class TradeLeg(SQLModel, table=True):
    """One FIFO match between an entry lot and a closing fill."""
    __tablename__ = "trade_leg"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    trade_id: str = Field(foreign_key="trade.id", index=True)

    side: str = Field()
    size: Decimal = DecimalField()
    entry_price: Decimal = DecimalField()
    exit_price: Decimal = DecimalField()
    entry_time: datetime = Field()
    exit_time: datetime = Field()
    realized_pnl: Decimal = DecimalField()
    fee_total: Decimal = DecimalField()
    funding_total: Decimal = DecimalField()

    trade: Trade = Relationship(back_populates="legs")


class TradeExecution(SQLModel, table=True):
    """Portion of a raw fill attributed to a trade (a flip splits one fill across two trades)."""
    __tablename__ = "trade_execution"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    trade_id: str = Field(foreign_key="trade.id", index=True)
    raw_execution_id: int = Field(foreign_key="raw_execution.id", index=True)

    side: str = Field()  # BUY or SELL
    role: str = Field()  # "open" or "close"
    price: Decimal = DecimalField()
    amount: Decimal = DecimalField()
    fee: Optional[Decimal] = DecimalField(nullable=True)
    fee_currency: Optional[str] = Field(default=None)
    ts_utc: datetime = Field()

    trade: Trade = Relationship(back_populates="executions")
