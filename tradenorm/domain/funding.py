# tradenorm/domain/funding.py
"""Attribute periodic funding fees to closed trades by time-window overlap."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from tradenorm.db.models import RawFunding
from tradenorm.domain.errors import FundingLedgerError
from tradenorm.domain.models import DraftTrade
from tradenorm.domain.numeric import ZERO

logger = logging.getLogger(__name__)


class FundingLedger(Protocol):
    def entries(self, account_id: str, symbol: str, start: datetime, end: datetime) -> List[Decimal]:
        """Funding fees for account+symbol with timestamp in [start, end]."""
        ...


class SqlFundingLedger:
    """Funding ledger backed by the raw_funding table."""

    def __init__(self, session: Session):
        self.session = session

    def entries(self, account_id: str, symbol: str, start: datetime, end: datetime) -> List[Decimal]:
        stmt = select(RawFunding.funding_fee).where(
            RawFunding.account_id == account_id,
            RawFunding.symbol == symbol,
            RawFunding.ts_utc >= start,
            RawFunding.ts_utc <= end,
        )
        # SAVEPOINT: a failed query must not abort the outer transaction
        try:
            with self.session.begin_nested():
                return list(self.session.exec(stmt).all())
        except SQLAlchemyError as exc:
            raise FundingLedgerError(f"funding query failed for {account_id}/{symbol}") from exc


class FundingAllocator:
    """Sums funding charged while a trade was open. Only CLOSED trades are considered."""

    def __init__(self, ledger: FundingLedger):
        self.ledger = ledger

    def allocate(self, account_id: str, trade: DraftTrade) -> Decimal:
        if not trade.is_closed:
            return ZERO

        try:
            fees = self.ledger.entries(account_id, trade.symbol, trade.entry_time, trade.exit_time)
        except Exception:
            # Ledger errors never fail the rebuild
            logger.warning(
                "Funding lookup failed for %s %s, leaving funding at 0",
                account_id,
                trade.symbol,
                exc_info=True,
                extra={"account_id": account_id, "symbol": trade.symbol},
            )
            return ZERO

        return sum(fees, ZERO)
