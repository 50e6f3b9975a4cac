# tradenorm/domain/reconstructor.py
"""
Trade reconstruction from raw fills.
Wipes and recomputes an account's trades (optionally one symbol) in a single
transaction: load fills, group by symbol, FIFO-match, persist, attribute funding.
"""

import logging
import threading
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from tradenorm.db.models import RawExecution, Trade, TradeExecution, TradeLeg
from tradenorm.domain.errors import RebuildError
from tradenorm.domain.funding import FundingAllocator, FundingLedger, SqlFundingLedger
from tradenorm.domain.matching import PositionMatcher
from tradenorm.domain.models import DraftTrade, ExecutionInput

logger = logging.getLogger(__name__)


@dataclass
class RebuildProgress:
    """Reported once per symbol group."""
    symbol: str
    index: int  # 1-based
    total: int
    trades_so_far: int


@dataclass
class RebuildResult:
    trades_created: int = 0
    legs_created: int = 0
    executions_skipped: int = 0
    symbols_processed: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, int]:
        return {"tradesCreated": self.trades_created}


ProgressSink = Callable[[RebuildProgress], None]


class TradeReconstructor:
    """Reconstructs trades from raw fills using FIFO matching."""

    # Entries vanish once no rebuild holds the account's lock
    _locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
    _locks_guard = threading.Lock()

    @staticmethod
    def rebuild(
        session: Session,
        account_id: str,
        symbol: Optional[str] = None,
        progress: Optional[ProgressSink] = None,
        funding_ledger: Optional[FundingLedger] = None,
    ) -> RebuildResult:
        """
        Full reconstruction of trades from raw fills.
        Idempotent: deletes existing trades/legs/allocations in scope and rebuilds.

        The rebuild owns the session's transaction: it is committed on success
        and rolled back on failure, so the session must not carry pending writes.

        Args:
            session: SQLModel session with no pending changes
            account_id: Account to reconstruct
            symbol: Restrict the rebuild to one symbol (must not be empty)
            progress: Called after each symbol group is persisted
            funding_ledger: Funding source, defaults to the raw_funding table

        Returns:
            RebuildResult (trades_created is the number of trades persisted)

        Raises:
            RebuildError: anything failed; the scope is left as it was before the call
        """
        if symbol is not None and not symbol.strip():
            raise RebuildError(account_id, symbol, "empty symbol")
        if session.new or session.dirty or session.deleted:
            raise RebuildError(account_id, symbol, "session has uncommitted changes")

        lock = TradeReconstructor._lock_for(account_id)
        with lock:
            logger.info(
                "Rebuilding trades for account %s%s",
                account_id,
                f" symbol {symbol}" if symbol else "",
                extra={"account_id": account_id, "symbol": symbol},
            )
            try:
                result = TradeReconstructor._rebuild_in_transaction(
                    session=session,
                    account_id=account_id,
                    symbol=symbol,
                    progress=progress,
                    funding_ledger=funding_ledger or SqlFundingLedger(session),
                )
                session.commit()
            except BaseException as exc:
                session.rollback()
                logger.error(
                    "Rebuild of %s rolled back: %s",
                    account_id,
                    exc,
                    extra={"account_id": account_id, "symbol": symbol},
                )
                if isinstance(exc, Exception):
                    raise RebuildError(account_id, symbol, str(exc)) from exc
                raise

        logger.info(
            "Rebuilt %d trades (%d legs) across %d symbols for %s",
            result.trades_created,
            result.legs_created,
            len(result.symbols_processed),
            account_id,
            extra={"account_id": account_id, "symbol": symbol, "trades_created": result.trades_created},
        )
        return result

    @staticmethod
    def _lock_for(account_id: str) -> threading.Lock:
        with TradeReconstructor._locks_guard:
            lock = TradeReconstructor._locks.get(account_id)
            if lock is None:
                lock = TradeReconstructor._locks[account_id] = threading.Lock()
            return lock

    @staticmethod
    def _rebuild_in_transaction(
        session: Session,
        account_id: str,
        symbol: Optional[str],
        progress: Optional[ProgressSink],
        funding_ledger: FundingLedger,
    ) -> RebuildResult:
        result = RebuildResult()

        by_symbol = TradeReconstructor._load_executions(session, account_id, symbol)
        TradeReconstructor._delete_trades(session, account_id, symbol)

        allocator = FundingAllocator(funding_ledger)
        total = len(by_symbol)

        for index, (sym, executions) in enumerate(by_symbol.items(), start=1):
            matched = PositionMatcher(sym).process(executions)
            result.executions_skipped += len(matched.skipped)

            for draft in matched.trades:
                trade = TradeReconstructor._persist_trade(session, account_id, draft)
                if draft.is_closed:
                    trade.funding_total = allocator.allocate(account_id, draft)
                    session.add(trade)
                result.trades_created += 1
                result.legs_created += len(draft.legs)

            session.flush()
            result.symbols_processed.append(sym)

            if progress is not None:
                progress(
                    RebuildProgress(
                        symbol=sym,
                        index=index,
                        total=total,
                        trades_so_far=result.trades_created,
                    )
                )

        return result

    @staticmethod
    def _load_executions(
        session: Session,
        account_id: str,
        symbol: Optional[str],
    ) -> Dict[str, List[ExecutionInput]]:
        """Fills in scope grouped by symbol, each group ordered by (ts_utc, ingestion id)."""
        stmt = select(RawExecution).where(RawExecution.account_id == account_id)
        if symbol is not None:
            stmt = stmt.where(RawExecution.symbol == symbol)
        stmt = stmt.order_by(RawExecution.ts_utc, RawExecution.id)

        by_symbol: Dict[str, List[ExecutionInput]] = defaultdict(list)
        for raw in session.exec(stmt).all():
            by_symbol[raw.symbol].append(
                ExecutionInput(
                    id=raw.id,
                    symbol=raw.symbol,
                    side=raw.side,
                    price=raw.price,
                    amount=raw.amount,
                    fee=raw.fee,
                    fee_currency=raw.fee_currency,
                    timestamp=raw.ts_utc,
                    market_type=raw.market_type,
                )
            )
        return by_symbol

    @staticmethod
    def _delete_trades(session: Session, account_id: str, symbol: Optional[str]) -> None:
        scope = [Trade.account_id == account_id]
        if symbol is not None:
            scope.append(Trade.symbol == symbol)
        trade_ids = select(Trade.id).where(*scope)

        session.exec(
            delete(TradeExecution)
            .where(TradeExecution.trade_id.in_(trade_ids))
            .execution_options(synchronize_session="fetch")
        )
        session.exec(
            delete(TradeLeg)
            .where(TradeLeg.trade_id.in_(trade_ids))
            .execution_options(synchronize_session="fetch")
        )
        session.exec(delete(Trade).where(*scope).execution_options(synchronize_session="fetch"))

    @staticmethod
    def _persist_trade(session: Session, account_id: str, draft: DraftTrade) -> Trade:
        """Write one matched trade with its legs and fill allocations."""
        trade = Trade(
            account_id=account_id,
            symbol=draft.symbol,
            market_type=draft.market_type,
            side=draft.side,
            status=draft.status,
            entry_time=draft.entry_time,
            exit_time=draft.exit_time,
            duration_seconds=draft.duration_seconds,
            entry_price=draft.entry_price,
            exit_price=draft.exit_price,
            size=draft.size,
            quantity_opened=draft.quantity_opened,
            realized_pnl=draft.realized_pnl,
            fee_total=draft.fee_total,
            funding_total=draft.funding_total,
        )
        session.add(trade)
        session.flush()

        for leg in draft.legs:
            session.add(
                TradeLeg(
                    trade_id=trade.id,
                    side=leg.side,
                    size=leg.size,
                    entry_price=leg.entry_price,
                    exit_price=leg.exit_price,
                    entry_time=leg.entry_time,
                    exit_time=leg.exit_time,
                    realized_pnl=leg.realized_pnl,
                    fee_total=leg.fee_total,
                    funding_total=leg.funding_total,
                )
            )

        for alloc in draft.executions:
            session.add(
                TradeExecution(
                    trade_id=trade.id,
                    raw_execution_id=alloc.raw_execution_id,
                    side=alloc.side,
                    role=alloc.role,
                    price=alloc.price,
                    amount=alloc.amount,
                    fee=alloc.fee if alloc.fee != 0 else None,
                    fee_currency=alloc.fee_currency,
                    ts_utc=alloc.timestamp,
                )
            )

        return trade
