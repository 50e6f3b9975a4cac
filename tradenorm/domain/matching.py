# tradenorm/domain/matching.py
"""
Position matching engine.
Turns one symbol's ordered fills into round-trip trades using FIFO lots,
handling adds, partial closes, full closes and flips.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

import pytz

from tradenorm.domain.models import (
    BUY,
    SELL,
    LONG,
    DraftLeg,
    DraftTrade,
    ExecutionAllocation,
    ExecutionInput,
    Flat,
    Lot,
    LotQueue,
    Open,
    PositionState,
    direction_of,
)
from tradenorm.domain.numeric import ZERO, safe_div, to_decimal, weighted_average

logger = logging.getLogger(__name__)


@dataclass
class SkippedExecution:
    raw_execution_id: Optional[int]
    reason: str


@dataclass
class MatchResult:
    trades: List[DraftTrade] = field(default_factory=list)
    skipped: List[SkippedExecution] = field(default_factory=list)

    @property
    def open_trade(self) -> Optional[DraftTrade]:
        if self.trades and not self.trades[-1].is_closed:
            return self.trades[-1]
        return None


@dataclass
class _Fill:
    """A validated fill with exact values."""
    source: ExecutionInput
    side: str
    price: Decimal
    amount: Decimal
    fee: Decimal
    fee_per_unit: Decimal
    timestamp: datetime

    def allocation(self, role: str, amount: Decimal, fee: Decimal) -> ExecutionAllocation:
        return ExecutionAllocation(
            raw_execution_id=self.source.id,
            side=self.side,
            role=role,
            price=self.price,
            amount=amount,
            fee=fee,
            fee_currency=self.source.fee_currency,
            timestamp=self.timestamp,
        )


def normalize_timestamp(value) -> datetime:
    """
    Coerce a fill timestamp to naive UTC.

    Accepts datetimes (naive values are taken as UTC) and ISO-8601 strings.
    Raises ValueError when the value cannot be interpreted.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if not isinstance(value, datetime):
        raise ValueError(f"not a timestamp: {value!r}")
    if value.tzinfo is not None:
        value = value.astimezone(pytz.UTC).replace(tzinfo=None)
    return value


def exit_price_of(legs: List[DraftLeg]) -> Optional[Decimal]:
    """Size-weighted mean exit price over legs."""
    if not legs:
        return None
    return weighted_average((leg.exit_price, leg.size) for leg in legs)


class PositionMatcher:
    """
    FIFO matcher for a single (account, symbol) fill stream.

    Usage:
        result = PositionMatcher("BTCUSDT").process(executions)

    Fills must already be in (timestamp, ingestion sequence) order.
    """

    def __init__(self, symbol: str):
        self.symbol = symbol
        self.state: PositionState = Flat()
        self.result = MatchResult()

    def process(self, executions: Iterable[ExecutionInput]) -> MatchResult:
        for execution in executions:
            self.feed(execution)
        return self.finish()

    def feed(self, execution: ExecutionInput) -> None:
        fill = self._validate(execution)
        if fill is None:
            return

        match self.state:
            case Flat():
                self.state = Open(self._open(fill, fill.amount, fill.fee))
            case Open(draft=draft) if direction_of(fill.side) == draft.side:
                self._add(draft, fill)
            case Open(draft=draft):
                self.state = self._reduce(draft, fill)

    def finish(self) -> MatchResult:
        """Emit a still-open draft as an OPEN trade and return everything matched."""
        match self.state:
            case Open(draft=draft):
                self.result.trades.append(draft)
                self.state = Flat()
            case Flat():
                pass
        return self.result

    def _validate(self, execution: ExecutionInput) -> Optional[_Fill]:
        try:
            if execution.side not in (BUY, SELL):
                raise ValueError(f"unknown side {execution.side!r}")
            price = to_decimal(execution.price)
            amount = to_decimal(execution.amount)
            if amount <= 0:
                raise ValueError(f"non-positive amount {amount}")
            fee = ZERO if execution.fee is None else to_decimal(execution.fee)
            timestamp = normalize_timestamp(execution.timestamp)
        except (ValueError, TypeError) as exc:
            self.result.skipped.append(SkippedExecution(execution.id, str(exc)))
            logger.warning(
                "Skipping malformed execution %s on %s: %s",
                execution.id,
                self.symbol,
                exc,
                extra={"raw_execution_id": execution.id, "symbol": self.symbol},
            )
            return None

        return _Fill(
            source=execution,
            side=execution.side,
            price=price,
            amount=amount,
            fee=fee,
            fee_per_unit=safe_div(fee, amount),
            timestamp=timestamp,
        )

    def _open(self, fill: _Fill, amount: Decimal, fee: Decimal) -> DraftTrade:
        draft = DraftTrade(
            symbol=self.symbol,
            market_type=fill.source.market_type,
            side=direction_of(fill.side),
            entry_time=fill.timestamp,
            entry_price=fill.price,
            size=amount,
            quantity_opened=amount,
            fee_total=fee,
            lots=LotQueue([Lot(size=amount, price=fill.price, entry_time=fill.timestamp)]),
        )
        draft.executions.append(fill.allocation("open", amount, fee))
        return draft

    def _add(self, draft: DraftTrade, fill: _Fill) -> None:
        draft.lots.push(Lot(size=fill.amount, price=fill.price, entry_time=fill.timestamp))
        draft.size = draft.lots.total_size()
        draft.quantity_opened += fill.amount
        draft.entry_price = draft.lots.weighted_price()
        draft.fee_total += fill.fee
        draft.executions.append(fill.allocation("open", fill.amount, fill.fee))

    def _reduce(self, draft: DraftTrade, fill: _Fill) -> PositionState:
        remaining = fill.amount
        while remaining > 0 and draft.lots:
            lot = draft.lots.peek()
            matched = min(lot.size, remaining)
            matched_fee = fill.fee_per_unit * matched

            if draft.side == LONG:
                pnl = (fill.price - lot.price) * matched
            else:
                pnl = (lot.price - fill.price) * matched

            draft.legs.append(
                DraftLeg(
                    side=draft.side,
                    size=matched,
                    entry_price=lot.price,
                    exit_price=fill.price,
                    entry_time=lot.entry_time,
                    exit_time=fill.timestamp,
                    realized_pnl=pnl,
                    fee_total=matched_fee,
                )
            )
            draft.executions.append(fill.allocation("close", matched, matched_fee))

            draft.realized_pnl += pnl
            draft.fee_total += matched_fee
            draft.size -= matched
            lot.size -= matched
            remaining -= matched
            if lot.size == 0:
                draft.lots.pop_front()

        if draft.size != 0:
            return Open(draft)

        draft.exit_time = fill.timestamp
        draft.exit_price = exit_price_of(draft.legs)
        self.result.trades.append(draft)

        if remaining > 0:
            logger.debug(
                "Position flip on %s at execution %s, %s left over",
                self.symbol,
                fill.source.id,
                remaining,
            )
            return Open(self._open(fill, remaining, fill.fee_per_unit * remaining))
        return Flat()


def match_executions(symbol: str, executions: Iterable[ExecutionInput]) -> MatchResult:
    """Run the matcher over one symbol's ordered fills."""
    return PositionMatcher(symbol).process(executions)
