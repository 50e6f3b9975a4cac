# tradenorm/domain/models.py
"""Domain value objects used while matching fills into trades."""

from typing import Optional, Deque, Iterator, List, Union
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from tradenorm.domain.numeric import ZERO, weighted_average

LONG = "LONG"
SHORT = "SHORT"
BUY = "BUY"
SELL = "SELL"
OPEN = "OPEN"
CLOSED = "CLOSED"


def direction_of(side: str) -> str:
    """Position direction implied by a fill side."""
    return LONG if side == BUY else SHORT


@dataclass
class ExecutionInput:
    """Canonical raw fill as seen by the matcher."""
    id: int
    symbol: str
    side: str  # BUY or SELL
    price: object
    amount: object
    fee: object = None
    fee_currency: Optional[str] = None
    timestamp: object = None
    market_type: str = "unknown"


@dataclass
class Lot:
    """An open slice of a position (for FIFO matching)."""
    size: Decimal
    price: Decimal
    entry_time: datetime


class LotQueue:
    """FIFO queue of open lots, oldest first."""

    def __init__(self, lots: Optional[List[Lot]] = None):
        self._lots: Deque[Lot] = deque(lots or [])

    def push(self, lot: Lot) -> None:
        self._lots.append(lot)

    def peek(self) -> Lot:
        return self._lots[0]

    def pop_front(self) -> Lot:
        return self._lots.popleft()

    def total_size(self) -> Decimal:
        return sum((lot.size for lot in self._lots), ZERO)

    def weighted_price(self) -> Decimal:
        """Size-weighted entry price, recomputed from scratch."""
        return weighted_average((lot.price, lot.size) for lot in self._lots)

    def __len__(self) -> int:
        return len(self._lots)

    def __bool__(self) -> bool:
        return bool(self._lots)

    def __iter__(self) -> Iterator[Lot]:
        return iter(self._lots)


@dataclass
class DraftLeg:
    """One lot drained (fully or partially) by a closing fill."""
    side: str
    size: Decimal
    entry_price: Decimal
    exit_price: Decimal
    entry_time: datetime
    exit_time: datetime
    realized_pnl: Decimal
    fee_total: Decimal
    funding_total: Decimal = ZERO


@dataclass
class ExecutionAllocation:
    """The part of a raw fill attributed to one trade."""
    raw_execution_id: int
    side: str
    role: str  # "open" or "close"
    price: Decimal
    amount: Decimal
    fee: Decimal
    fee_currency: Optional[str]
    timestamp: datetime


@dataclass
class DraftTrade:
    """In-progress trade being built while iterating one symbol's fills."""
    symbol: str
    side: str
    entry_time: datetime
    entry_price: Decimal
    size: Decimal
    market_type: str = "unknown"
    quantity_opened: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    fee_total: Decimal = ZERO
    funding_total: Decimal = ZERO
    exit_time: Optional[datetime] = None
    exit_price: Optional[Decimal] = None
    lots: LotQueue = field(default_factory=LotQueue)
    executions: List[ExecutionAllocation] = field(default_factory=list)
    legs: List[DraftLeg] = field(default_factory=list)

    @property
    def status(self) -> str:
        return CLOSED if self.exit_time is not None else OPEN

    @property
    def is_closed(self) -> bool:
        return self.exit_time is not None

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.exit_time is None:
            return None
        return max(0, int((self.exit_time - self.entry_time).total_seconds()))


@dataclass(frozen=True)
class Flat:
    """No open position."""


@dataclass(frozen=True)
class Open:
    """An open position carried by a draft trade."""
    draft: DraftTrade


PositionState = Union[Flat, Open]
