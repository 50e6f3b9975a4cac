# tradenorm/domain/errors.py
"""Exception types raised by tradenorm."""

from typing import Optional


class TradenormError(Exception):
    """Base class for tradenorm errors."""


class ParseError(TradenormError, ValueError):
    """A timestamp or numeric field could not be parsed."""


class FundingLedgerError(TradenormError):
    """The funding ledger could not be queried."""


class RebuildError(TradenormError):
    """A rebuild failed and was rolled back."""

    def __init__(self, account_id: str, symbol: Optional[str], message: str):
        self.account_id = account_id
        self.symbol = symbol
        scope = f"{account_id}/{symbol}" if symbol else account_id
        super().__init__(f"Rebuild of {scope} failed: {message}")
