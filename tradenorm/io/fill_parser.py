# tradenorm/io/fill_parser.py
"""
Parser for canonical fill and funding CSV exports.
Vendor payloads are normalized upstream; this only reads the canonical columns.
"""

import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
import pytz

from tradenorm.config import settings
from tradenorm.domain.errors import ParseError
from tradenorm.domain.numeric import to_decimal

logger = logging.getLogger(__name__)


@dataclass
class ParsedExecution:
    """A single fill from a canonical CSV export."""
    exchange_trade_id: str
    symbol: str
    side: str  # BUY or SELL
    price: Decimal
    amount: Decimal
    fee: Optional[Decimal]
    fee_currency: Optional[str]
    ts_raw: str
    ts_utc: datetime  # naive UTC
    market_type: str = "unknown"


@dataclass
class ParsedFunding:
    """A single funding payment."""
    symbol: str
    funding_fee: Decimal
    ts_raw: str
    ts_utc: datetime  # naive UTC


class FillParser:
    """Parse canonical fill/funding CSV files."""

    TIMESTAMP_FORMATS = [
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d %H:%M:%S.%f",
        "%Y-%m-%d, %H:%M:%S",
        "%Y%m%d %H:%M:%S",
    ]

    FILL_COLUMNS = ("exchange_trade_id", "symbol", "side", "price", "amount", "timestamp")
    FUNDING_COLUMNS = ("symbol", "funding_fee", "timestamp")

    @staticmethod
    def parse_timestamp(ts_str: str, source_tz: Optional[str] = None) -> datetime:
        """
        Parse a timestamp string to naive UTC.

        ISO-8601 with an offset is converted directly; naive values are taken
        to be in ``source_tz`` (default: configured source timezone). Epoch
        milliseconds are accepted as well.
        """
        text = (ts_str or "").strip()
        if not text:
            raise ParseError("empty timestamp")

        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000, tz=pytz.UTC).replace(tzinfo=None)

        dt = None
        try:
            dt = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
        except ValueError:
            for fmt in FillParser.TIMESTAMP_FORMATS:
                try:
                    dt = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue

        if dt is None:
            raise ParseError(f"Could not parse timestamp: {ts_str}")

        if dt.tzinfo is None:
            dt = pytz.timezone(source_tz or settings.source_timezone).localize(dt)
        return dt.astimezone(pytz.UTC).replace(tzinfo=None)

    @staticmethod
    def _rows(content: str, required: Tuple[str, ...]):
        reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
        missing = [c for c in required if c not in (reader.fieldnames or [])]
        if missing:
            raise ParseError(f"missing columns: {', '.join(missing)}")
        for line_no, row in enumerate(reader, start=2):
            yield line_no, {k.strip(): (v or "").strip() for k, v in row.items() if k}

    @staticmethod
    def parse_csv(content: str, source_tz: Optional[str] = None) -> Tuple[List[ParsedExecution], List[str]]:
        """
        Parse canonical fills.

        Columns: exchange_trade_id, symbol, side, price, amount, timestamp and
        optionally fee, fee_currency, market_type.

        Returns:
            (executions, warnings) - malformed rows are skipped and reported
        """
        executions: List[ParsedExecution] = []
        warnings: List[str] = []

        for line_no, row in FillParser._rows(content, FillParser.FILL_COLUMNS):
            try:
                side = row["side"].upper()
                if side not in ("BUY", "SELL"):
                    raise ParseError(f"unknown side {row['side']!r}")

                fee_raw = row.get("fee", "")
                executions.append(
                    ParsedExecution(
                        exchange_trade_id=row["exchange_trade_id"],
                        symbol=row["symbol"],
                        side=side,
                        price=to_decimal(row["price"]),
                        amount=to_decimal(row["amount"]),
                        fee=to_decimal(fee_raw) if fee_raw else None,
                        fee_currency=row.get("fee_currency") or None,
                        ts_raw=row["timestamp"],
                        ts_utc=FillParser.parse_timestamp(row["timestamp"], source_tz),
                        market_type=row.get("market_type") or "unknown",
                    )
                )
            except ValueError as e:
                warnings.append(f"line {line_no}: {e}")
                logger.warning("Skipping fill on line %d: %s", line_no, e)

        return executions, warnings

    @staticmethod
    def parse_funding_csv(content: str, source_tz: Optional[str] = None) -> Tuple[List[ParsedFunding], List[str]]:
        """Parse funding rows (symbol, funding_fee, timestamp)."""
        fundings: List[ParsedFunding] = []
        warnings: List[str] = []

        for line_no, row in FillParser._rows(content, FillParser.FUNDING_COLUMNS):
            try:
                fundings.append(
                    ParsedFunding(
                        symbol=row["symbol"],
                        funding_fee=to_decimal(row["funding_fee"]),
                        ts_raw=row["timestamp"],
                        ts_utc=FillParser.parse_timestamp(row["timestamp"], source_tz),
                    )
                )
            except ValueError as e:
                warnings.append(f"line {line_no}: {e}")
                logger.warning("Skipping funding row on line %d: %s", line_no, e)

        return fundings, warnings
