# tradenorm/io/importer.py
"""Idempotent import of canonical fills and funding rows."""

import logging
from typing import List, Tuple
from sqlmodel import Session, select

from tradenorm.db.models import Account, RawExecution, RawFunding
from tradenorm.io.fill_parser import ParsedExecution, ParsedFunding

logger = logging.getLogger(__name__)


class ExecutionImporter:
    """Handles idempotent import of fills and funding into the raw store."""

    @staticmethod
    def import_executions(
        session: Session,
        account: Account,
        parsed_executions: List[ParsedExecution],
    ) -> Tuple[int, int, List[str]]:
        """
        Import parsed fills into the database.

        Idempotent rules:
        - Skip if (symbol, exchange_trade_id) already exists for this account.
        - Skip duplicates within the same batch.

        Rows are inserted in batch order, which fixes their ingestion sequence.
        """
        warnings: List[str] = []
        newly_inserted = 0

        stmt = select(RawExecution.symbol, RawExecution.exchange_trade_id).where(
            RawExecution.account_id == account.id
        )
        existing_keys = {(sym, trade_id) for sym, trade_id in session.exec(stmt).all()}

        for parsed in parsed_executions:
            trade_id = (parsed.exchange_trade_id or "").strip()
            if not trade_id:
                warnings.append(f"Skipped fill with missing exchange_trade_id: {parsed.symbol}")
                continue

            key = (parsed.symbol, trade_id)
            if key in existing_keys:
                warnings.append(f"Skipped duplicate: {parsed.symbol} {trade_id}")
                continue

            session.add(
                RawExecution(
                    account_id=account.id,
                    exchange_trade_id=trade_id,
                    symbol=parsed.symbol,
                    market_type=parsed.market_type,
                    side=parsed.side,
                    price=parsed.price,
                    amount=parsed.amount,
                    fee=parsed.fee,
                    fee_currency=parsed.fee_currency,
                    ts_utc=parsed.ts_utc,
                )
            )
            # Flush per row so autoincrement ids follow batch order
            session.flush()
            newly_inserted += 1
            existing_keys.add(key)

        if newly_inserted:
            session.commit()

        logger.info(
            "Imported %d of %d fills for account %s",
            newly_inserted,
            len(parsed_executions),
            account.id,
            extra={"account_id": account.id, "inserted": newly_inserted},
        )
        return len(parsed_executions), newly_inserted, warnings

    @staticmethod
    def import_funding(
        session: Session,
        account: Account,
        parsed_funding: List[ParsedFunding],
    ) -> Tuple[int, int, List[str]]:
        """Import funding rows, skipping any (symbol, timestamp) already stored."""
        warnings: List[str] = []
        newly_inserted = 0

        stmt = select(RawFunding.symbol, RawFunding.ts_utc).where(RawFunding.account_id == account.id)
        existing_keys = {(sym, ts) for sym, ts in session.exec(stmt).all()}

        for parsed in parsed_funding:
            key = (parsed.symbol, parsed.ts_utc)
            if key in existing_keys:
                warnings.append(f"Skipped duplicate funding: {parsed.symbol} {parsed.ts_raw}")
                continue

            session.add(
                RawFunding(
                    account_id=account.id,
                    symbol=parsed.symbol,
                    funding_fee=parsed.funding_fee,
                    ts_utc=parsed.ts_utc,
                )
            )
            newly_inserted += 1
            existing_keys.add(key)

        if newly_inserted:
            session.commit()

        return len(parsed_funding), newly_inserted, warnings
