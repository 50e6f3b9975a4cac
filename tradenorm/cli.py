# tradenorm/cli.py
"""
Command-line entry point.

    tradenorm init-db
    tradenorm create-account "Binance main" --exchange binance
    tradenorm import-fills ACCOUNT_ID fills.csv --rebuild
    tradenorm import-funding ACCOUNT_ID funding.csv
    tradenorm rebuild ACCOUNT_ID [--symbol BTCUSDT]
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, List, Optional

from sqlmodel import Session

from tradenorm.config import settings
from tradenorm.db.models import Account
from tradenorm.domain.errors import TradenormError
from tradenorm.domain.reconstructor import RebuildProgress, TradeReconstructor
from tradenorm.io.fill_parser import FillParser
from tradenorm.io.importer import ExecutionImporter
from tradenorm.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tradenorm",
        description="Rebuild round-trip trades from raw exchange fills",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    p = sub.add_parser("create-account", help="Register an exchange account")
    p.add_argument("name")
    p.add_argument("--exchange", default="unknown")

    p = sub.add_parser("import-fills", help="Import a canonical fills CSV")
    p.add_argument("account_id")
    p.add_argument("file", type=Path)
    p.add_argument("--tz", default=None, help="Timezone of naive timestamps in the file")
    p.add_argument("--rebuild", action="store_true", help="Rebuild trades after importing")

    p = sub.add_parser("import-funding", help="Import a funding fees CSV")
    p.add_argument("account_id")
    p.add_argument("file", type=Path)
    p.add_argument("--tz", default=None, help="Timezone of naive timestamps in the file")

    p = sub.add_parser("rebuild", help="Wipe and recompute trades for an account")
    p.add_argument("account_id")
    p.add_argument("--symbol", default=None)

    return parser


def _print_progress(p: RebuildProgress) -> None:
    print(f"[{p.index}/{p.total}] {p.symbol}: {p.trades_so_far} trades so far")


def _get_account(session: Session, account_id: str) -> Account:
    account = session.get(Account, account_id)
    if account is None:
        raise TradenormError(f"Unknown account: {account_id}")
    return account


def _rebuild(session: Session, account_id: str, symbol: Optional[str]) -> None:
    result = TradeReconstructor.rebuild(
        session=session,
        account_id=account_id,
        symbol=symbol,
        progress=_print_progress,
    )
    if result.executions_skipped:
        print(f"Skipped {result.executions_skipped} malformed fills (see log)")
    print(json.dumps(result.as_dict()))


def run(args: argparse.Namespace, session: Session) -> None:
    if args.command == "create-account":
        account = Account(name=args.name, exchange=args.exchange)
        session.add(account)
        session.commit()
        session.refresh(account)
        print(account.id)

    elif args.command == "import-fills":
        account = _get_account(session, args.account_id)
        parsed, warnings = FillParser.parse_csv(args.file.read_text(encoding="utf-8"), args.tz)
        total, new, import_warnings = ExecutionImporter.import_executions(session, account, parsed)
        for w in (warnings + import_warnings)[:10]:
            print(f"warning: {w}")
        print(f"Imported {new} new fills (total processed: {total})")
        if args.rebuild:
            _rebuild(session, account.id, None)

    elif args.command == "import-funding":
        account = _get_account(session, args.account_id)
        parsed, warnings = FillParser.parse_funding_csv(args.file.read_text(encoding="utf-8"), args.tz)
        total, new, import_warnings = ExecutionImporter.import_funding(session, account, parsed)
        for w in (warnings + import_warnings)[:10]:
            print(f"warning: {w}")
        print(f"Imported {new} new funding rows (total processed: {total})")

    elif args.command == "rebuild":
        _get_account(session, args.account_id)
        _rebuild(session, args.account_id, args.symbol)


def main(
    argv: Optional[List[str]] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> int:
    args = create_parser().parse_args(argv)

    if session_factory is None:
        setup_logging(settings)
        from tradenorm.db.session import get_session, init_db

        init_db()
        session_factory = get_session

    if args.command == "init-db":
        print("Database ready")
        return 0

    with session_factory() as session:
        try:
            run(args, session)
        except TradenormError as e:
            logger.error("%s", e)
            print(f"error: {e}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
