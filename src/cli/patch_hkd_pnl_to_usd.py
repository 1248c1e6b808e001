from __future__ import annotations

import argparse
from decimal import Decimal, InvalidOperation
from typing import Sequence

from sqlalchemy.engine import make_url

from cli.common import configure_logging, open_session, run_tool
from config import config
from corrections.denomination_patch import DEFAULT_PATCH_SOURCE, patch_hkd_pnl_to_usd
from db.models import TransactionOrm
from db.repositories import TransactionRepository
from domain.money import DEFAULT_HKD_TO_USD_PEG


def _peg(value: str) -> Decimal:
    try:
        peg = Decimal(value)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"invalid peg: {value!r}") from exc
    if peg <= 0:
        raise argparse.ArgumentTypeError("peg must be positive")
    return peg


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rewrite HKD-denominated P&L legs to USD at a fixed peg.")
    parser.add_argument("--uri", default=None, help="Store URL (defaults to DATABASE_URL / MONGODB_URI)")
    parser.add_argument("--db", default=None, help="Database name to select on the store URL")
    parser.add_argument("--coll", default=TransactionOrm.__tablename__, help="Ledger table")
    parser.add_argument("--source", default=DEFAULT_PATCH_SOURCE, help="Only patch transactions from this source")
    parser.add_argument("--peg", type=_peg, default=DEFAULT_HKD_TO_USD_PEG, help="USD per 1 HKD")
    parser.add_argument("--limit", type=int, default=0, help="Patch at most N transactions (0 = unlimited)")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    parser.add_argument(
        "--add-fx-on-custody",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Attach the peg as an FX snapshot on HKD custody legs",
    )
    args = parser.parse_args(argv)
    if args.coll != TransactionOrm.__tablename__:
        parser.error(f"--coll must be {TransactionOrm.__tablename__}")
    if args.limit < 0:
        parser.error("--limit must be >= 0")
    return args


def resolve_database_url(uri: str | None, db: str | None) -> str:
    url = make_url(uri or config().database_url)
    if db:
        url = url.set(database=db)
    return url.render_as_string(hide_password=False)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    def body() -> None:
        with open_session(resolve_database_url(args.uri, args.db)) as session:
            report = patch_hkd_pnl_to_usd(
                TransactionRepository(session),
                source=args.source,
                peg=args.peg,
                limit=args.limit or None,
                dry_run=args.dry_run,
                add_fx_on_custody=args.add_fx_on_custody,
            )
        print(f"Patched: {report.patched}{' (dry run)' if args.dry_run else ''}")
        print(f"Skipped: {report.skipped}")
        print(f"Errors:  {report.errors}")

    return run_tool(body)


if __name__ == "__main__":
    raise SystemExit(main())
