from __future__ import annotations

import argparse
from typing import Sequence

from cli.common import configure_logging, open_session, run_tool
from corrections.tx_type_backfill import backfill_tx_types
from db.repositories import TransactionRepository


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reclassify tx_type across the capital ledger.")
    parser.add_argument("--dry-run", action="store_true", help="Log changes without writing them")
    parser.add_argument("--limit", type=int, default=None, help="Stop after scanning N transactions")
    parser.add_argument("--filter-source", default=None, help="Only scan transactions from this source")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    def body() -> None:
        with open_session() as session:
            report = backfill_tx_types(
                TransactionRepository(session),
                dry_run=args.dry_run,
                limit=args.limit,
                source=args.filter_source,
            )
        print(f"Scanned:   {report.scanned}")
        print(f"Updated:   {report.updated}{' (dry run)' if args.dry_run else ''}")
        print(f"Unchanged: {report.unchanged}")
        print(f"Errors:    {report.errors}")

    return run_tool(body)


if __name__ == "__main__":
    raise SystemExit(main())
