from __future__ import annotations

import argparse
from typing import Sequence

from cli.common import configure_logging, open_session, run_tool
from corrections.category_cleanup import cleanup_misplaced_categories
from db.repositories import TransactionRepository


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Delete transactions whose category sits on a custody leg.")
    parser.add_argument("--dry-run", action="store_true", help="Only count matching transactions")
    args = parser.parse_args(argv)
    configure_logging()

    def body() -> None:
        with open_session() as session:
            report = cleanup_misplaced_categories(TransactionRepository(session), dry_run=args.dry_run)
        if args.dry_run:
            print(f"Would delete {report.matched} of {report.scanned} transactions.")
        else:
            print(f"Deleted {report.deleted} transactions ({report.errors} errors).")

    return run_tool(body)


if __name__ == "__main__":
    raise SystemExit(main())
