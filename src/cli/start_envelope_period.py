from __future__ import annotations

import argparse
from datetime import datetime, timezone
from typing import Sequence

from cli.common import configure_logging, open_session, run_tool
from db.repositories import EnvelopeRepository, TransactionRepository
from services.envelopes import EnvelopeService


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    today = datetime.now(timezone.utc)
    parser = argparse.ArgumentParser(description="Roll every envelope into a new monthly period.")
    parser.add_argument("--year", type=int, default=today.year)
    parser.add_argument("--month", type=int, default=today.month)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging()

    def body() -> None:
        with open_session() as session:
            service = EnvelopeService(EnvelopeRepository(session), TransactionRepository(session))
            report = service.start_new_period_all(args.year, args.month)
        print(f"Period {report.period}: advanced {len(report.advanced)}, unchanged {len(report.unchanged)}.")

    return run_tool(body)


if __name__ == "__main__":
    raise SystemExit(main())
