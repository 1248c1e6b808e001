from __future__ import annotations

import argparse
from typing import Sequence

from cli.common import configure_logging, open_session, run_tool
from db.repositories import AccountRepository
from importers.seeds import canonical_accounts, seed


def main(argv: Sequence[str] | None = None) -> int:
    argparse.ArgumentParser(description="Insert the canonical account registry.").parse_args(argv)
    configure_logging()

    def body() -> None:
        with open_session() as session:
            report = seed(canonical_accounts(), AccountRepository(session).insert, lambda account: account.id)
        print(f"Seed complete. Inserted {report.inserted} accounts, skipped {report.skipped}.")

    return run_tool(body)


if __name__ == "__main__":
    raise SystemExit(main())
