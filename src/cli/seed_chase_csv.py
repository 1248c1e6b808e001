from __future__ import annotations

from typing import Sequence

from cli.common import seed_statement
from importers.statements import CHASE_FORMAT


def main(argv: Sequence[str] | None = None) -> int:
    return seed_statement(argv, CHASE_FORMAT, "Import a Chase credit card statement CSV into the capital ledger.")


if __name__ == "__main__":
    raise SystemExit(main())
