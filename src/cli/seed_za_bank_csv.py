from __future__ import annotations

from typing import Sequence

from cli.common import seed_statement
from importers.statements import ZA_BANK_FORMAT


def main(argv: Sequence[str] | None = None) -> int:
    return seed_statement(argv, ZA_BANK_FORMAT, "Import a ZA Bank statement CSV (HKD) into the capital ledger.")


if __name__ == "__main__":
    raise SystemExit(main())
