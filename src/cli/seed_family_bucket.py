from __future__ import annotations

import argparse
from typing import Sequence

from cli.common import configure_logging, open_session, run_tool
from db.repositories import EnvelopeRepository
from importers.seeds import family_bucket_envelopes, seed


def main(argv: Sequence[str] | None = None) -> int:
    argparse.ArgumentParser(description="Insert the canonical family-bucket envelopes.").parse_args(argv)
    configure_logging()

    def body() -> None:
        with open_session() as session:
            report = seed(
                family_bucket_envelopes(),
                EnvelopeRepository(session).insert,
                lambda envelope: f"{envelope.name} ({envelope.id})",
            )
        print(f"Inserted {report.inserted} envelopes into capital_envelopes.")
        if report.skipped:
            print(f"Skipped {report.skipped} duplicate envelopes.")

    return run_tool(body)


if __name__ == "__main__":
    raise SystemExit(main())
