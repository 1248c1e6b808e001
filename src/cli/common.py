from __future__ import annotations

import argparse
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Sequence

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from config import config
from db.db import init_db
from db.repositories import TransactionRepository
from domain.errors import LedgerError, MissingConfig
from importers.batch import BatchImporter, BatchImportOptions, BatchImportRequest
from importers.statements import StatementFormat, load_statement_rows

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

EXIT_OK = 0
EXIT_STORE_ERROR = 1
EXIT_INPUT_ERROR = 2
EXIT_CONFIG_ERROR = 3


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


@contextmanager
def open_session(database_url: str | None = None) -> Iterator[Session]:
    session = init_db(database_url or config().database_url)
    try:
        yield session
    finally:
        session.close()


def run_tool(body: Callable[[], None]) -> int:
    """Run a tool body and map configuration and store failures to exit codes."""
    try:
        body()
    except MissingConfig as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except LedgerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except OperationalError as exc:
        print(f"Store connection failed: {exc}", file=sys.stderr)
        return EXIT_STORE_ERROR
    return EXIT_OK


def seed_statement(argv: Sequence[str] | None, statement_format: StatementFormat, description: str) -> int:
    """Shared entry point of the per-bank statement seeding tools."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("--csv", required=True, type=Path, help="Path to the exported statement CSV")
    parser.add_argument(
        "--statement",
        default=statement_format.default_statement,
        help="Statement label used in txids and external refs",
    )
    args = parser.parse_args(argv)
    configure_logging()

    def body() -> None:
        rows = load_statement_rows(args.csv, statement_format, args.statement)
        options = BatchImportOptions(source=statement_format.source, status="posted")
        with open_session() as session:
            response = BatchImporter(TransactionRepository(session)).run(
                BatchImportRequest(transactions=rows, options=options)
            )
        print(f"Inserted {response.imported} transactions from {args.csv} ({statement_format.source}).")
        if response.duplicates:
            print(f"Skipped {response.duplicates} duplicates.")
        if response.failed:
            print(f"Failed {response.failed} transactions.")
            for error in response.errors:
                if error.kind != "duplicate":
                    print(f"  {error.txid}: {error.kind}: {error.message}")

    return run_tool(body)
