from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from time import perf_counter

from sqlalchemy.exc import SQLAlchemyError

from db.repositories import TransactionRepository
from domain.classifier import FEE_THRESHOLD, classify

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 1000


@dataclass
class BackfillReport:
    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0


def backfill_tx_types(
    repository: TransactionRepository,
    *,
    dry_run: bool = False,
    limit: int | None = None,
    source: str | None = None,
    fee_threshold: Decimal = FEE_THRESHOLD,
) -> BackfillReport:
    """Reclassify stored transactions and rewrite `tx_type` where it differs.

    In dry-run mode the would-be updates are logged and counted as updated.
    """
    started = perf_counter()
    report = BackfillReport()

    for transaction in repository.list(source=source, limit=limit):
        report.scanned += 1
        new_type = classify(transaction, fee_threshold=fee_threshold)
        if transaction.tx_type == new_type:
            report.unchanged += 1
        else:
            old_label = transaction.tx_type.value if transaction.tx_type else "none"
            logger.info("ID: %s | %s -> %s", transaction.id, old_label, new_type.value)
            if dry_run:
                report.updated += 1
            else:
                try:
                    repository.update_tx_type(transaction.id, new_type)
                    report.updated += 1
                except SQLAlchemyError:
                    logger.exception("Failed to update tx_type for %s", transaction.id)
                    repository.rollback()
                    report.errors += 1

        if report.scanned % PROGRESS_EVERY == 0:
            logger.info("Progress: scanned %d transactions", report.scanned)

    logger.info(
        "Backfill%s finished in %.2fs: scanned=%d updated=%d unchanged=%d errors=%d",
        " (dry run)" if dry_run else "",
        perf_counter() - started,
        report.scanned,
        report.updated,
        report.unchanged,
        report.errors,
    )
    return report


__all__ = ["BackfillReport", "backfill_tx_types"]
