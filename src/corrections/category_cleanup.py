from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from db.repositories import TransactionRepository

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    scanned: int = 0
    matched: int = 0
    deleted: int = 0
    errors: int = 0


def cleanup_misplaced_categories(repository: TransactionRepository, *, dry_run: bool = False) -> CleanupReport:
    """Delete legacy transactions whose category sits on a custody leg instead of the P&L leg."""
    report = CleanupReport()
    for transaction in repository.list():
        report.scanned += 1
        if not transaction.has_misplaced_category():
            continue

        report.matched += 1
        if dry_run:
            continue
        try:
            repository.delete(transaction.id)
            report.deleted += 1
            logger.info("Deleted %s", transaction.id)
        except SQLAlchemyError:
            logger.exception("Failed to delete %s", transaction.id)
            repository.rollback()
            report.errors += 1

    logger.info(
        "Found %d transactions with a category on a custody leg; deleted %d",
        report.matched,
        report.deleted,
    )
    return report


__all__ = ["CleanupReport", "cleanup_misplaced_categories"]
