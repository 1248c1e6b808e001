from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from db.repositories import TransactionRepository
from domain.ledger import FiatAmount, Leg, Transaction
from domain.money import DEFAULT_HKD_TO_USD_PEG, Currency, FxSnapshot, Money, round_places

logger = logging.getLogger(__name__)

PATCH_TOKEN = "patched_hkd_to_usd"
DEFAULT_PATCH_SOURCE = "za_bank_csv"


@dataclass
class PatchReport:
    scanned: int = 0
    patched: int = 0
    skipped: int = 0
    errors: int = 0


def provenance_note(existing: str | None, peg: Decimal) -> str:
    token = f"{PATCH_TOKEN}@{peg}"
    return f"{existing} | {token}" if existing else token


def needs_patch(transaction: Transaction) -> bool:
    pnl_leg = transaction.pnl_leg()
    if pnl_leg is None or not isinstance(pnl_leg.amount, FiatAmount):
        return False
    if pnl_leg.amount.money.ccy != Currency.HKD:
        return False
    return PATCH_TOKEN not in (pnl_leg.notes or "")


def patch_legs(transaction: Transaction, peg: Decimal, *, add_fx_on_custody: bool = True) -> list[Leg]:
    """HKD P&L leg rewritten to USD at `peg`; custody HKD legs optionally gain the FX snapshot."""
    snapshot = FxSnapshot(to=Currency.USD, rate=peg)
    legs: list[Leg] = []
    for leg in transaction.legs:
        amount = leg.amount
        if leg.is_pnl and isinstance(amount, FiatAmount) and amount.money.ccy == Currency.HKD:
            usd = Money(amount=round_places(amount.money.amount * peg, 2), ccy=Currency.USD)
            leg = leg.model_copy(
                update={"amount": FiatAmount(money=usd), "notes": provenance_note(leg.notes, peg)}
            )
        elif (
            add_fx_on_custody
            and not leg.is_pnl
            and leg.fx is None
            and isinstance(amount, FiatAmount)
            and amount.money.ccy == Currency.HKD
        ):
            leg = leg.model_copy(update={"fx": snapshot})
        legs.append(leg)
    return legs


def patch_hkd_pnl_to_usd(
    repository: TransactionRepository,
    *,
    source: str = DEFAULT_PATCH_SOURCE,
    peg: Decimal = DEFAULT_HKD_TO_USD_PEG,
    limit: int | None = None,
    dry_run: bool = False,
    add_fx_on_custody: bool = True,
) -> PatchReport:
    """Rewrite HKD-denominated P&L legs of `source` into USD at a fixed peg.

    Already patched transactions carry the provenance token in their P&L
    notes and are skipped, so a second run patches nothing.
    """
    report = PatchReport()
    logger.info("Patching %s P&L legs HKD -> USD at peg %s%s", source, peg, " (dry run)" if dry_run else "")

    for transaction in repository.list(source=source):
        if limit and report.patched >= limit:
            break
        report.scanned += 1
        if not needs_patch(transaction):
            report.skipped += 1
            continue

        legs = patch_legs(transaction, peg, add_fx_on_custody=add_fx_on_custody)
        pnl_before = transaction.pnl_leg()
        pnl_after = next(leg for leg in legs if leg.is_pnl)
        logger.info(
            "ID: %s | %s -> %s",
            transaction.id,
            pnl_before.amount.magnitude if pnl_before else None,
            pnl_after.amount.magnitude,
        )
        if dry_run:
            report.patched += 1
            continue

        try:
            repository.replace_legs(transaction.id, legs)
            report.patched += 1
        except SQLAlchemyError:
            logger.exception("Failed to patch %s", transaction.id)
            repository.rollback()
            report.errors += 1

    logger.info(
        "Patch finished: scanned=%d patched=%d skipped=%d errors=%d",
        report.scanned,
        report.patched,
        report.skipped,
        report.errors,
    )
    return report


__all__ = [
    "DEFAULT_PATCH_SOURCE",
    "PATCH_TOKEN",
    "PatchReport",
    "needs_patch",
    "patch_hkd_pnl_to_usd",
    "patch_legs",
    "provenance_note",
]
