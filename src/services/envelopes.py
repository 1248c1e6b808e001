from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from threading import Lock
from typing import Callable

from pydantic import BaseModel

from db.repositories import EnvelopeRepository, TransactionRepository
from domain.envelopes import Envelope, period_label
from domain.errors import CurrencyMismatch, InvalidDateTime
from domain.ledger import FiatAmount, LegDirection, Transaction
from domain.money import Money

logger = logging.getLogger(__name__)


class EnvelopeLocks:
    """Per-envelope mutexes shared by every service instance of one process."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, Lock] = defaultdict(Lock)

    def for_envelope(self, envelope_id: str) -> Lock:
        with self._guard:
            return self._locks[envelope_id]


class EnvelopeUsage(BaseModel):
    envelope_id: str
    cycle: str
    spent: Money
    received: Money
    net: Money
    transaction_count: int
    skipped_legs: int = 0


class PeriodReport(BaseModel):
    period: str
    advanced: list[str]
    unchanged: list[str]


def parse_cycle(cycle: str) -> tuple[int, int]:
    try:
        parsed = datetime.strptime(cycle.strip(), "%Y-%m")
    except ValueError as exc:
        raise InvalidDateTime(cycle, field="cycle") from exc
    return parsed.year, parsed.month


def cycle_bounds(year: int, month: int) -> tuple[int, int]:
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    next_year, next_month = (year + 1, 1) if month == 12 else (year, month + 1)
    try:
        end = datetime(next_year, next_month, 1, tzinfo=timezone.utc)
    except ValueError as exc:
        raise InvalidDateTime(period_label(year, month), field="cycle") from exc
    return int(start.timestamp()), int(end.timestamp())


def cycle_labels(first: datetime, last: datetime) -> list[str]:
    labels: list[str] = []
    year, month = first.year, first.month
    while (year, month) <= (last.year, last.month):
        labels.append(period_label(year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return labels


class EnvelopeService:
    def __init__(
        self,
        envelopes: EnvelopeRepository,
        transactions: TransactionRepository | None = None,
        *,
        locks: EnvelopeLocks | None = None,
    ) -> None:
        self._envelopes = envelopes
        self._transactions = transactions
        self._locks = locks or EnvelopeLocks()

    def get(self, envelope_id: str) -> Envelope:
        return self._envelopes.require(envelope_id)

    def list(self) -> list[Envelope]:
        return self._envelopes.list()

    def credit(self, envelope_id: str, money: Money) -> Envelope:
        return self._mutate(envelope_id, lambda envelope: envelope.credit(money))

    def debit(self, envelope_id: str, money: Money) -> Envelope:
        return self._mutate(envelope_id, lambda envelope: envelope.debit(money))

    def activate(self, envelope_id: str) -> Envelope:
        return self._mutate(envelope_id, lambda envelope: envelope.activate())

    def deactivate(self, envelope_id: str) -> Envelope:
        return self._mutate(envelope_id, lambda envelope: envelope.deactivate())

    def start_new_period(self, envelope_id: str, year: int, month: int) -> Envelope:
        return self._mutate(envelope_id, lambda envelope: envelope.start_new_period(year, month))

    def start_new_period_all(self, year: int, month: int) -> PeriodReport:
        report = PeriodReport(period=period_label(year, month), advanced=[], unchanged=[])
        for envelope in self._envelopes.list():
            with self._locks.for_envelope(envelope.id):
                current = self._envelopes.require(envelope.id)
                if current.start_new_period(year, month):
                    self._envelopes.save(current)
                    report.advanced.append(current.id)
                    logger.info(
                        "Envelope %s advanced to %s, balance %s", current.id, report.period, current.balance.display()
                    )
                else:
                    report.unchanged.append(current.id)
        return report

    def apply_transaction(self, transaction: Transaction) -> None:
        """Replay the categorized P&L legs: Debit spends from the envelope, Credit refills it."""
        for leg in transaction.pnl_legs():
            if leg.category_id is None:
                continue
            if not isinstance(leg.amount, FiatAmount):
                envelope = self.get(leg.category_id)
                raise CurrencyMismatch(envelope.currency.value, leg.unit)
            if leg.direction == LegDirection.DEBIT:
                self.debit(leg.category_id, leg.amount.money)
            else:
                self.credit(leg.category_id, leg.amount.money)

    def usage(self, envelope_id: str, cycle: str) -> EnvelopeUsage:
        envelope = self.get(envelope_id)
        start_ts, end_ts = cycle_bounds(*parse_cycle(cycle))
        ccy = envelope.currency
        spent = received = Decimal(0)
        count = skipped = 0

        for transaction in self._require_transactions().list(start_ts=start_ts, end_ts=end_ts):
            legs = [leg for leg in transaction.pnl_legs() if leg.category_id == envelope_id]
            if not legs:
                continue
            count += 1
            for leg in legs:
                if not isinstance(leg.amount, FiatAmount) or leg.amount.money.ccy != ccy:
                    skipped += 1
                    continue
                if leg.direction == LegDirection.DEBIT:
                    spent += leg.amount.money.amount
                else:
                    received += leg.amount.money.amount

        if skipped:
            logger.debug("Envelope %s usage %s skipped %d legs not in %s", envelope_id, cycle, skipped, ccy)
        return EnvelopeUsage(
            envelope_id=envelope_id,
            cycle=cycle,
            spent=Money(amount=spent, ccy=ccy),
            received=Money(amount=received, ccy=ccy),
            net=Money(amount=received - spent, ccy=ccy),
            transaction_count=count,
            skipped_legs=skipped,
        )

    def cycles(self, now: datetime | None = None) -> list[str]:
        """Cycle labels from the earliest transaction month to the current month."""
        now = now or datetime.now(timezone.utc)
        earliest = self._require_transactions().earliest_ts()
        first = datetime.fromtimestamp(earliest, tz=timezone.utc) if earliest is not None else now
        return cycle_labels(min(first, now), now)

    def _require_transactions(self) -> TransactionRepository:
        if self._transactions is None:
            raise RuntimeError("EnvelopeService was created without a transaction repository")
        return self._transactions

    def _mutate(self, envelope_id: str, change: Callable[[Envelope], object]) -> Envelope:
        with self._locks.for_envelope(envelope_id):
            envelope = self._envelopes.require(envelope_id)
            change(envelope)
            self._envelopes.save(envelope)
            return envelope


__all__ = [
    "EnvelopeLocks",
    "EnvelopeService",
    "EnvelopeUsage",
    "PeriodReport",
    "cycle_bounds",
    "cycle_labels",
    "parse_cycle",
]
