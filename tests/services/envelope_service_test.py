from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from db.repositories import EnvelopeRepository, TransactionRepository
from domain.accounts import PNL_ACCOUNT_ID, AccountId
from domain.errors import CurrencyMismatch, EnvelopeNotFound, InsufficientFunds, InvalidDateTime
from domain.ledger import Leg, LegDirection, Transaction, TransactionId, crypto
from domain.money import Currency
from services.envelopes import EnvelopeLocks, EnvelopeService, cycle_bounds, cycle_labels, parse_cycle
from tests.helpers.factories import envelope, pnl_transaction, usd


def _ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


@pytest.fixture()
def service(test_session: Session) -> EnvelopeService:
    envelopes = EnvelopeRepository(test_session)
    envelopes.insert(envelope("env_groceries", balance=usd(100), funding=usd(300)))
    envelopes.insert(envelope("env_fees", balance=usd(0), allow_negative=True))
    return EnvelopeService(envelopes, TransactionRepository(test_session))


def test_credit_and_debit_are_persisted(service: EnvelopeService, test_session: Session) -> None:
    service.credit("env_groceries", usd(20))
    service.debit("env_groceries", usd(50))

    assert EnvelopeRepository(test_session).require("env_groceries").balance == usd(70)


def test_failed_debit_leaves_balance_unchanged(service: EnvelopeService) -> None:
    with pytest.raises(InsufficientFunds):
        service.debit("env_groceries", usd(101))

    assert service.get("env_groceries").balance == usd(100)


def test_unknown_envelope_raises(service: EnvelopeService) -> None:
    with pytest.raises(EnvelopeNotFound):
        service.credit("env_missing", usd(1))


def test_start_new_period_all_reports_advanced_and_unchanged(service: EnvelopeService) -> None:
    first = service.start_new_period_all(2025, 10)
    second = service.start_new_period_all(2025, 10)

    assert first.period == "2025-10"
    assert sorted(first.advanced) == ["env_fees", "env_groceries"]
    assert second.advanced == []
    assert service.get("env_groceries").balance == usd(300)


def test_apply_transaction_moves_envelope_balances(service: EnvelopeService) -> None:
    service.apply_transaction(pnl_transaction("spend", "30", category_id="env_groceries"))
    service.apply_transaction(pnl_transaction("refund", "5", category_id="env_groceries", direction=LegDirection.CREDIT))
    service.apply_transaction(pnl_transaction("uncategorized", "5", category_id=None))

    assert service.get("env_groceries").balance == usd(75)


def test_apply_transaction_rejects_crypto_pnl_leg(service: EnvelopeService) -> None:
    tx = Transaction(
        id=TransactionId("airdrop"),
        ts=_ts(2025, 9, 1),
        source="test",
        legs=[
            Leg(account_id=AccountId("acct.wallet"), direction=LegDirection.DEBIT, amount=crypto("ARB", "10")),
            Leg(account_id=PNL_ACCOUNT_ID, direction=LegDirection.CREDIT, amount=crypto("ARB", "10"), category_id="env_fees"),
        ],
    )

    with pytest.raises(CurrencyMismatch):
        service.apply_transaction(tx)


def test_apply_transaction_rejects_other_currency(service: EnvelopeService) -> None:
    with pytest.raises(CurrencyMismatch):
        service.apply_transaction(pnl_transaction("hkd", "30", ccy=Currency.HKD, category_id="env_groceries"))


def test_usage_sums_cycle_legs(service: EnvelopeService, test_session: Session) -> None:
    repo = TransactionRepository(test_session)
    repo.insert(pnl_transaction("a", "40", ts=_ts(2025, 9, 3)))
    repo.insert(pnl_transaction("b", "10", ts=_ts(2025, 9, 30), direction=LegDirection.CREDIT))
    repo.insert(pnl_transaction("c", "99", ts=_ts(2025, 10, 1)))
    repo.insert(pnl_transaction("d", "70", ts=_ts(2025, 9, 4), ccy=Currency.HKD))
    repo.insert(pnl_transaction("e", "5", ts=_ts(2025, 9, 5), category_id="env_fees"))

    usage = service.usage("env_groceries", "2025-09")

    assert usage.spent == usd(40)
    assert usage.received == usd(10)
    assert usage.net == usd(-30)
    assert usage.transaction_count == 3
    assert usage.skipped_legs == 1


def test_usage_rejects_bad_cycle(service: EnvelopeService) -> None:
    with pytest.raises(InvalidDateTime):
        service.usage("env_groceries", "September")


def test_cycles_span_from_earliest_transaction(service: EnvelopeService, test_session: Session) -> None:
    assert service.cycles(now=datetime(2025, 10, 2, tzinfo=timezone.utc)) == ["2025-10"]

    TransactionRepository(test_session).insert(pnl_transaction("a", "40", ts=_ts(2025, 8, 20)))

    assert service.cycles(now=datetime(2025, 10, 2, tzinfo=timezone.utc)) == ["2025-08", "2025-09", "2025-10"]


def test_cycle_helpers() -> None:
    assert parse_cycle("2024-12") == (2024, 12)
    assert cycle_bounds(2024, 12) == (_ts(2024, 12, 1), _ts(2025, 1, 1))
    assert cycle_labels(datetime(2024, 11, 5), datetime(2025, 1, 1)) == ["2024-11", "2024-12", "2025-01"]


def test_cycle_bounds_rejects_last_representable_month() -> None:
    with pytest.raises(InvalidDateTime):
        cycle_bounds(9999, 12)


def test_envelope_locks_are_shared_per_id() -> None:
    locks = EnvelopeLocks()

    assert locks.for_envelope("a") is locks.for_envelope("a")
    assert locks.for_envelope("a") is not locks.for_envelope("b")

