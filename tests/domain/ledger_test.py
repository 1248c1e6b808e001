from decimal import Decimal

import pytest
from pydantic import ValidationError

from domain.accounts import PNL_ACCOUNT_ID, AccountId
from domain.ledger import (
    TRUSTED_CONTEXT,
    Leg,
    LegDirection,
    Transaction,
    TransactionId,
    TxType,
    balance_residuals,
    crypto,
    fiat,
    is_balanced,
)
from domain.money import Currency, FxSnapshot
from tests.helpers.factories import DEFAULT_TS, pnl_transaction


def _leg(account: str, direction: LegDirection, amount, fx: FxSnapshot | None = None) -> Leg:
    return Leg(account_id=AccountId(account), direction=direction, amount=amount, fx=fx)


def test_balanced_single_currency_transaction() -> None:
    tx = pnl_transaction("tx-1", "123.45")

    assert tx.pnl_leg() is not None
    assert tx.custody_legs()[0].account_id == "acct.x"
    assert tx.period == "2025-09"


def test_unbalanced_legs_are_rejected() -> None:
    with pytest.raises(ValidationError, match="do not balance"):
        Transaction(
            id=TransactionId("tx-1"),
            ts=DEFAULT_TS,
            source="test",
            legs=[
                _leg("acct.x", LegDirection.CREDIT, fiat("10.00", "USD")),
                _leg(PNL_ACCOUNT_ID, LegDirection.DEBIT, fiat("9.99", "USD")),
            ],
        )


def test_fx_transfer_balances_under_snapshot() -> None:
    legs = [
        _leg("acct.hkd", LegDirection.CREDIT, fiat("7800", "HKD")),
        _leg(
            "acct.usd",
            LegDirection.DEBIT,
            fiat("1000", "USD"),
            fx=FxSnapshot(to=Currency.USD, rate=Decimal("0.12820513")),
        ),
    ]

    assert is_balanced(legs)
    tx = Transaction(id=TransactionId("fx-1"), ts=DEFAULT_TS, source="test", legs=legs)
    assert len(tx.legs) == 2


def test_crypto_trade_balances_per_asset_with_price() -> None:
    legs = [
        _leg("acct.cex", LegDirection.DEBIT, crypto("btc", "0.01"), fx=FxSnapshot(to=Currency.USD, rate=Decimal(60000))),
        _leg("acct.cex", LegDirection.CREDIT, fiat("600", "USD")),
    ]

    assert legs[0].unit == "BTC"
    assert balance_residuals(legs) == {}


def test_residuals_report_each_unbalanced_unit() -> None:
    legs = [
        _leg("acct.a", LegDirection.DEBIT, fiat("10", "USD")),
        _leg("acct.b", LegDirection.CREDIT, fiat("50", "HKD")),
    ]

    assert balance_residuals(legs) == {"USD": Decimal(10), "HKD": Decimal(-50)}


def test_pnl_tx_type_requires_exactly_one_pnl_leg() -> None:
    with pytest.raises(ValidationError, match="exactly one"):
        Transaction(
            id=TransactionId("tx-1"),
            ts=DEFAULT_TS,
            source="test",
            legs=[
                _leg("acct.a", LegDirection.CREDIT, fiat("10", "USD")),
                _leg("acct.b", LegDirection.DEBIT, fiat("10", "USD")),
            ],
            tx_type=TxType.SPENDING,
        )


def test_invalid_fee_reference_is_rejected() -> None:
    legs = [
        _leg("acct.a", LegDirection.CREDIT, fiat("10", "USD")),
        Leg(account_id=PNL_ACCOUNT_ID, direction=LegDirection.DEBIT, amount=fiat("10", "USD"), fee_of_leg_idx=1),
    ]
    with pytest.raises(ValidationError, match="fee_of_leg_idx"):
        Transaction(id=TransactionId("tx-1"), ts=DEFAULT_TS, source="test", legs=legs)


def test_negative_magnitude_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _leg("acct.a", LegDirection.DEBIT, fiat("-1", "USD"))


def test_trusted_context_skips_balance_rules() -> None:
    payload = {
        "id": "legacy-1",
        "ts": DEFAULT_TS,
        "source": "legacy",
        "legs": [{"account_id": "acct.a", "direction": "Debit", "amount": {"kind": "Fiat", "money": {"amount": "5", "ccy": "USD"}}}],
    }

    tx = Transaction.model_validate(payload, context=TRUSTED_CONTEXT)

    assert tx.id == "legacy-1"
    with pytest.raises(ValidationError):
        Transaction.model_validate(payload)


def test_misplaced_category_detection() -> None:
    tx = Transaction(
        id=TransactionId("legacy-1"),
        ts=DEFAULT_TS,
        source="legacy",
        legs=[
            Leg(account_id=AccountId("acct.x"), direction=LegDirection.CREDIT, amount=fiat("5", "USD"), category_id="env_dining"),
            Leg(account_id=PNL_ACCOUNT_ID, direction=LegDirection.DEBIT, amount=fiat("5", "USD")),
        ],
    )

    assert tx.has_misplaced_category()
    assert not pnl_transaction("tx-2", "5").has_misplaced_category()
