from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from domain.accounts import PNL_ACCOUNT_ID, Account, AccountId, CheckingAccount
from domain.envelopes import Envelope, FundingRule, ResetToZero, RolloverPolicy
from domain.ledger import EnvelopeId, Leg, LegDirection, Transaction, TransactionId, TxType, fiat
from domain.money import Currency, Money
from importers.batch import FlatTransactionRow

DEFAULT_TS = int(datetime(2025, 9, 15, tzinfo=timezone.utc).timestamp())


def usd(amount: int | str) -> Money:
    return Money(amount=Decimal(amount), ccy=Currency.USD)


def hkd(amount: int | str) -> Money:
    return Money(amount=Decimal(amount), ccy=Currency.HKD)


def pnl_transaction(
    txid: str,
    amount: str,
    *,
    ccy: Currency = Currency.USD,
    account_id: str = "acct.x",
    category_id: str | None = "env_groceries",
    direction: LegDirection = LegDirection.DEBIT,
    ts: int = DEFAULT_TS,
    source: str = "test",
    tx_type: TxType | None = None,
) -> Transaction:
    """Custody leg against one P&L leg; `direction` is the P&L side."""
    return Transaction(
        id=TransactionId(txid),
        ts=ts,
        source=source,
        legs=[
            Leg(account_id=AccountId(account_id), direction=direction.opposite(), amount=fiat(amount, ccy)),
            Leg(
                account_id=PNL_ACCOUNT_ID,
                direction=direction,
                amount=fiat(amount, ccy),
                category_id=EnvelopeId(category_id) if category_id else None,
            ),
        ],
        tx_type=tx_type,
    )


def envelope(
    envelope_id: str = "env_test",
    *,
    balance: Money | None = None,
    funding: Money | None = None,
    rollover: RolloverPolicy | None = None,
    **fields: Any,
) -> Envelope:
    return Envelope(
        id=EnvelopeId(envelope_id),
        name=envelope_id,
        balance=balance or usd(0),
        funding=FundingRule(amount=funding) if funding is not None else None,
        rollover=rollover or ResetToZero(),
        **fields,
    )


def checking_account(account_id: str, currency: Currency = Currency.USD) -> Account:
    return Account(
        id=AccountId(account_id),
        name=account_id,
        currency=currency,
        metadata=CheckingAccount(bank_name="Test Bank", owner_name="Household", account_number="TBC"),
    )


def flat_row(**overrides: Any) -> FlatTransactionRow:
    values: dict[str, Any] = {
        "txid": "tx-1",
        "date": "2025-09-15",
        "account_id": "acct.x",
        "direction": "Credit",
        "kind": "Fiat",
        "ccy_or_asset": "USD",
        "amount_or_qty": "42.50",
        "category_id": "env_groceries",
    }
    values.update(overrides)
    return FlatTransactionRow.model_validate(values)
