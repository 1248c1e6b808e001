from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, TypeVar

from domain.accounts import (
    Account,
    AccountId,
    CexAccount,
    CheckingAccount,
    CreditAccount,
    CryptoWalletAccount,
    EvmNetwork,
    SavingsAccount,
    SolanaNetwork,
)
from domain.envelopes import (
    CarryOver,
    Decay,
    DeficitPolicy,
    Envelope,
    EnvelopeKind,
    FundingRule,
    ResetToZero,
    SinkingFund,
)
from domain.ledger import EnvelopeId
from domain.money import Currency, Money
from importers.statements import CHASE_ACCOUNT_ID, ENV_CARD_PAYMENT, ENV_UNCATEGORIZED, ZA_ACCOUNT_ID

logger = logging.getLogger(__name__)

T = TypeVar("T")

PLACEHOLDER_OWNER = "Household"
PLACEHOLDER_NUMBER = "TBC"


def _checking(bank_name: str, routing_number: str | None = None) -> CheckingAccount:
    return CheckingAccount(
        bank_name=bank_name,
        owner_name=PLACEHOLDER_OWNER,
        account_number=PLACEHOLDER_NUMBER,
        routing_number=routing_number,
    )


def _savings(bank_name: str, routing_number: str | None = None) -> SavingsAccount:
    return SavingsAccount(
        bank_name=bank_name,
        owner_name=PLACEHOLDER_OWNER,
        account_number=PLACEHOLDER_NUMBER,
        routing_number=routing_number,
    )


def canonical_accounts() -> list[Account]:
    """Banking, card, exchange and wallet accounts of the household registry."""
    return [
        Account(
            id=AccountId("acct.hsbc_joint_checking"),
            name="HSBC Joint Checking",
            currency=Currency.HKD,
            metadata=_checking("HSBC", "004"),
        ),
        Account(
            id=AccountId("acct.hsbc_joint_savings"),
            name="HSBC Joint Savings",
            currency=Currency.HKD,
            metadata=_savings("HSBC", "004"),
        ),
        Account(
            id=AccountId(ZA_ACCOUNT_ID),
            name="ZA Checking",
            currency=Currency.HKD,
            metadata=_checking("ZA Bank", "387"),
        ),
        Account(
            id=AccountId("acct.chase_checking"),
            name="Chase Checking",
            currency=Currency.USD,
            metadata=_checking("Chase Bank", "021000021"),
        ),
        Account(
            id=AccountId("acct.chase_savings"),
            name="Chase Savings",
            currency=Currency.USD,
            metadata=_savings("Chase Bank", "021000021"),
        ),
        Account(
            id=AccountId(CHASE_ACCOUNT_ID),
            name="Chase Freedom Unlimited",
            currency=Currency.USD,
            metadata=CreditAccount(
                credit_card_name="Chase Freedom Unlimited",
                owner_name=PLACEHOLDER_OWNER,
                account_number=PLACEHOLDER_NUMBER,
            ),
        ),
        # Crypto accounts report in BTC.
        Account(
            id=AccountId("acct.binance_main"),
            name="Binance Main",
            currency=Currency.BTC,
            metadata=CexAccount(cex_name="Binance", account_id="main"),
        ),
        Account(
            id=AccountId("acct.wallet_payroll_eth"),
            name="Payroll Ethereum",
            currency=Currency.BTC,
            metadata=CryptoWalletAccount(
                address="0x0000000000000000000000000000000000000001",
                network=EvmNetwork(chain_name="Ethereum", chain_id=1),
            ),
        ),
        Account(
            id=AccountId("acct.wallet_arbitrum"),
            name="Arbitrum Wallet",
            currency=Currency.BTC,
            metadata=CryptoWalletAccount(
                address="0x0000000000000000000000000000000000000002",
                network=EvmNetwork(chain_name="Arbitrum", chain_id=42161),
            ),
        ),
        Account(
            id=AccountId("acct.wallet_solana"),
            name="Solana Wallet",
            currency=Currency.BTC,
            metadata=CryptoWalletAccount(address="11111111111111111111111111111111", network=SolanaNetwork()),
        ),
    ]


def _usd(amount: int | str) -> Money:
    return Money(amount=Decimal(amount), ccy=Currency.USD)


def _hkd(amount: int | str) -> Money:
    return Money(amount=Decimal(amount), ccy=Currency.HKD)


def family_bucket_envelopes() -> list[Envelope]:
    """The household envelope set, every balance starting at zero."""
    return [
        Envelope(
            id=EnvelopeId("env_groceries"),
            name="Groceries",
            funding=FundingRule(amount=_hkd(6000)),
            rollover=ResetToZero(),
            balance=_hkd(0),
            period_limit=_hkd(6000),
            allow_negative=True,
            min_balance=Decimal(-1000),
            deficit_policy=DeficitPolicy.AUTO_NET,
        ),
        Envelope(
            id=EnvelopeId("env_dining"),
            name="Dining Out",
            funding=FundingRule(amount=_hkd(3000)),
            rollover=CarryOver(cap=_hkd(4500)),
            balance=_hkd(0),
        ),
        Envelope(
            id=EnvelopeId("env_rent"),
            name="Rent",
            kind=EnvelopeKind.FIXED,
            funding=FundingRule(amount=_hkd(22000)),
            rollover=ResetToZero(),
            balance=_hkd(0),
            period_limit=_hkd(22000),
        ),
        Envelope(
            id=EnvelopeId("env_utilities"),
            name="Utilities",
            kind=EnvelopeKind.FIXED,
            funding=FundingRule(amount=_hkd(1500)),
            rollover=CarryOver(),
            balance=_hkd(0),
        ),
        Envelope(
            id=EnvelopeId("env_fees"),
            name="Bank Fees",
            funding=FundingRule(amount=_usd(50)),
            rollover=ResetToZero(),
            balance=_usd(0),
            allow_negative=True,
            deficit_policy=DeficitPolicy.REQUIRE_TRANSFER,
        ),
        Envelope(
            id=EnvelopeId("env_subscriptions"),
            name="Subscriptions",
            kind=EnvelopeKind.FIXED,
            funding=FundingRule(amount=_usd(120)),
            rollover=CarryOver(cap=_usd(240)),
            balance=_usd(0),
        ),
        Envelope(
            id=EnvelopeId("env_travel"),
            name="Travel Fund",
            funding=FundingRule(amount=_hkd(2000)),
            rollover=SinkingFund(cap=_hkd(10000)),
            balance=_hkd(0),
        ),
        Envelope(
            id=EnvelopeId("env_emergency"),
            name="Emergency Fund",
            funding=FundingRule(amount=_usd(500)),
            rollover=SinkingFund(cap=_usd(20000)),
            balance=_usd(0),
        ),
        Envelope(
            id=EnvelopeId("env_gifts"),
            name="Gifts",
            funding=FundingRule(amount=_hkd(800)),
            rollover=Decay(keep_ratio=Decimal("0.5"), cap=_hkd(2400)),
            balance=_hkd(0),
        ),
        Envelope(
            id=EnvelopeId(ENV_UNCATEGORIZED),
            name="Uncategorized",
            rollover=CarryOver(),
            balance=_usd(0),
            allow_negative=True,
        ),
        Envelope(
            id=EnvelopeId(ENV_CARD_PAYMENT),
            name="Card Payments",
            rollover=CarryOver(),
            balance=_usd(0),
            allow_negative=True,
        ),
    ]


@dataclass
class SeedReport:
    inserted: int = 0
    skipped: int = 0


def seed(items: Iterable[T], insert: Callable[[T], bool], describe: Callable[[T], str]) -> SeedReport:
    """Insert items one by one, counting conflicts as skips."""
    report = SeedReport()
    for item in items:
        if insert(item):
            report.inserted += 1
            logger.info("Inserted %s", describe(item))
        else:
            report.skipped += 1
            logger.warning("%s already exists, skipped", describe(item))
    return report


__all__ = ["SeedReport", "canonical_accounts", "family_bucket_envelopes", "seed"]
