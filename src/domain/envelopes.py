from __future__ import annotations

import logging
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator

from domain.errors import CurrencyMismatch, InactiveEnvelope, InsufficientFunds, InvalidDateTime, MinBalanceExceeded
from domain.ledger import EnvelopeId
from domain.money import Currency, Money

logger = logging.getLogger(__name__)


class EnvelopeKind(StrEnum):
    FIXED = "Fixed"
    VARIABLE = "Variable"


class EnvelopeStatus(StrEnum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class FundingFrequency(StrEnum):
    MONTHLY = "Monthly"


class DeficitPolicy(StrEnum):
    AUTO_NET = "AutoNet"
    REQUIRE_TRANSFER = "RequireTransfer"


class FundingRule(BaseModel):
    amount: Money
    freq: FundingFrequency = FundingFrequency.MONTHLY


class ResetToZero(BaseModel):
    policy: Literal["ResetToZero"] = "ResetToZero"


class CarryOver(BaseModel):
    policy: Literal["CarryOver"] = "CarryOver"
    cap: Money | None = None


class SinkingFund(BaseModel):
    policy: Literal["SinkingFund"] = "SinkingFund"
    cap: Money | None = None


class Decay(BaseModel):
    policy: Literal["Decay"] = "Decay"
    keep_ratio: Decimal
    cap: Money | None = None

    @model_validator(mode="after")
    def _validate_ratio(self) -> Decay:
        if not Decimal(0) <= self.keep_ratio <= Decimal(1):
            raise ValueError("Decay.keep_ratio must be within [0, 1]")
        return self


RolloverPolicy = Annotated[Union[ResetToZero, CarryOver, SinkingFund, Decay], Field(discriminator="policy")]


def period_label(year: int, month: int) -> str:
    if not 1 <= month <= 12 or not 1 <= year <= 9999:
        raise InvalidDateTime(f"{year}-{month}", field="period")
    return f"{year:04d}-{month:02d}"


class Envelope(BaseModel):
    """Named budget pool with its own currency, funding rule and rollover policy.

    State is (balance, last_period, status). `start_new_period` is the only
    operation that advances periods and is idempotent per (year, month);
    `credit` and `debit` move the amount only. Concurrent mutation of the same
    envelope must be serialized by the caller.
    """

    id: EnvelopeId
    name: str
    kind: EnvelopeKind = EnvelopeKind.VARIABLE
    status: EnvelopeStatus = EnvelopeStatus.ACTIVE
    funding: FundingRule | None = None
    rollover: RolloverPolicy = Field(default_factory=ResetToZero)
    balance: Money
    period_limit: Money | None = None
    last_period: str | None = None
    allow_negative: bool = False
    min_balance: Decimal | None = None
    deficit_policy: DeficitPolicy | None = None

    @model_validator(mode="after")
    def _validate_fields(self) -> Envelope:
        if not self.id:
            raise ValueError("Envelope.id must be non-empty")
        if self.min_balance is not None and self.min_balance > 0:
            raise ValueError("Envelope.min_balance must be <= 0")
        return self

    @property
    def currency(self) -> Currency:
        return self.balance.ccy

    @property
    def is_active(self) -> bool:
        return self.status == EnvelopeStatus.ACTIVE

    def activate(self) -> None:
        self.status = EnvelopeStatus.ACTIVE

    def deactivate(self) -> None:
        self.status = EnvelopeStatus.INACTIVE

    def start_new_period(self, year: int, month: int) -> bool:
        """Roll the balance into period `year-month`. Returns False on a no-op."""
        period = period_label(year, month)
        if self.last_period == period:
            return False

        if not self.is_active:
            self.last_period = period
            return True

        prior = self.balance.amount
        rolled = self._apply_rollover(prior)
        funded = self._apply_funding(rolled)
        logger.debug(
            "Envelope %s period %s: prior=%s rolled=%s funded=%s", self.id, period, prior, rolled, funded
        )

        self.balance = Money(amount=funded, ccy=self.balance.ccy)
        self.last_period = period
        return True

    def credit(self, money: Money) -> Money:
        self._ensure_active()
        self.balance = self.balance + money
        return self.balance

    def debit(self, money: Money) -> Money:
        self._ensure_active()
        prospective = self.balance - money
        if self.allow_negative:
            if self.min_balance is not None and prospective.amount < self.min_balance:
                raise MinBalanceExceeded(self.id, prospective=prospective.amount, min_balance=self.min_balance)
        elif prospective.amount < 0:
            raise InsufficientFunds(self.id, attempted=money.amount, available=self.balance.amount)

        self.balance = prospective
        return self.balance

    def _ensure_active(self) -> None:
        if not self.is_active:
            raise InactiveEnvelope(self.id)

    def _clip_to_cap(self, amount: Decimal, cap: Money | None) -> Decimal:
        if cap is None or cap.ccy != self.balance.ccy:
            return amount
        return min(amount, cap.amount)

    def _apply_rollover(self, prior: Decimal) -> Decimal:
        rollover = self.rollover
        if isinstance(rollover, ResetToZero):
            if self.allow_negative and prior < 0:
                return prior
            return Decimal(0)
        if isinstance(rollover, (CarryOver, SinkingFund)):
            return self._clip_to_cap(prior, rollover.cap)
        if isinstance(rollover, Decay):
            return self._clip_to_cap(prior * rollover.keep_ratio, rollover.cap)
        raise TypeError(f"Unsupported rollover policy: {rollover!r}")

    def _apply_funding(self, amount: Decimal) -> Decimal:
        funding = self.funding
        if funding is None or funding.freq != FundingFrequency.MONTHLY:
            return amount
        if funding.amount.ccy != self.balance.ccy:
            raise CurrencyMismatch(self.balance.ccy.value, funding.amount.ccy.value)

        if self.allow_negative and amount < 0:
            # RequireTransfer (and a missing policy) still fund; the flag is
            # advisory and explicit credits resolve persistent deficits.
            policy = self.deficit_policy or DeficitPolicy.REQUIRE_TRANSFER
            logger.debug("Envelope %s funding a deficit of %s under %s", self.id, amount, policy)
        funded = amount + funding.amount.amount

        if isinstance(self.rollover, SinkingFund):
            funded = self._clip_to_cap(funded, self.rollover.cap)
        return funded


__all__ = [
    "CarryOver",
    "Decay",
    "DeficitPolicy",
    "Envelope",
    "EnvelopeKind",
    "EnvelopeStatus",
    "FundingFrequency",
    "FundingRule",
    "ResetToZero",
    "RolloverPolicy",
    "SinkingFund",
    "period_label",
]
