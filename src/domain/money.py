from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, model_validator

from domain.errors import CurrencyMismatch

# USD per 1 HKD under the peg (1 / 7.8).
DEFAULT_HKD_TO_USD_PEG = Decimal("0.1282051282051282")

CONVERSION_PLACES = 2


class Currency(StrEnum):
    USD = "USD"
    HKD = "HKD"
    BTC = "BTC"


DISPLAY_PRECISION: dict[Currency, int] = {
    Currency.USD: 2,
    Currency.HKD: 2,
    Currency.BTC: 8,
}


def round_places(value: Decimal, places: int) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


class Money(BaseModel):
    """Decimal amount in one of the supported currencies.

    Arithmetic and ordering are only defined between equal currencies and
    raise CurrencyMismatch otherwise. Amounts keep full precision; rounding
    happens only in `display()` and FX conversion.
    """

    model_config = ConfigDict(frozen=True)

    amount: Decimal
    ccy: Currency

    @classmethod
    def zero(cls, ccy: Currency) -> Money:
        return cls(amount=Decimal(0), ccy=ccy)

    def _check(self, other: Money) -> None:
        if self.ccy != other.ccy:
            raise CurrencyMismatch(self.ccy.value, other.ccy.value)

    def __add__(self, other: Money) -> Money:
        self._check(other)
        return Money(amount=self.amount + other.amount, ccy=self.ccy)

    def __sub__(self, other: Money) -> Money:
        self._check(other)
        return Money(amount=self.amount - other.amount, ccy=self.ccy)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, ccy=self.ccy)

    def __mul__(self, factor: Decimal | int) -> Money:
        if isinstance(factor, Money):
            raise TypeError("Money can only be multiplied by a unitless decimal")
        return Money(amount=self.amount * Decimal(factor), ccy=self.ccy)

    __rmul__ = __mul__

    def __lt__(self, other: Money) -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        self._check(other)
        return self.amount >= other.amount

    def is_negative(self) -> bool:
        return self.amount < 0

    def display(self) -> str:
        return f"{round_places(self.amount, DISPLAY_PRECISION[self.ccy])} {self.ccy.value}"


class FxSnapshot(BaseModel):
    """Rate converting 1 unit of a leg's native unit into `to`."""

    model_config = ConfigDict(frozen=True)

    to: Currency
    rate: Decimal

    @model_validator(mode="after")
    def _validate_rate(self) -> FxSnapshot:
        if self.rate <= 0:
            raise ValueError("FxSnapshot.rate must be positive")
        return self


def convert(money: Money, snapshot: FxSnapshot, *, places: int = CONVERSION_PLACES) -> Money:
    return Money(amount=round_places(money.amount * snapshot.rate, places), ccy=snapshot.to)


def convert_amount(amount: Decimal, rate: Decimal, *, places: int = CONVERSION_PLACES) -> Decimal:
    return round_places(amount * rate, places)


def hkd_to_usd_snapshot(peg: Decimal = DEFAULT_HKD_TO_USD_PEG) -> FxSnapshot:
    return FxSnapshot(to=Currency.USD, rate=peg)


__all__ = [
    "CONVERSION_PLACES",
    "Currency",
    "DEFAULT_HKD_TO_USD_PEG",
    "DISPLAY_PRECISION",
    "FxSnapshot",
    "Money",
    "convert",
    "convert_amount",
    "hkd_to_usd_snapshot",
    "round_places",
]
