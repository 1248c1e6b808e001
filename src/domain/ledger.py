from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any, Iterable, Literal, NewType, Union

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from domain.accounts import PNL_ACCOUNT_ID, AccountId
from domain.money import Currency, FxSnapshot, Money, convert_amount

TransactionId = NewType("TransactionId", str)
EnvelopeId = NewType("EnvelopeId", str)
ExternalRef = tuple[str, str]

BALANCE_TOLERANCE = Decimal("0.000001")

# Passed as validation context when loading stored rows, which predate (or were
# rewritten by) the balance rules and must stay readable.
TRUSTED_CONTEXT: dict[str, Any] = {"trusted": True}


class LegDirection(StrEnum):
    DEBIT = "Debit"
    CREDIT = "Credit"

    def opposite(self) -> LegDirection:
        return LegDirection.CREDIT if self == LegDirection.DEBIT else LegDirection.DEBIT


class TxType(StrEnum):
    SPENDING = "spending"
    INCOME = "income"
    FEE_ONLY = "fee_only"
    TRANSFER = "transfer"
    TRANSFER_FX = "transfer_fx"
    TRADE = "trade"
    ADJUSTMENT = "adjustment"


PNL_TX_TYPES = frozenset({TxType.SPENDING, TxType.INCOME, TxType.FEE_ONLY})


class FiatAmount(BaseModel):
    kind: Literal["Fiat"] = "Fiat"
    money: Money

    @property
    def unit(self) -> str:
        return self.money.ccy.value

    @property
    def magnitude(self) -> Decimal:
        return self.money.amount


class CryptoAmount(BaseModel):
    kind: Literal["Crypto"] = "Crypto"
    asset: str
    qty: Decimal

    @field_validator("asset")
    @classmethod
    def _normalize_asset(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError("CryptoAmount.asset must be non-empty")
        return normalized

    @property
    def unit(self) -> str:
        return self.asset

    @property
    def magnitude(self) -> Decimal:
        return self.qty


LegAmount = Annotated[Union[FiatAmount, CryptoAmount], Field(discriminator="kind")]


def fiat(amount: Decimal | str | int, ccy: Currency | str) -> FiatAmount:
    return FiatAmount(money=Money(amount=Decimal(amount), ccy=Currency(ccy)))


def crypto(asset: str, qty: Decimal | str | int) -> CryptoAmount:
    return CryptoAmount(asset=asset, qty=Decimal(qty))


class Leg(BaseModel):
    """One side of a journal entry.

    Amounts are non-negative magnitudes; the sign is carried by `direction`
    (Debit counts positive, Credit negative when balancing).
    """

    account_id: AccountId
    direction: LegDirection
    amount: LegAmount
    fx: FxSnapshot | None = None
    category_id: EnvelopeId | None = None
    fee_of_leg_idx: int | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _validate_amount(self) -> Leg:
        if not self.account_id:
            raise ValueError("Leg.account_id must be non-empty")
        if self.amount.magnitude < 0:
            raise ValueError("Leg amount must be a non-negative magnitude")
        return self

    @property
    def is_pnl(self) -> bool:
        return self.account_id == PNL_ACCOUNT_ID

    @property
    def is_fiat(self) -> bool:
        return isinstance(self.amount, FiatAmount)

    @property
    def is_crypto(self) -> bool:
        return isinstance(self.amount, CryptoAmount)

    @property
    def unit(self) -> str:
        return self.amount.unit

    def signed_magnitude(self) -> Decimal:
        magnitude = self.amount.magnitude
        return magnitude if self.direction == LegDirection.DEBIT else -magnitude


def _nonzero(sums: dict[str, Decimal]) -> dict[str, Decimal]:
    return {unit: total for unit, total in sums.items() if abs(total) > BALANCE_TOLERANCE}


def direct_residuals(legs: Iterable[Leg]) -> dict[str, Decimal]:
    sums: dict[str, Decimal] = defaultdict(Decimal)
    for leg in legs:
        sums[leg.unit] += leg.signed_magnitude()
    return dict(sums)


def balance_residuals(legs: Iterable[Leg]) -> dict[str, Decimal]:
    """Unbalanced currency/asset groups and their signed residuals.

    The first pass sums each group in its native unit. If that fails and FX
    snapshots are present, a second pass moves every FX-bearing leg into its
    snapshot's target unit. A snapshot on a leg already denominated in its
    target is the rate for the counter-currency fiat legs, which are converted
    with it. An empty result means the legs balance.
    """
    legs = list(legs)
    unbalanced = _nonzero(direct_residuals(legs))
    if not unbalanced or not any(leg.fx is not None for leg in legs):
        return unbalanced

    anchor = next((leg.fx for leg in legs if leg.fx is not None and leg.unit == leg.fx.to.value), None)
    converted: dict[str, Decimal] = defaultdict(Decimal)
    for leg in legs:
        snapshot = leg.fx
        if snapshot is not None and leg.unit == snapshot.to.value:
            snapshot = None
        if snapshot is None and anchor is not None and leg.is_fiat and leg.unit != anchor.to.value:
            snapshot = anchor

        if snapshot is None:
            converted[leg.unit] += leg.signed_magnitude()
        else:
            converted[snapshot.to.value] += convert_amount(leg.signed_magnitude(), snapshot.rate)
    return _nonzero(converted)


def is_balanced(legs: Iterable[Leg]) -> bool:
    return not balance_residuals(legs)


class Transaction(BaseModel):
    id: TransactionId
    ts: int
    posted_ts: int | None = None
    source: str
    payee: str | None = None
    memo: str | None = None
    status: str | None = None
    reconciled: bool = False
    external_refs: list[ExternalRef] = Field(default_factory=list)
    legs: list[Leg]
    tx_type: TxType | None = None

    @model_validator(mode="after")
    def _validate_fields(self, info: ValidationInfo) -> Transaction:
        if not self.id:
            raise ValueError("Transaction.id must be non-empty")
        if info.context and info.context.get("trusted"):
            return self

        if len(self.legs) < 2:
            raise ValueError("Transaction must have at least two legs")

        for idx, leg in enumerate(self.legs):
            if leg.fee_of_leg_idx is not None and not (
                0 <= leg.fee_of_leg_idx < len(self.legs) and leg.fee_of_leg_idx != idx
            ):
                raise ValueError(f"Leg {idx} has invalid fee_of_leg_idx={leg.fee_of_leg_idx}")

        residuals = balance_residuals(self.legs)
        if residuals:
            details = ", ".join(f"{unit}={total}" for unit, total in sorted(residuals.items()))
            raise ValueError(f"Transaction legs do not balance ({details})")

        if self.tx_type in PNL_TX_TYPES and len(self.pnl_legs()) != 1:
            raise ValueError(f"tx_type={self.tx_type} requires exactly one {PNL_ACCOUNT_ID} leg")
        return self

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.ts, tz=timezone.utc)

    @property
    def period(self) -> str:
        return self.timestamp.strftime("%Y-%m")

    def pnl_legs(self) -> list[Leg]:
        return [leg for leg in self.legs if leg.is_pnl]

    def pnl_leg(self) -> Leg | None:
        pnl = self.pnl_legs()
        return pnl[0] if len(pnl) == 1 else None

    def custody_legs(self) -> list[Leg]:
        return [leg for leg in self.legs if not leg.is_pnl]

    def has_misplaced_category(self) -> bool:
        """Legacy shape: category on a custody leg and none on the P&L side."""
        on_custody = any(leg.category_id is not None for leg in self.custody_legs())
        on_pnl = any(leg.category_id is not None for leg in self.pnl_legs())
        return on_custody and not on_pnl


__all__ = [
    "BALANCE_TOLERANCE",
    "CryptoAmount",
    "EnvelopeId",
    "ExternalRef",
    "FiatAmount",
    "Leg",
    "LegAmount",
    "LegDirection",
    "PNL_TX_TYPES",
    "TRUSTED_CONTEXT",
    "Transaction",
    "TransactionId",
    "TxType",
    "balance_residuals",
    "crypto",
    "direct_residuals",
    "fiat",
    "is_balanced",
]
