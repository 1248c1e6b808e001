from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from domain.ledger import FiatAmount, Leg, LegDirection, Transaction, TxType

# Fiat magnitude below which a two-leg P&L debit counts as a bank fee.
# Applied to every fiat currency alike.
FEE_THRESHOLD = Decimal(15)


def classify_legs(legs: Sequence[Leg], *, fee_threshold: Decimal = FEE_THRESHOLD) -> TxType:
    """Label a transaction from the shape of its legs alone."""
    pnl = [leg for leg in legs if leg.is_pnl]

    if len(pnl) == 1:
        pnl_leg = pnl[0]
        if pnl_leg.direction == LegDirection.DEBIT:
            if (
                len(legs) == 2
                and isinstance(pnl_leg.amount, FiatAmount)
                and abs(pnl_leg.amount.money.amount) < fee_threshold
            ):
                return TxType.FEE_ONLY
            return TxType.SPENDING
        return TxType.INCOME

    if pnl:
        # More than one P&L leg is ill-formed.
        return TxType.ADJUSTMENT

    if len(legs) < 2:
        return TxType.ADJUSTMENT

    fiat_currencies = {leg.amount.money.ccy for leg in legs if isinstance(leg.amount, FiatAmount)}
    if len(fiat_currencies) > 1:
        return TxType.TRANSFER_FX

    has_crypto = any(leg.is_crypto for leg in legs)
    has_fiat = any(leg.is_fiat for leg in legs)
    if has_crypto and (has_fiat or len(legs) > 2):
        return TxType.TRADE

    if len(fiat_currencies) == 1 or (has_crypto and not has_fiat):
        return TxType.TRANSFER

    return TxType.ADJUSTMENT


def classify(tx: Transaction, *, fee_threshold: Decimal = FEE_THRESHOLD) -> TxType:
    return classify_legs(tx.legs, fee_threshold=fee_threshold)


__all__ = ["FEE_THRESHOLD", "classify", "classify_legs"]
