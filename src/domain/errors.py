from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for every error surfaced by the capital core."""

    kind = "ledger_error"


class CurrencyMismatch(LedgerError):
    kind = "currency_mismatch"

    def __init__(self, left: str, right: str) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Currency mismatch: {left} vs {right}")


class InsufficientFunds(LedgerError):
    kind = "insufficient_funds"

    def __init__(self, envelope_id: str, *, attempted: Any = None, available: Any = None) -> None:
        self.envelope_id = envelope_id
        self.attempted = attempted
        self.available = available
        super().__init__(
            f"Insufficient funds in envelope={envelope_id} attempted={attempted} available={available}"
        )


class MinBalanceExceeded(LedgerError):
    kind = "min_balance_exceeded"

    def __init__(self, envelope_id: str, *, prospective: Any = None, min_balance: Any = None) -> None:
        self.envelope_id = envelope_id
        self.prospective = prospective
        self.min_balance = min_balance
        super().__init__(
            f"Debit would breach min_balance for envelope={envelope_id} "
            f"prospective={prospective} min_balance={min_balance}"
        )


class InactiveEnvelope(LedgerError):
    kind = "inactive_envelope"

    def __init__(self, envelope_id: str) -> None:
        self.envelope_id = envelope_id
        super().__init__(f"Envelope {envelope_id} is inactive")


class EnvelopeNotFound(LedgerError):
    kind = "envelope_not_found"

    def __init__(self, envelope_id: str) -> None:
        self.envelope_id = envelope_id
        super().__init__(f"Envelope not found: {envelope_id}")


class TransactionNotFound(LedgerError):
    kind = "transaction_not_found"

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class AccountNotFound(LedgerError):
    kind = "account_not_found"

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class UnbalancedTransaction(LedgerError):
    kind = "unbalanced_transaction"

    def __init__(self, message: str, *, residuals: dict[str, Any] | None = None) -> None:
        self.residuals = residuals or {}
        super().__init__(message)


class InvalidEnum(LedgerError):
    kind = "invalid_enum"

    def __init__(self, field: str, value: Any) -> None:
        self.field = field
        self.value = value
        super().__init__(f"Invalid value for {field}: {value!r}")


class InvalidDateTime(LedgerError):
    kind = "invalid_datetime"

    def __init__(self, value: Any, *, field: str | None = None) -> None:
        self.value = value
        self.field = field
        label = f" for {field}" if field else ""
        super().__init__(f"Invalid or out-of-range datetime{label}: {value!r}")


class ParseError(LedgerError):
    kind = "parse"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class MissingConfig(LedgerError):
    kind = "missing_config"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Missing configuration: {name}")


__all__ = [
    "AccountNotFound",
    "CurrencyMismatch",
    "EnvelopeNotFound",
    "InactiveEnvelope",
    "InsufficientFunds",
    "InvalidDateTime",
    "InvalidEnum",
    "LedgerError",
    "MinBalanceExceeded",
    "MissingConfig",
    "ParseError",
    "TransactionNotFound",
    "UnbalancedTransaction",
]
