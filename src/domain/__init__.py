"""Domain models and types for the capital ledger.

This package contains in-memory (Pydantic) models describing accounts,
balanced transactions and budgeting envelopes. They are independent from
persistence models so that business logic and testing can evolve without DB
coupling.
"""

__all__ = [
    "accounts",
    "classifier",
    "documents",
    "envelopes",
    "errors",
    "ledger",
    "money",
]
