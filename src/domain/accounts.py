from __future__ import annotations

from typing import Annotated, Literal, NewType, Union

from pydantic import BaseModel, Field, model_validator

from domain.money import Currency

AccountId = NewType("AccountId", str)

# Virtual account absorbing the P&L side of single-sided flows.
PNL_ACCOUNT_ID = AccountId("__pnl__")


class EvmNetwork(BaseModel):
    kind: Literal["EVM"] = "EVM"
    chain_name: str
    chain_id: int


class SolanaNetwork(BaseModel):
    kind: Literal["Solana"] = "Solana"


class BitcoinNetwork(BaseModel):
    kind: Literal["Bitcoin"] = "Bitcoin"


AccountNetwork = Annotated[Union[EvmNetwork, SolanaNetwork, BitcoinNetwork], Field(discriminator="kind")]


class CheckingAccount(BaseModel):
    type: Literal["Checking"] = "Checking"
    bank_name: str
    owner_name: str
    account_number: str
    routing_number: str | None = None
    color: str | None = None


class SavingsAccount(BaseModel):
    type: Literal["Savings"] = "Savings"
    bank_name: str
    owner_name: str
    account_number: str
    routing_number: str | None = None
    color: str | None = None


class CreditAccount(BaseModel):
    type: Literal["Credit"] = "Credit"
    credit_card_name: str
    owner_name: str
    account_number: str
    routing_number: str | None = None
    color: str | None = None


class CryptoWalletAccount(BaseModel):
    type: Literal["CryptoWallet"] = "CryptoWallet"
    address: str
    network: AccountNetwork
    is_ledger: bool = False
    color: str | None = None


class CexAccount(BaseModel):
    type: Literal["Cex"] = "Cex"
    cex_name: str
    account_id: str
    color: str | None = None


class TrustAccount(BaseModel):
    type: Literal["Trust"] = "Trust"
    trustee: str
    jurisdiction: str
    color: str | None = None


AccountMetadata = Annotated[
    Union[CheckingAccount, SavingsAccount, CreditAccount, CryptoWalletAccount, CexAccount, TrustAccount],
    Field(discriminator="type"),
]


class Account(BaseModel):
    id: AccountId
    name: str
    currency: Currency
    metadata: AccountMetadata
    group_id: str | None = None

    @model_validator(mode="after")
    def _validate_id(self) -> Account:
        if not self.id:
            raise ValueError("Account.id must be non-empty")
        if self.id == PNL_ACCOUNT_ID:
            raise ValueError(f"{PNL_ACCOUNT_ID} is reserved for the virtual P&L account")
        return self


def network_name(network: EvmNetwork | SolanaNetwork | BitcoinNetwork) -> str:
    if isinstance(network, EvmNetwork):
        return network.chain_name
    if isinstance(network, SolanaNetwork):
        return "Solana"
    if isinstance(network, BitcoinNetwork):
        return "Bitcoin"
    raise TypeError(f"Unsupported account network: {network!r}")


def group_key(account: Account) -> str:
    """Display grouping: explicit group_id, otherwise institution and owner."""
    if account.group_id:
        return account.group_id

    meta = account.metadata
    if isinstance(meta, (CheckingAccount, SavingsAccount)):
        return f"{meta.bank_name} • {meta.owner_name}"
    if isinstance(meta, CreditAccount):
        return f"{meta.credit_card_name} • {meta.owner_name}"
    if isinstance(meta, CexAccount):
        return meta.cex_name
    if isinstance(meta, CryptoWalletAccount):
        return f"Wallet • {network_name(meta.network)}"
    if isinstance(meta, TrustAccount):
        return f"Trust • {meta.trustee}"
    raise TypeError(f"Unsupported account metadata: {meta!r}")


class AccountRegistry:
    """In-memory keyed collection of accounts.

    `insert` reports a conflict by returning False so callers such as seed
    scripts and the importer can treat re-runs as no-ops.
    """

    def __init__(self, accounts: list[Account] | None = None) -> None:
        self._accounts: dict[AccountId, Account] = {}
        for account in accounts or []:
            self.upsert(account)

    def insert(self, account: Account) -> bool:
        if account.id in self._accounts:
            return False
        self._accounts[account.id] = account
        return True

    def upsert(self, account: Account) -> Account:
        self._accounts[account.id] = account
        return account

    def lookup(self, account_id: str) -> Account | None:
        return self._accounts.get(AccountId(account_id))

    def list(self) -> list[Account]:
        return sorted(self._accounts.values(), key=lambda account: account.id)

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._accounts

    def __len__(self) -> int:
        return len(self._accounts)


__all__ = [
    "Account",
    "AccountId",
    "AccountMetadata",
    "AccountNetwork",
    "AccountRegistry",
    "BitcoinNetwork",
    "CexAccount",
    "CheckingAccount",
    "CreditAccount",
    "CryptoWalletAccount",
    "EvmNetwork",
    "PNL_ACCOUNT_ID",
    "SavingsAccount",
    "SolanaNetwork",
    "TrustAccount",
    "group_key",
    "network_name",
]
