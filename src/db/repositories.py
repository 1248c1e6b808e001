from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db import models
from domain.accounts import Account, AccountId
from domain.envelopes import Envelope
from domain.errors import EnvelopeNotFound, TransactionNotFound
from domain.ledger import (
    TRUSTED_CONTEXT,
    EnvelopeId,
    Leg,
    Transaction,
    TxType,
)

logger = logging.getLogger(__name__)


class TransactionRepository:
    """Stores ledger transactions in `capital_ledger` with one row per leg.

    Rows are loaded with the trusted validation context so that legacy and
    patched transactions stay readable.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def exists(self, transaction_id: str) -> bool:
        return self._session.get(models.TransactionOrm, transaction_id) is not None

    def insert(self, transaction: Transaction) -> bool:
        """Insert one transaction. Returns False when the id is already stored."""
        if self.exists(transaction.id):
            return False

        self._session.add(self._to_orm(transaction))
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            logger.debug("Transaction %s already stored", transaction.id)
            return False
        return True

    def get(self, transaction_id: str) -> Transaction | None:
        orm_tx = self._session.get(models.TransactionOrm, transaction_id)
        if orm_tx is None:
            return None
        return self._to_domain(orm_tx)

    def list(
        self,
        *,
        source: str | None = None,
        start_ts: int | None = None,
        end_ts: int | None = None,
        limit: int | None = None,
    ) -> list[Transaction]:
        query = self._session.query(models.TransactionOrm)
        if source is not None:
            query = query.filter(models.TransactionOrm.source == source)
        if start_ts is not None:
            query = query.filter(models.TransactionOrm.ts >= start_ts)
        if end_ts is not None:
            query = query.filter(models.TransactionOrm.ts < end_ts)
        query = query.order_by(models.TransactionOrm.ts.asc(), models.TransactionOrm.id.asc())
        if limit:
            query = query.limit(limit)
        return [self._to_domain(orm_tx) for orm_tx in query.all()]

    def earliest_ts(self) -> int | None:
        orm_tx = self._session.query(models.TransactionOrm).order_by(models.TransactionOrm.ts.asc()).first()
        return orm_tx.ts if orm_tx is not None else None

    def update_tx_type(self, transaction_id: str, tx_type: TxType | None) -> None:
        orm_tx = self._require(transaction_id)
        orm_tx.tx_type = tx_type.value if tx_type is not None else None
        self._session.commit()

    def set_reconciled(self, transaction_id: str, reconciled: bool) -> None:
        orm_tx = self._require(transaction_id)
        orm_tx.reconciled = reconciled
        self._session.commit()

    def replace_legs(self, transaction_id: str, legs: list[Leg]) -> None:
        orm_tx = self._require(transaction_id)
        orm_tx.legs = [self._leg_to_orm(position, leg) for position, leg in enumerate(legs)]
        self._session.commit()

    def delete(self, transaction_id: str) -> None:
        self._session.delete(self._require(transaction_id))
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    def _require(self, transaction_id: str) -> models.TransactionOrm:
        orm_tx = self._session.get(models.TransactionOrm, transaction_id)
        if orm_tx is None:
            raise TransactionNotFound(transaction_id)
        return orm_tx

    @classmethod
    def _to_orm(cls, transaction: Transaction) -> models.TransactionOrm:
        orm_tx = models.TransactionOrm(
            id=transaction.id,
            ts=transaction.ts,
            posted_ts=transaction.posted_ts,
            source=transaction.source,
            payee=transaction.payee,
            memo=transaction.memo,
            status=transaction.status,
            reconciled=transaction.reconciled,
            external_refs=[list(ref) for ref in transaction.external_refs],
            tx_type=transaction.tx_type.value if transaction.tx_type is not None else None,
        )
        orm_tx.legs = [cls._leg_to_orm(position, leg) for position, leg in enumerate(transaction.legs)]
        return orm_tx

    @staticmethod
    def _leg_to_orm(position: int, leg: Leg) -> models.LegOrm:
        return models.LegOrm(
            position=position,
            account_id=leg.account_id,
            direction=leg.direction.value,
            amount_kind=leg.amount.kind,
            unit=leg.unit,
            amount=leg.amount.magnitude,
            fx_to=leg.fx.to.value if leg.fx is not None else None,
            fx_rate=leg.fx.rate if leg.fx is not None else None,
            category_id=leg.category_id,
            fee_of_leg_idx=leg.fee_of_leg_idx,
            notes=leg.notes,
        )

    @staticmethod
    def _leg_payload(orm_leg: models.LegOrm) -> dict[str, Any]:
        amount: dict[str, Any]
        if orm_leg.amount_kind == "Fiat":
            amount = {"kind": "Fiat", "money": {"amount": orm_leg.amount, "ccy": orm_leg.unit}}
        elif orm_leg.amount_kind == "Crypto":
            amount = {"kind": "Crypto", "asset": orm_leg.unit, "qty": orm_leg.amount}
        else:
            raise ValueError(f"Unsupported leg amount kind: {orm_leg.amount_kind}")

        fx = None
        if orm_leg.fx_to is not None and orm_leg.fx_rate is not None:
            fx = {"to": orm_leg.fx_to, "rate": orm_leg.fx_rate}

        return {
            "account_id": orm_leg.account_id,
            "direction": orm_leg.direction,
            "amount": amount,
            "fx": fx,
            "category_id": orm_leg.category_id,
            "fee_of_leg_idx": orm_leg.fee_of_leg_idx,
            "notes": orm_leg.notes,
        }

    @classmethod
    def _to_domain(cls, orm_tx: models.TransactionOrm) -> Transaction:
        payload = {
            "id": orm_tx.id,
            "ts": orm_tx.ts,
            "posted_ts": orm_tx.posted_ts,
            "source": orm_tx.source,
            "payee": orm_tx.payee,
            "memo": orm_tx.memo,
            "status": orm_tx.status,
            "reconciled": orm_tx.reconciled,
            "external_refs": [tuple(ref) for ref in orm_tx.external_refs or []],
            "legs": [cls._leg_payload(orm_leg) for orm_leg in orm_tx.legs],
            "tx_type": orm_tx.tx_type,
        }
        return Transaction.model_validate(payload, context=TRUSTED_CONTEXT)


class EnvelopeRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def insert(self, envelope: Envelope) -> bool:
        if self._session.get(models.EnvelopeOrm, envelope.id) is not None:
            return False
        self._session.add(self._to_orm(envelope))
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            return False
        return True

    def save(self, envelope: Envelope) -> Envelope:
        self._session.merge(self._to_orm(envelope))
        self._session.commit()
        return envelope

    def get(self, envelope_id: str) -> Envelope | None:
        orm_env = self._session.get(models.EnvelopeOrm, envelope_id)
        if orm_env is None:
            return None
        return self._to_domain(orm_env)

    def require(self, envelope_id: str) -> Envelope:
        envelope = self.get(envelope_id)
        if envelope is None:
            raise EnvelopeNotFound(envelope_id)
        return envelope

    def list(self) -> list[Envelope]:
        orm_envs = self._session.query(models.EnvelopeOrm).order_by(models.EnvelopeOrm.id.asc()).all()
        return [self._to_domain(orm_env) for orm_env in orm_envs]

    @staticmethod
    def _to_orm(envelope: Envelope) -> models.EnvelopeOrm:
        return models.EnvelopeOrm(
            id=envelope.id,
            name=envelope.name,
            kind=envelope.kind.value,
            status=envelope.status.value,
            funding=envelope.funding.model_dump(mode="json") if envelope.funding else None,
            rollover=envelope.rollover.model_dump(mode="json"),
            balance_amount=envelope.balance.amount,
            balance_ccy=envelope.balance.ccy.value,
            period_limit=envelope.period_limit.model_dump(mode="json") if envelope.period_limit else None,
            last_period=envelope.last_period,
            allow_negative=envelope.allow_negative,
            min_balance=envelope.min_balance,
            deficit_policy=envelope.deficit_policy.value if envelope.deficit_policy else None,
        )

    @staticmethod
    def _to_domain(orm_env: models.EnvelopeOrm) -> Envelope:
        return Envelope.model_validate(
            {
                "id": EnvelopeId(orm_env.id),
                "name": orm_env.name,
                "kind": orm_env.kind,
                "status": orm_env.status,
                "funding": orm_env.funding,
                "rollover": orm_env.rollover,
                "balance": {"amount": orm_env.balance_amount, "ccy": orm_env.balance_ccy},
                "period_limit": orm_env.period_limit,
                "last_period": orm_env.last_period,
                "allow_negative": orm_env.allow_negative,
                "min_balance": orm_env.min_balance,
                "deficit_policy": orm_env.deficit_policy,
            }
        )


class AccountRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def insert(self, account: Account) -> bool:
        """Insert one account. Returns False on an id conflict."""
        if self._session.get(models.AccountOrm, account.id) is not None:
            return False
        self._session.add(self._to_orm(account))
        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            return False
        return True

    def upsert(self, account: Account) -> Account:
        self._session.merge(self._to_orm(account))
        self._session.commit()
        return account

    def get(self, account_id: str) -> Account | None:
        orm_account = self._session.get(models.AccountOrm, account_id)
        if orm_account is None:
            return None
        return self._to_domain(orm_account)

    def list(self) -> list[Account]:
        orm_accounts = self._session.query(models.AccountOrm).order_by(models.AccountOrm.id.asc()).all()
        return [self._to_domain(orm_account) for orm_account in orm_accounts]

    @staticmethod
    def _to_orm(account: Account) -> models.AccountOrm:
        return models.AccountOrm(
            id=account.id,
            name=account.name,
            currency=account.currency.value,
            account_metadata=account.metadata.model_dump(mode="json"),
            group_id=account.group_id,
        )

    @staticmethod
    def _to_domain(orm_account: models.AccountOrm) -> Account:
        return Account.model_validate(
            {
                "id": AccountId(orm_account.id),
                "name": orm_account.name,
                "currency": orm_account.currency,
                "metadata": orm_account.account_metadata,
                "group_id": orm_account.group_id,
            }
        )


__all__ = ["AccountRepository", "EnvelopeRepository", "TransactionRepository"]
