from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, LargeBinary, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


class DecimalAsString(TypeDecorator):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(value)

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class Base(DeclarativeBase):
    pass


class TransactionOrm(Base):
    __tablename__ = "capital_ledger"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    ts: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    posted_ts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, index=True)
    payee: Mapped[str | None] = mapped_column(String, nullable=True)
    memo: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    external_refs: Mapped[list[Any]] = mapped_column(JSON, default=list, nullable=False)
    tx_type: Mapped[str | None] = mapped_column(String, nullable=True)

    legs: Mapped[list["LegOrm"]] = relationship(
        cascade="all, delete-orphan", back_populates="transaction", lazy="joined", order_by="LegOrm.position"
    )


class LegOrm(Base):
    __tablename__ = "capital_ledger_legs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(String, ForeignKey("capital_ledger.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[str] = mapped_column(String, nullable=False)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    amount_kind: Mapped[str] = mapped_column(String, nullable=False)
    unit: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    fx_to: Mapped[str | None] = mapped_column(String, nullable=True)
    fx_rate: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    category_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    fee_of_leg_idx: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(String, nullable=True)

    transaction: Mapped[TransactionOrm] = relationship(back_populates="legs")


class EnvelopeOrm(Base):
    __tablename__ = "capital_envelopes"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    funding: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    rollover: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    balance_amount: Mapped[Decimal] = mapped_column(DecimalAsString, nullable=False)
    balance_ccy: Mapped[str] = mapped_column(String, nullable=False)
    period_limit: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_period: Mapped[str | None] = mapped_column(String, nullable=True)
    allow_negative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    min_balance: Mapped[Decimal | None] = mapped_column(DecimalAsString, nullable=True)
    deficit_policy: Mapped[str | None] = mapped_column(String, nullable=True)


class AccountOrm(Base):
    __tablename__ = "capital_accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False)
    # "metadata" is reserved on declarative classes.
    account_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    group_id: Mapped[str | None] = mapped_column(String, nullable=True)


class DocumentOrm(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    blob_id: Mapped[str | None] = mapped_column(String, ForeignKey("blobs.id"), nullable=True)
    latest_extraction_run_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ExtractionRunOrm(Base):
    __tablename__ = "doc_extraction_runs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    document_id: Mapped[str] = mapped_column(String, ForeignKey("documents.id"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    run_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    result: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class BlobOrm(Base):
    __tablename__ = "blobs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    content_type: Mapped[str | None] = mapped_column(String, nullable=True)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class AiPromptOrm(Base):
    __tablename__ = "ai_prompts"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    template: Mapped[str] = mapped_column(Text, nullable=False)
