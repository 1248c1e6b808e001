from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, Sequence
from uuid import NAMESPACE_URL, uuid5

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError

from db.repositories import TransactionRepository
from domain.accounts import PNL_ACCOUNT_ID, AccountId, AccountRegistry
from domain.classifier import classify_legs
from domain.errors import (
    AccountNotFound,
    InvalidDateTime,
    InvalidEnum,
    LedgerError,
    ParseError,
    UnbalancedTransaction,
)
from domain.ledger import (
    PNL_TX_TYPES,
    CryptoAmount,
    EnvelopeId,
    ExternalRef,
    FiatAmount,
    Leg,
    LegAmount,
    LegDirection,
    Transaction,
    TransactionId,
    TxType,
    balance_residuals,
)
from domain.money import Currency, FxSnapshot, Money

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "assistant_extraction"
DEFAULT_STATUS = "imported"
DATE_FORMAT = "%Y-%m-%d"

_TXID_NAMESPACE = uuid5(NAMESPACE_URL, "capital-ledger/flat-rows")


class FlatTransactionRow(BaseModel):
    """One leg of a transaction in the flat, row-oriented wire format.

    Every value is accepted as a string, number, bool or null and kept as a
    trimmed string; blank strings become None.
    """

    model_config = ConfigDict(extra="ignore")

    txid: str | None = None
    date: str | None = None
    posted_ts: str | None = None
    source: str | None = None
    payee: str | None = None
    memo: str | None = None
    account_id: str | None = None
    direction: str | None = None
    kind: str | None = None
    ccy_or_asset: str | None = None
    amount_or_qty: str | None = None
    price: str | None = None
    price_ccy: str | None = None
    category_id: str | None = None
    status: str | None = None
    tx_type: str | None = None
    ext1_kind: str | None = None
    ext1_val: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> str | None:
        return coerce_text(value)


def coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        # repr keeps the shortest exact form (0.1 rather than 0.1000000000000000055...)
        value = repr(value)
    text = str(value).strip()
    return text or None


class BatchImportOptions(BaseModel):
    source: str = DEFAULT_SOURCE
    status: str = DEFAULT_STATUS
    debit_tx_type: TxType = TxType.SPENDING
    credit_tx_type: TxType = TxType.INCOME
    apply_envelopes: bool = False


class BatchImportRequest(BaseModel):
    transactions: list[FlatTransactionRow]
    options: BatchImportOptions = Field(default_factory=BatchImportOptions)


class BatchImportError(BaseModel):
    txid: str
    kind: str
    message: str


class BatchImportResponse(BaseModel):
    imported: int = 0
    duplicates: int = 0
    failed: int = 0
    envelope_errors: int = 0
    errors: list[BatchImportError] = Field(default_factory=list)
    inserted_ids: list[str] = Field(default_factory=list)


class EnvelopeReplayer(Protocol):
    def apply_transaction(self, transaction: Transaction) -> None: ...


def parse_decimal(value: str | None, field: str) -> Decimal:
    if value is None:
        raise ParseError(f"Missing numeric value for {field}")
    cleaned = value.strip().replace(",", "")
    try:
        number = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ParseError(f"Invalid number for {field}: {value!r}") from exc
    if not number.is_finite():
        raise ParseError(f"Invalid number for {field}: {value!r}")
    return number


def parse_direction(value: str) -> LegDirection:
    for direction in LegDirection:
        if direction.value.lower() == value.strip().lower():
            return direction
    raise InvalidEnum("direction", value)


def parse_currency(value: str, field: str = "ccy_or_asset") -> Currency:
    try:
        return Currency(value.strip().upper())
    except ValueError as exc:
        raise InvalidEnum(field, value) from exc


def parse_tx_type(value: str) -> TxType:
    try:
        return TxType(value.strip().lower())
    except ValueError as exc:
        raise InvalidEnum("tx_type", value) from exc


def parse_date(value: str) -> int:
    try:
        parsed = datetime.strptime(value.strip(), DATE_FORMAT)
    except ValueError as exc:
        raise InvalidDateTime(value, field="date") from exc
    return int(parsed.replace(tzinfo=timezone.utc).timestamp())


def parse_posted_ts(value: str | None) -> int | None:
    """Epoch seconds, a YYYY-MM-DD date or an ISO-8601 datetime; None when unparseable."""
    if value is None:
        return None
    text = value.strip()
    if text.lstrip("-").isdigit():
        try:
            epoch = int(text)
            datetime.fromtimestamp(epoch, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning("Dropping unparseable posted_ts=%r", value)
            return None
        return epoch
    try:
        return parse_date(text)
    except InvalidDateTime:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Dropping unparseable posted_ts=%r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def effective_txid(row: FlatTransactionRow) -> str:
    if row.txid:
        return row.txid
    content = json.dumps(row.model_dump(exclude_none=True), sort_keys=True)
    return str(uuid5(_TXID_NAMESPACE, content))


@dataclass(frozen=True)
class NormalizedRow:
    txid: str
    ts: int
    account_id: AccountId
    direction: LegDirection
    amount: LegAmount
    fx: FxSnapshot | None
    category_id: EnvelopeId | None

    @property
    def is_pnl(self) -> bool:
        return self.account_id == PNL_ACCOUNT_ID


_REQUIRED_FIELDS = ("date", "account_id", "direction", "kind", "ccy_or_asset", "amount_or_qty")


def normalize_row(row: FlatTransactionRow, txid: str) -> NormalizedRow:
    for field in _REQUIRED_FIELDS:
        if getattr(row, field) is None:
            raise ParseError(f"txid={txid}: missing required field {field}")

    direction = parse_direction(row.direction)
    quantity = parse_decimal(row.amount_or_qty, "amount_or_qty")
    if quantity < 0:
        # Signed amounts carry their direction in the sign.
        quantity = -quantity
        direction = direction.opposite()

    kind = row.kind.strip().lower()
    amount: LegAmount
    if kind == "fiat":
        amount = FiatAmount(money=Money(amount=quantity, ccy=parse_currency(row.ccy_or_asset)))
    elif kind == "crypto":
        amount = CryptoAmount(asset=row.ccy_or_asset, qty=quantity)
    else:
        raise InvalidEnum("kind", row.kind)

    fx = None
    if row.price is not None or row.price_ccy is not None:
        if row.price is None or row.price_ccy is None:
            raise ParseError(f"txid={txid}: price and price_ccy must be given together")
        rate = parse_decimal(row.price, "price")
        if rate <= 0:
            raise ParseError(f"txid={txid}: price must be positive, got {row.price!r}")
        fx = FxSnapshot(to=parse_currency(row.price_ccy, "price_ccy"), rate=rate)

    return NormalizedRow(
        txid=txid,
        ts=parse_date(row.date),
        account_id=AccountId(row.account_id),
        direction=direction,
        amount=amount,
        fx=fx,
        category_id=EnvelopeId(row.category_id) if row.category_id else None,
    )


def _first(rows: Sequence[FlatTransactionRow], field: str) -> str | None:
    return next((getattr(row, field) for row in rows if getattr(row, field) is not None), None)


def _synthesize_pnl_leg(legs: list[Leg], category_id: EnvelopeId | None) -> Leg:
    residuals = balance_residuals(legs)
    if len(residuals) != 1:
        details = ", ".join(f"{unit}={total}" for unit, total in sorted(residuals.items()))
        raise UnbalancedTransaction(
            f"Cannot synthesize a P&L leg for {len(residuals)} unbalanced groups ({details})",
            residuals=residuals,
        )

    unit, residual = next(iter(residuals.items()))
    amount: LegAmount
    if any(leg.is_crypto and leg.unit == unit for leg in legs):
        amount = CryptoAmount(asset=unit, qty=abs(residual))
    else:
        amount = FiatAmount(money=Money(amount=abs(residual), ccy=Currency(unit)))

    direction = LegDirection.CREDIT if residual > 0 else LegDirection.DEBIT
    return Leg(account_id=PNL_ACCOUNT_ID, direction=direction, amount=amount, category_id=category_id)


def build_transaction(txid: str, rows: Sequence[FlatTransactionRow], options: BatchImportOptions) -> Transaction:
    """Normalize the rows of one txid into a balanced transaction."""
    normalized = [normalize_row(row, txid) for row in rows]

    legs: list[Leg] = []
    custody_category: EnvelopeId | None = None
    for item in normalized:
        category_id = item.category_id
        if not item.is_pnl and category_id is not None:
            custody_category = custody_category or category_id
            category_id = None
        legs.append(
            Leg(
                account_id=item.account_id,
                direction=item.direction,
                amount=item.amount,
                fx=item.fx,
                category_id=category_id,
            )
        )

    explicit_tx_type = _first(rows, "tx_type")
    if explicit_tx_type is not None:
        tx_type = parse_tx_type(explicit_tx_type)
    else:
        first_direction = normalized[0].direction
        tx_type = options.debit_tx_type if first_direction == LegDirection.DEBIT else options.credit_tx_type

    pnl_indexes = [idx for idx, leg in enumerate(legs) if leg.is_pnl]
    if pnl_indexes:
        if custody_category is not None and len(pnl_indexes) == 1 and legs[pnl_indexes[0]].category_id is None:
            idx = pnl_indexes[0]
            legs[idx] = legs[idx].model_copy(update={"category_id": custody_category})
        residuals = balance_residuals(legs)
        if residuals:
            raise UnbalancedTransaction(
                f"txid={txid}: legs do not balance and a P&L leg is already present", residuals=residuals
            )
    elif balance_residuals(legs):
        if tx_type in (TxType.SPENDING, TxType.INCOME) and custody_category is None:
            raise UnbalancedTransaction(f"txid={txid}: no category_id available for the {tx_type} P&L leg")
        legs.append(_synthesize_pnl_leg(legs, custody_category))

    if explicit_tx_type is None and tx_type in PNL_TX_TYPES and sum(leg.is_pnl for leg in legs) != 1:
        tx_type = classify_legs(legs)

    external_refs: list[ExternalRef] = []
    for row in rows:
        if row.ext1_kind and row.ext1_val and (row.ext1_kind, row.ext1_val) not in external_refs:
            external_refs.append((row.ext1_kind, row.ext1_val))

    try:
        return Transaction(
            id=TransactionId(txid),
            ts=normalized[0].ts,
            posted_ts=parse_posted_ts(_first(rows, "posted_ts")),
            source=_first(rows, "source") or options.source,
            payee=_first(rows, "payee"),
            memo=_first(rows, "memo"),
            status=_first(rows, "status") or options.status,
            external_refs=external_refs,
            legs=legs,
            tx_type=tx_type,
        )
    except ValidationError as exc:
        raise UnbalancedTransaction(f"txid={txid}: {exc.errors()[0]['msg']}") from exc


def group_rows(rows: Sequence[FlatTransactionRow]) -> OrderedDict[str, list[FlatTransactionRow]]:
    groups: OrderedDict[str, list[FlatTransactionRow]] = OrderedDict()
    for row in rows:
        groups.setdefault(effective_txid(row), []).append(row)
    return groups


class BatchImporter:
    """Turns flat rows into balanced transactions and inserts them idempotently.

    A failing transaction is reported in the response and never aborts the
    batch. Inserts are not transactional across transactions.
    """

    def __init__(
        self,
        repository: TransactionRepository,
        *,
        accounts: AccountRegistry | None = None,
        envelopes: EnvelopeReplayer | None = None,
    ) -> None:
        self._repository = repository
        self._accounts = accounts
        self._envelopes = envelopes

    def build(
        self, rows: Sequence[FlatTransactionRow], options: BatchImportOptions | None = None
    ) -> tuple[list[Transaction], list[BatchImportError]]:
        options = options or BatchImportOptions()
        transactions: list[Transaction] = []
        errors: list[BatchImportError] = []
        for txid, group in group_rows(rows).items():
            try:
                transaction = build_transaction(txid, group, options)
                self._check_accounts(transaction)
            except LedgerError as exc:
                logger.warning("Rejected txid=%s: %s", txid, exc)
                errors.append(BatchImportError(txid=txid, kind=exc.kind, message=str(exc)))
                continue
            transactions.append(transaction)
        return transactions, errors

    def run(self, request: BatchImportRequest) -> BatchImportResponse:
        transactions, errors = self.build(request.transactions, request.options)
        response = BatchImportResponse(failed=len(errors), errors=errors)

        for transaction in transactions:
            try:
                inserted = self._repository.insert(transaction)
            except SQLAlchemyError as exc:
                self._repository.rollback()
                logger.exception("Failed to store txid=%s", transaction.id)
                response.failed += 1
                response.errors.append(BatchImportError(txid=transaction.id, kind="store", message=str(exc)))
                continue

            if not inserted:
                logger.info("Skipping duplicate txid=%s", transaction.id)
                response.duplicates += 1
                response.errors.append(
                    BatchImportError(txid=transaction.id, kind="duplicate", message="Transaction already exists")
                )
                continue

            response.imported += 1
            response.inserted_ids.append(transaction.id)
            if request.options.apply_envelopes:
                self._replay(transaction, response)

        logger.info(
            "Batch import: imported=%d duplicates=%d failed=%d",
            response.imported,
            response.duplicates,
            response.failed,
        )
        return response

    def _check_accounts(self, transaction: Transaction) -> None:
        if self._accounts is None:
            return
        for leg in transaction.custody_legs():
            if leg.account_id not in self._accounts:
                raise AccountNotFound(leg.account_id)

    def _replay(self, transaction: Transaction, response: BatchImportResponse) -> None:
        if self._envelopes is None:
            return
        try:
            self._envelopes.apply_transaction(transaction)
        except LedgerError as exc:
            logger.warning("Envelope replay failed for txid=%s: %s", transaction.id, exc)
            response.envelope_errors += 1
            response.errors.append(BatchImportError(txid=transaction.id, kind=exc.kind, message=str(exc)))


def transaction_to_rows(transaction: Transaction) -> list[FlatTransactionRow]:
    """Export a transaction as flat rows, one per leg, P&L legs included."""
    date = transaction.timestamp.strftime(DATE_FORMAT)
    ext_kind, ext_val = transaction.external_refs[0] if transaction.external_refs else (None, None)
    rows: list[FlatTransactionRow] = []
    for leg in transaction.legs:
        amount = leg.amount
        if isinstance(amount, FiatAmount):
            kind, unit, quantity = "Fiat", amount.money.ccy.value, amount.money.amount
        elif isinstance(amount, CryptoAmount):
            kind, unit, quantity = "Crypto", amount.asset, amount.qty
        else:
            raise TypeError(f"Unsupported leg amount: {amount!r}")

        rows.append(
            FlatTransactionRow(
                txid=transaction.id,
                date=date,
                posted_ts=transaction.posted_ts,
                source=transaction.source,
                payee=transaction.payee,
                memo=transaction.memo,
                account_id=leg.account_id,
                direction=leg.direction.value,
                kind=kind,
                ccy_or_asset=unit,
                amount_or_qty=quantity,
                price=leg.fx.rate if leg.fx else None,
                price_ccy=leg.fx.to.value if leg.fx else None,
                category_id=leg.category_id,
                status=transaction.status,
                tx_type=transaction.tx_type.value if transaction.tx_type else None,
                ext1_kind=ext_kind,
                ext1_val=ext_val,
            )
        )
    return rows


__all__ = [
    "BatchImportError",
    "BatchImportOptions",
    "BatchImportRequest",
    "BatchImportResponse",
    "BatchImporter",
    "DEFAULT_SOURCE",
    "DEFAULT_STATUS",
    "EnvelopeReplayer",
    "FlatTransactionRow",
    "build_transaction",
    "coerce_text",
    "effective_txid",
    "group_rows",
    "normalize_row",
    "parse_date",
    "parse_decimal",
    "parse_direction",
    "parse_posted_ts",
    "transaction_to_rows",
]
