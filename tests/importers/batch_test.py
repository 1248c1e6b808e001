from decimal import Decimal
from typing import Any, Iterator

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from db.repositories import TransactionRepository
from domain.accounts import PNL_ACCOUNT_ID, AccountRegistry
from domain.errors import InsufficientFunds, InvalidDateTime, InvalidEnum, ParseError, UnbalancedTransaction
from domain.ledger import FiatAmount, LegDirection, Transaction, TxType, is_balanced
from domain.money import Currency
from importers.batch import (
    BatchImporter,
    BatchImportOptions,
    BatchImportRequest,
    FlatTransactionRow,
    build_transaction,
    effective_txid,
    parse_posted_ts,
    transaction_to_rows,
)
from tests.helpers.factories import checking_account, flat_row


@pytest.fixture()
def repo(test_session: Session) -> TransactionRepository:
    return TransactionRepository(test_session)


def _build(*rows: FlatTransactionRow, **options: Any) -> Transaction:
    return build_transaction(rows[0].txid, rows, BatchImportOptions(**options))


def test_flat_row_coerces_values_to_text() -> None:
    row = FlatTransactionRow.model_validate(
        {"amount_or_qty": 0.1, "price": 3, "memo": "  ", "status": True, "unknown": "ignored"}
    )

    assert row.amount_or_qty == "0.1"
    assert row.price == "3"
    assert row.memo is None
    assert row.status == "true"


def test_single_custody_row_gets_synthesized_pnl_leg() -> None:
    tx = _build(flat_row(direction="Credit", amount_or_qty="42.50", category_id="env_groceries"))

    pnl = tx.pnl_leg()
    assert pnl is not None
    assert pnl.direction == LegDirection.DEBIT
    assert pnl.amount == FiatAmount.model_validate({"money": {"amount": "42.50", "ccy": "USD"}})
    assert pnl.category_id == "env_groceries"
    assert tx.custody_legs()[0].category_id is None
    assert tx.tx_type == TxType.INCOME
    assert is_balanced(tx.legs)


def test_default_tx_type_follows_first_row_direction() -> None:
    tx = _build(flat_row(direction="Debit"), debit_tx_type=TxType.SPENDING, credit_tx_type=TxType.INCOME)

    assert tx.tx_type == TxType.SPENDING
    assert tx.pnl_leg().direction == LegDirection.CREDIT


def test_explicit_tx_type_wins() -> None:
    tx = _build(flat_row(direction="Credit", tx_type="spending"))

    assert tx.tx_type == TxType.SPENDING


def test_negative_amount_flips_direction() -> None:
    tx = _build(flat_row(direction="Debit", amount_or_qty="-10", tx_type="spending"))

    assert tx.custody_legs()[0].direction == LegDirection.CREDIT
    assert tx.custody_legs()[0].amount.magnitude == Decimal(10)


def test_explicit_pnl_leg_receives_custody_category() -> None:
    tx = _build(
        flat_row(account_id="acct.x", direction="Credit", category_id="env_dining"),
        flat_row(account_id=PNL_ACCOUNT_ID, direction="Debit", category_id=None),
    )

    assert tx.pnl_leg().category_id == "env_dining"
    assert len(tx.legs) == 2


def test_explicit_pnl_leg_with_imbalance_is_rejected() -> None:
    with pytest.raises(UnbalancedTransaction):
        _build(
            flat_row(account_id="acct.x", direction="Credit", amount_or_qty="10"),
            flat_row(account_id=PNL_ACCOUNT_ID, direction="Debit", amount_or_qty="9"),
        )


def test_spending_without_category_is_rejected() -> None:
    with pytest.raises(UnbalancedTransaction, match="category_id"):
        _build(flat_row(category_id=None, tx_type="spending"))


def test_balanced_transfer_needs_no_pnl_leg() -> None:
    tx = _build(
        flat_row(account_id="acct.a", direction="Credit", category_id=None),
        flat_row(account_id="acct.b", direction="Debit", category_id=None),
    )

    assert tx.pnl_legs() == []
    assert tx.tx_type == TxType.TRANSFER


def test_fx_rows_balance_under_price() -> None:
    tx = _build(
        flat_row(account_id="acct.hkd", direction="Credit", ccy_or_asset="HKD", amount_or_qty="7800", category_id=None),
        flat_row(
            account_id="acct.usd",
            direction="Debit",
            ccy_or_asset="USD",
            amount_or_qty="1000",
            price="0.12820513",
            price_ccy="USD",
            category_id=None,
        ),
    )

    assert tx.tx_type == TxType.TRANSFER_FX
    assert tx.legs[1].fx is not None


@pytest.mark.parametrize(
    ("overrides", "error"),
    [
        ({"date": "15/09/2025"}, InvalidDateTime),
        ({"direction": "Sideways"}, InvalidEnum),
        ({"kind": "Stock"}, InvalidEnum),
        ({"ccy_or_asset": "EUR"}, InvalidEnum),
        ({"amount_or_qty": "abc"}, ParseError),
        ({"account_id": None}, ParseError),
        ({"price": "1.2"}, ParseError),
        ({"price": "-1", "price_ccy": "USD"}, ParseError),
    ],
)
def test_invalid_rows_raise_typed_errors(overrides: dict[str, Any], error: type[Exception]) -> None:
    with pytest.raises(error):
        _build(flat_row(**overrides))


def test_missing_txid_is_derived_from_content() -> None:
    first = flat_row(txid=None)
    second = flat_row(txid=None)

    assert effective_txid(first) == effective_txid(second)
    assert effective_txid(first) != effective_txid(flat_row(txid=None, amount_or_qty="1"))


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1757894400", 1757894400),
        ("2025-09-15", 1757894400),
        ("2025-09-15T00:00:00Z", 1757894400),
        ("not a date", None),
        ("\u00b2", None),
        ("99999999999999999999", None),
        (None, None),
    ],
)
def test_parse_posted_ts(value: str | None, expected: int | None) -> None:
    assert parse_posted_ts(value) == expected


def test_importer_inserts_and_reports_duplicates(repo: TransactionRepository) -> None:
    importer = BatchImporter(repo)
    request = BatchImportRequest(
        transactions=[flat_row(txid="tx-1"), flat_row(txid="tx-2", amount_or_qty="8")],
        options=BatchImportOptions(source="unit"),
    )

    first = importer.run(request)
    second = importer.run(request)

    assert first.imported == 2
    assert first.inserted_ids == ["tx-1", "tx-2"]
    assert second.imported == 0
    assert second.duplicates == 2
    assert {error.kind for error in second.errors} == {"duplicate"}
    assert repo.get("tx-1").source == "unit"


def test_importer_continues_past_failing_transaction(repo: TransactionRepository) -> None:
    response = BatchImporter(repo).run(
        BatchImportRequest(transactions=[flat_row(txid="bad", direction="Up"), flat_row(txid="good")])
    )

    assert response.imported == 1
    assert response.failed == 1
    assert response.errors[0].txid == "bad"
    assert response.errors[0].kind == "invalid_enum"
    assert repo.exists("good")
    assert not repo.exists("bad")


@pytest.mark.parametrize("posted_ts", ["\u00b2", "99999999999999999999"])
def test_importer_nulls_unusable_posted_ts(repo: TransactionRepository, posted_ts: str) -> None:
    response = BatchImporter(repo).run(
        BatchImportRequest(transactions=[flat_row(txid="a", posted_ts=posted_ts), flat_row(txid="b")])
    )

    assert response.imported == 2
    assert response.failed == 0
    assert repo.get("a").posted_ts is None
    assert repo.exists("b")


@pytest.fixture()
def failing_insert(test_session: Session) -> Iterator[str]:
    """Makes the store reject every statement that carries the yielded txid."""
    txid = "store-down"
    engine = test_session.get_bind()

    def reject(conn, cursor, statement, parameters, context, executemany) -> None:
        if statement.startswith("INSERT") and txid in repr(parameters):
            raise OperationalError(statement, parameters, Exception("disk I/O error"))

    event.listen(engine, "before_cursor_execute", reject)
    yield txid
    event.remove(engine, "before_cursor_execute", reject)


def test_importer_recovers_after_store_failure(repo: TransactionRepository, failing_insert: str) -> None:
    response = BatchImporter(repo).run(
        BatchImportRequest(
            transactions=[flat_row(txid=failing_insert), flat_row(txid="b"), flat_row(txid="c")]
        )
    )

    assert response.imported == 2
    assert response.failed == 1
    assert [(error.txid, error.kind) for error in response.errors] == [(failing_insert, "store")]
    assert response.inserted_ids == ["b", "c"]
    assert not repo.exists(failing_insert)


def test_importer_rejects_unknown_accounts(repo: TransactionRepository) -> None:
    importer = BatchImporter(repo, accounts=AccountRegistry([checking_account("acct.known")]))

    response = importer.run(
        BatchImportRequest(transactions=[flat_row(txid="a", account_id="acct.known"), flat_row(txid="b", account_id="acct.other")])
    )

    assert response.imported == 1
    assert response.errors[0].kind == "account_not_found"


class _RecordingReplayer:
    def __init__(self, fail_on: str | None = None) -> None:
        self.applied: list[str] = []
        self._fail_on = fail_on

    def apply_transaction(self, transaction: Transaction) -> None:
        if transaction.id == self._fail_on:
            raise InsufficientFunds("env_groceries")
        self.applied.append(transaction.id)


def test_envelope_replay_is_opt_in(repo: TransactionRepository) -> None:
    replayer = _RecordingReplayer(fail_on="b")
    importer = BatchImporter(repo, envelopes=replayer)
    rows = [flat_row(txid="a"), flat_row(txid="b")]

    importer.run(BatchImportRequest(transactions=rows[:1]))
    assert replayer.applied == []

    response = importer.run(BatchImportRequest(transactions=rows[1:], options=BatchImportOptions(apply_envelopes=True)))
    assert response.imported == 1
    assert response.envelope_errors == 1
    assert response.errors[0].kind == "insufficient_funds"


def test_rows_round_trip_through_import(repo: TransactionRepository) -> None:
    original = _build(
        flat_row(
            txid="rt-1",
            posted_ts="2025-09-16",
            payee="Grocer",
            memo="weekly",
            direction="Credit",
            ccy_or_asset="HKD",
            amount_or_qty="310.40",
            status="posted",
            tx_type="spending",
            ext1_kind="statement",
            ext1_val="Sep",
        )
    )

    rows = transaction_to_rows(original)
    rebuilt = build_transaction("rt-1", rows, BatchImportOptions())

    assert len(rows) == 2
    assert rebuilt.model_dump() == original.model_dump()
    assert rebuilt.legs[1].amount.money.ccy == Currency.HKD
