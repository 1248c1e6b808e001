from __future__ import annotations

import logging
from csv import DictReader
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path

from domain.errors import InvalidDateTime
from domain.ledger import LegDirection, TxType
from domain.money import Currency
from importers.batch import DATE_FORMAT, FlatTransactionRow

logger = logging.getLogger(__name__)

ENV_UNCATEGORIZED = "env_uncategorized"
ENV_CARD_PAYMENT = "env_card_payment"

CHASE_ACCOUNT_ID = "acct.chase_credit"
ZA_ACCOUNT_ID = "acct.za_checking"


@dataclass(frozen=True)
class StatementFormat:
    """Column layout and posting rules of one bank's CSV export.

    Negative amounts are outflows: the custody leg is credited and the P&L
    side is a debit in `outflow_category`. Positive amounts post to
    `inflow_category`.
    """

    source: str
    account_id: str
    currency: Currency
    outflow_category: str
    inflow_category: str
    default_statement: str
    date_column: str = "Transaction Date"
    post_date_column: str = "Post Date"
    description_column: str = "Description"
    amount_column: str = "Amount"
    memo_column: str = "Memo"
    date_format: str = "%m/%d/%Y"


CHASE_FORMAT = StatementFormat(
    source="chase_csv",
    account_id=CHASE_ACCOUNT_ID,
    currency=Currency.USD,
    outflow_category=ENV_UNCATEGORIZED,
    inflow_category=ENV_CARD_PAYMENT,
    default_statement="Chase_20250908_20251007",
)

ZA_BANK_FORMAT = StatementFormat(
    source="za_bank_csv",
    account_id=ZA_ACCOUNT_ID,
    currency=Currency.HKD,
    outflow_category=ENV_UNCATEGORIZED,
    inflow_category=ENV_UNCATEGORIZED,
    default_statement="ZA_Bank_Sep_2025",
)


def _parse_amount(raw: str | None) -> Decimal:
    text = (raw or "").strip().replace(",", "")
    if not text:
        return Decimal(0)
    try:
        return Decimal(text)
    except InvalidOperation:
        logger.warning("Treating unparseable amount %r as zero", raw)
        return Decimal(0)


def _iso_date(raw: str, date_format: str, field: str) -> str:
    try:
        return datetime.strptime(raw.strip(), date_format).strftime(DATE_FORMAT)
    except ValueError as exc:
        raise InvalidDateTime(raw, field=field) from exc


def load_statement_rows(
    path: str | Path, statement_format: StatementFormat, statement: str | None = None
) -> list[FlatTransactionRow]:
    """Read a statement CSV into flat rows, one custody leg per line.

    Blank lines and zero amounts are skipped. Each txid is derived from the
    source, the statement label and the 1-based line number so that
    re-imports are no-ops.
    """
    fmt = statement_format
    statement = statement or fmt.default_statement
    rows: list[FlatTransactionRow] = []

    with Path(path).open(encoding="utf-8-sig", newline="") as handle:
        for line_no, record in enumerate(DictReader(handle), start=1):
            date_raw = (record.get(fmt.date_column) or "").strip()
            amount = _parse_amount(record.get(fmt.amount_column))
            if not date_raw or amount == 0:
                logger.debug("Skipping %s line %d", fmt.source, line_no)
                continue

            date = _iso_date(date_raw, fmt.date_format, fmt.date_column)
            post_raw = (record.get(fmt.post_date_column) or "").strip()
            posted = _iso_date(post_raw, fmt.date_format, fmt.post_date_column) if post_raw else date

            is_outflow = amount < 0
            rows.append(
                FlatTransactionRow(
                    txid=f"{fmt.source}:{statement}:{line_no}",
                    date=date,
                    posted_ts=posted,
                    source=fmt.source,
                    payee=record.get(fmt.description_column),
                    memo=record.get(fmt.memo_column),
                    account_id=fmt.account_id,
                    direction=(LegDirection.CREDIT if is_outflow else LegDirection.DEBIT).value,
                    kind="Fiat",
                    ccy_or_asset=fmt.currency.value,
                    amount_or_qty=abs(amount),
                    category_id=fmt.outflow_category if is_outflow else fmt.inflow_category,
                    status="posted",
                    tx_type=(TxType.SPENDING if is_outflow else TxType.INCOME).value,
                    ext1_kind="statement",
                    ext1_val=statement,
                )
            )

    logger.info("Loaded %d rows from %s (%s)", len(rows), path, fmt.source)
    return rows


__all__ = [
    "CHASE_ACCOUNT_ID",
    "CHASE_FORMAT",
    "ENV_CARD_PAYMENT",
    "ENV_UNCATEGORIZED",
    "StatementFormat",
    "ZA_ACCOUNT_ID",
    "ZA_BANK_FORMAT",
    "load_statement_rows",
]
