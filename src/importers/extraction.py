from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from domain.errors import ParseError
from domain.ledger import TxType
from importers.batch import (
    DEFAULT_SOURCE,
    DEFAULT_STATUS,
    BatchImportError,
    BatchImportOptions,
    BatchImportRequest,
    FlatTransactionRow,
    coerce_text,
    effective_txid,
)

logger = logging.getLogger(__name__)


class ExtractResult(BaseModel):
    """Structured output of a statement extraction call."""

    transactions: list[Any] = Field(default_factory=list)
    quality: str | None = None
    confidence: float | None = None
    audit: Any = None
    inferred_meta: Any = None


class ExtractImportOptions(BaseModel):
    submit: bool = False
    source: str | None = None
    status: str | None = None
    debit_tx_type: TxType | None = None
    credit_tx_type: TxType | None = None
    fallback_account_id: str | None = None

    def batch_options(self) -> BatchImportOptions:
        return BatchImportOptions(
            source=self.source or DEFAULT_SOURCE,
            status=self.status or DEFAULT_STATUS,
            debit_tx_type=self.debit_tx_type or TxType.SPENDING,
            credit_tx_type=self.credit_tx_type or TxType.INCOME,
        )


class ImportPreview(BaseModel):
    total_rows: int = 0
    ready_rows: int = 0
    transaction_count: int = 0
    quality: str | None = None
    confidence: float | None = None
    errors: list[BatchImportError] = Field(default_factory=list)


class PreparedBatchImport(BaseModel):
    request: BatchImportRequest
    preview: ImportPreview


def _row_from_object(index: int, item: Any, fallback_account_id: str | None) -> FlatTransactionRow:
    if not isinstance(item, dict):
        raise ParseError(f"row {index}: expected an object, got {type(item).__name__}")
    try:
        row = FlatTransactionRow.model_validate(item)
    except ValidationError as exc:
        raise ParseError(f"row {index}: {exc.errors()[0]['msg']}") from exc

    if row.account_id is None:
        fallback = coerce_text(fallback_account_id)
        if fallback is None:
            raise ParseError(f"txid={row.txid or f'row {index}'}: missing account_id and no fallback account")
        row = row.model_copy(update={"account_id": fallback})
    return row


def prepare_batch_import(result: ExtractResult, options: ExtractImportOptions | None = None) -> PreparedBatchImport:
    """Map extracted rows to a batch import request.

    Rows that cannot be mapped are reported in the preview and left out of
    the request.
    """
    options = options or ExtractImportOptions()
    rows: list[FlatTransactionRow] = []
    preview = ImportPreview(
        total_rows=len(result.transactions), quality=result.quality, confidence=result.confidence
    )

    for index, item in enumerate(result.transactions):
        try:
            rows.append(_row_from_object(index, item, options.fallback_account_id))
        except ParseError as exc:
            txid = coerce_text(item.get("txid")) if isinstance(item, dict) else None
            logger.warning("Skipping extracted row %d: %s", index, exc)
            preview.errors.append(BatchImportError(txid=txid or f"row-{index}", kind=exc.kind, message=str(exc)))

    preview.ready_rows = len(rows)
    preview.transaction_count = len({effective_txid(row) for row in rows})
    request = BatchImportRequest(transactions=rows, options=options.batch_options())
    return PreparedBatchImport(request=request, preview=preview)


__all__ = ["ExtractImportOptions", "ExtractResult", "ImportPreview", "PreparedBatchImport", "prepare_batch_import"]
