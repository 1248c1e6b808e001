import json

import pytest
from sqlalchemy.orm import Session

from db.documents import AiPromptRepository, BlobRepository, DocumentRepository, ExtractionRunRepository
from db.repositories import TransactionRepository
from domain.documents import AiPrompt, Blob, BlobId, Document, DocumentId, PromptId
from domain.errors import ParseError
from importers.batch import BatchImporter
from services.extraction import ExtractionRequest, ExtractionService, parse_extract_result, sha256_hex

ROWS = [
    {
        "txid": "stmt-1",
        "date": "2025-09-12",
        "account_id": "acct.chase_credit",
        "direction": "Credit",
        "kind": "Fiat",
        "ccy_or_asset": "USD",
        "amount_or_qty": "18.20",
        "category_id": "env_dining",
        "tx_type": "spending",
    },
    {
        "txid": "stmt-2",
        "date": "2025-09-13",
        "direction": "Credit",
        "kind": "Fiat",
        "ccy_or_asset": "USD",
        "amount_or_qty": 4,
        "category_id": "env_uncategorized",
    },
]


class FakeExtractor:
    def __init__(self, response: str) -> None:
        self.response = response
        self.calls: list[dict] = []

    def extract(self, *, document: bytes, prompt: str, model: str, assistant_name: str) -> str:
        self.calls.append({"document": document, "prompt": prompt, "model": model, "assistant_name": assistant_name})
        return self.response


@pytest.fixture()
def runs(test_session: Session) -> ExtractionRunRepository:
    return ExtractionRunRepository(test_session)


def _service(test_session: Session, extractor: FakeExtractor) -> ExtractionService:
    BlobRepository(test_session).create(Blob(id=BlobId("blob-1"), data=b"%PDF-1.7", content_type="application/pdf"))
    AiPromptRepository(test_session).create(
        AiPrompt(id=PromptId("prompt-1"), name="bank statement", version=3, template="Extract all rows.")
    )
    DocumentRepository(test_session).create(Document(id=DocumentId("doc-1"), title="September"))
    return ExtractionService(
        extractor,
        prompts=AiPromptRepository(test_session),
        blobs=BlobRepository(test_session),
        documents=DocumentRepository(test_session),
        runs=ExtractionRunRepository(test_session),
        importer=BatchImporter(TransactionRepository(test_session)),
    )


def _request(**overrides) -> ExtractionRequest:
    payload = {
        "blob_id": "blob-1",
        "doc_id": "doc-1",
        "prompt_id": "prompt-1",
        "prompt_version": "3",
        "model": "test-model",
        "assistant_name": "statements",
    }
    payload.update(overrides)
    return ExtractionRequest.model_validate(payload)


def test_run_records_extraction_and_links_document(test_session: Session, runs: ExtractionRunRepository) -> None:
    response = json.dumps({"transactions": ROWS, "quality": "good", "confidence": 0.8})
    extractor = FakeExtractor(response)

    outcome = _service(test_session, extractor).run(_request())

    assert extractor.calls[0]["prompt"] == "Extract all rows."
    assert extractor.calls[0]["document"] == b"%PDF-1.7"
    assert outcome.quality == "good"
    assert len(outcome.transactions) == 2
    assert outcome.preview is None

    run = runs.get(outcome.run_id)
    assert run.metadata["prompt_hash"] == sha256_hex("Extract all rows.")
    assert run.metadata["result_hash"] == sha256_hex(response)
    assert run.metadata["transaction_count"] == 2
    assert run.metadata["response_text"] == response
    assert DocumentRepository(test_session).get("doc-1").latest_extraction_run_id == outcome.run_id
    assert [item.id for item in runs.list_for_document("doc-1")] == [outcome.run_id]


def test_run_prefers_request_prompt(test_session: Session) -> None:
    extractor = FakeExtractor("[]")

    _service(test_session, extractor).run(_request(prompt="Custom prompt"))

    assert extractor.calls[0]["prompt"] == "Custom prompt"


def test_run_previews_and_submits_import(test_session: Session) -> None:
    extractor = FakeExtractor("```json\n" + json.dumps(ROWS) + "\n```")

    outcome = _service(test_session, extractor).run(
        _request(**{"import": {"submit": True, "fallback_account_id": "acct.chase_credit", "source": "assistant"}})
    )

    assert outcome.preview.ready_rows == 2
    assert outcome.import_summary.imported == 2
    stored = TransactionRepository(test_session).get("stmt-2")
    assert stored.custody_legs()[0].account_id == "acct.chase_credit"
    assert stored.source == "assistant"


def test_preview_without_submit_imports_nothing(test_session: Session) -> None:
    outcome = _service(test_session, FakeExtractor(json.dumps(ROWS))).run(_request(**{"import": {"submit": False}}))

    assert outcome.preview.ready_rows == 1
    assert len(outcome.preview.errors) == 1
    assert outcome.import_summary is None
    assert not TransactionRepository(test_session).exists("stmt-1")


def test_missing_blob_raises(test_session: Session) -> None:
    with pytest.raises(ParseError, match="Blob not found"):
        _service(test_session, FakeExtractor("[]")).run(_request(blob_id="missing"))


@pytest.mark.parametrize("text", ["not json", '{"transactions": 5}'])
def test_parse_extract_result_rejects_bad_payloads(text: str) -> None:
    with pytest.raises(ParseError):
        parse_extract_result(text)
