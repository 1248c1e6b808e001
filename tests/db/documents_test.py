from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from db.documents import AiPromptRepository, BlobRepository, DocumentRepository, ExtractionRunRepository
from domain.documents import AiPrompt, Blob, BlobId, Document, DocumentId, ExtractionRun, PromptId


def test_document_and_runs(test_session: Session) -> None:
    documents = DocumentRepository(test_session)
    runs = ExtractionRunRepository(test_session)
    documents.create(Document(id=DocumentId("doc-1"), title="Statement", blob_id=BlobId("blob-1")))

    older = runs.create(
        ExtractionRun(
            document_id=DocumentId("doc-1"),
            metadata={"model": "m"},
            created_at=datetime(2025, 9, 1, tzinfo=timezone.utc),
        )
    )
    newer = runs.create(ExtractionRun(document_id=DocumentId("doc-1"), result={"transactions": []}))
    documents.set_latest_extraction_run("doc-1", newer.id)

    assert documents.get("doc-1").latest_extraction_run_id == newer.id
    assert [run.id for run in runs.list_for_document("doc-1")] == [older.id, newer.id]
    assert runs.get(older.id).metadata == {"model": "m"}
    assert runs.get(older.id).created_at == datetime(2025, 9, 1, tzinfo=timezone.utc)
    assert runs.get("missing") is None
    with pytest.raises(KeyError):
        documents.set_latest_extraction_run("doc-missing", newer.id)


def test_blob_and_prompt(test_session: Session) -> None:
    BlobRepository(test_session).create(Blob(id=BlobId("b"), data=b"\x00\x01", content_type="application/pdf"))
    AiPromptRepository(test_session).create(AiPrompt(id=PromptId("p"), name="statement", template="Extract"))

    assert BlobRepository(test_session).get("b").data == b"\x00\x01"
    assert AiPromptRepository(test_session).get("p").version == 1
    assert BlobRepository(test_session).get("missing") is None
