from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, NewType
from uuid import uuid4

from pydantic import BaseModel, Field

DocumentId = NewType("DocumentId", str)
BlobId = NewType("BlobId", str)
PromptId = NewType("PromptId", str)
ExtractionRunId = NewType("ExtractionRunId", str)

BANK_STATEMENT_KIND = "bank_statement"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Blob(BaseModel):
    id: BlobId
    data: bytes
    content_type: str | None = None


class AiPrompt(BaseModel):
    id: PromptId
    name: str
    version: int = 1
    template: str


class Document(BaseModel):
    id: DocumentId
    title: str | None = None
    blob_id: BlobId | None = None
    latest_extraction_run_id: ExtractionRunId | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class ExtractionRun(BaseModel):
    id: ExtractionRunId = Field(default_factory=lambda: ExtractionRunId(str(uuid4())))
    document_id: DocumentId
    kind: str = BANK_STATEMENT_KIND
    status: str = "completed"
    metadata: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


__all__ = [
    "AiPrompt",
    "BANK_STATEMENT_KIND",
    "Blob",
    "BlobId",
    "Document",
    "DocumentId",
    "ExtractionRun",
    "ExtractionRunId",
    "PromptId",
]
