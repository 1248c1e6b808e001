from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from db import models
from domain.documents import (
    AiPrompt,
    Blob,
    BlobId,
    Document,
    DocumentId,
    ExtractionRun,
    ExtractionRunId,
    PromptId,
)


def _aware(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp


class DocumentRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, document: Document) -> Document:
        self._session.add(
            models.DocumentOrm(
                id=document.id,
                title=document.title,
                blob_id=document.blob_id,
                latest_extraction_run_id=document.latest_extraction_run_id,
                created_at=document.created_at,
            )
        )
        self._session.commit()
        return document

    def get(self, document_id: str) -> Document | None:
        orm_doc = self._session.get(models.DocumentOrm, document_id)
        if orm_doc is None:
            return None
        return Document(
            id=DocumentId(orm_doc.id),
            title=orm_doc.title,
            blob_id=BlobId(orm_doc.blob_id) if orm_doc.blob_id else None,
            latest_extraction_run_id=(
                ExtractionRunId(orm_doc.latest_extraction_run_id) if orm_doc.latest_extraction_run_id else None
            ),
            created_at=_aware(orm_doc.created_at),
        )

    def set_latest_extraction_run(self, document_id: str, run_id: str) -> None:
        orm_doc = self._session.get(models.DocumentOrm, document_id)
        if orm_doc is None:
            raise KeyError(f"Document not found: {document_id}")
        orm_doc.latest_extraction_run_id = run_id
        self._session.commit()


class ExtractionRunRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, run: ExtractionRun) -> ExtractionRun:
        self._session.add(
            models.ExtractionRunOrm(
                id=run.id,
                document_id=run.document_id,
                kind=run.kind,
                status=run.status,
                run_metadata=run.metadata,
                result=run.result,
                created_at=run.created_at,
            )
        )
        self._session.commit()
        return run

    def get(self, run_id: str) -> ExtractionRun | None:
        orm_run = self._session.get(models.ExtractionRunOrm, run_id)
        if orm_run is None:
            return None
        return self._to_domain(orm_run)

    def list_for_document(self, document_id: str) -> list[ExtractionRun]:
        orm_runs = (
            self._session.query(models.ExtractionRunOrm)
            .filter(models.ExtractionRunOrm.document_id == document_id)
            .order_by(models.ExtractionRunOrm.created_at.asc())
            .all()
        )
        return [self._to_domain(orm_run) for orm_run in orm_runs]

    @staticmethod
    def _to_domain(orm_run: models.ExtractionRunOrm) -> ExtractionRun:
        return ExtractionRun(
            id=ExtractionRunId(orm_run.id),
            document_id=DocumentId(orm_run.document_id),
            kind=orm_run.kind,
            status=orm_run.status,
            metadata=orm_run.run_metadata,
            result=orm_run.result,
            created_at=_aware(orm_run.created_at),
        )


class BlobRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, blob: Blob) -> Blob:
        self._session.add(models.BlobOrm(id=blob.id, content_type=blob.content_type, data=blob.data))
        self._session.commit()
        return blob

    def get(self, blob_id: str) -> Blob | None:
        orm_blob = self._session.get(models.BlobOrm, blob_id)
        if orm_blob is None:
            return None
        return Blob(id=BlobId(orm_blob.id), content_type=orm_blob.content_type, data=orm_blob.data)


class AiPromptRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, prompt: AiPrompt) -> AiPrompt:
        self._session.add(
            models.AiPromptOrm(id=prompt.id, name=prompt.name, version=prompt.version, template=prompt.template)
        )
        self._session.commit()
        return prompt

    def get(self, prompt_id: str) -> AiPrompt | None:
        orm_prompt = self._session.get(models.AiPromptOrm, prompt_id)
        if orm_prompt is None:
            return None
        return AiPrompt(
            id=PromptId(orm_prompt.id), name=orm_prompt.name, version=orm_prompt.version, template=orm_prompt.template
        )


__all__ = ["AiPromptRepository", "BlobRepository", "DocumentRepository", "ExtractionRunRepository"]
