from __future__ import annotations

import hashlib
import json
import logging
from time import perf_counter
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from db.documents import AiPromptRepository, BlobRepository, DocumentRepository, ExtractionRunRepository
from domain.documents import BANK_STATEMENT_KIND, DocumentId, ExtractionRun
from domain.errors import ParseError
from importers.batch import BatchImporter, BatchImportResponse
from importers.extraction import ExtractImportOptions, ExtractResult, ImportPreview, prepare_batch_import

logger = logging.getLogger(__name__)


class StatementExtractor(Protocol):
    """Calls the language model; returns its raw response text (a JSON document)."""

    def extract(self, *, document: bytes, prompt: str, model: str, assistant_name: str) -> str: ...


class ExtractionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    blob_id: str
    doc_id: str
    prompt: str = ""
    prompt_id: str
    prompt_version: str | None = None
    model: str
    assistant_name: str
    import_options: ExtractImportOptions | None = Field(default=None, alias="import")


class ExtractionOutcome(BaseModel):
    run_id: str
    transactions: list[Any]
    quality: str | None = None
    confidence: float | None = None
    audit: Any = None
    inferred_meta: Any = None
    preview: ImportPreview | None = None
    import_summary: BatchImportResponse | None = None


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_extract_result(response_text: str) -> ExtractResult:
    try:
        payload = json.loads(_strip_code_fence(response_text))
    except json.JSONDecodeError as exc:
        raise ParseError(f"Extraction response is not valid JSON: {exc}") from exc
    if isinstance(payload, list):
        payload = {"transactions": payload}
    try:
        return ExtractResult.model_validate(payload)
    except ValidationError as exc:
        raise ParseError(f"Extraction response has an unexpected shape: {exc.errors()[0]['msg']}") from exc


class ExtractionService:
    def __init__(
        self,
        extractor: StatementExtractor,
        *,
        prompts: AiPromptRepository,
        blobs: BlobRepository,
        documents: DocumentRepository,
        runs: ExtractionRunRepository,
        importer: BatchImporter | None = None,
    ) -> None:
        self._extractor = extractor
        self._prompts = prompts
        self._blobs = blobs
        self._documents = documents
        self._runs = runs
        self._importer = importer

    def resolve_prompt(self, request: ExtractionRequest) -> str:
        if request.prompt.strip():
            return request.prompt
        prompt = self._prompts.get(request.prompt_id)
        if prompt is None:
            raise ParseError(f"Prompt not found: {request.prompt_id}")
        return prompt.template

    def run(self, request: ExtractionRequest) -> ExtractionOutcome:
        prompt = self.resolve_prompt(request)
        blob = self._blobs.get(request.blob_id)
        if blob is None:
            raise ParseError(f"Blob not found: {request.blob_id}")

        started = perf_counter()
        response_text = self._extractor.extract(
            document=blob.data, prompt=prompt, model=request.model, assistant_name=request.assistant_name
        )
        logger.info("Extraction for document %s took %.2fs", request.doc_id, perf_counter() - started)
        result = parse_extract_result(response_text)

        run = ExtractionRun(
            document_id=DocumentId(request.doc_id),
            kind=BANK_STATEMENT_KIND,
            metadata={
                "model": request.model,
                "assistant_name": request.assistant_name,
                "blob_id": request.blob_id,
                "prompt_id": request.prompt_id,
                "prompt_version": request.prompt_version,
                "prompt_hash": sha256_hex(prompt),
                "result_hash": sha256_hex(response_text),
                "transaction_count": len(result.transactions),
                "quality": result.quality,
                "confidence": result.confidence,
                "response_text": response_text,
            },
            result=result.model_dump(mode="json"),
        )
        self._runs.create(run)
        if self._documents.get(request.doc_id) is not None:
            self._documents.set_latest_extraction_run(request.doc_id, run.id)
        else:
            logger.warning("Document %s not found; run %s not linked", request.doc_id, run.id)

        outcome = ExtractionOutcome(
            run_id=run.id,
            transactions=result.transactions,
            quality=result.quality,
            confidence=result.confidence,
            audit=result.audit,
            inferred_meta=result.inferred_meta,
        )
        if request.import_options is not None:
            prepared = prepare_batch_import(result, request.import_options)
            outcome.preview = prepared.preview
            if request.import_options.submit:
                if self._importer is None:
                    raise RuntimeError("ExtractionService was created without a batch importer")
                outcome.import_summary = self._importer.run(prepared.request)
        return outcome


__all__ = [
    "ExtractionOutcome",
    "ExtractionRequest",
    "ExtractionService",
    "StatementExtractor",
    "parse_extract_result",
    "sha256_hex",
]
