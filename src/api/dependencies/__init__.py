from secrets import compare_digest
from typing import Annotated, Generator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from config import AppSettings
from db.documents import AiPromptRepository, BlobRepository, DocumentRepository, ExtractionRunRepository
from db.repositories import AccountRepository, EnvelopeRepository, TransactionRepository
from domain.accounts import AccountRegistry
from domain.errors import MissingConfig
from importers.batch import BatchImporter
from services.envelopes import EnvelopeService
from services.extraction import ExtractionService

API_KEY_HEADER = "x-wyat-api-key"


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def verify_api_key(
    settings: Annotated[AppSettings, Depends(get_settings)],
    api_key: Annotated[str | None, Header(alias=API_KEY_HEADER)] = None,
) -> None:
    if not settings.wyat_api_key:
        raise MissingConfig("WYAT_API_KEY")
    if api_key is None or not compare_digest(api_key, settings.wyat_api_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key")


def get_session(request: Request) -> Generator[Session, None, None]:
    with request.app.state.sessionmaker() as session:
        yield session


def get_transaction_repository(session: Annotated[Session, Depends(get_session)]) -> TransactionRepository:
    return TransactionRepository(session)


def get_envelope_repository(session: Annotated[Session, Depends(get_session)]) -> EnvelopeRepository:
    return EnvelopeRepository(session)


def get_account_repository(session: Annotated[Session, Depends(get_session)]) -> AccountRepository:
    return AccountRepository(session)


def get_envelope_service(
    request: Request,
    envelopes: Annotated[EnvelopeRepository, Depends(get_envelope_repository)],
    transactions: Annotated[TransactionRepository, Depends(get_transaction_repository)],
) -> EnvelopeService:
    return EnvelopeService(envelopes, transactions, locks=request.app.state.envelope_locks)


def get_batch_importer(
    transactions: Annotated[TransactionRepository, Depends(get_transaction_repository)],
    accounts: Annotated[AccountRepository, Depends(get_account_repository)],
    envelopes: Annotated[EnvelopeService, Depends(get_envelope_service)],
) -> BatchImporter:
    registered = accounts.list()
    # An empty registry means accounts are not managed yet; skip the check.
    registry = AccountRegistry(registered) if registered else None
    return BatchImporter(transactions, accounts=registry, envelopes=envelopes)


def get_extraction_run_repository(session: Annotated[Session, Depends(get_session)]) -> ExtractionRunRepository:
    return ExtractionRunRepository(session)


def get_extraction_service(
    request: Request,
    session: Annotated[Session, Depends(get_session)],
    importer: Annotated[BatchImporter, Depends(get_batch_importer)],
) -> ExtractionService:
    extractor = request.app.state.extractor
    if extractor is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No statement extractor configured")
    return ExtractionService(
        extractor,
        prompts=AiPromptRepository(session),
        blobs=BlobRepository(session),
        documents=DocumentRepository(session),
        runs=ExtractionRunRepository(session),
        importer=importer,
    )
