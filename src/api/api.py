import logging
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Annotated, Any, AsyncGenerator, Awaitable, Callable

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from api.dependencies import (
    get_account_repository,
    get_batch_importer,
    get_envelope_service,
    get_extraction_run_repository,
    get_extraction_service,
    get_transaction_repository,
    verify_api_key,
)
from config import AppSettings, config
from db.db import create_db_engine
from db.documents import ExtractionRunRepository
from db.repositories import AccountRepository, TransactionRepository
from domain.accounts import Account
from domain.documents import ExtractionRun
from domain.envelopes import Envelope
from domain.errors import (
    AccountNotFound,
    CurrencyMismatch,
    EnvelopeNotFound,
    InactiveEnvelope,
    InsufficientFunds,
    InvalidDateTime,
    InvalidEnum,
    LedgerError,
    MinBalanceExceeded,
    MissingConfig,
    ParseError,
    TransactionNotFound,
    UnbalancedTransaction,
)
from domain.ledger import Transaction, TxType
from domain.money import Money
from importers.batch import (
    BatchImporter,
    BatchImportRequest,
    BatchImportResponse,
    FlatTransactionRow,
    transaction_to_rows,
)
from services.envelopes import EnvelopeLocks, EnvelopeService, EnvelopeUsage, PeriodReport
from services.extraction import ExtractionOutcome, ExtractionRequest, ExtractionService, StatementExtractor

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[LedgerError], int] = {
    CurrencyMismatch: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InsufficientFunds: status.HTTP_409_CONFLICT,
    MinBalanceExceeded: status.HTTP_409_CONFLICT,
    InactiveEnvelope: status.HTTP_409_CONFLICT,
    EnvelopeNotFound: status.HTTP_404_NOT_FOUND,
    TransactionNotFound: status.HTTP_404_NOT_FOUND,
    AccountNotFound: status.HTTP_422_UNPROCESSABLE_ENTITY,
    UnbalancedTransaction: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidEnum: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidDateTime: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ParseError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    MissingConfig: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: LedgerError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return status.HTTP_400_BAD_REQUEST


def dump_transaction(transaction: Transaction) -> dict[str, Any]:
    # Stored rows may predate the balance rules, so they are not re-validated on the way out.
    return transaction.model_dump(mode="json")


class TxTypeUpdate(BaseModel):
    tx_type: TxType


class ReconciledUpdate(BaseModel):
    reconciled: bool


class PeriodRequest(BaseModel):
    year: int
    month: int


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
    engine = create_db_engine(fastapi_app.state.settings.database_url)
    fastapi_app.state.sessionmaker = sessionmaker(engine)
    yield
    engine.dispose()


router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get("/capital/accounts")
def list_accounts(repo: Annotated[AccountRepository, Depends(get_account_repository)]) -> list[Account]:
    return repo.list()


@router.post("/capital/accounts", status_code=status.HTTP_201_CREATED)
def create_account(account: Account, repo: Annotated[AccountRepository, Depends(get_account_repository)]) -> Account:
    if not repo.insert(account):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Account {account.id} already exists")
    return account


@router.get("/capital/envelopes")
def list_envelopes(service: Annotated[EnvelopeService, Depends(get_envelope_service)]) -> list[Envelope]:
    return service.list()


@router.post("/capital/envelopes/start-period")
def start_period(
    body: PeriodRequest, service: Annotated[EnvelopeService, Depends(get_envelope_service)]
) -> PeriodReport:
    return service.start_new_period_all(body.year, body.month)


@router.get("/capital/envelopes/{envelope_id}")
def get_envelope(envelope_id: str, service: Annotated[EnvelopeService, Depends(get_envelope_service)]) -> Envelope:
    return service.get(envelope_id)


@router.get("/capital/envelopes/{envelope_id}/usage")
def get_envelope_usage(
    envelope_id: str, cycle: str, service: Annotated[EnvelopeService, Depends(get_envelope_service)]
) -> EnvelopeUsage:
    return service.usage(envelope_id, cycle)


@router.post("/capital/envelopes/{envelope_id}/credit")
def credit_envelope(
    envelope_id: str, money: Money, service: Annotated[EnvelopeService, Depends(get_envelope_service)]
) -> Envelope:
    return service.credit(envelope_id, money)


@router.post("/capital/envelopes/{envelope_id}/debit")
def debit_envelope(
    envelope_id: str, money: Money, service: Annotated[EnvelopeService, Depends(get_envelope_service)]
) -> Envelope:
    return service.debit(envelope_id, money)


@router.post("/capital/envelopes/{envelope_id}/activate")
def activate_envelope(envelope_id: str, service: Annotated[EnvelopeService, Depends(get_envelope_service)]) -> Envelope:
    return service.activate(envelope_id)


@router.post("/capital/envelopes/{envelope_id}/deactivate")
def deactivate_envelope(
    envelope_id: str, service: Annotated[EnvelopeService, Depends(get_envelope_service)]
) -> Envelope:
    return service.deactivate(envelope_id)


@router.get("/capital/cycles")
def list_cycles(service: Annotated[EnvelopeService, Depends(get_envelope_service)]) -> list[str]:
    return service.cycles()


@router.get("/capital/transactions")
def list_transactions(
    repo: Annotated[TransactionRepository, Depends(get_transaction_repository)],
    source: str | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    return [dump_transaction(transaction) for transaction in repo.list(source=source, limit=limit)]


@router.post("/capital/transactions/batch-import")
def batch_import(
    body: BatchImportRequest, importer: Annotated[BatchImporter, Depends(get_batch_importer)]
) -> BatchImportResponse:
    return importer.run(body)


def load_transaction(repo: TransactionRepository, transaction_id: str) -> Transaction:
    transaction = repo.get(transaction_id)
    if transaction is None:
        raise TransactionNotFound(transaction_id)
    return transaction


@router.get("/capital/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str, repo: Annotated[TransactionRepository, Depends(get_transaction_repository)]
) -> dict[str, Any]:
    return dump_transaction(load_transaction(repo, transaction_id))


@router.get("/capital/transactions/{transaction_id}/rows")
def export_transaction_rows(
    transaction_id: str, repo: Annotated[TransactionRepository, Depends(get_transaction_repository)]
) -> list[FlatTransactionRow]:
    return transaction_to_rows(load_transaction(repo, transaction_id))


@router.patch("/capital/transactions/{transaction_id}/type")
def update_transaction_type(
    transaction_id: str,
    body: TxTypeUpdate,
    repo: Annotated[TransactionRepository, Depends(get_transaction_repository)],
) -> dict[str, Any]:
    repo.update_tx_type(transaction_id, body.tx_type)
    return get_transaction(transaction_id, repo)


@router.patch("/capital/transactions/{transaction_id}/reconciled")
def update_transaction_reconciled(
    transaction_id: str,
    body: ReconciledUpdate,
    repo: Annotated[TransactionRepository, Depends(get_transaction_repository)],
) -> dict[str, Any]:
    repo.set_reconciled(transaction_id, body.reconciled)
    return get_transaction(transaction_id, repo)


@router.post("/ai/extract/bank-statement")
def extract_bank_statement(
    body: ExtractionRequest, service: Annotated[ExtractionService, Depends(get_extraction_service)]
) -> ExtractionOutcome:
    return service.run(body)


@router.get("/ai/extraction-runs")
def list_extraction_runs(
    doc_id: str, repo: Annotated[ExtractionRunRepository, Depends(get_extraction_run_repository)]
) -> list[ExtractionRun]:
    return repo.list_for_document(doc_id)


@router.get("/ai/extraction-runs/{run_id}")
def get_extraction_run(
    run_id: str, repo: Annotated[ExtractionRunRepository, Depends(get_extraction_run_repository)]
) -> ExtractionRun:
    run = repo.get(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Extraction run not found: {run_id}")
    return run


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    code = status_for(exc)
    if code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"error": exc.kind, "message": str(exc)})


def create_app(settings: AppSettings | None = None, *, extractor: StatementExtractor | None = None) -> FastAPI:
    fastapi_app = FastAPI(lifespan=lifespan)
    fastapi_app.state.settings = settings or config()
    fastapi_app.state.extractor = extractor
    fastapi_app.state.envelope_locks = EnvelopeLocks()

    if fastapi_app.state.settings.frontend_origin:
        fastapi_app.add_middleware(
            CORSMiddleware,
            allow_origins=[fastapi_app.state.settings.frontend_origin],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @fastapi_app.middleware("http")
    async def log_process_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        start_time = perf_counter()
        response = await call_next(request)
        logger.info("Request time: %s %s: %.4fs", request.method, request.url, perf_counter() - start_time)
        return response

    fastapi_app.add_exception_handler(LedgerError, ledger_error_handler)
    fastapi_app.include_router(router)
    return fastapi_app


app = create_app()
