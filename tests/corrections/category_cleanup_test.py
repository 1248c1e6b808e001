from sqlalchemy.orm import Session

from corrections.category_cleanup import cleanup_misplaced_categories
from db.repositories import TransactionRepository
from domain.accounts import PNL_ACCOUNT_ID, AccountId
from domain.ledger import Leg, LegDirection, Transaction, TransactionId, fiat
from tests.helpers.factories import DEFAULT_TS, pnl_transaction


def _legacy(txid: str) -> Transaction:
    return Transaction(
        id=TransactionId(txid),
        ts=DEFAULT_TS,
        source="legacy",
        legs=[
            Leg(account_id=AccountId("acct.x"), direction=LegDirection.CREDIT, amount=fiat("20", "USD"), category_id="env_dining"),
            Leg(account_id=PNL_ACCOUNT_ID, direction=LegDirection.DEBIT, amount=fiat("20", "USD")),
        ],
    )


def test_cleanup_deletes_only_misplaced_categories(test_session: Session) -> None:
    repo = TransactionRepository(test_session)
    repo.insert(_legacy("legacy-1"))
    repo.insert(pnl_transaction("good-1", "20"))

    dry = cleanup_misplaced_categories(repo, dry_run=True)
    assert (dry.scanned, dry.matched, dry.deleted) == (2, 1, 0)
    assert repo.exists("legacy-1")

    report = cleanup_misplaced_categories(repo)
    assert report.deleted == 1
    assert not repo.exists("legacy-1")
    assert repo.exists("good-1")
