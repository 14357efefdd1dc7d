"""Tests for LedgerStore against in-memory SQLite."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.api.core.database import create_db_engine, create_session_factory, init_db
from apps.api.domains.ingestion.store import LedgerStore, is_infrastructure_error
from packages.ingestion_engine.duplicates import generate_match_key
from packages.ingestion_engine.models import (
    BatchStatus,
    BudgetSnapshot,
    ClassifiedTransaction,
    Direction,
    TransactionType,
)
from sqlalchemy.exc import IntegrityError, OperationalError

T0 = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


def make_txn(description="STARBUCKS #123", amount="4.50", on=date(2024, 1, 15)):
    return ClassifiedTransaction(
        transaction_date=on,
        posted_date=on,
        card_number="1234",
        description=description,
        source_category=None,
        amount=Decimal(amount),
        direction=Direction.DEBIT,
        category="Drinks/Dessert",
        type=TransactionType.EXPENSE,
    )


def test_create_and_finalize_batch(session_factory):
    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        batch = store.create_upload_batch("user-1", "jan.csv", 120, T0)
        assert batch.status == BatchStatus.PROCESSING

    with session_factory() as session, session.begin():
        done = LedgerStore(session).finalize_upload_batch(batch.id, BatchStatus.COMPLETED, 3)

    assert done.status == BatchStatus.COMPLETED
    assert done.admitted_count == 3
    assert done.uploaded_at == T0


def test_insert_and_find_matching_history(session_factory):
    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        batch = store.create_upload_batch("user-1", "jan.csv", 120, T0)
        stored = store.insert_transaction("user-1", batch.id, make_txn())
        store.insert_transaction("user-1", batch.id, make_txn(description="OTHER"))

    key = generate_match_key(date(2024, 1, 15), "starbucks  #123")
    with session_factory() as session:
        store = LedgerStore(session)
        found = store.find_matching_history("user-1", [key])
        assert [t.id for t in found] == [stored.id]
        assert found[0].amount == Decimal("4.50")
        assert found[0].upload_batch_id == batch.id
        assert found[0].created_at.tzinfo is not None
        assert store.find_matching_history("user-2", [key]) == []
        assert store.find_matching_history("user-1", []) == []


def test_failed_insert_rolls_back_only_its_savepoint(session_factory):
    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        batch = store.create_upload_batch("user-1", "jan.csv", 120, T0)
        store.insert_transaction("user-1", batch.id, make_txn())
        with pytest.raises(IntegrityError):
            # unknown batch id violates the foreign key
            store.insert_transaction("user-1", "missing-batch", make_txn(description="X"))
        store.insert_transaction("user-1", batch.id, make_txn(description="Y"))

    with session_factory() as session:
        rows = LedgerStore(session).list_batch_transactions("user-1", batch.id)
    assert sorted(r.description for r in rows) == ["STARBUCKS #123", "Y"]


def test_find_batches_by_filename_returns_only_finished_uploads(session_factory):
    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        first = store.create_upload_batch("user-1", "jan.csv", 1, T0)
        store.finalize_upload_batch(first.id, BatchStatus.COMPLETED, 1)
        store.create_upload_batch("user-1", "jan.csv", 1, T0 + timedelta(minutes=30))
        failed = store.create_upload_batch("user-1", "jan.csv", 1, T0 + timedelta(hours=1))
        store.finalize_upload_batch(failed.id, BatchStatus.FAILED, 0, "boom")
        current = store.create_upload_batch("user-1", "jan.csv", 1, T0 + timedelta(hours=2))
        store.create_upload_batch("user-2", "jan.csv", 1, T0)

        found = store.find_batches_by_filename("user-1", "jan.csv", exclude_id=current.id)

    assert [b.id for b in found] == [first.id]


def test_list_upload_batches_paginates_newest_first(session_factory):
    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        ids = [
            store.create_upload_batch("user-1", f"{i}.csv", 1, T0 + timedelta(days=i)).id
            for i in range(3)
        ]

    with session_factory() as session:
        page, total = LedgerStore(session).list_upload_batches("user-1", limit=2, offset=0)
        rest, _ = LedgerStore(session).list_upload_batches("user-1", limit=2, offset=2)

    assert total == 3
    assert [b.id for b in page] == [ids[2], ids[1]]
    assert [b.id for b in rest] == [ids[0]]


def test_delete_upload_batch_removes_its_transactions(session_factory):
    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        batch = store.create_upload_batch("user-1", "jan.csv", 1, T0)
        store.insert_transaction("user-1", batch.id, make_txn())

    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        assert store.delete_upload_batch("user-2", batch.id) is None
        assert store.delete_upload_batch("user-1", batch.id) == 1

    with session_factory() as session:
        store = LedgerStore(session)
        assert store.get_upload_batch("user-1", batch.id) is None
        assert store.list_batch_transactions("user-1", batch.id) == []


def test_budget_snapshot_round_trip(session_factory):
    budget = BudgetSnapshot(
        income=Decimal("3000.00"), fixed_expenses=Decimal("1200.00"), savings_goal=Decimal("300.00")
    )
    with session_factory() as session, session.begin():
        store = LedgerStore(session)
        assert store.get_budget_snapshot("user-1", 2024, 1) is None
        store.save_budget_snapshot("user-1", 2024, 1, budget)

    with session_factory() as session:
        assert LedgerStore(session).get_budget_snapshot("user-1", 2024, 1) == budget
        assert LedgerStore(session).get_budget_snapshot("user-1", 2024, 2) is None


def test_is_infrastructure_error():
    assert is_infrastructure_error(OperationalError("SELECT 1", {}, Exception("gone")))
    assert not is_infrastructure_error(IntegrityError("INSERT", {}, Exception("dup")))
