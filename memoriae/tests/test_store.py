"""Tests for the SQLite ledger store."""

import threading

import pytest
from datetime import datetime, timezone, timedelta

from memoriae.models.transactions import LedgerKind, SproutType, Transaction
from memoriae.models.derived import Sprout
from memoriae.store.sqlite_store import LedgerStore


BASE = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """Create an in-memory store for testing."""
    return LedgerStore(":memory:")


def make_tx(
    tx_id: str,
    subject_id: str = "seed1",
    transaction_type: str = "create_seed",
    data: dict | None = None,
    seconds: float = 0,
    automation_id: str | None = None,
) -> Transaction:
    """Helper to create test transactions."""
    return Transaction(
        id=tx_id,
        subject_id=subject_id,
        transaction_type=transaction_type,
        transaction_data=data if data is not None else {"content": "Hello"},
        created_at=BASE + timedelta(seconds=seconds),
        automation_id=automation_id,
    )


def make_sprout(sprout_id: str, seed_id: str = "seed1", seconds: float = 0) -> Sprout:
    return Sprout(
        id=sprout_id,
        seed_id=seed_id,
        sprout_type=SproutType.FOLLOWUP,
        sprout_data={"initial_message": "Ping"},
        created_at=BASE + timedelta(seconds=seconds),
    )


def test_append_and_get(store: LedgerStore):
    """Test basic append and retrieval."""
    store.append(LedgerKind.SEED, make_tx("t1"))

    found = store.get_transaction("t1")
    assert found is not None
    ledger, transaction = found
    assert ledger == LedgerKind.SEED
    assert transaction.transaction_data == {"content": "Hello"}
    assert transaction.created_at == BASE


def test_get_missing_transaction(store: LedgerStore):
    """Test unknown ids return None."""
    assert store.get_transaction("nope") is None


def test_duplicate_id_rejected(store: LedgerStore):
    """Test transaction ids are unique across ledgers."""
    store.append(LedgerKind.SEED, make_tx("t1"))
    with pytest.raises(ValueError, match="already exists"):
        store.append(LedgerKind.TAG, make_tx("t1", subject_id="tag1"))


def test_ledgers_are_partitioned(store: LedgerStore):
    """Test the same subject id in two ledgers stays separate."""
    store.append(LedgerKind.SEED, make_tx("t1", subject_id="x"))
    store.append(LedgerKind.TAG, make_tx("t2", subject_id="x", transaction_type="creation", data={"name": "n"}))

    assert [t.id for t in store.get_transactions(LedgerKind.SEED, "x")] == ["t1"]
    assert [t.id for t in store.get_transactions(LedgerKind.TAG, "x")] == ["t2"]


def test_transactions_ordered(store: LedgerStore):
    """Test ledgers come back ordered by created_at then id."""
    store.append(LedgerKind.SEED, make_tx("t3", transaction_type="edit_content", seconds=5))
    store.append(LedgerKind.SEED, make_tx("t1"))
    store.append(LedgerKind.SEED, make_tx("t2", transaction_type="edit_content", seconds=5))

    assert [t.id for t in store.get_transactions(LedgerKind.SEED, "seed1")] == ["t1", "t2", "t3"]


def test_filter_by_type(store: LedgerStore):
    """Test transaction_type filtering."""
    store.append(LedgerKind.SEED, make_tx("t1"))
    store.append(LedgerKind.SEED, make_tx("t2", transaction_type="edit_content", seconds=1))

    edits = store.get_transactions(LedgerKind.SEED, "seed1", "edit_content")
    assert [t.id for t in edits] == ["t2"]


def test_subject_exists_and_list(store: LedgerStore):
    """Test subject listing in order of first appearance."""
    store.append(LedgerKind.SEED, make_tx("t1", subject_id="b", seconds=0))
    store.append(LedgerKind.SEED, make_tx("t2", subject_id="a", seconds=10))
    store.append(LedgerKind.SEED, make_tx("t3", subject_id="b", transaction_type="edit_content", seconds=20))

    assert store.subject_exists(LedgerKind.SEED, "a")
    assert not store.subject_exists(LedgerKind.TAG, "a")
    assert store.list_subjects(LedgerKind.SEED) == ["b", "a"]


def test_get_by_automation(store: LedgerStore):
    """Test lookup of everything one automation produced."""
    store.append(LedgerKind.SEED, make_tx("t1"))
    store.append(LedgerKind.SEED, make_tx("t2", transaction_type="edit_content", seconds=1, automation_id="auto"))

    assert [t.id for t in store.get_by_automation("auto")] == ["t2"]


def test_sprouts(store: LedgerStore):
    """Test sprout rows round-trip and filter by seed and type."""
    store.add_sprout(make_sprout("sp2", seconds=5))
    store.add_sprout(make_sprout("sp1", seconds=0))
    store.add_sprout(make_sprout("sp3", seed_id="other"))

    assert [s.id for s in store.get_sprouts("seed1")] == ["sp1", "sp2"]
    assert store.get_sprouts("seed1", SproutType.MUSING) == []
    assert store.get_sprout("sp1").sprout_data == {"initial_message": "Ping"}
    assert store.get_sprout("missing") is None
    assert len(store.list_sprouts()) == 3


def test_duplicate_sprout_rejected(store: LedgerStore):
    """Test sprout ids are unique."""
    store.add_sprout(make_sprout("sp1"))
    with pytest.raises(ValueError):
        store.add_sprout(make_sprout("sp1"))


def test_file_store_persists(tmp_path):
    """Test a file-backed store survives reopening."""
    db_path = tmp_path / "test.db"
    with LedgerStore(db_path) as store:
        store.append(LedgerKind.SEED, make_tx("t1"))

    with LedgerStore(db_path) as store:
        assert store.subject_exists(LedgerKind.SEED, "seed1")


def test_in_memory_stores_isolated():
    """Test two in-memory stores do not share data."""
    a = LedgerStore(":memory:")
    b = LedgerStore(":memory:")
    a.append(LedgerKind.SEED, make_tx("t1"))

    assert a.subject_exists(LedgerKind.SEED, "seed1")
    assert not b.subject_exists(LedgerKind.SEED, "seed1")


def test_concurrent_appends(tmp_path):
    """Test appends from several threads all land."""
    store = LedgerStore(tmp_path / "threads.db")
    errors = []

    def writer(n: int) -> None:
        try:
            for i in range(20):
                store.append(
                    LedgerKind.SEED,
                    make_tx(f"t{n}-{i}", subject_id=f"seed{n}", seconds=i),
                )
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(store.list_subjects(LedgerKind.SEED)) == 4
    assert len(store.get_transactions(LedgerKind.SEED, "seed0")) == 20
