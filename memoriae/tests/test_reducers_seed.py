"""Tests for the seed reducer."""

import itertools
import logging

import pytest
from datetime import datetime, timezone, timedelta

from memoriae.errors import MissingCreationTransactionError
from memoriae.models.transactions import Transaction
from memoriae.reducers.seed import compute_seed_state, seed_state_before, seed_states_before


BASE = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_tx(
    tx_id: str,
    transaction_type: str,
    data: dict,
    seconds: float = 0,
    subject_id: str = "seed1",
    automation_id: str | None = None,
) -> Transaction:
    """Helper to create seed transactions at BASE + seconds."""
    return Transaction(
        id=tx_id,
        subject_id=subject_id,
        transaction_type=transaction_type,
        transaction_data=data,
        created_at=BASE + timedelta(seconds=seconds),
        automation_id=automation_id,
    )


def create(content: str = "Hello", seconds: float = 0) -> Transaction:
    return make_tx("t00", "create_seed", {"content": content}, seconds)


def add_tag(tx_id: str, tag_id: str, name: str, seconds: float) -> Transaction:
    return make_tx(tx_id, "add_tag", {"tag_id": tag_id, "tag_name": name}, seconds)


class TestSeedCreation:
    """Tests for the mandatory creation transaction."""

    def test_creation_sets_content(self):
        """Test a ledger with only create_seed."""
        state = compute_seed_state([create("A thought")])

        assert state.subject_id == "seed1"
        assert state.content == "A thought"
        assert state.tags == []
        assert state.category is None
        assert state.created_at == BASE
        assert state.timestamp == BASE
        assert state.transaction_count == 1

    def test_missing_creation_fails(self):
        """Test a ledger with no create_seed raises."""
        ledger = [
            make_tx("t1", "edit_content", {"content": "x"}, 1),
            add_tag("t2", "1", "work", 2),
        ]
        with pytest.raises(MissingCreationTransactionError) as exc_info:
            compute_seed_state(ledger)

        assert exc_info.value.ledger == "seed"
        assert exc_info.value.subject_id == "seed1"

    def test_empty_ledger_fails(self):
        """Test an empty ledger raises."""
        with pytest.raises(MissingCreationTransactionError):
            compute_seed_state([])

    def test_invalid_creation_payload_counts_as_missing(self, caplog):
        """Test that a create_seed without content cannot establish the seed."""
        ledger = [make_tx("t0", "create_seed", {}, 0)]
        with caplog.at_level(logging.WARNING):
            with pytest.raises(MissingCreationTransactionError):
                compute_seed_state(ledger)
        assert "Invalid seed creation transaction" in caplog.text

    def test_duplicate_creation_ignored(self):
        """Test that only the first creation establishes the seed."""
        ledger = [
            create("First"),
            make_tx("t1", "create_seed", {"content": "Second"}, 5),
        ]
        state = compute_seed_state(ledger)
        assert state.content == "First"
        assert state.timestamp == BASE


class TestSeedTransactions:
    """Tests for per-type fold semantics."""

    def test_edit_content(self):
        """Test that edit_content replaces content."""
        ledger = [create("Hello"), make_tx("t1", "edit_content", {"content": "World"}, 10)]
        state = compute_seed_state(ledger)

        assert state.content == "World"
        assert state.timestamp == BASE + timedelta(seconds=10)

    def test_add_tag_keeps_insertion_order(self):
        """Test that tags are kept in first-insertion order."""
        ledger = [
            create(),
            add_tag("t1", "b", "beta", 1),
            add_tag("t2", "a", "alpha", 2),
        ]
        state = compute_seed_state(ledger)
        assert [tag.id for tag in state.tags] == ["b", "a"]
        assert state.has_tag("a")
        assert not state.has_tag("c")

    def test_add_tag_idempotent(self):
        """Test that adding the same tag twice equals adding it once."""
        once = compute_seed_state([create(), add_tag("t1", "1", "work", 1)])
        twice = compute_seed_state([
            create(),
            add_tag("t1", "1", "work", 1),
            add_tag("t2", "1", "work", 2),
        ])

        assert twice.tags == once.tags
        assert twice.timestamp == once.timestamp

    def test_duplicate_add_tag_keeps_first_name(self):
        """Test that a re-add with a different name does not rename."""
        state = compute_seed_state([
            create(),
            add_tag("t1", "1", "work", 1),
            add_tag("t2", "1", "job", 2),
        ])
        assert [tag.name for tag in state.tags] == ["work"]

    def test_remove_tag(self):
        """Test that remove_tag removes by id."""
        state = compute_seed_state([
            create(),
            add_tag("t1", "1", "work", 1),
            add_tag("t2", "2", "home", 2),
            make_tx("t3", "remove_tag", {"tag_id": "1"}, 3),
        ])
        assert [tag.id for tag in state.tags] == ["2"]

    def test_remove_absent_tag_is_noop(self):
        """Test that removing an absent tag leaves state unchanged."""
        before = compute_seed_state([create(), add_tag("t1", "1", "work", 1)])
        after = compute_seed_state([
            create(),
            add_tag("t1", "1", "work", 1),
            make_tx("t2", "remove_tag", {"tag_id": "nope"}, 2),
        ])

        assert after.model_dump(exclude={"transaction_count"}) == before.model_dump(
            exclude={"transaction_count"}
        )

    def test_set_category_replaces(self):
        """Test that a second set_category replaces the first."""
        state = compute_seed_state([
            create(),
            make_tx("t1", "set_category", {
                "category_id": "c1", "category_name": "Work", "category_path": "/work",
            }, 1),
            make_tx("t2", "set_category", {
                "category_id": "c2", "category_name": "Home", "category_path": "/home",
            }, 2),
        ])
        assert state.category is not None
        assert state.category.id == "c2"
        assert state.category.path == "/home"

    def test_remove_category_matching(self):
        """Test that remove_category clears a matching category."""
        state = compute_seed_state([
            create(),
            make_tx("t1", "set_category", {
                "category_id": "c1", "category_name": "Work", "category_path": "/work",
            }, 1),
            make_tx("t2", "remove_category", {"category_id": "c1"}, 2),
        ])
        assert state.category is None
        assert state.timestamp == BASE + timedelta(seconds=2)

    def test_remove_category_mismatch_is_noop(self):
        """Test that remove_category with another id changes nothing."""
        state = compute_seed_state([
            create(),
            make_tx("t1", "set_category", {
                "category_id": "c1", "category_name": "Work", "category_path": "/work",
            }, 1),
            make_tx("t2", "remove_category", {"category_id": "c9"}, 2),
        ])
        assert state.category is not None
        assert state.category.id == "c1"
        assert state.timestamp == BASE + timedelta(seconds=1)

    def test_sprout_markers_do_not_change_state(self):
        """Test that add_sprout and add_followup are timeline-only."""
        base = compute_seed_state([create()])
        state = compute_seed_state([
            create(),
            make_tx("t1", "add_sprout", {"sprout_id": "sp1"}, 1),
            make_tx("t2", "add_followup", {"followup_id": "f1"}, 2),
        ])

        assert state.content == base.content
        assert state.tags == base.tags
        assert state.category == base.category
        assert state.timestamp == base.timestamp

    def test_unknown_type_skipped(self):
        """Test that unknown transaction types are skipped silently."""
        state = compute_seed_state([
            create(),
            make_tx("t1", "pin_seed", {"pinned": True}, 1),
            add_tag("t2", "1", "work", 2),
        ])
        assert [tag.name for tag in state.tags] == ["work"]

    def test_malformed_payload_skipped(self, caplog):
        """Test that a known type with a broken payload is skipped with a warning."""
        with caplog.at_level(logging.WARNING):
            state = compute_seed_state([
                create(),
                make_tx("t1", "add_tag", {"tag_name": "no id"}, 1),
            ])
        assert state.tags == []
        assert "Skipping invalid seed transaction t1" in caplog.text

    def test_end_to_end_example(self):
        """Test create, add_tag, remove_tag reduces to bare content."""
        state = compute_seed_state([
            create("Hello"),
            add_tag("t1", "1", "work", 1),
            make_tx("t2", "remove_tag", {"tag_id": "1"}, 2),
        ])

        assert state.content == "Hello"
        assert state.tags == []
        assert state.category is None


class TestSeedOrdering:
    """Tests for deterministic replay order."""

    def test_permutation_invariant(self):
        """Test that every input order gives the same state."""
        ledger = [
            create("Hello"),
            add_tag("t1", "1", "work", 1),
            make_tx("t2", "edit_content", {"content": "Edited"}, 2),
            make_tx("t3", "remove_tag", {"tag_id": "1"}, 3),
            add_tag("t4", "2", "home", 4),
        ]
        expected = compute_seed_state(ledger)

        for permutation in itertools.permutations(ledger):
            assert compute_seed_state(list(permutation)) == expected

    def test_equal_timestamps_tie_break_by_id(self):
        """Test that ties on created_at replay in id order."""
        ledger = [
            create(),
            make_tx("t2", "edit_content", {"content": "second"}, 5),
            make_tx("t1", "edit_content", {"content": "first"}, 5),
        ]
        assert compute_seed_state(ledger).content == "second"
        assert compute_seed_state(list(reversed(ledger))).content == "second"

    def test_cutoff_excludes_later(self):
        """Test that a tag added after the cutoff is absent."""
        ledger = [
            create(),
            add_tag("t1", "1", "work", 10),
            add_tag("t2", "2", "late", 20),
        ]
        state = compute_seed_state(ledger, cutoff=BASE + timedelta(seconds=15))

        assert [tag.id for tag in state.tags] == ["1"]
        assert state.transaction_count == 2

    def test_cutoff_is_inclusive(self):
        """Test that a transaction exactly at the cutoff is applied."""
        ledger = [create(), add_tag("t1", "1", "work", 10)]
        state = compute_seed_state(ledger, cutoff=BASE + timedelta(seconds=10))
        assert state.has_tag("1")

    def test_cutoff_before_creation_fails(self):
        """Test that a cutoff before creation leaves no creation."""
        with pytest.raises(MissingCreationTransactionError):
            compute_seed_state([create(seconds=10)], cutoff=BASE)

    def test_naive_and_aware_times_replay_together(self):
        """Test naive created_at values are read as UTC and order with aware ones."""
        naive_base = BASE.replace(tzinfo=None)
        ledger = [
            Transaction(
                id="t00",
                subject_id="seed1",
                transaction_type="create_seed",
                transaction_data={"content": "Hello"},
                created_at=naive_base,
            ),
            make_tx("t1", "edit_content", {"content": "aware"}, 20),
            Transaction(
                id="t2",
                subject_id="seed1",
                transaction_type="edit_content",
                transaction_data={"content": "naive"},
                created_at=naive_base + timedelta(seconds=10),
            ),
        ]
        state = compute_seed_state(ledger)

        assert state.content == "aware"
        assert state.created_at == BASE
        assert state.timestamp == BASE + timedelta(seconds=20)

    def test_naive_cutoff_read_as_utc(self):
        """Test a naive cutoff compares with aware transaction times."""
        ledger = [create(), add_tag("t1", "1", "work", 10)]
        state = compute_seed_state(ledger, cutoff=BASE.replace(tzinfo=None) + timedelta(seconds=5))
        assert state.tags == []


class TestSeedStateBefore:
    """Tests for as-of reduction used by history views."""

    def test_recovers_removed_tag_name(self):
        """Test that the state before a removal still has the tag."""
        removal = make_tx("t2", "remove_tag", {"tag_id": "1"}, 2)
        ledger = [create(), add_tag("t1", "1", "work", 1), removal]

        before = seed_state_before(ledger, removal)
        assert before is not None
        assert [tag.name for tag in before.tags] == ["work"]

    def test_none_before_creation(self):
        """Test that nothing precedes the creation transaction."""
        creation = create()
        assert seed_state_before([creation], creation) is None


class TestSeedStatesBefore:
    """Tests for the single-pass snapshots used by the timeline."""

    def test_matches_per_transaction_reduction(self):
        """Test every snapshot equals reducing the ledger strictly before it."""
        ledger = [
            make_tx("t0", "edit_content", {"content": "early"}, -5),
            create("Hello"),
            add_tag("t1", "1", "work", 1),
            make_tx("t2", "set_category", {"category_id": "c", "category_name": "C", "category_path": "/c"}, 2),
            make_tx("t3", "remove_tag", {"tag_id": "1"}, 3),
            make_tx("t4", "bogus", {}, 4),
            make_tx("t5", "remove_category", {"category_id": "c"}, 5),
            add_tag("t6", "2", "home", 5),
        ]
        snapshots = seed_states_before(list(reversed(ledger)))

        for transaction in ledger:
            expected = seed_state_before(ledger, transaction)
            snapshot = snapshots.get(transaction.id)
            if expected is None:
                assert snapshot is None
            else:
                assert snapshot.model_dump() == expected.model_dump()

    def test_filters_by_type(self):
        """Test only the requested transaction types get a snapshot."""
        ledger = [
            create(),
            add_tag("t1", "1", "work", 1),
            make_tx("t2", "remove_tag", {"tag_id": "1"}, 2),
        ]
        snapshots = seed_states_before(ledger, {"remove_tag"})

        assert list(snapshots) == ["t2"]
        assert snapshots["t2"].has_tag("1")
        assert snapshots["t2"].transaction_count == 2

    def test_snapshots_are_independent(self):
        """Test later replay does not leak into earlier snapshots."""
        ledger = [
            create(),
            add_tag("t1", "1", "work", 1),
            add_tag("t2", "2", "home", 2),
            make_tx("t3", "remove_tag", {"tag_id": "1"}, 3),
        ]
        snapshots = seed_states_before(ledger)

        assert [tag.id for tag in snapshots["t2"].tags] == ["1"]
        assert [tag.id for tag in snapshots["t3"].tags] == ["1", "2"]

    def test_no_creation_gives_nothing(self):
        """Test a ledger without creation has no snapshots."""
        assert seed_states_before([add_tag("t1", "1", "work", 1)]) == {}
