"""Seed reducer - replays a seed ledger into its content, tags and category.

Edge-case policy:
- add_tag for a tag id already present is a no-op (first insertion wins)
- remove_tag / remove_category for an id that is not set is a no-op
- set_category replaces any current category (one category per seed)
- add_sprout / add_followup are timeline markers and never touch state
"""

from collections.abc import Collection
from datetime import datetime
from typing import cast

from pydantic import BaseModel

from memoriae.errors import MissingCreationTransactionError
from memoriae.models.transactions import (
    LedgerKind,
    Transaction,
    CreateSeedPayload,
    EditContentPayload,
    AddTagPayload,
    RemoveTagPayload,
    SetCategoryPayload,
    RemoveCategoryPayload,
)
from memoriae.models.derived import SeedState, TagRef, CategoryRef
from memoriae.reducers.base import (
    find_creation,
    iter_payloads,
    prepare_ledger,
    replay_key,
)


def _initial_state(creation: Transaction, created: CreateSeedPayload) -> SeedState:
    return SeedState(
        subject_id=creation.subject_id,
        created_at=creation.created_at,
        timestamp=creation.created_at,
        content=created.content,
    )


def _apply(state: SeedState, payload: BaseModel) -> bool:
    """Apply one payload to state in place. Returns True if anything changed."""
    if isinstance(payload, EditContentPayload):
        if payload.content != state.content:
            state.content = payload.content
            return True

    elif isinstance(payload, AddTagPayload):
        if not any(tag.id == payload.tag_id for tag in state.tags):
            state.tags.append(TagRef(id=payload.tag_id, name=payload.tag_name))
            return True

    elif isinstance(payload, RemoveTagPayload):
        remaining = [tag for tag in state.tags if tag.id != payload.tag_id]
        if len(remaining) != len(state.tags):
            state.tags = remaining
            return True

    elif isinstance(payload, SetCategoryPayload):
        new_category = CategoryRef(
            id=payload.category_id,
            name=payload.category_name,
            path=payload.category_path,
        )
        if new_category != state.category:
            state.category = new_category
            return True

    elif isinstance(payload, RemoveCategoryPayload):
        if state.category is not None and state.category.id == payload.category_id:
            state.category = None
            return True

    # AddSproutPayload / AddFollowupPayload: timeline only
    return False


def compute_seed_state(
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> SeedState:
    """Reduce a seed ledger to a SeedState.

    Args:
        transactions: Every transaction of one seed, in any order.
        cutoff: If given, ignore transactions created after this time.

    Returns:
        The state as of cutoff (or the latest state).

    Raises:
        MissingCreationTransactionError: If there is no valid create_seed
            transaction at or before cutoff.
    """
    ordered = prepare_ledger(transactions, cutoff)
    creation, created = find_creation(LedgerKind.SEED, ordered)
    state = _initial_state(creation, cast(CreateSeedPayload, created))

    for transaction, payload in iter_payloads(LedgerKind.SEED, ordered, creation):
        if _apply(state, payload):
            state.timestamp = transaction.created_at

    state.transaction_count = len(ordered)
    return state


def seed_states_before(
    transactions: list[Transaction],
    transaction_types: Collection[str] | None = None,
) -> dict[str, SeedState]:
    """Map transaction ids to the seed state just before each, in one replay.

    Transactions that replay at or before the creation have no prior state
    and are left out. When transaction_types is given, only transactions of
    those types get a snapshot.
    """
    ordered = prepare_ledger(transactions)
    try:
        creation, created = find_creation(LedgerKind.SEED, ordered)
    except MissingCreationTransactionError:
        return {}

    state = _initial_state(creation, cast(CreateSeedPayload, created))
    applicable = dict(
        (transaction.id, payload)
        for transaction, payload in iter_payloads(LedgerKind.SEED, ordered, creation)
    )
    creation_key = replay_key(creation)
    snapshots: dict[str, SeedState] = {}

    for index, transaction in enumerate(ordered):
        wanted = transaction_types is None or transaction.transaction_type in transaction_types
        if wanted and replay_key(transaction) > creation_key:
            snapshots[transaction.id] = state.model_copy(
                update={"transaction_count": index}, deep=True,
            )
        payload = applicable.get(transaction.id)
        if payload is not None and _apply(state, payload):
            state.timestamp = transaction.created_at

    return snapshots


def seed_state_before(
    transactions: list[Transaction],
    target: Transaction,
) -> SeedState | None:
    """Reduce everything that replays strictly before target.

    Used to recover historical values, e.g. the name of a tag at the
    moment it was removed.

    Returns:
        The prior SeedState, or None if no creation precedes target.
    """
    target_key = replay_key(target)
    earlier = [t for t in transactions if replay_key(t) < target_key]
    try:
        return compute_seed_state(earlier)
    except MissingCreationTransactionError:
        return None
