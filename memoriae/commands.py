"""Command handlers - validated appends followed by a fresh reduction.

Every write goes through here: check the target exists, validate the
payload against its ledger, check preconditions against the current
reduced state, append, then reduce again for the response.

Reads live here too so the API and CLI share one path from store to state.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import ulid
from pydantic import BaseModel, ValidationError

from memoriae.errors import (
    CommandRejectedError,
    InvalidTransactionError,
    MissingCreationTransactionError,
    SubjectNotFoundError,
)
from memoriae.models.transactions import (
    CREATION_TYPES,
    PAYLOAD_TYPES,
    LedgerKind,
    SproutType,
    Transaction,
    SeedTransactionType,
    TagTransactionType,
    FollowupTransactionType,
    MusingTransactionType,
    WikipediaTransactionType,
    AnnotationTransactionType,
    ensure_utc,
)
from memoriae.models.derived import (
    SeedState,
    TagState,
    Sprout,
    SproutState,
    FollowupSproutState,
    MusingSproutState,
    WikipediaSproutState,
    AnnotationSproutState,
)
from memoriae.models.timeline import DisplayGroup
from memoriae.reducers.seed import compute_seed_state
from memoriae.reducers.tag import compute_tag_state
from memoriae.reducers.sprouts import (
    compute_followup_state,
    compute_sprout_state,
    compute_wikipedia_state,
)
from memoriae.store.sqlite_store import LedgerStore
from memoriae.timeline.grouping import build_timeline

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Generate a time-sortable transaction/entity id."""
    return str(ulid.new())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------------------------------------------------------
# Validation and append
# -----------------------------------------------------------------------------


def validate_transaction(
    ledger: LedgerKind,
    transaction_type: str,
    data: dict[str, Any],
) -> BaseModel:
    """Validate a payload for a write.

    Unlike the reducers, which skip what they do not understand, writes
    reject unknown types and malformed payloads.

    Raises:
        InvalidTransactionError: If the type is unknown or the payload invalid.
    """
    model_cls = PAYLOAD_TYPES[ledger].get(transaction_type)
    if model_cls is None:
        raise InvalidTransactionError(
            f"Unknown {ledger.value} transaction type: {transaction_type}"
        )
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise InvalidTransactionError(
            f"Invalid {transaction_type} transaction: {e}"
        ) from e


def _append(
    store: LedgerStore,
    ledger: LedgerKind,
    subject_id: str,
    transaction_type: str,
    payload: BaseModel,
    automation_id: str | None = None,
    created_at: datetime | None = None,
) -> Transaction:
    transaction = Transaction(
        id=new_id(),
        subject_id=subject_id,
        transaction_type=transaction_type,
        transaction_data=payload.model_dump(mode="json", exclude_none=True),
        created_at=created_at or _now(),
        automation_id=automation_id,
    )
    store.append(ledger, transaction)
    logger.info(
        "Appended %s %s to %s %s",
        ledger.value, transaction_type, ledger.value, subject_id,
    )
    return transaction


def _reject_creation(ledger: LedgerKind, transaction_type: str) -> None:
    if transaction_type == CREATION_TYPES[ledger]:
        raise InvalidTransactionError(
            f"{transaction_type} can only be the first {ledger.value} transaction"
        )


def _require_subject(store: LedgerStore, ledger: LedgerKind, subject_id: str) -> None:
    if not store.subject_exists(ledger, subject_id):
        raise SubjectNotFoundError(ledger.value, subject_id)


# -----------------------------------------------------------------------------
# Seeds
# -----------------------------------------------------------------------------


def create_seed(
    store: LedgerStore,
    content: str,
    automation_id: str | None = None,
    created_at: datetime | None = None,
) -> SeedState:
    """Create a seed with a create_seed transaction."""
    payload = validate_transaction(
        LedgerKind.SEED, SeedTransactionType.CREATE_SEED.value, {"content": content}
    )
    transaction = _append(
        store,
        LedgerKind.SEED,
        new_id(),
        SeedTransactionType.CREATE_SEED.value,
        payload,
        automation_id=automation_id,
        created_at=created_at,
    )
    return get_seed_state(store, transaction.subject_id)


def append_seed_transaction(
    store: LedgerStore,
    seed_id: str,
    transaction_type: str,
    data: dict[str, Any],
    automation_id: str | None = None,
    created_at: datetime | None = None,
) -> SeedState:
    """Append a transaction to a seed and return the new state.

    Redundant edits (adding a present tag, removing an absent one) are
    accepted; they are no-ops for the reducer.
    """
    _require_subject(store, LedgerKind.SEED, seed_id)
    _reject_creation(LedgerKind.SEED, transaction_type)
    payload = validate_transaction(LedgerKind.SEED, transaction_type, data)
    _append(
        store, LedgerKind.SEED, seed_id, transaction_type, payload,
        automation_id=automation_id, created_at=created_at,
    )
    return get_seed_state(store, seed_id)


def tag_seed(
    store: LedgerStore,
    seed_id: str,
    tag_name: str,
    automation_id: str | None = None,
) -> SeedState:
    """Attach a tag by name, creating the tag if no tag has that name."""
    _require_subject(store, LedgerKind.SEED, seed_id)
    tag = find_tag_by_name(store, tag_name)
    if tag is None:
        tag = create_tag(store, tag_name, automation_id=automation_id)
    return append_seed_transaction(
        store,
        seed_id,
        SeedTransactionType.ADD_TAG.value,
        {"tag_id": tag.subject_id, "tag_name": tag.name},
        automation_id=automation_id,
    )


def untag_seed(
    store: LedgerStore,
    seed_id: str,
    tag_id: str,
    automation_id: str | None = None,
) -> SeedState:
    """Remove a tag, recording its current name for the history view."""
    current = get_seed_state(store, seed_id)
    data: dict[str, Any] = {"tag_id": tag_id}
    for tag in current.tags:
        if tag.id == tag_id:
            data["tag_name"] = tag.name
    return append_seed_transaction(
        store, seed_id, SeedTransactionType.REMOVE_TAG.value, data,
        automation_id=automation_id,
    )


def get_seed_state(
    store: LedgerStore,
    seed_id: str,
    at: datetime | None = None,
) -> SeedState:
    """Reduce a seed's ledger, optionally as of a point in time."""
    _require_subject(store, LedgerKind.SEED, seed_id)
    return compute_seed_state(store.get_transactions(LedgerKind.SEED, seed_id), at)


def list_seed_states(store: LedgerStore) -> list[SeedState]:
    """Reduce every seed, skipping ledgers without a valid creation."""
    states = []
    for seed_id in store.list_subjects(LedgerKind.SEED):
        try:
            states.append(get_seed_state(store, seed_id))
        except MissingCreationTransactionError as e:
            logger.warning("Skipping unrenderable seed: %s", e)
    return states


def get_seed_timeline(
    store: LedgerStore,
    seed_id: str,
    threshold_ms: int | None = None,
) -> list[DisplayGroup]:
    """Build the grouped history of a seed.

    Wikipedia sprouts are shown with their current summary; if one cannot
    be reduced its creation snapshot is used instead.
    """
    _require_subject(store, LedgerKind.SEED, seed_id)
    transactions = store.get_transactions(LedgerKind.SEED, seed_id)
    sprouts = store.get_sprouts(seed_id)

    wikipedia_states: dict[str, WikipediaSproutState] = {}
    for sprout in sprouts:
        if sprout.sprout_type != SproutType.WIKIPEDIA_REFERENCE:
            continue
        try:
            wikipedia_states[sprout.id] = compute_wikipedia_state(
                store.get_transactions(LedgerKind.WIKIPEDIA_REFERENCE, sprout.id)
            )
        except MissingCreationTransactionError as e:
            logger.warning("Falling back to sprout_data for %s: %s", sprout.id, e)

    return build_timeline(transactions, sprouts, wikipedia_states, threshold_ms)


# -----------------------------------------------------------------------------
# Tags
# -----------------------------------------------------------------------------


def create_tag(
    store: LedgerStore,
    name: str,
    color: str | None = None,
    automation_id: str | None = None,
    created_at: datetime | None = None,
) -> TagState:
    payload = validate_transaction(
        LedgerKind.TAG,
        TagTransactionType.CREATION.value,
        {"name": name, "color": color},
    )
    transaction = _append(
        store,
        LedgerKind.TAG,
        new_id(),
        TagTransactionType.CREATION.value,
        payload,
        automation_id=automation_id,
        created_at=created_at,
    )
    return get_tag_state(store, transaction.subject_id)


def append_tag_transaction(
    store: LedgerStore,
    tag_id: str,
    transaction_type: str,
    data: dict[str, Any],
    automation_id: str | None = None,
    created_at: datetime | None = None,
) -> TagState:
    _require_subject(store, LedgerKind.TAG, tag_id)
    _reject_creation(LedgerKind.TAG, transaction_type)
    payload = validate_transaction(LedgerKind.TAG, transaction_type, data)
    _append(
        store, LedgerKind.TAG, tag_id, transaction_type, payload,
        automation_id=automation_id, created_at=created_at,
    )
    return get_tag_state(store, tag_id)


def get_tag_state(
    store: LedgerStore,
    tag_id: str,
    at: datetime | None = None,
) -> TagState:
    _require_subject(store, LedgerKind.TAG, tag_id)
    return compute_tag_state(store.get_transactions(LedgerKind.TAG, tag_id), at)


def list_tag_states(store: LedgerStore) -> list[TagState]:
    states = []
    for tag_id in store.list_subjects(LedgerKind.TAG):
        try:
            states.append(get_tag_state(store, tag_id))
        except MissingCreationTransactionError as e:
            logger.warning("Skipping unrenderable tag: %s", e)
    return states


def find_tag_by_name(store: LedgerStore, name: str) -> TagState | None:
    """Find a tag by its current name, case-insensitively."""
    wanted = name.strip().lower()
    for state in list_tag_states(store):
        if state.name.strip().lower() == wanted:
            return state
    return None


# -----------------------------------------------------------------------------
# Sprouts
# -----------------------------------------------------------------------------


def create_sprout(
    store: LedgerStore,
    seed_id: str,
    sprout_type: SproutType,
    data: dict[str, Any],
    automation_id: str | None = None,
    created_at: datetime | None = None,
) -> tuple[Sprout, SproutState]:
    """Attach a sprout to a seed.

    Writes the sprout row, the creation transaction in the sprout's own
    ledger, and an add_sprout marker on the seed, all at the same time.
    """
    sprout_type = SproutType(sprout_type)
    ledger = sprout_type.ledger
    _require_subject(store, LedgerKind.SEED, seed_id)
    payload = validate_transaction(ledger, CREATION_TYPES[ledger], data)

    created_at = created_at or _now()
    sprout = Sprout(
        id=new_id(),
        seed_id=seed_id,
        sprout_type=sprout_type,
        sprout_data=payload.model_dump(mode="json", exclude_none=True),
        created_at=created_at,
        automation_id=automation_id,
    )
    store.add_sprout(sprout)
    _append(
        store, ledger, sprout.id, CREATION_TYPES[ledger], payload,
        automation_id=automation_id, created_at=created_at,
    )
    append_seed_transaction(
        store,
        seed_id,
        SeedTransactionType.ADD_SPROUT.value,
        {"sprout_id": sprout.id},
        automation_id=automation_id,
        created_at=created_at,
    )
    return sprout, get_sprout_state(store, sprout.id)


def _get_sprout(store: LedgerStore, sprout_id: str) -> Sprout:
    sprout = store.get_sprout(sprout_id)
    if sprout is None:
        raise SubjectNotFoundError("sprout", sprout_id)
    return sprout


def get_sprout_state(
    store: LedgerStore,
    sprout_id: str,
    at: datetime | None = None,
) -> SproutState:
    sprout = _get_sprout(store, sprout_id)
    transactions = store.get_transactions(sprout.sprout_type.ledger, sprout_id)
    return compute_sprout_state(sprout.sprout_type, transactions, at)


def _check_sprout_preconditions(state: SproutState, transaction_type: str) -> None:
    """Reject transactions that make no sense for the current state."""
    if isinstance(state, FollowupSproutState) and state.dismissed:
        if transaction_type == FollowupTransactionType.EDIT.value:
            raise CommandRejectedError("Cannot edit dismissed followup sprout")
        if transaction_type == FollowupTransactionType.SNOOZE.value:
            raise CommandRejectedError("Cannot snooze dismissed followup sprout")
        if transaction_type == FollowupTransactionType.DISMISSAL.value:
            raise CommandRejectedError("Followup sprout already dismissed")

    elif isinstance(state, MusingSproutState):
        if state.dismissed and transaction_type == MusingTransactionType.DISMISSAL.value:
            raise CommandRejectedError("Musing already dismissed")
        if state.completed and transaction_type == MusingTransactionType.COMPLETION.value:
            raise CommandRejectedError("Musing already completed")

    elif isinstance(state, AnnotationSproutState) and state.dismissed:
        if transaction_type in (
            AnnotationTransactionType.EDIT.value,
            AnnotationTransactionType.DISMISSAL.value,
        ):
            raise CommandRejectedError("Sprout already dismissed")


def append_sprout_transaction(
    store: LedgerStore,
    sprout_id: str,
    transaction_type: str,
    data: dict[str, Any],
    automation_id: str | None = None,
    created_at: datetime | None = None,
) -> SproutState:
    """Append to a sprout's own ledger after checking its current state."""
    sprout = _get_sprout(store, sprout_id)
    ledger = sprout.sprout_type.ledger
    _reject_creation(ledger, transaction_type)
    payload = validate_transaction(ledger, transaction_type, data)

    _check_sprout_preconditions(get_sprout_state(store, sprout_id), transaction_type)

    _append(
        store, ledger, sprout_id, transaction_type, payload,
        automation_id=automation_id, created_at=created_at,
    )
    return get_sprout_state(store, sprout_id)


def edit_followup(
    store: LedgerStore,
    sprout_id: str,
    due_time: datetime | None = None,
    message: str | None = None,
) -> SproutState:
    """Change a follow-up's due time and/or message.

    Records the previous values. Returns the current state unchanged if
    nothing would change.
    """
    current = get_sprout_state(store, sprout_id)
    if not isinstance(current, FollowupSproutState):
        raise CommandRejectedError("Sprout is not a followup type")

    new_time = due_time or current.due_time
    new_message = message if message is not None else current.message
    if new_time == current.due_time and new_message == current.message:
        return current

    return append_sprout_transaction(
        store,
        sprout_id,
        FollowupTransactionType.EDIT.value,
        {
            "old_time": current.due_time,
            "new_time": new_time,
            "old_message": current.message,
            "new_message": new_message,
        },
    )


def snooze_followup(
    store: LedgerStore,
    sprout_id: str,
    duration_minutes: int,
    method: str = "manual",
) -> SproutState:
    return append_sprout_transaction(
        store,
        sprout_id,
        FollowupTransactionType.SNOOZE.value,
        {"snoozed_at": _now(), "duration_minutes": duration_minutes, "method": method},
    )


def dismiss_followup(
    store: LedgerStore,
    sprout_id: str,
    dismissal_type: str = "followup",
) -> SproutState:
    return append_sprout_transaction(
        store,
        sprout_id,
        FollowupTransactionType.DISMISSAL.value,
        {"dismissed_at": _now(), "type": dismissal_type},
    )


def edit_wikipedia_summary(
    store: LedgerStore,
    sprout_id: str,
    new_summary: str,
) -> SproutState:
    """Replace a Wikipedia sprout's summary; no-op if it is unchanged."""
    current = get_sprout_state(store, sprout_id)
    if not isinstance(current, WikipediaSproutState):
        raise CommandRejectedError("Sprout is not a Wikipedia reference type")
    if current.summary == new_summary:
        return current

    return append_sprout_transaction(
        store,
        sprout_id,
        WikipediaTransactionType.EDIT.value,
        {"old_summary": current.summary, "new_summary": new_summary},
    )


def due_followups(
    store: LedgerStore,
    now: datetime | None = None,
) -> list[tuple[Sprout, FollowupSproutState]]:
    """Follow-up sprouts that are not dismissed and due at or before now."""
    now = ensure_utc(now) if now is not None else _now()
    due = []
    for sprout in store.list_sprouts():
        if sprout.sprout_type != SproutType.FOLLOWUP:
            continue
        try:
            state = compute_followup_state(
                store.get_transactions(LedgerKind.FOLLOWUP, sprout.id)
            )
        except MissingCreationTransactionError as e:
            logger.warning("Skipping unrenderable followup: %s", e)
            continue
        if not state.dismissed and state.due_time <= now:
            due.append((sprout, state))
    return due
