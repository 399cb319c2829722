"""Tag reducer - replays a tag ledger into its name and color."""

from datetime import datetime
from typing import cast

from memoriae.models.transactions import (
    LedgerKind,
    Transaction,
    TagCreationPayload,
    TagEditPayload,
    TagSetColorPayload,
)
from memoriae.models.derived import TagState
from memoriae.reducers.base import find_creation, iter_payloads, prepare_ledger


def compute_tag_state(
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> TagState:
    """Reduce a tag ledger to a TagState.

    set_color with a null color clears the color.

    Raises:
        MissingCreationTransactionError: If there is no valid creation.
    """
    ordered = prepare_ledger(transactions, cutoff)
    creation, created = find_creation(LedgerKind.TAG, ordered)
    created = cast(TagCreationPayload, created)

    name = created.name
    color = created.color
    timestamp = creation.created_at

    for transaction, payload in iter_payloads(LedgerKind.TAG, ordered, creation):
        if isinstance(payload, TagEditPayload) and payload.name != name:
            name = payload.name
            timestamp = transaction.created_at
        elif isinstance(payload, TagSetColorPayload) and payload.color != color:
            color = payload.color
            timestamp = transaction.created_at

    return TagState(
        subject_id=creation.subject_id,
        created_at=creation.created_at,
        timestamp=timestamp,
        transaction_count=len(ordered),
        name=name,
        color=color,
    )
