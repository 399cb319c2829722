"""Sprout reducers - one per sprout type, each over its own sub-ledger.

Dismissal and completion flags can be set but never cleared. A repeated
dismissal or completion keeps the time of the first one.
"""

from datetime import datetime, timedelta
from typing import cast

from memoriae.models.transactions import (
    LedgerKind,
    SproutType,
    Transaction,
    FollowupCreationPayload,
    FollowupEditPayload,
    FollowupDismissalPayload,
    FollowupSnoozePayload,
    MusingCreationPayload,
    MusingDismissalPayload,
    MusingCompletionPayload,
    WikipediaCreationPayload,
    WikipediaEditPayload,
    AnnotationCreationPayload,
    AnnotationEditPayload,
    AnnotationDismissalPayload,
)
from memoriae.models.derived import (
    FollowupSproutState,
    MusingSproutState,
    WikipediaSproutState,
    AnnotationSproutState,
    SproutState,
)
from memoriae.reducers.base import find_creation, iter_payloads, prepare_ledger


def compute_followup_state(
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> FollowupSproutState:
    """Reduce a follow-up sprout ledger.

    - edit replaces due time and/or message (whichever is given)
    - snooze adds duration_minutes to the current due time
    - dismissal sets dismissed
    """
    ordered = prepare_ledger(transactions, cutoff)
    creation, created = find_creation(LedgerKind.FOLLOWUP, ordered)
    created = cast(FollowupCreationPayload, created)

    due_time = created.initial_time
    message = created.initial_message
    dismissed = False
    dismissed_at: datetime | None = None
    snooze_count = 0
    timestamp = creation.created_at

    for transaction, payload in iter_payloads(LedgerKind.FOLLOWUP, ordered, creation):
        if isinstance(payload, FollowupEditPayload):
            changed = False
            if payload.new_time is not None and payload.new_time != due_time:
                due_time = payload.new_time
                changed = True
            if payload.new_message and payload.new_message != message:
                message = payload.new_message
                changed = True
            if changed:
                timestamp = transaction.created_at

        elif isinstance(payload, FollowupSnoozePayload):
            due_time = due_time + timedelta(minutes=payload.duration_minutes)
            snooze_count += 1
            timestamp = transaction.created_at

        elif isinstance(payload, FollowupDismissalPayload) and not dismissed:
            dismissed = True
            dismissed_at = payload.dismissed_at
            timestamp = transaction.created_at

    return FollowupSproutState(
        subject_id=creation.subject_id,
        created_at=creation.created_at,
        timestamp=timestamp,
        transaction_count=len(ordered),
        due_time=due_time,
        message=message,
        trigger=created.trigger,
        dismissed=dismissed,
        dismissed_at=dismissed_at,
        snooze_count=snooze_count,
    )


def compute_musing_state(
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> MusingSproutState:
    """Reduce a musing sprout ledger."""
    ordered = prepare_ledger(transactions, cutoff)
    creation, created = find_creation(LedgerKind.MUSING, ordered)
    created = cast(MusingCreationPayload, created)

    state = MusingSproutState(
        subject_id=creation.subject_id,
        created_at=creation.created_at,
        timestamp=creation.created_at,
        transaction_count=len(ordered),
        template_type=created.template_type,
        content=created.content,
    )

    for transaction, payload in iter_payloads(LedgerKind.MUSING, ordered, creation):
        if isinstance(payload, MusingDismissalPayload) and not state.dismissed:
            state.dismissed = True
            state.dismissed_at = payload.dismissed_at or transaction.created_at
            state.timestamp = transaction.created_at
        elif isinstance(payload, MusingCompletionPayload) and not state.completed:
            state.completed = True
            state.completed_at = payload.completed_at or transaction.created_at
            state.timestamp = transaction.created_at

    return state


def compute_wikipedia_state(
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> WikipediaSproutState:
    """Reduce a Wikipedia reference sprout ledger. Edits replace the summary."""
    ordered = prepare_ledger(transactions, cutoff)
    creation, created = find_creation(LedgerKind.WIKIPEDIA_REFERENCE, ordered)
    created = cast(WikipediaCreationPayload, created)

    summary = created.summary
    timestamp = creation.created_at

    for transaction, payload in iter_payloads(
        LedgerKind.WIKIPEDIA_REFERENCE, ordered, creation
    ):
        if isinstance(payload, WikipediaEditPayload) and payload.new_summary != summary:
            summary = payload.new_summary
            timestamp = transaction.created_at

    return WikipediaSproutState(
        subject_id=creation.subject_id,
        created_at=creation.created_at,
        timestamp=timestamp,
        transaction_count=len(ordered),
        reference=created.reference,
        article_url=created.article_url,
        article_title=created.article_title,
        summary=summary,
    )


def compute_annotation_state(
    ledger: LedgerKind,
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> AnnotationSproutState:
    """Reduce an extra_context or fact_check sprout ledger."""
    ordered = prepare_ledger(transactions, cutoff)
    creation, created = find_creation(ledger, ordered)
    created = cast(AnnotationCreationPayload, created)

    content = created.content
    dismissed = False
    dismissed_at: datetime | None = None
    timestamp = creation.created_at

    for transaction, payload in iter_payloads(ledger, ordered, creation):
        if isinstance(payload, AnnotationEditPayload) and payload.new_content != content:
            content = payload.new_content
            timestamp = transaction.created_at
        elif isinstance(payload, AnnotationDismissalPayload) and not dismissed:
            dismissed = True
            dismissed_at = payload.dismissed_at or transaction.created_at
            timestamp = transaction.created_at

    return AnnotationSproutState(
        subject_id=creation.subject_id,
        created_at=creation.created_at,
        timestamp=timestamp,
        transaction_count=len(ordered),
        content=content,
        dismissed=dismissed,
        dismissed_at=dismissed_at,
    )


def compute_sprout_state(
    sprout_type: SproutType,
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> SproutState:
    """Dispatch to the reducer for sprout_type."""
    sprout_type = SproutType(sprout_type)

    if sprout_type == SproutType.FOLLOWUP:
        return compute_followup_state(transactions, cutoff)
    if sprout_type == SproutType.MUSING:
        return compute_musing_state(transactions, cutoff)
    if sprout_type == SproutType.WIKIPEDIA_REFERENCE:
        return compute_wikipedia_state(transactions, cutoff)
    return compute_annotation_state(sprout_type.ledger, transactions, cutoff)
