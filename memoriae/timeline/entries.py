"""Turn seed transactions and sprouts into display entries.

Payloads are read loosely here: a missing or malformed field degrades to
placeholder text instead of raising, because history views must render
whatever the ledger contains.
"""

from typing import Any

from memoriae.models.transactions import SeedTransactionType, SproutType, Transaction
from memoriae.models.derived import SeedState, Sprout, WikipediaSproutState
from memoriae.models.timeline import TimelineEntry
from memoriae.reducers.base import replay_key
from memoriae.reducers.seed import seed_state_before, seed_states_before

AUTOMATED_SUFFIX = " • (automated)"
CONTENT_PREVIEW_CHARS = 100
SUMMARY_PARAGRAPHS = 3

# Removals whose description needs the seed state just before them.
HISTORICAL_LOOKUP_TYPES = frozenset({
    SeedTransactionType.REMOVE_TAG.value,
    SeedTransactionType.REMOVE_CATEGORY.value,
})

TRANSACTION_TITLES = {
    SeedTransactionType.CREATE_SEED.value: "Seed Created",
    SeedTransactionType.EDIT_CONTENT.value: "Content Edited",
    SeedTransactionType.ADD_TAG.value: "Tag Added",
    SeedTransactionType.REMOVE_TAG.value: "Tag Removed",
    SeedTransactionType.SET_CATEGORY.value: "Category Set",
    SeedTransactionType.REMOVE_CATEGORY.value: "Category Removed",
    SeedTransactionType.ADD_FOLLOWUP.value: "Follow-up Added",
    SeedTransactionType.ADD_SPROUT.value: "Sprout Added",
}

SPROUT_TITLES = {
    SproutType.FOLLOWUP: "Follow-up Sprout",
    SproutType.MUSING: "Musing Sprout",
    SproutType.WIKIPEDIA_REFERENCE: "Wikipedia Reference",
    SproutType.EXTRA_CONTEXT: "Extra Context Sprout",
    SproutType.FACT_CHECK: "Fact Check Sprout",
}


def _text(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if isinstance(value, str) and value:
        return value
    return None


def _format_category(name: str | None, path: str | None) -> str | None:
    if not name:
        return None
    if path:
        return f"Category: {name} ({path})"
    return f"Category: {name}"


def describe_transaction(
    transaction: Transaction,
    ledger: list[Transaction],
    prior_states: dict[str, SeedState] | None = None,
) -> TimelineEntry:
    """Describe one seed transaction.

    Args:
        transaction: The transaction to describe.
        ledger: The seed's full ledger, used to look up historical names
            for removals whose payload does not carry them.
        prior_states: Precomputed seed states keyed by transaction id (see
            seed_states_before). When omitted the ledger is replayed for
            each lookup.
    """

    def state_before() -> SeedState | None:
        if prior_states is not None:
            return prior_states.get(transaction.id)
        return seed_state_before(ledger, transaction)

    kind = transaction.transaction_type
    data = transaction.transaction_data
    title = TRANSACTION_TITLES.get(kind, kind)
    tag_name: str | None = None

    if kind == SeedTransactionType.CREATE_SEED.value:
        text = _text(data, "content")
        if text:
            preview = text[:CONTENT_PREVIEW_CHARS]
            ellipsis = "..." if len(text) > CONTENT_PREVIEW_CHARS else ""
            content = f"Content: {preview}{ellipsis}"
        else:
            content = "Seed created"

    elif kind == SeedTransactionType.EDIT_CONTENT.value:
        content = "Content updated"

    elif kind == SeedTransactionType.ADD_TAG.value:
        tag_name = _text(data, "tag_name")
        content = f"Tag: {tag_name}" if tag_name else "Tag added"

    elif kind == SeedTransactionType.REMOVE_TAG.value:
        tag_name = _text(data, "tag_name")
        if tag_name is None:
            before = state_before()
            tag_id = data.get("tag_id")
            if before is not None:
                tag_name = next(
                    (tag.name for tag in before.tags if tag.id == tag_id), None
                )
        content = f"Tag: {tag_name}" if tag_name else "Tag removed"

    elif kind == SeedTransactionType.SET_CATEGORY.value:
        content = _format_category(
            _text(data, "category_name"), _text(data, "category_path")
        ) or "Category set"

    elif kind == SeedTransactionType.REMOVE_CATEGORY.value:
        content = "Category removed"
        before = state_before()
        if (
            before is not None
            and before.category is not None
            and before.category.id == data.get("category_id")
        ):
            content = _format_category(before.category.name, before.category.path)

    elif kind == SeedTransactionType.ADD_FOLLOWUP.value:
        content = "Follow-up added"

    elif kind == SeedTransactionType.ADD_SPROUT.value:
        content = "Sprout added"

    else:
        content = "Transaction"

    if transaction.automation_id:
        content += AUTOMATED_SUFFIX

    return TimelineEntry(
        id=transaction.id,
        source="transaction",
        title=title,
        content=content,
        created_at=transaction.created_at,
        group_key=kind,
        transaction_type=kind,
        transaction_data=data,
        automation_id=transaction.automation_id,
        tag_name=tag_name,
    )


def describe_sprout(
    sprout: Sprout,
    wikipedia_states: dict[str, WikipediaSproutState] | None = None,
) -> TimelineEntry:
    """Describe a sprout's creation.

    Follow-up and musing sprouts show their creation snapshot. Wikipedia
    sprouts show their current summary when a computed state is supplied,
    since edits to the summary should be visible in the history.
    """
    data = sprout.sprout_data
    title = SPROUT_TITLES[sprout.sprout_type]
    article_url: str | None = None

    if sprout.sprout_type == SproutType.FOLLOWUP:
        content = _text(data, "initial_message") or "Follow-up sprout"

    elif sprout.sprout_type == SproutType.MUSING:
        template = _text(data, "template_type") or "unknown"
        content = f"Musing ({template})"

    elif sprout.sprout_type == SproutType.WIKIPEDIA_REFERENCE:
        state = (wikipedia_states or {}).get(sprout.id)
        if state is not None:
            reference, summary, article_url = state.reference, state.summary, state.article_url
        else:
            reference = _text(data, "reference")
            summary = _text(data, "summary") or ""
            article_url = _text(data, "article_url")
        title = reference or title
        content = "\n\n".join(summary.split("\n\n")[:SUMMARY_PARAGRAPHS])

    elif sprout.sprout_type == SproutType.EXTRA_CONTEXT:
        content = "Extra context sprout"

    else:
        content = "Fact check sprout"

    if sprout.automation_id:
        content += AUTOMATED_SUFFIX

    return TimelineEntry(
        id=sprout.id,
        source="sprout",
        title=title,
        content=content,
        created_at=sprout.created_at,
        group_key=f"sprout-{sprout.sprout_type.value}",
        automation_id=sprout.automation_id,
        article_url=article_url,
    )


def collect_entries(
    transactions: list[Transaction],
    sprouts: list[Sprout],
    wikipedia_states: dict[str, WikipediaSproutState] | None = None,
) -> list[TimelineEntry]:
    """Merge transactions and sprouts into entries, newest first.

    add_sprout transactions are dropped when their sprout has its own
    entry, so the same event is not reported twice.
    """
    sprout_ids = {sprout.id for sprout in sprouts}
    prior_states = seed_states_before(transactions, HISTORICAL_LOOKUP_TYPES)
    items: list[tuple[tuple, TimelineEntry]] = []

    for transaction in transactions:
        sprout_id = transaction.transaction_data.get("sprout_id")
        if (
            transaction.transaction_type == SeedTransactionType.ADD_SPROUT.value
            and isinstance(sprout_id, str)
            and sprout_id in sprout_ids
        ):
            continue
        entry = describe_transaction(transaction, transactions, prior_states)
        items.append((replay_key(transaction), entry))

    for sprout in sprouts:
        items.append(
            ((sprout.created_at, sprout.id), describe_sprout(sprout, wikipedia_states))
        )

    items.sort(key=lambda item: item[0], reverse=True)
    return [entry for _, entry in items]
