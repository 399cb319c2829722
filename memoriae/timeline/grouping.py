"""Timeline grouping - collapses bursts of same-kind events into one line.

Entries are scanned newest first. An entry joins the running group when it
has the same group_key and lies within threshold_ms of the group's newest
entry (its first); anything else closes the group. A long chain of closely
spaced entries is therefore split once it spans more than the threshold.

Summaries:
- single entry: shown as-is
- add_tag burst: "Tags Added", unique tag names, at most 10 shown
- remove_tag burst: "Tags Removed", same, or "Nx Tag removed" when no
  names are recoverable
- any other burst: "Nx <content>" if identical, else up to 3 contents
"""

from datetime import timedelta

from memoriae import config
from memoriae.models.transactions import SeedTransactionType, Transaction
from memoriae.models.derived import Sprout, WikipediaSproutState
from memoriae.models.timeline import DisplayGroup, TimelineEntry
from memoriae.timeline.entries import AUTOMATED_SUFFIX, collect_entries

MAX_TAG_NAMES = 10
MAX_DISTINCT_CONTENTS = 3

_TAG_GROUPS = {
    SeedTransactionType.ADD_TAG.value: ("Tags Added", "Tag added"),
    SeedTransactionType.REMOVE_TAG.value: ("Tags Removed", "Tag removed"),
}


def group_entries(
    entries: list[TimelineEntry],
    threshold_ms: int,
) -> list[list[TimelineEntry]]:
    """Split newest-first entries into runs of groupable entries."""
    threshold = timedelta(milliseconds=threshold_ms)
    groups: list[list[TimelineEntry]] = []
    current: list[TimelineEntry] = []

    for entry in entries:
        if (
            current
            and entry.group_key == current[0].group_key
            and abs(current[0].created_at - entry.created_at) <= threshold
        ):
            current.append(entry)
            continue
        if current:
            groups.append(current)
        current = [entry]

    if current:
        groups.append(current)

    return groups


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def summarize_group(entries: list[TimelineEntry]) -> DisplayGroup:
    """Build the display line for one group of entries (newest first)."""
    newest = entries[0]
    automated = any(entry.automation_id for entry in entries)

    if len(entries) == 1:
        return DisplayGroup(
            id=newest.id,
            title=newest.title,
            content=newest.content,
            created_at=newest.created_at,
            group_key=newest.group_key,
            entries=entries,
            tag_names=[newest.tag_name] if newest.tag_name else [],
            automated=automated,
            article_url=newest.article_url,
        )

    group_id = f"group-{newest.id}"
    count = len(entries)

    if newest.group_key in _TAG_GROUPS:
        title, placeholder = _TAG_GROUPS[newest.group_key]
        names = _unique([entry.tag_name for entry in entries if entry.tag_name])
        shown = names[:MAX_TAG_NAMES]
        remaining = len(names) - len(shown)

        if shown:
            content = "Tags: " + ", ".join(shown)
            if remaining:
                content += f", +{remaining} more"
        else:
            content = f"{count}x {placeholder}"
        if automated:
            content += AUTOMATED_SUFFIX

        return DisplayGroup(
            id=group_id,
            title=title,
            content=content,
            created_at=newest.created_at,
            group_key=newest.group_key,
            entries=entries,
            tag_names=shown,
            remaining_count=remaining,
            automated=automated,
        )

    contents = _unique([entry.content for entry in entries])
    if len(contents) == 1:
        content = f"{count}x {contents[0]}"
    else:
        shown = contents[:MAX_DISTINCT_CONTENTS]
        if len(contents) > MAX_DISTINCT_CONTENTS:
            shown.append(f"+{len(contents) - MAX_DISTINCT_CONTENTS} more")
        content = ", ".join(shown)

    return DisplayGroup(
        id=group_id,
        title=f"{count}x {newest.title}",
        content=content,
        created_at=newest.created_at,
        group_key=newest.group_key,
        entries=entries,
        automated=automated,
    )


def build_timeline(
    transactions: list[Transaction],
    sprouts: list[Sprout],
    wikipedia_states: dict[str, WikipediaSproutState] | None = None,
    threshold_ms: int | None = None,
) -> list[DisplayGroup]:
    """Build the display-ready history of a seed, newest first.

    Args:
        transactions: The seed's full ledger.
        sprouts: Sprouts attached to the seed.
        wikipedia_states: Current state of Wikipedia sprouts, by sprout id.
        threshold_ms: Grouping window. Defaults to
            MEMORIAE_TIMELINE_GROUP_THRESHOLD_MS (60000).

    Returns:
        DisplayGroups in descending time order. Never raises for missing
        payload fields.
    """
    if threshold_ms is None:
        threshold_ms = config.timeline_group_threshold_ms()

    entries = collect_entries(transactions, sprouts, wikipedia_states)
    return [summarize_group(group) for group in group_entries(entries, threshold_ms)]
