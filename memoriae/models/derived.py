"""Derived state models computed from transaction ledgers.

These are disposable projections; the ledger is the only ground truth.
- SeedState: content, tags, category of a seed
- TagState: name and color of a tag
- Sprout states: one per sprout type (followup, musing, wikipedia, annotation)
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from memoriae.models.transactions import SproutType, UtcDatetime


# -----------------------------------------------------------------------------
# Seed and tag state
# -----------------------------------------------------------------------------


class TagRef(BaseModel):
    """A tag as attached to a seed, with the name recorded at attach time."""

    id: str
    name: str


class CategoryRef(BaseModel):
    """The single category a seed belongs to."""

    id: str
    name: str
    path: str


class LedgerState(BaseModel):
    """Fields shared by every reduced state.

    timestamp is the created_at of the last transaction that changed the
    state, not the time the reduction ran.
    """

    subject_id: str
    created_at: datetime
    timestamp: datetime
    transaction_count: int = 0

    @property
    def last_modified(self) -> datetime:
        return self.timestamp


class SeedState(LedgerState):
    """Current (or as-of) state of a seed.

    tags keep first-insertion order and are unique by id.
    """

    content: str
    tags: list[TagRef] = []
    category: CategoryRef | None = None

    def has_tag(self, tag_id: str) -> bool:
        return any(tag.id == tag_id for tag in self.tags)


class TagState(LedgerState):
    name: str
    color: str | None = None


# -----------------------------------------------------------------------------
# Sprout states
# -----------------------------------------------------------------------------


class FollowupSproutState(LedgerState):
    """A follow-up reminder. Snoozes push due_time forward."""

    due_time: datetime
    message: str
    trigger: str = "manual"
    dismissed: bool = False
    dismissed_at: datetime | None = None
    snooze_count: int = 0


class MusingSproutState(LedgerState):
    template_type: str
    content: dict[str, Any] = {}
    dismissed: bool = False
    dismissed_at: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None


class WikipediaSproutState(LedgerState):
    reference: str
    article_url: str
    article_title: str
    summary: str


class AnnotationSproutState(LedgerState):
    """Extra-context and fact-check sprouts."""

    content: str
    dismissed: bool = False
    dismissed_at: datetime | None = None


SproutState = (
    FollowupSproutState
    | MusingSproutState
    | WikipediaSproutState
    | AnnotationSproutState
)


# -----------------------------------------------------------------------------
# Sprout rows
# -----------------------------------------------------------------------------


class Sprout(BaseModel):
    """A generated artifact attached to a seed.

    sprout_data is the snapshot taken at creation; the current state lives
    in the sprout's own transaction ledger.
    """

    id: str
    seed_id: str
    sprout_type: SproutType
    sprout_data: dict[str, Any] = {}
    created_at: UtcDatetime
    automation_id: str | None = None
