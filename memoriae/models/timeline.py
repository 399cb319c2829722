"""Display models for the seed history timeline."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel


class TimelineEntry(BaseModel):
    """One transaction or sprout creation, described for display.

    tag_name is the tag a tag transaction refers to, resolved from the
    payload or from the seed's state just before the transaction.
    """

    id: str
    source: Literal["transaction", "sprout"]
    title: str
    content: str
    created_at: datetime
    group_key: str
    transaction_type: str | None = None
    transaction_data: dict[str, Any] = {}
    automation_id: str | None = None
    tag_name: str | None = None
    article_url: str | None = None


class DisplayGroup(BaseModel):
    """A run of same-kind entries shown as one timeline line.

    created_at is the newest member's time. entries are newest first.
    """

    id: str
    title: str
    content: str
    created_at: datetime
    group_key: str
    entries: list[TimelineEntry]
    tag_names: list[str] = []
    remaining_count: int = 0
    automated: bool = False
    article_url: str | None = None

    @property
    def is_grouped(self) -> bool:
        return len(self.entries) > 1
