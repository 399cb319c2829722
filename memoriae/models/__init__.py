"""Memoriae data models."""

from memoriae.models.transactions import (
    Transaction,
    LedgerKind,
    SproutType,
    SeedTransactionType,
    TagTransactionType,
    FollowupTransactionType,
    MusingTransactionType,
    WikipediaTransactionType,
    AnnotationTransactionType,
    PAYLOAD_TYPES,
    CREATION_TYPES,
)
from memoriae.models.derived import (
    SeedState,
    TagRef,
    CategoryRef,
    TagState,
    FollowupSproutState,
    MusingSproutState,
    WikipediaSproutState,
    AnnotationSproutState,
    Sprout,
)
from memoriae.models.timeline import TimelineEntry, DisplayGroup

__all__ = [
    # Transactions
    "Transaction",
    "LedgerKind",
    "SproutType",
    "SeedTransactionType",
    "TagTransactionType",
    "FollowupTransactionType",
    "MusingTransactionType",
    "WikipediaTransactionType",
    "AnnotationTransactionType",
    "PAYLOAD_TYPES",
    "CREATION_TYPES",
    # Derived
    "SeedState",
    "TagRef",
    "CategoryRef",
    "TagState",
    "FollowupSproutState",
    "MusingSproutState",
    "WikipediaSproutState",
    "AnnotationSproutState",
    "Sprout",
    # Timeline
    "TimelineEntry",
    "DisplayGroup",
]
