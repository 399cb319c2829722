"""Seed history timeline: entry descriptions and burst grouping."""

from memoriae.timeline.entries import describe_transaction, describe_sprout, collect_entries
from memoriae.timeline.grouping import group_entries, summarize_group, build_timeline

__all__ = [
    "describe_transaction",
    "describe_sprout",
    "collect_entries",
    "group_entries",
    "summarize_group",
    "build_timeline",
]
