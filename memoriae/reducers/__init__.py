"""Reducers that replay transaction ledgers into derived state."""

from memoriae.reducers.seed import (
    compute_seed_state,
    seed_state_before,
    seed_states_before,
)
from memoriae.reducers.tag import compute_tag_state
from memoriae.reducers.sprouts import (
    compute_followup_state,
    compute_musing_state,
    compute_wikipedia_state,
    compute_annotation_state,
    compute_sprout_state,
)

__all__ = [
    "compute_seed_state",
    "seed_state_before",
    "seed_states_before",
    "compute_tag_state",
    "compute_followup_state",
    "compute_musing_state",
    "compute_wikipedia_state",
    "compute_annotation_state",
    "compute_sprout_state",
]
