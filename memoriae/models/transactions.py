"""Transaction models for Memoriae's append-only ledgers.

Every seed, tag, and sprout is stored as a ledger of transactions. The
envelope is shared across ledgers; transaction_type and transaction_data
are interpreted per LedgerKind through the payload registries below.

transaction_type is kept as a plain string on the envelope so that rows
written by newer code (unknown types) still load and can be skipped.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, Field


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class LedgerKind(str, Enum):
    """Which ledger a transaction belongs to."""

    SEED = "seed"
    TAG = "tag"
    FOLLOWUP = "followup"
    MUSING = "musing"
    WIKIPEDIA_REFERENCE = "wikipedia_reference"
    EXTRA_CONTEXT = "extra_context"
    FACT_CHECK = "fact_check"


class SproutType(str, Enum):
    """Kinds of generated artifacts attached to a seed."""

    FOLLOWUP = "followup"
    MUSING = "musing"
    WIKIPEDIA_REFERENCE = "wikipedia_reference"
    EXTRA_CONTEXT = "extra_context"
    FACT_CHECK = "fact_check"

    @property
    def ledger(self) -> LedgerKind:
        return LedgerKind(self.value)


class SeedTransactionType(str, Enum):
    CREATE_SEED = "create_seed"
    EDIT_CONTENT = "edit_content"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    SET_CATEGORY = "set_category"
    REMOVE_CATEGORY = "remove_category"
    ADD_FOLLOWUP = "add_followup"  # deprecated, superseded by add_sprout
    ADD_SPROUT = "add_sprout"


class TagTransactionType(str, Enum):
    CREATION = "creation"
    EDIT = "edit"
    SET_COLOR = "set_color"


class FollowupTransactionType(str, Enum):
    CREATION = "creation"
    EDIT = "edit"
    DISMISSAL = "dismissal"
    SNOOZE = "snooze"


class MusingTransactionType(str, Enum):
    CREATION = "creation"
    DISMISSAL = "dismissal"
    COMPLETION = "completion"


class WikipediaTransactionType(str, Enum):
    CREATION = "creation"
    EDIT = "edit"


class AnnotationTransactionType(str, Enum):
    """Transaction types for extra_context and fact_check sprouts."""

    CREATION = "creation"
    EDIT = "edit"
    DISMISSAL = "dismissal"


# -----------------------------------------------------------------------------
# Seed payloads
# -----------------------------------------------------------------------------


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must be a non-empty string")
    return value


NonBlankStr = Annotated[str, AfterValidator(_require_text)]


def ensure_utc(value: datetime) -> datetime:
    """Read naive datetimes as UTC so ledgers never mix naive and aware values."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


class CreateSeedPayload(BaseModel):
    content: NonBlankStr


class EditContentPayload(BaseModel):
    content: str


class AddTagPayload(BaseModel):
    tag_id: str
    tag_name: str


class RemoveTagPayload(BaseModel):
    tag_id: str
    tag_name: str | None = None  # absent on legacy rows


class SetCategoryPayload(BaseModel):
    category_id: str
    category_name: str
    category_path: str


class RemoveCategoryPayload(BaseModel):
    category_id: str


class AddFollowupPayload(BaseModel):
    followup_id: str


class AddSproutPayload(BaseModel):
    sprout_id: str


# -----------------------------------------------------------------------------
# Tag payloads
# -----------------------------------------------------------------------------


class TagCreationPayload(BaseModel):
    name: NonBlankStr
    color: str | None = None


class TagEditPayload(BaseModel):
    name: NonBlankStr


class TagSetColorPayload(BaseModel):
    color: str | None = None


# -----------------------------------------------------------------------------
# Sprout payloads
# -----------------------------------------------------------------------------


class FollowupCreationPayload(BaseModel):
    trigger: Literal["manual", "automatic"] = "manual"
    initial_time: UtcDatetime
    initial_message: str


class FollowupEditPayload(BaseModel):
    old_time: UtcDatetime | None = None
    new_time: UtcDatetime | None = None
    old_message: str | None = None
    new_message: str | None = None


class FollowupDismissalPayload(BaseModel):
    dismissed_at: UtcDatetime
    type: Literal["followup", "snooze"] = "followup"


class FollowupSnoozePayload(BaseModel):
    snoozed_at: UtcDatetime
    duration_minutes: int = Field(gt=0)
    method: Literal["manual", "automatic"] = "manual"


class MusingCreationPayload(BaseModel):
    template_type: Literal["numbered_ideas", "wikipedia_links", "markdown"]
    content: dict[str, Any]


class MusingDismissalPayload(BaseModel):
    dismissed_at: UtcDatetime | None = None


class MusingCompletionPayload(BaseModel):
    completed_at: UtcDatetime | None = None


class WikipediaCreationPayload(BaseModel):
    reference: str
    article_url: str
    article_title: str
    summary: str


class WikipediaEditPayload(BaseModel):
    old_summary: str | None = None
    new_summary: str


class AnnotationCreationPayload(BaseModel):
    content: str


class AnnotationEditPayload(BaseModel):
    new_content: str


class AnnotationDismissalPayload(BaseModel):
    dismissed_at: UtcDatetime | None = None


# -----------------------------------------------------------------------------
# Payload registries
# -----------------------------------------------------------------------------

SEED_PAYLOAD_TYPES: dict[str, type[BaseModel]] = {
    SeedTransactionType.CREATE_SEED.value: CreateSeedPayload,
    SeedTransactionType.EDIT_CONTENT.value: EditContentPayload,
    SeedTransactionType.ADD_TAG.value: AddTagPayload,
    SeedTransactionType.REMOVE_TAG.value: RemoveTagPayload,
    SeedTransactionType.SET_CATEGORY.value: SetCategoryPayload,
    SeedTransactionType.REMOVE_CATEGORY.value: RemoveCategoryPayload,
    SeedTransactionType.ADD_FOLLOWUP.value: AddFollowupPayload,
    SeedTransactionType.ADD_SPROUT.value: AddSproutPayload,
}

TAG_PAYLOAD_TYPES: dict[str, type[BaseModel]] = {
    TagTransactionType.CREATION.value: TagCreationPayload,
    TagTransactionType.EDIT.value: TagEditPayload,
    TagTransactionType.SET_COLOR.value: TagSetColorPayload,
}

FOLLOWUP_PAYLOAD_TYPES: dict[str, type[BaseModel]] = {
    FollowupTransactionType.CREATION.value: FollowupCreationPayload,
    FollowupTransactionType.EDIT.value: FollowupEditPayload,
    FollowupTransactionType.DISMISSAL.value: FollowupDismissalPayload,
    FollowupTransactionType.SNOOZE.value: FollowupSnoozePayload,
}

MUSING_PAYLOAD_TYPES: dict[str, type[BaseModel]] = {
    MusingTransactionType.CREATION.value: MusingCreationPayload,
    MusingTransactionType.DISMISSAL.value: MusingDismissalPayload,
    MusingTransactionType.COMPLETION.value: MusingCompletionPayload,
}

WIKIPEDIA_PAYLOAD_TYPES: dict[str, type[BaseModel]] = {
    WikipediaTransactionType.CREATION.value: WikipediaCreationPayload,
    WikipediaTransactionType.EDIT.value: WikipediaEditPayload,
}

ANNOTATION_PAYLOAD_TYPES: dict[str, type[BaseModel]] = {
    AnnotationTransactionType.CREATION.value: AnnotationCreationPayload,
    AnnotationTransactionType.EDIT.value: AnnotationEditPayload,
    AnnotationTransactionType.DISMISSAL.value: AnnotationDismissalPayload,
}

PAYLOAD_TYPES: dict[LedgerKind, dict[str, type[BaseModel]]] = {
    LedgerKind.SEED: SEED_PAYLOAD_TYPES,
    LedgerKind.TAG: TAG_PAYLOAD_TYPES,
    LedgerKind.FOLLOWUP: FOLLOWUP_PAYLOAD_TYPES,
    LedgerKind.MUSING: MUSING_PAYLOAD_TYPES,
    LedgerKind.WIKIPEDIA_REFERENCE: WIKIPEDIA_PAYLOAD_TYPES,
    LedgerKind.EXTRA_CONTEXT: ANNOTATION_PAYLOAD_TYPES,
    LedgerKind.FACT_CHECK: ANNOTATION_PAYLOAD_TYPES,
}

CREATION_TYPES: dict[LedgerKind, str] = {
    LedgerKind.SEED: SeedTransactionType.CREATE_SEED.value,
    LedgerKind.TAG: TagTransactionType.CREATION.value,
    LedgerKind.FOLLOWUP: FollowupTransactionType.CREATION.value,
    LedgerKind.MUSING: MusingTransactionType.CREATION.value,
    LedgerKind.WIKIPEDIA_REFERENCE: WikipediaTransactionType.CREATION.value,
    LedgerKind.EXTRA_CONTEXT: AnnotationTransactionType.CREATION.value,
    LedgerKind.FACT_CHECK: AnnotationTransactionType.CREATION.value,
}


# -----------------------------------------------------------------------------
# Transaction envelope
# -----------------------------------------------------------------------------


class Transaction(BaseModel):
    """One immutable ledger row.

    subject_id is the seed, tag, or sprout the transaction mutates.
    created_at defines replay order; id breaks ties.
    """

    id: str
    subject_id: str
    transaction_type: str
    transaction_data: dict[str, Any] = {}
    created_at: UtcDatetime
    automation_id: str | None = None

    def get_payload_model(self, ledger: LedgerKind) -> BaseModel | None:
        """Parse transaction_data into the typed payload for this ledger.

        Returns None for transaction types the ledger does not know.
        Raises pydantic.ValidationError for malformed payloads.
        """
        model_cls = PAYLOAD_TYPES[ledger].get(self.transaction_type)
        if model_cls:
            return model_cls.model_validate(self.transaction_data)
        return None
