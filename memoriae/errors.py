"""Error types raised by Memoriae.

Only the reducers raise for corrupt ledgers, and only when there is no
valid creation transaction. Everything else is raised by command handlers
rejecting a write before it reaches the ledger.
"""


class MissingCreationTransactionError(ValueError):
    """A ledger has no valid creation transaction, so it has no state."""

    def __init__(self, ledger: str, subject_id: str | None = None):
        self.ledger = ledger
        self.subject_id = subject_id
        target = f" {subject_id}" if subject_id else ""
        super().__init__(f"{ledger}{target} has no valid creation transaction")


class InvalidTransactionError(ValueError):
    """A transaction type or payload is not accepted for its ledger."""


class CommandRejectedError(ValueError):
    """A well-formed transaction conflicts with the entity's current state."""


class SubjectNotFoundError(LookupError):
    """The seed, tag, or sprout a command targets does not exist."""

    def __init__(self, ledger: str, subject_id: str):
        self.ledger = ledger
        self.subject_id = subject_id
        super().__init__(f"{ledger} not found: {subject_id}")
