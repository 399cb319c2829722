"""Replay machinery shared by every ledger reducer.

A reducer receives the complete, unordered ledger of one entity plus an
optional cutoff. prepare_ledger bounds and orders it, find_creation picks
the mandatory creation transaction, and iter_payloads yields the typed
payload of every later transaction the ledger knows how to apply.

Ordering is (created_at, id) ascending, so the same ledger in any input
order replays identically.
"""

import logging
from collections.abc import Iterator
from datetime import datetime

from pydantic import BaseModel, ValidationError

from memoriae.errors import MissingCreationTransactionError
from memoriae.models.transactions import CREATION_TYPES, LedgerKind, Transaction, ensure_utc

logger = logging.getLogger(__name__)


def replay_key(transaction: Transaction) -> tuple[datetime, str]:
    """Sort key for replay order."""
    return (transaction.created_at, transaction.id)


def prepare_ledger(
    transactions: list[Transaction],
    cutoff: datetime | None = None,
) -> list[Transaction]:
    """Drop transactions after cutoff (inclusive bound) and sort for replay."""
    if cutoff is not None:
        cutoff = ensure_utc(cutoff)
        transactions = [t for t in transactions if t.created_at <= cutoff]
    return sorted(transactions, key=replay_key)


def find_creation(
    ledger: LedgerKind,
    ordered: list[Transaction],
) -> tuple[Transaction, BaseModel]:
    """Return the first valid creation transaction and its payload.

    A creation row whose payload does not validate carries no creation
    data, so it is treated the same as a missing one.

    Raises:
        MissingCreationTransactionError: If no valid creation exists.
    """
    creation_type = CREATION_TYPES[ledger]
    subject_id = ordered[0].subject_id if ordered else None

    for transaction in ordered:
        if transaction.transaction_type != creation_type:
            continue
        try:
            return transaction, transaction.get_payload_model(ledger)
        except ValidationError as e:
            logger.warning(
                "Invalid %s creation transaction %s: %s",
                ledger.value, transaction.id, e,
            )

    raise MissingCreationTransactionError(ledger.value, subject_id)


def iter_payloads(
    ledger: LedgerKind,
    ordered: list[Transaction],
    creation: Transaction,
) -> Iterator[tuple[Transaction, BaseModel]]:
    """Yield (transaction, payload) for each applicable non-creation row.

    Unknown transaction types are skipped silently so that old reducers
    keep working when new kinds are added. Known types with malformed
    payloads are skipped with a warning.
    """
    creation_type = CREATION_TYPES[ledger]

    for transaction in ordered:
        if transaction.id == creation.id:
            continue
        if transaction.transaction_type == creation_type:
            # Only the first creation establishes the entity.
            continue
        try:
            payload = transaction.get_payload_model(ledger)
        except ValidationError as e:
            logger.warning(
                "Skipping invalid %s transaction %s: %s",
                ledger.value, transaction.id, e,
            )
            continue
        if payload is None:
            logger.debug(
                "Skipping unknown %s transaction type %r (%s)",
                ledger.value, transaction.transaction_type, transaction.id,
            )
            continue
        yield transaction, payload
