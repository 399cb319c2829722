"""JSONL import/export for Memoriae ledger stores.

Used for backups, sharing repros, and moving seeds between databases.

Each line is one record, tagged by its "record" field:
- "transaction": a ledger transaction, with its "ledger"
- "sprout": a sprout row
"""

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

from memoriae.models.transactions import LedgerKind, SeedTransactionType, Transaction
from memoriae.models.derived import Sprout

if TYPE_CHECKING:
    from memoriae.store.sqlite_store import LedgerStore


def _transaction_record(ledger: LedgerKind, transaction: Transaction) -> dict[str, Any]:
    record = {"record": "transaction", "ledger": ledger.value}
    record.update(transaction.model_dump(mode="json"))
    return record


def _sprout_record(sprout: Sprout) -> dict[str, Any]:
    record = {"record": "sprout"}
    record.update(sprout.model_dump(mode="json"))
    return record


def _seed_records(store: "LedgerStore", seed_id: str) -> list[dict[str, Any]]:
    """A seed's ledger plus everything it references: tags and sprouts."""
    seed_ledger = store.get_transactions(LedgerKind.SEED, seed_id)
    records = [_transaction_record(LedgerKind.SEED, t) for t in seed_ledger]

    tag_ids = []
    for transaction in seed_ledger:
        if transaction.transaction_type == SeedTransactionType.ADD_TAG.value:
            tag_id = transaction.transaction_data.get("tag_id")
            if isinstance(tag_id, str) and tag_id not in tag_ids:
                tag_ids.append(tag_id)
    for tag_id in tag_ids:
        for transaction in store.get_transactions(LedgerKind.TAG, tag_id):
            records.append(_transaction_record(LedgerKind.TAG, transaction))

    for sprout in store.get_sprouts(seed_id):
        records.append(_sprout_record(sprout))
        ledger = sprout.sprout_type.ledger
        for transaction in store.get_transactions(ledger, sprout.id):
            records.append(_transaction_record(ledger, transaction))

    return records


def _all_records(store: "LedgerStore") -> list[dict[str, Any]]:
    records = []
    for ledger in LedgerKind:
        for subject_id in store.list_subjects(ledger):
            for transaction in store.get_transactions(ledger, subject_id):
                records.append(_transaction_record(ledger, transaction))
    for sprout in store.list_sprouts():
        records.append(_sprout_record(sprout))
    return records


def export_ledger_jsonl(
    store: "LedgerStore",
    output_path: str | Path,
    seed_id: str | None = None,
) -> int:
    """Export ledgers to a JSONL file.

    Args:
        store: The store to read from.
        output_path: Path to write the JSONL file.
        seed_id: Export only this seed, its tags and its sprouts.
            Exports everything when omitted.

    Returns:
        Number of records exported.
    """
    records = _seed_records(store, seed_id) if seed_id else _all_records(store)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        for record in records:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")

    return len(records)


def import_ledger_jsonl(
    store: "LedgerStore",
    input_path: str | Path,
    skip_existing: bool = False,
) -> int:
    """Import records from a JSONL file into the store.

    Args:
        store: The store to write to.
        input_path: Path to the JSONL file.
        skip_existing: Ignore records whose id is already stored instead of
            failing. Makes re-importing the same file safe.

    Returns:
        Number of records imported.

    Raises:
        ValueError: If the file contains an invalid record.
    """
    input_path = Path(input_path)
    count = 0

    with open(input_path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue

            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON on line {line_num}: {e}") from e

            if not isinstance(data, dict):
                raise ValueError(f"Invalid record on line {line_num}: not an object")

            kind = data.pop("record", None)
            try:
                if kind == "transaction":
                    ledger = LedgerKind(data.pop("ledger"))
                    transaction = Transaction(**data)
                    if skip_existing and store.get_transaction(transaction.id):
                        continue
                    store.append(ledger, transaction)
                elif kind == "sprout":
                    sprout = Sprout(**data)
                    if skip_existing and store.get_sprout(sprout.id):
                        continue
                    store.add_sprout(sprout)
                else:
                    raise ValueError(f"unknown record kind {kind!r}")
                count += 1

            except Exception as e:
                raise ValueError(f"Invalid record on line {line_num}: {e}") from e

    return count
