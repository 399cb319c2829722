"""Ledger storage for Memoriae."""

from memoriae.store.sqlite_store import LedgerStore
from memoriae.store.jsonl_io import export_ledger_jsonl, import_ledger_jsonl

__all__ = ["LedgerStore", "export_ledger_jsonl", "import_ledger_jsonl"]
