"""SQLite-based append-only ledger store for Memoriae.

Design principles:
- Transactions and sprout rows are never edited or deleted
- One transactions table, partitioned by (ledger, subject_id)
- Reducers never query the store; callers fetch a ledger and reduce it
- Thread-safe for concurrent reads and writes
"""

import json
import sqlite3
import threading
import uuid
from datetime import datetime
from pathlib import Path

from memoriae.models.transactions import LedgerKind, SproutType, Transaction
from memoriae.models.derived import Sprout


class LedgerStore:
    """Append-only transaction store backed by SQLite.

    Thread-safe: uses per-thread connections for concurrent access.
    For in-memory databases, uses a unique shared cache URI to allow multi-threaded access
    while keeping each store instance isolated.
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self._original_path = str(db_path)

        # Each in-memory store gets its own shared-cache database
        if self._original_path == ":memory:":
            unique_id = uuid.uuid4().hex[:8]
            self.db_path = f"file:memoriae_{unique_id}?mode=memory&cache=shared"
            self._uri = True
        else:
            self.db_path = self._original_path
            self._uri = False

        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create a thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                self.db_path,
                uri=self._uri,
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.conn.row_factory = sqlite3.Row
            if not self._uri:
                self._local.conn.execute("PRAGMA journal_mode=WAL")
        return self._local.conn

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        conn = self._get_conn()
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                ledger TEXT NOT NULL,
                subject_id TEXT NOT NULL,
                transaction_type TEXT NOT NULL,
                transaction_data_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                automation_id TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_ledger_subject_created
                ON transactions(ledger, subject_id, created_at);

            CREATE INDEX IF NOT EXISTS idx_automation
                ON transactions(automation_id);

            CREATE TABLE IF NOT EXISTS sprouts (
                id TEXT PRIMARY KEY,
                seed_id TEXT NOT NULL,
                sprout_type TEXT NOT NULL,
                sprout_data_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                automation_id TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_sprouts_seed
                ON sprouts(seed_id, created_at);
            """
        )
        conn.commit()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def append(self, ledger: LedgerKind, transaction: Transaction) -> Transaction:
        """Append a transaction to a ledger.

        Raises:
            ValueError: If a transaction with this id already exists.
        """
        with self._write_lock:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO transactions (
                        id, ledger, subject_id, transaction_type,
                        transaction_data_json, created_at, automation_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        transaction.id,
                        LedgerKind(ledger).value,
                        transaction.subject_id,
                        transaction.transaction_type,
                        json.dumps(transaction.transaction_data, default=str),
                        transaction.created_at.isoformat(),
                        transaction.automation_id,
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Transaction already exists: {e}") from e

        return transaction

    def get_transactions(
        self,
        ledger: LedgerKind,
        subject_id: str,
        transaction_type: str | None = None,
    ) -> list[Transaction]:
        """Get the ledger of one subject, oldest first.

        Args:
            ledger: Which ledger to read.
            subject_id: The seed, tag, or sprout id.
            transaction_type: Filter by type (optional).
        """
        conn = self._get_conn()

        query = "SELECT * FROM transactions WHERE ledger = ? AND subject_id = ?"
        params: list = [LedgerKind(ledger).value, subject_id]

        if transaction_type is not None:
            query += " AND transaction_type = ?"
            params.append(transaction_type)

        query += " ORDER BY created_at, id"

        cursor = conn.execute(query, params)
        return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def get_transaction(self, transaction_id: str) -> tuple[LedgerKind, Transaction] | None:
        """Get a single transaction and the ledger it belongs to."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
        )
        row = cursor.fetchone()
        if not row:
            return None
        return LedgerKind(row["ledger"]), self._row_to_transaction(row)

    def get_by_automation(self, automation_id: str) -> list[Transaction]:
        """Get every transaction produced by one automation run."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM transactions WHERE automation_id = ? ORDER BY created_at, id",
            (automation_id,),
        )
        return [self._row_to_transaction(row) for row in cursor.fetchall()]

    def subject_exists(self, ledger: LedgerKind, subject_id: str) -> bool:
        """Check if a subject has any transactions."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT 1 FROM transactions WHERE ledger = ? AND subject_id = ? LIMIT 1",
            (LedgerKind(ledger).value, subject_id),
        )
        return cursor.fetchone() is not None

    def list_subjects(self, ledger: LedgerKind) -> list[str]:
        """List subject ids in a ledger, in order of first appearance."""
        conn = self._get_conn()
        cursor = conn.execute(
            """
            SELECT subject_id, MIN(created_at) AS first_at FROM transactions
            WHERE ledger = ?
            GROUP BY subject_id
            ORDER BY first_at, subject_id
            """,
            (LedgerKind(ledger).value,),
        )
        return [row["subject_id"] for row in cursor.fetchall()]

    # -------------------------------------------------------------------------
    # Sprouts
    # -------------------------------------------------------------------------

    def add_sprout(self, sprout: Sprout) -> Sprout:
        """Insert a sprout row.

        Raises:
            ValueError: If a sprout with this id already exists.
        """
        with self._write_lock:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO sprouts (
                        id, seed_id, sprout_type, sprout_data_json,
                        created_at, automation_id
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        sprout.id,
                        sprout.seed_id,
                        sprout.sprout_type.value,
                        json.dumps(sprout.sprout_data, default=str),
                        sprout.created_at.isoformat(),
                        sprout.automation_id,
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                raise ValueError(f"Sprout already exists: {e}") from e

        return sprout

    def get_sprout(self, sprout_id: str) -> Sprout | None:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM sprouts WHERE id = ?", (sprout_id,))
        row = cursor.fetchone()
        return self._row_to_sprout(row) if row else None

    def get_sprouts(
        self,
        seed_id: str,
        sprout_type: SproutType | None = None,
    ) -> list[Sprout]:
        """Get the sprouts attached to a seed, oldest first."""
        conn = self._get_conn()

        query = "SELECT * FROM sprouts WHERE seed_id = ?"
        params: list = [seed_id]

        if sprout_type is not None:
            query += " AND sprout_type = ?"
            params.append(SproutType(sprout_type).value)

        query += " ORDER BY created_at, id"

        cursor = conn.execute(query, params)
        return [self._row_to_sprout(row) for row in cursor.fetchall()]

    def list_sprouts(self) -> list[Sprout]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM sprouts ORDER BY created_at, id")
        return [self._row_to_sprout(row) for row in cursor.fetchall()]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the thread-local database connection."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            subject_id=row["subject_id"],
            transaction_type=row["transaction_type"],
            transaction_data=json.loads(row["transaction_data_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            automation_id=row["automation_id"],
        )

    def _row_to_sprout(self, row: sqlite3.Row) -> Sprout:
        return Sprout(
            id=row["id"],
            seed_id=row["seed_id"],
            sprout_type=SproutType(row["sprout_type"]),
            sprout_data=json.loads(row["sprout_data_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            automation_id=row["automation_id"],
        )

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
