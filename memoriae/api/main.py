"""FastAPI application for Memoriae.

Endpoints:
- POST /seeds, GET /seeds: Create and list seeds
- GET /seeds/{seed_id}/state: Derived seed state (optionally ?at=)
- GET/POST /seeds/{seed_id}/transactions: Read or append seed transactions
- POST /seeds/{seed_id}/tags: Tag a seed by name
- GET /seeds/{seed_id}/timeline: Grouped history
- GET/POST /seeds/{seed_id}/sprouts: List or create sprouts
- GET /sprouts/{sprout_id}, /state, /transactions: Sprout reads and appends
- POST /tags, GET /tags, GET /tags/{tag_id}/state, GET/POST /tags/{tag_id}/transactions
- GET /followups/due: Follow-ups that are due and not dismissed
- GET /transactions/{transaction_id}: A single transaction

Limits:
- Payload size limited to 1MB by default (MEMORIAE_MAX_PAYLOAD_SIZE)
- Subject IDs validated (alphanumeric + underscore/hyphen, max 128 chars)
"""

import re
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from memoriae import commands, config
from memoriae.errors import (
    CommandRejectedError,
    InvalidTransactionError,
    MissingCreationTransactionError,
    SubjectNotFoundError,
)
from memoriae.models.transactions import LedgerKind, SproutType, Transaction
from memoriae.models.derived import SeedState, TagState, Sprout
from memoriae.models.timeline import DisplayGroup
from memoriae.store.sqlite_store import LedgerStore

SUBJECT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,128}$")


def validate_subject_id(subject_id: str) -> str:
    """Validate id format before it reaches the store."""
    if not SUBJECT_ID_PATTERN.match(subject_id):
        raise HTTPException(
            status_code=400,
            detail="Invalid id: must be 1-128 alphanumeric characters, underscores, or hyphens",
        )
    return subject_id


# -----------------------------------------------------------------------------
# Request/Response models
# -----------------------------------------------------------------------------


class WriteRequest(BaseModel):
    """Fields every write accepts. created_at defaults to now."""

    automation_id: str | None = None
    created_at: datetime | None = None


class SeedCreateRequest(WriteRequest):
    content: str


class TagCreateRequest(WriteRequest):
    name: str
    color: str | None = None


class TagSeedRequest(BaseModel):
    tag_name: str
    automation_id: str | None = None


class TransactionRequest(WriteRequest):
    transaction_type: str
    transaction_data: dict[str, Any] = {}


class SproutCreateRequest(WriteRequest):
    sprout_type: SproutType
    sprout_data: dict[str, Any]


class SproutDetail(BaseModel):
    """A sprout row together with its reduced state."""

    sprout: Sprout
    state: dict[str, Any]


class TransactionRecord(BaseModel):
    ledger: LedgerKind
    transaction: Transaction


def _sprout_detail(sprout: Sprout, state: BaseModel) -> SproutDetail:
    return SproutDetail(sprout=sprout, state=state.model_dump(mode="json"))


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------


def create_app(
    db_path: str | Path | None = None,
    max_payload_size: int | None = None,
) -> FastAPI:
    """Create a FastAPI app with the given database.

    Args:
        db_path: Path to SQLite database, or ":memory:" for in-memory.
                 Defaults to MEMORIAE_DB.
        max_payload_size: Maximum request payload size in bytes. Defaults to
                         MEMORIAE_MAX_PAYLOAD_SIZE env var or 1MB.

    Returns:
        Configured FastAPI application.
    """
    store = LedgerStore(db_path or config.default_db_path())

    if max_payload_size is None:
        max_payload_size = config.max_payload_size()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    app = FastAPI(
        title="Memoriae API",
        description="Event-sourced seeds, tags and sprouts",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.store = store

    # -------------------------------------------------------------------------
    # Middleware and error mapping
    # -------------------------------------------------------------------------

    @app.middleware("http")
    async def limit_payload_size(request: Request, call_next):
        """Reject requests with payload larger than max_payload_size."""
        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > max_payload_size:
            return JSONResponse(
                status_code=413,
                content={"detail": f"Payload too large. Maximum size is {max_payload_size} bytes."},
            )
        return await call_next(request)

    def _error(status_code: int):
        async def handler(request: Request, exc: Exception) -> JSONResponse:
            return JSONResponse(status_code=status_code, content={"detail": str(exc)})
        return handler

    app.add_exception_handler(SubjectNotFoundError, _error(404))
    app.add_exception_handler(MissingCreationTransactionError, _error(404))
    app.add_exception_handler(InvalidTransactionError, _error(422))
    app.add_exception_handler(CommandRejectedError, _error(409))

    # ---------------------------------------------------------------------
    # Seeds
    # ---------------------------------------------------------------------

    @app.post("/seeds", response_model=SeedState, status_code=201)
    async def create_seed(request: SeedCreateRequest) -> SeedState:
        return commands.create_seed(
            store,
            request.content,
            automation_id=request.automation_id,
            created_at=request.created_at,
        )

    @app.get("/seeds", response_model=list[SeedState])
    async def list_seeds() -> list[SeedState]:
        """List every seed that has a valid creation transaction."""
        return commands.list_seed_states(store)

    @app.get("/seeds/{seed_id}/state", response_model=SeedState)
    async def get_seed_state(
        seed_id: str,
        at: datetime | None = Query(None, description="Replay only transactions up to this time"),
    ) -> SeedState:
        validate_subject_id(seed_id)
        return commands.get_seed_state(store, seed_id, at)

    @app.get("/seeds/{seed_id}/transactions", response_model=list[Transaction])
    async def get_seed_transactions(
        seed_id: str,
        transaction_type: str | None = Query(None, description="Filter by transaction type"),
    ) -> list[Transaction]:
        validate_subject_id(seed_id)
        if not store.subject_exists(LedgerKind.SEED, seed_id):
            raise HTTPException(status_code=404, detail="Seed not found")
        return store.get_transactions(LedgerKind.SEED, seed_id, transaction_type)

    @app.post("/seeds/{seed_id}/transactions", response_model=SeedState)
    async def append_seed_transaction(seed_id: str, request: TransactionRequest) -> SeedState:
        """Append a transaction to a seed and return the new state."""
        validate_subject_id(seed_id)
        return commands.append_seed_transaction(
            store,
            seed_id,
            request.transaction_type,
            request.transaction_data,
            automation_id=request.automation_id,
            created_at=request.created_at,
        )

    @app.post("/seeds/{seed_id}/tags", response_model=SeedState)
    async def tag_seed(seed_id: str, request: TagSeedRequest) -> SeedState:
        """Attach a tag by name, creating the tag if needed."""
        validate_subject_id(seed_id)
        return commands.tag_seed(
            store, seed_id, request.tag_name, automation_id=request.automation_id
        )

    @app.get("/seeds/{seed_id}/timeline", response_model=list[DisplayGroup])
    async def get_seed_timeline(
        seed_id: str,
        threshold_ms: int | None = Query(None, ge=0, description="Grouping window in ms"),
    ) -> list[DisplayGroup]:
        """Get the grouped, newest-first history of a seed."""
        validate_subject_id(seed_id)
        return commands.get_seed_timeline(store, seed_id, threshold_ms)

    # ---------------------------------------------------------------------
    # Sprouts
    # ---------------------------------------------------------------------

    @app.get("/seeds/{seed_id}/sprouts", response_model=list[Sprout])
    async def list_seed_sprouts(
        seed_id: str,
        sprout_type: SproutType | None = Query(None, description="Filter by sprout type"),
    ) -> list[Sprout]:
        validate_subject_id(seed_id)
        if not store.subject_exists(LedgerKind.SEED, seed_id):
            raise HTTPException(status_code=404, detail="Seed not found")
        return store.get_sprouts(seed_id, sprout_type)

    @app.post("/seeds/{seed_id}/sprouts", response_model=SproutDetail, status_code=201)
    async def create_sprout(seed_id: str, request: SproutCreateRequest) -> SproutDetail:
        validate_subject_id(seed_id)
        sprout, state = commands.create_sprout(
            store,
            seed_id,
            request.sprout_type,
            request.sprout_data,
            automation_id=request.automation_id,
            created_at=request.created_at,
        )
        return _sprout_detail(sprout, state)

    @app.get("/sprouts/{sprout_id}", response_model=SproutDetail)
    async def get_sprout(sprout_id: str) -> SproutDetail:
        validate_subject_id(sprout_id)
        sprout = store.get_sprout(sprout_id)
        if sprout is None:
            raise HTTPException(status_code=404, detail="Sprout not found")
        return _sprout_detail(sprout, commands.get_sprout_state(store, sprout_id))

    @app.get("/sprouts/{sprout_id}/state", response_model=dict[str, Any])
    async def get_sprout_state(
        sprout_id: str,
        at: datetime | None = Query(None, description="Replay only transactions up to this time"),
    ) -> dict[str, Any]:
        validate_subject_id(sprout_id)
        return commands.get_sprout_state(store, sprout_id, at).model_dump(mode="json")

    @app.get("/sprouts/{sprout_id}/transactions", response_model=list[Transaction])
    async def get_sprout_transactions(sprout_id: str) -> list[Transaction]:
        validate_subject_id(sprout_id)
        sprout = store.get_sprout(sprout_id)
        if sprout is None:
            raise HTTPException(status_code=404, detail="Sprout not found")
        return store.get_transactions(sprout.sprout_type.ledger, sprout_id)

    @app.post("/sprouts/{sprout_id}/transactions", response_model=dict[str, Any])
    async def append_sprout_transaction(
        sprout_id: str, request: TransactionRequest
    ) -> dict[str, Any]:
        """Append to a sprout's ledger; rejected if the sprout state forbids it."""
        validate_subject_id(sprout_id)
        state = commands.append_sprout_transaction(
            store,
            sprout_id,
            request.transaction_type,
            request.transaction_data,
            automation_id=request.automation_id,
            created_at=request.created_at,
        )
        return state.model_dump(mode="json")

    @app.get("/followups/due", response_model=list[SproutDetail])
    async def list_due_followups(
        now: datetime | None = Query(None, description="Defaults to the current time"),
    ) -> list[SproutDetail]:
        return [
            _sprout_detail(sprout, state)
            for sprout, state in commands.due_followups(store, now)
        ]

    # ---------------------------------------------------------------------
    # Tags
    # ---------------------------------------------------------------------

    @app.post("/tags", response_model=TagState, status_code=201)
    async def create_tag(request: TagCreateRequest) -> TagState:
        return commands.create_tag(
            store,
            request.name,
            color=request.color,
            automation_id=request.automation_id,
            created_at=request.created_at,
        )

    @app.get("/tags", response_model=list[TagState])
    async def list_tags() -> list[TagState]:
        return commands.list_tag_states(store)

    @app.get("/tags/{tag_id}/state", response_model=TagState)
    async def get_tag_state(
        tag_id: str,
        at: datetime | None = Query(None, description="Replay only transactions up to this time"),
    ) -> TagState:
        validate_subject_id(tag_id)
        return commands.get_tag_state(store, tag_id, at)

    @app.get("/tags/{tag_id}/transactions", response_model=list[Transaction])
    async def get_tag_transactions(tag_id: str) -> list[Transaction]:
        validate_subject_id(tag_id)
        if not store.subject_exists(LedgerKind.TAG, tag_id):
            raise HTTPException(status_code=404, detail="Tag not found")
        return store.get_transactions(LedgerKind.TAG, tag_id)

    @app.post("/tags/{tag_id}/transactions", response_model=TagState)
    async def append_tag_transaction(tag_id: str, request: TransactionRequest) -> TagState:
        validate_subject_id(tag_id)
        return commands.append_tag_transaction(
            store,
            tag_id,
            request.transaction_type,
            request.transaction_data,
            automation_id=request.automation_id,
            created_at=request.created_at,
        )

    # ---------------------------------------------------------------------
    # Transactions
    # ---------------------------------------------------------------------

    @app.get("/transactions/{transaction_id}", response_model=TransactionRecord)
    async def get_transaction(transaction_id: str) -> TransactionRecord:
        """Get a single transaction by ID, with the ledger it belongs to."""
        validate_subject_id(transaction_id)
        found = store.get_transaction(transaction_id)
        if not found:
            raise HTTPException(status_code=404, detail="Transaction not found")
        ledger, transaction = found
        return TransactionRecord(ledger=ledger, transaction=transaction)

    return app


# Default app instance
app = create_app()
