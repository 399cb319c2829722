"""CLI tools for Memoriae.

Commands:
- init: Initialize a new database
- import: Import ledgers from JSONL
- export: Export ledgers to JSONL
- seeds: List all seeds
- state: Print derived state for a seed, tag, or sprout
- transactions: List the transactions of a seed, tag, or sprout
- timeline: Print the grouped history of a seed
- due: List follow-ups that are due
- serve: Start the API server
- doctor: Run health checks on the database
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

from memoriae import commands, config
from memoriae.errors import MissingCreationTransactionError, SubjectNotFoundError
from memoriae.models.transactions import CREATION_TYPES, LedgerKind, SeedTransactionType
from memoriae.models.derived import SeedState
from memoriae.reducers.base import find_creation, prepare_ledger
from memoriae.store.sqlite_store import LedgerStore
from memoriae.store.jsonl_io import import_ledger_jsonl, export_ledger_jsonl

KINDS = ("seed", "tag", "sprout")
PREVIEW_CHARS = 60


def _preview(text: str) -> str:
    first_line = text.splitlines()[0] if text else ""
    if len(first_line) > PREVIEW_CHARS:
        return first_line[:PREVIEW_CHARS] + "..."
    return first_line


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize a new database."""
    db_path = Path(args.db)

    if db_path.exists() and not args.force:
        print(f"Database already exists: {db_path}")
        print("Use --force to overwrite.")
        return 1

    if db_path.exists():
        db_path.unlink()

    store = LedgerStore(db_path)
    store.close()
    print(f"Initialized database: {db_path}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import ledgers from JSONL."""
    input_path = Path(args.input)

    if not input_path.exists():
        print(f"Input file not found: {input_path}")
        return 1

    store = LedgerStore(args.db)
    try:
        count = import_ledger_jsonl(
            store, input_path, skip_existing=getattr(args, "skip_existing", False)
        )
        print(f"Imported {count} records from {input_path}")
        return 0
    except ValueError as e:
        print(f"Import error: {e}")
        return 1
    finally:
        store.close()


def cmd_export(args: argparse.Namespace) -> int:
    """Export ledgers to JSONL, either everything or a single seed."""
    output_path = Path(args.output)
    seed_id = getattr(args, "seed", None)

    store = LedgerStore(args.db)
    try:
        if seed_id and not store.subject_exists(LedgerKind.SEED, seed_id):
            print(f"Seed not found: {seed_id}")
            return 1

        count = export_ledger_jsonl(store, output_path, seed_id=seed_id)
        print(f"Exported {count} records to {output_path}")
        return 0
    finally:
        store.close()


def cmd_seeds(args: argparse.Namespace) -> int:
    """List all seeds."""
    store = LedgerStore(args.db)
    try:
        seeds = commands.list_seed_states(store)

        if not seeds:
            print("No seeds found.")
            return 0

        for seed in seeds:
            print(f"{seed.subject_id}  {_preview(seed.content)}")
            if seed.tags:
                print(f"  Tags: {', '.join(tag.name for tag in seed.tags)}")
            print(f"  Last modified: {seed.last_modified}")
            print()

        return 0
    finally:
        store.close()


def _print_seed_state(state: SeedState) -> None:
    print(f"Seed: {state.subject_id}")
    print(f"Created: {state.created_at}")
    print(f"Last modified: {state.timestamp}")
    print(f"Transactions: {state.transaction_count}")
    print()
    print(state.content)
    print()
    print(f"Tags: {', '.join(tag.name for tag in state.tags) or '(none)'}")
    if state.category:
        print(f"Category: {state.category.name} ({state.category.path})")
    else:
        print("Category: (none)")


def cmd_state(args: argparse.Namespace) -> int:
    """Print derived state for a seed, tag, or sprout."""
    kind = getattr(args, "kind", "seed")
    at = getattr(args, "at", None)

    store = LedgerStore(args.db)
    try:
        if kind == "tag":
            state = commands.get_tag_state(store, args.subject_id, at)
        elif kind == "sprout":
            state = commands.get_sprout_state(store, args.subject_id, at)
        else:
            state = commands.get_seed_state(store, args.subject_id, at)

        if args.json or not isinstance(state, SeedState):
            print(state.model_dump_json(indent=2))
        else:
            _print_seed_state(state)
        return 0

    except SubjectNotFoundError as e:
        print(f"Not found: {e.ledger} {e.subject_id}")
        return 1
    except MissingCreationTransactionError as e:
        print(f"Cannot reduce: {e}")
        return 1
    finally:
        store.close()


def _resolve_ledger(store: LedgerStore, kind: str, subject_id: str) -> LedgerKind | None:
    if kind == "sprout":
        sprout = store.get_sprout(subject_id)
        return sprout.sprout_type.ledger if sprout else None
    ledger = LedgerKind(kind)
    return ledger if store.subject_exists(ledger, subject_id) else None


def cmd_transactions(args: argparse.Namespace) -> int:
    """List the transactions of a seed, tag, or sprout."""
    kind = getattr(args, "kind", "seed")

    store = LedgerStore(args.db)
    try:
        ledger = _resolve_ledger(store, kind, args.subject_id)
        if ledger is None:
            print(f"Not found: {kind} {args.subject_id}")
            return 1

        transactions = store.get_transactions(
            ledger, args.subject_id, getattr(args, "type", None)
        )

        if args.json:
            print(json.dumps([t.model_dump(mode="json") for t in transactions], indent=2))
        else:
            for transaction in transactions:
                print(f"{transaction.created_at}  {transaction.transaction_type}")
                print(f"       id: {transaction.id}")
                if transaction.transaction_data:
                    print(f"       data: {json.dumps(transaction.transaction_data)}")
                if transaction.automation_id:
                    print(f"       automation: {transaction.automation_id}")
                print()

        return 0
    finally:
        store.close()


def cmd_timeline(args: argparse.Namespace) -> int:
    """Print the grouped history of a seed, newest first."""
    store = LedgerStore(args.db)
    try:
        groups = commands.get_seed_timeline(
            store, args.seed_id, getattr(args, "threshold_ms", None)
        )

        if args.json:
            print(json.dumps([g.model_dump(mode="json") for g in groups], indent=2))
        else:
            for group in groups:
                print(f"{group.created_at}  {group.title}")
                for line in group.content.splitlines():
                    print(f"    {line}")
                print()

        return 0
    except SubjectNotFoundError as e:
        print(f"Not found: {e.ledger} {e.subject_id}")
        return 1
    finally:
        store.close()


def cmd_due(args: argparse.Namespace) -> int:
    """List follow-ups that are due and not dismissed."""
    store = LedgerStore(args.db)
    try:
        due = commands.due_followups(store, getattr(args, "now", None))

        if not due:
            print("No follow-ups due.")
            return 0

        for sprout, state in due:
            print(f"{sprout.id}  due {state.due_time}  (seed {sprout.seed_id})")
            print(f"  {state.message}")
        return 0
    finally:
        store.close()


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn
        from memoriae.api.main import create_app
    except ImportError:
        print("uvicorn not installed. Run: pip install uvicorn")
        return 1

    app = create_app(args.db)
    print(f"Starting Memoriae API server on http://{args.host}:{args.port}")
    print(f"Database: {args.db}")

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def _check_ledger(store: LedgerStore, ledger: LedgerKind, subject_id: str) -> list[str]:
    """Replay one ledger and describe anything wrong with it."""
    issues = []
    transactions = store.get_transactions(ledger, subject_id)
    creation_type = CREATION_TYPES[ledger]
    label = f"[{ledger.value} {subject_id}]"

    creations = [t for t in transactions if t.transaction_type == creation_type]
    if len(creations) > 1:
        issues.append(f"{label} {len(creations)} creation transactions")

    try:
        find_creation(ledger, prepare_ledger(transactions, None))
    except MissingCreationTransactionError:
        issues.append(f"{label} No valid creation transaction")

    return issues


def cmd_doctor(args: argparse.Namespace) -> int:
    """Run health checks on the database.

    Checks:
    1. Every ledger has exactly one valid creation transaction
    2. Every transaction payload validates (warnings only; reducers skip them)
    3. Every add_sprout points at an existing sprout
    4. Every sprout row has a ledger
    """
    db_path = Path(args.db)

    if not db_path.exists():
        print(f"ERROR: Database not found: {db_path}")
        return 1

    print(f"Checking database: {db_path}")
    print("=" * 50)

    issues = []
    warnings = []

    store = LedgerStore(db_path)
    try:
        total = 0
        for ledger in LedgerKind:
            subjects = store.list_subjects(ledger)
            if subjects:
                print(f"{ledger.value} ledgers: {len(subjects)}")

            for subject_id in subjects:
                issues.extend(_check_ledger(store, ledger, subject_id))

                for transaction in store.get_transactions(ledger, subject_id):
                    total += 1
                    try:
                        if transaction.get_payload_model(ledger) is None:
                            warnings.append(
                                f"[{ledger.value} {subject_id}] Unknown type "
                                f"{transaction.transaction_type} in {transaction.id}"
                            )
                    except ValueError as e:
                        warnings.append(
                            f"[{ledger.value} {subject_id}] Invalid payload in "
                            f"{transaction.id}: {e}"
                        )

                    if (
                        ledger == LedgerKind.SEED
                        and transaction.transaction_type == SeedTransactionType.ADD_SPROUT.value
                    ):
                        sprout_id = transaction.transaction_data.get("sprout_id")
                        if not isinstance(sprout_id, str) or store.get_sprout(sprout_id) is None:
                            issues.append(
                                f"[seed {subject_id}] Dangling add_sprout: "
                                f"{transaction.id} -> {sprout_id}"
                            )

        for sprout in store.list_sprouts():
            if not store.subject_exists(sprout.sprout_type.ledger, sprout.id):
                issues.append(f"[sprout {sprout.id}] No {sprout.sprout_type.value} ledger")

        print(f"Total transactions: {total}")
        print("=" * 50)

        if warnings:
            print(f"\nWarnings ({len(warnings)}):")
            for w in warnings:
                print(f"  [WARN] {w}")

        if issues:
            print(f"\nIssues ({len(issues)}):")
            for issue in issues:
                print(f"  [FAIL] {issue}")
            print("\nDiagnosis: UNHEALTHY")
            return 1
        else:
            print("\n[OK] All checks passed")
            print("Diagnosis: HEALTHY")
            return 0

    finally:
        store.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Memoriae CLI - event-sourced seeds, tags and sprouts",
        prog="memoriae",
    )
    parser.add_argument(
        "--db",
        default=config.default_db_path(),
        help="Database path (default: $MEMORIAE_DB or memoriae.db)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: $MEMORIAE_LOG_LEVEL or WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_parser = subparsers.add_parser("init", help="Initialize database")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing")

    # import
    import_parser = subparsers.add_parser("import", help="Import from JSONL")
    import_parser.add_argument("input", help="Input JSONL file")
    import_parser.add_argument(
        "--skip-existing", action="store_true", help="Ignore records already stored"
    )

    # export
    export_parser = subparsers.add_parser("export", help="Export to JSONL")
    export_parser.add_argument("--output", "-o", required=True, help="Output file")
    export_parser.add_argument("--seed", help="Export only this seed")

    # seeds
    subparsers.add_parser("seeds", help="List all seeds")

    # state
    state_parser = subparsers.add_parser("state", help="Print derived state")
    state_parser.add_argument("subject_id", help="Seed, tag, or sprout id")
    state_parser.add_argument("--kind", choices=KINDS, default="seed", help="Entity kind")
    state_parser.add_argument(
        "--at", type=datetime.fromisoformat, help="ISO timestamp to replay up to"
    )
    state_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # transactions
    tx_parser = subparsers.add_parser("transactions", help="List transactions")
    tx_parser.add_argument("subject_id", help="Seed, tag, or sprout id")
    tx_parser.add_argument("--kind", choices=KINDS, default="seed", help="Entity kind")
    tx_parser.add_argument("--type", help="Filter by transaction type")
    tx_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # timeline
    timeline_parser = subparsers.add_parser("timeline", help="Print seed history")
    timeline_parser.add_argument("seed_id", help="Seed to show")
    timeline_parser.add_argument("--threshold-ms", type=int, help="Grouping window in ms")
    timeline_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # due
    due_parser = subparsers.add_parser("due", help="List due follow-ups")
    due_parser.add_argument(
        "--now", type=datetime.fromisoformat, help="ISO timestamp to compare against"
    )

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    # doctor
    subparsers.add_parser("doctor", help="Run health checks on database")

    args = parser.parse_args(argv)
    config.configure_logging(args.log_level)

    if not args.command:
        parser.print_help()
        return 0

    handlers = {
        "init": cmd_init,
        "import": cmd_import,
        "export": cmd_export,
        "seeds": cmd_seeds,
        "state": cmd_state,
        "transactions": cmd_transactions,
        "timeline": cmd_timeline,
        "due": cmd_due,
        "serve": cmd_serve,
        "doctor": cmd_doctor,
    }

    return handlers[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
