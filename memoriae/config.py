"""Environment-driven settings for Memoriae.

MEMORIAE_DB                          SQLite database path (default: memoriae.db)
MEMORIAE_MAX_PAYLOAD_SIZE            API request size limit in bytes (default: 1MB)
MEMORIAE_TIMELINE_GROUP_THRESHOLD_MS timeline grouping window (default: 60000)
MEMORIAE_LOG_LEVEL                   logging level name (default: WARNING)
"""

import logging
import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return int(value)


def default_db_path() -> str:
    return os.environ.get("MEMORIAE_DB", "memoriae.db")


def max_payload_size() -> int:
    return _env_int("MEMORIAE_MAX_PAYLOAD_SIZE", 1024 * 1024)


def timeline_group_threshold_ms() -> int:
    return _env_int("MEMORIAE_TIMELINE_GROUP_THRESHOLD_MS", 60_000)


def log_level() -> str:
    return os.environ.get("MEMORIAE_LOG_LEVEL", "WARNING").upper()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for CLI and server entry points."""
    logging.basicConfig(
        level=(level or log_level()).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
