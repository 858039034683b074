"""Storage - the persistence port and its SQLite adapter

Engines depend on StoragePort only. SqliteStore is the production adapter
and is also what the tests run against (on a temporary file).

Components:
    base.py: StoragePort, filter conditions, table names
    sqlite_store.py: SqliteStore
"""

from pathlib import Path

from momentum.config_models import get_engine_config

from .base import (
    TABLES,
    Condition,
    StoragePort,
    between,
    gt,
    gte,
    in_,
    is_not_null,
    lt,
    lte,
    neq,
)
from .sqlite_store import SqliteStore, generate_id


def open_default_store(db_path: str | Path | None = None) -> SqliteStore:
    """SqliteStore at the configured path (args/engine.yaml, MOMENTUM_DB_PATH)."""
    if db_path is None:
        db_path = get_engine_config().storage.resolved_path()
    return SqliteStore(db_path)


__all__ = [
    "TABLES",
    "Condition",
    "SqliteStore",
    "StoragePort",
    "between",
    "generate_id",
    "gt",
    "gte",
    "in_",
    "is_not_null",
    "lt",
    "lte",
    "neq",
    "open_default_store",
]
