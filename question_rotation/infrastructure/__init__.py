"""
Infrastructure package for the Question Rotation Engine.

Centralizes record-store concerns (connection factories, the PostgreSQL
adapter and the in-process adapter). Keep this layer focused on I/O and
resource management, decoupled from coordinator logic.
"""

from question_rotation.infrastructure.db_factory import (
    build_dsn,
    get_sync_connection,
    open_async_pool,
)
from question_rotation.infrastructure.memory_store import MemoryItemStore
from question_rotation.infrastructure.store import SCHEMA_SQL, ItemStore, PostgresItemStore

__all__ = [
    "build_dsn",
    "get_sync_connection",
    "open_async_pool",
    "ItemStore",
    "PostgresItemStore",
    "MemoryItemStore",
    "SCHEMA_SQL",
]
