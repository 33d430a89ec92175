"""
Database connection factory utilities for the Question Rotation Engine.

Provides the synchronous connection used by schema tooling and the async
pool used by the record store. Both retry transient connection failures with
tenacity; once a pool is open, individual queries are never retried here (the
coordinator falls back instead).
"""

from __future__ import annotations

from typing import Optional

import psycopg
from psycopg import Connection
from psycopg_pool import AsyncConnectionPool, PoolTimeout
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from question_rotation.config import Settings, get_settings
from question_rotation.utils.logging import get_logger

log = get_logger(__name__)


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    return (settings or get_settings()).dsn


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or build_dsn())


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, PoolTimeout, OSError)),
    reraise=True,
)
async def open_async_pool(
    dsn: Optional[str] = None,
    min_size: int = 1,
    max_size: int = 5,
    timeout: float = 3.0,
) -> AsyncConnectionPool:
    """
    Open an autocommit async connection pool, waiting until it is usable.

    Parameters
    ----------
    dsn : str | None
        Connection string; defaults to the one built from settings.
    min_size, max_size : int
        Pool bounds.
    timeout : float
        Seconds to wait for a connection, both on open and on checkout.
    """
    pool = AsyncConnectionPool(
        conninfo=dsn or build_dsn(),
        min_size=min_size,
        max_size=max_size,
        timeout=timeout,
        kwargs={"autocommit": True},
        open=False,
    )
    try:
        await pool.open(wait=True, timeout=timeout)
    except Exception:
        await pool.close()
        raise
    log.debug("[STORE] pool opened", extra={"min_size": min_size, "max_size": max_size})
    return pool


__all__ = ["build_dsn", "get_sync_connection", "open_async_pool"]
