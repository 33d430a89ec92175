"""
History store adapter: the record-table interface and its PostgreSQL
implementation.

The store is the only coordination point between instances. It is trusted
for per-row read-after-write consistency but not for multi-row
transactions, so every write is a single self-describing statement that can
be re-run safely:

- `clear_flag` is a bulk "flag = false where flag" update, optionally
  limited to rows stamped before a window so a row already promoted for
  that window is never unflagged;
- `set_flags` only overwrites the columns it is given and never replaces an
  already stamped `activated_at`;
- partial unique indexes make a second holder of `is_current` / `is_next`
  impossible, surfacing as `FlagConflict`.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Literal, Optional, Protocol, runtime_checkable
from uuid import UUID

import psycopg
from psycopg import sql
from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from question_rotation.config import Settings, get_settings
from question_rotation.domain.errors import FlagConflict, StoreUnavailable
from question_rotation.domain.models import Item, ItemFlag
from question_rotation.infrastructure.db_factory import build_dsn, open_async_pool
from question_rotation.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS public.questions (
    id UUID PRIMARY KEY,
    text TEXT NOT NULL CHECK (char_length(text) BETWEEN 10 AND 200),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    activated_at TIMESTAMPTZ,
    is_current BOOLEAN NOT NULL DEFAULT FALSE,
    is_next BOOLEAN NOT NULL DEFAULT FALSE,
    CHECK (NOT (is_current AND is_next))
);

CREATE UNIQUE INDEX IF NOT EXISTS questions_one_current
    ON public.questions (is_current) WHERE is_current;
CREATE UNIQUE INDEX IF NOT EXISTS questions_one_next
    ON public.questions (is_next) WHERE is_next;
CREATE INDEX IF NOT EXISTS idx_questions_activated_at ON public.questions (activated_at);
CREATE INDEX IF NOT EXISTS idx_questions_created_at ON public.questions (created_at);
"""

_COLUMNS = "id, text, created_at, activated_at, is_current, is_next"

_CONSTRAINT_FLAGS = {
    "questions_one_current": ItemFlag.CURRENT,
    "questions_one_next": ItemFlag.NEXT,
}


@runtime_checkable
class ItemStore(Protocol):
    """
    Record-table operations the coordinator relies on.

    All methods raise `StoreUnavailable` on failure; inserts and flag updates
    raise `FlagConflict` when they would create a second flag holder.
    """

    name: str

    async def find_by_flag(self, flag: ItemFlag) -> Optional[Item]: ...

    async def find_records_for_window(self, window_start: datetime) -> list[Item]: ...

    async def insert(self, item: Item) -> Item: ...

    async def clear_flag(self, flag: ItemFlag, before: Optional[datetime] = None) -> int: ...

    async def set_flags(
        self,
        item_id: UUID,
        *,
        is_current: Optional[bool] = None,
        is_next: Optional[bool] = None,
        activated_at: Optional[datetime] = None,
    ) -> Optional[Item]: ...

    async def list_used_texts(self) -> list[str]: ...

    async def list_history(self, limit: int = 100) -> list[Item]: ...

    async def close(self) -> None: ...


class PostgresItemStore:
    """
    `ItemStore` over the `public.questions` table using a psycopg async pool.

    Every call is bounded by `timeout_seconds`; driver errors, pool timeouts
    and call timeouts surface as `StoreUnavailable`.
    """

    name: str = "postgres"

    def __init__(self, pool: AsyncConnectionPool, timeout_seconds: float = 3.0) -> None:
        self._pool = pool
        self.timeout_seconds = timeout_seconds

    @classmethod
    async def connect(
        cls, settings: Optional[Settings] = None, dsn_override: Optional[str] = None
    ) -> "PostgresItemStore":
        settings = settings or get_settings()
        try:
            pool = await open_async_pool(
                dsn_override or build_dsn(settings),
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
                timeout=settings.store_timeout_seconds,
            )
        except (psycopg.Error, PoolTimeout, OSError) as exc:
            raise StoreUnavailable(f"could not open pool: {exc}") from exc
        return cls(pool, timeout_seconds=settings.store_timeout_seconds)

    async def _execute(
        self,
        query: Any,
        params: Any = None,
        fetch: Literal["one", "all", "rowcount"] = "all",
    ) -> Any:
        async def _run() -> Any:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    if fetch == "one":
                        return await cur.fetchone()
                    if fetch == "all":
                        return await cur.fetchall()
                    return cur.rowcount

        try:
            return await asyncio.wait_for(_run(), timeout=self.timeout_seconds)
        except UniqueViolation as exc:
            constraint = getattr(exc.diag, "constraint_name", None) or ""
            flag = _CONSTRAINT_FLAGS.get(constraint, ItemFlag.CURRENT)
            raise FlagConflict(flag.value) from exc
        except (psycopg.Error, PoolTimeout, OSError, asyncio.TimeoutError) as exc:
            raise StoreUnavailable(f"{type(exc).__name__}: {exc}") from exc

    async def ensure_schema(self) -> None:
        await self._execute(SCHEMA_SQL, fetch="rowcount")

    async def find_by_flag(self, flag: ItemFlag) -> Optional[Item]:
        query = sql.SQL(
            "SELECT " + _COLUMNS + " FROM public.questions WHERE {flag} LIMIT 1"
        ).format(flag=sql.Identifier(flag.value))
        row = await self._execute(query, fetch="one")
        return Item.model_validate(row) if row else None

    async def find_records_for_window(self, window_start: datetime) -> list[Item]:
        rows = await self._execute(
            "SELECT " + _COLUMNS + " FROM public.questions "
            "WHERE activated_at = %s ORDER BY created_at",
            (window_start,),
        )
        return [Item.model_validate(row) for row in rows]

    async def insert(self, item: Item) -> Item:
        row = await self._execute(
            "INSERT INTO public.questions (" + _COLUMNS + ") "
            "VALUES (%(id)s, %(text)s, %(created_at)s, %(activated_at)s, %(is_current)s, %(is_next)s) "
            "ON CONFLICT (id) DO NOTHING "
            "RETURNING " + _COLUMNS,
            item.model_dump(),
            fetch="one",
        )
        # ON CONFLICT (id): a retried insert of the same item is a no-op.
        return Item.model_validate(row) if row else item

    async def clear_flag(self, flag: ItemFlag, before: Optional[datetime] = None) -> int:
        """
        Unset `flag` on every holder.

        With `before`, only holders that are unstamped or stamped for an
        earlier window are cleared.
        """
        if before is None:
            query = sql.SQL("UPDATE public.questions SET {flag} = FALSE WHERE {flag}").format(
                flag=sql.Identifier(flag.value)
            )
            return await self._execute(query, fetch="rowcount")
        query = sql.SQL(
            "UPDATE public.questions SET {flag} = FALSE "
            "WHERE {flag} AND (activated_at IS NULL OR activated_at < %s)"
        ).format(flag=sql.Identifier(flag.value))
        return await self._execute(query, (before,), fetch="rowcount")

    async def set_flags(
        self,
        item_id: UUID,
        *,
        is_current: Optional[bool] = None,
        is_next: Optional[bool] = None,
        activated_at: Optional[datetime] = None,
    ) -> Optional[Item]:
        row = await self._execute(
            "UPDATE public.questions SET "
            "is_current = COALESCE(%(is_current)s::boolean, is_current), "
            "is_next = COALESCE(%(is_next)s::boolean, is_next), "
            "activated_at = COALESCE(activated_at, %(activated_at)s::timestamptz) "
            "WHERE id = %(id)s "
            "RETURNING " + _COLUMNS,
            {
                "id": item_id,
                "is_current": is_current,
                "is_next": is_next,
                "activated_at": activated_at,
            },
            fetch="one",
        )
        return Item.model_validate(row) if row else None

    async def list_used_texts(self) -> list[str]:
        rows = await self._execute(
            "SELECT text FROM public.questions WHERE activated_at IS NOT NULL "
            "ORDER BY activated_at, created_at"
        )
        return [row["text"] for row in rows]

    async def list_history(self, limit: int = 100) -> list[Item]:
        # One entry per window: the latest row written for it.
        rows = await self._execute(
            "SELECT DISTINCT ON (activated_at) " + _COLUMNS + " FROM public.questions "
            "WHERE activated_at IS NOT NULL AND NOT is_current "
            "ORDER BY activated_at DESC, created_at DESC LIMIT %s",
            (limit,),
        )
        return [Item.model_validate(row) for row in rows]

    async def close(self) -> None:
        await self._pool.close()


__all__ = ["ItemStore", "PostgresItemStore", "SCHEMA_SQL"]
