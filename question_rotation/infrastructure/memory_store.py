"""
In-process `ItemStore` with the same semantics as the PostgreSQL one.

Used for local runs (`STORE_BACKEND=memory`) and to simulate several
stateless instances sharing one table. Each call yields to the event loop
(optionally sleeping `latency` seconds) before touching state, so concurrent
callers interleave between calls the way separate processes would; the
mutation itself is atomic, like a single SQL statement.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from question_rotation.domain.errors import FlagConflict
from question_rotation.domain.models import Item, ItemFlag


class MemoryItemStore:
    name: str = "memory"

    def __init__(self, items: Iterable[Item] = (), latency: float = 0.0) -> None:
        self._items: dict[UUID, Item] = {}
        self.latency = latency
        for item in items:
            self._items[item.id] = item

    async def _tick(self) -> None:
        await asyncio.sleep(self.latency)

    def items(self) -> list[Item]:
        """Snapshot of every row, in insertion order."""
        return list(self._items.values())

    def _holder(self, flag: ItemFlag, exclude: Optional[UUID] = None) -> Optional[Item]:
        for item in self._items.values():
            if item.holds(flag) and item.id != exclude:
                return item
        return None

    def _check_flags(self, item: Item) -> None:
        for flag in ItemFlag:
            if item.holds(flag) and self._holder(flag, exclude=item.id) is not None:
                raise FlagConflict(flag.value)

    async def find_by_flag(self, flag: ItemFlag) -> Optional[Item]:
        await self._tick()
        return self._holder(flag)

    async def find_records_for_window(self, window_start: datetime) -> list[Item]:
        await self._tick()
        return sorted(
            (item for item in self._items.values() if item.activated_at == window_start),
            key=lambda item: item.created_at,
        )

    async def insert(self, item: Item) -> Item:
        await self._tick()
        if item.id in self._items:
            return self._items[item.id]
        self._check_flags(item)
        self._items[item.id] = item
        return item

    async def clear_flag(self, flag: ItemFlag, before: Optional[datetime] = None) -> int:
        await self._tick()
        holders = [
            item
            for item in self._items.values()
            if item.holds(flag)
            and (before is None or item.activated_at is None or item.activated_at < before)
        ]
        for item in holders:
            self._items[item.id] = item.model_copy(update={flag.value: False})
        return len(holders)

    async def set_flags(
        self,
        item_id: UUID,
        *,
        is_current: Optional[bool] = None,
        is_next: Optional[bool] = None,
        activated_at: Optional[datetime] = None,
    ) -> Optional[Item]:
        await self._tick()
        existing = self._items.get(item_id)
        if existing is None:
            return None
        update: dict[str, object] = {}
        if is_current is not None:
            update["is_current"] = is_current
        if is_next is not None:
            update["is_next"] = is_next
        if existing.activated_at is None and activated_at is not None:
            update["activated_at"] = activated_at
        updated = existing.model_copy(update=update)
        self._check_flags(updated)
        self._items[item_id] = updated
        return updated

    async def list_used_texts(self) -> list[str]:
        await self._tick()
        used = [item for item in self._items.values() if item.activated_at is not None]
        used.sort(key=lambda item: (item.activated_at, item.created_at))
        return [item.text for item in used]

    async def list_history(self, limit: int = 100) -> list[Item]:
        await self._tick()
        past = [
            item
            for item in self._items.values()
            if item.activated_at is not None and not item.is_current
        ]
        past.sort(key=lambda item: (item.activated_at, item.created_at), reverse=True)
        seen: set[datetime] = set()
        unique = []
        for item in past:
            if item.activated_at not in seen:
                seen.add(item.activated_at)
                unique.append(item)
        return unique[:limit]

    async def close(self) -> None:
        return None


__all__ = ["MemoryItemStore"]
