"""Detects a persisted current item whose window has already ended."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from question_rotation.clock import WindowClock
from question_rotation.domain.errors import StaleState
from question_rotation.domain.models import Item


class StalenessSafeguard:
    """
    Compares the current row's window against the clock.

    A row stamped for a later window than `now` (another instance's clock runs
    ahead) is treated as fresh: rotating backwards would undo a rotation.
    """

    def __init__(self, clock: WindowClock) -> None:
        self.clock = clock

    def windows_behind(self, item: Item, now: datetime) -> Optional[int]:
        if item.activated_at is None:
            return None
        return self.clock.windows_between(item.activated_at, now)

    def is_fresh(self, item: Item, now: datetime) -> bool:
        behind = self.windows_behind(item, now)
        return behind is not None and behind <= 0

    def assert_fresh(self, item: Item, now: datetime) -> None:
        """Raise `StaleState` unless `item` belongs to the present (or a later) window."""
        if not self.is_fresh(item, now):
            raise StaleState(self.windows_behind(item, now), item.activated_at)


__all__ = ["StalenessSafeguard"]
