"""
Error taxonomy for the rotation engine.

Generation errors are always recovered locally by the fallback pool. Store
errors are surfaced on reads (wrapped into a degraded view by the
coordinator) and logged then swallowed on writes. `CoordinationMiss` and
`StaleState` are trigger conditions the coordinator handles itself.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class RotationError(Exception):
    """Base class for every error raised by this package."""


class GenerationError(RotationError):
    """The candidate generator could not produce a usable text."""


class GenerationUnavailable(GenerationError):
    """No completion credential is configured, or the call failed or timed out."""


class GenerationInvalid(GenerationError):
    """The completion returned text that fails validation."""


class StoreUnavailable(RotationError):
    """A read or write against the record store failed."""


class FlagConflict(StoreUnavailable):
    """A write would have made a second row hold `is_current` or `is_next`."""

    def __init__(self, flag: str) -> None:
        super().__init__(f"another row already holds {flag}")
        self.flag = flag


class CoordinationMiss(RotationError):
    """No staged next row existed when a rotation needed one."""

    def __init__(self, window_start: datetime) -> None:
        super().__init__(f"no staged item for window {window_start.isoformat()}")
        self.window_start = window_start


class StaleState(RotationError):
    """The persisted current row belongs to a window that has already ended."""

    def __init__(self, windows_behind: Optional[int], activated_at: Optional[datetime]) -> None:
        behind = "unknown" if windows_behind is None else str(windows_behind)
        super().__init__(f"current item is {behind} window(s) behind")
        self.windows_behind = windows_behind
        self.activated_at = activated_at


__all__ = [
    "RotationError",
    "GenerationError",
    "GenerationUnavailable",
    "GenerationInvalid",
    "StoreUnavailable",
    "FlagConflict",
    "CoordinationMiss",
    "StaleState",
]
