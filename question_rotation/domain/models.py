"""
Domain models for the Question Rotation Engine.

`Item` mirrors a row of the `questions` table (see
`question_rotation.infrastructure.store.SCHEMA_SQL`). The view models are the
shapes the coordinator hands back to its callers.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

MIN_TEXT_LENGTH = 10
MAX_TEXT_LENGTH = 200


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ItemFlag(str, Enum):
    """Boolean columns that at most one row may hold at a time."""

    CURRENT = "is_current"
    NEXT = "is_next"


class Item(BaseModel):
    """
    Representation of a single row in the `questions` table.
    """

    id: UUID = Field(default_factory=uuid4, description="Opaque identifier, assigned at creation.")
    text: str = Field(..., description="Displayable question text.")
    created_at: datetime = Field(default_factory=utcnow, description="Row creation instant.")
    activated_at: Optional[datetime] = Field(
        None, description="Start of the window the item was or will be shown for."
    )
    is_current: bool = Field(False, description="Whether the item is the one being shown.")
    is_next: bool = Field(False, description="Whether the item is staged for the next window.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "arbitrary_types_allowed": False,
    }

    @field_validator("text")
    @classmethod
    def _text_length(cls, value: str) -> str:
        value = value.strip()
        if not MIN_TEXT_LENGTH <= len(value) <= MAX_TEXT_LENGTH:
            raise ValueError(
                f"text must be {MIN_TEXT_LENGTH}-{MAX_TEXT_LENGTH} characters, got {len(value)}"
            )
        return value

    @model_validator(mode="after")
    def _single_role(self) -> "Item":
        if self.is_current and self.is_next:
            raise ValueError("an item cannot be both current and next")
        return self

    def holds(self, flag: ItemFlag) -> bool:
        return bool(getattr(self, flag.value))

    def promoted(self, window_start: datetime) -> "Item":
        """Copy of this item as the current one for `window_start`."""
        return self.model_copy(
            update={
                "is_current": True,
                "is_next": False,
                "activated_at": self.activated_at or window_start,
            }
        )


class ItemView(BaseModel):
    text: str
    window_start: Optional[datetime] = None


class CurrentView(ItemView):
    """What `get_current()` returns; `degraded` marks a fallback answer."""

    degraded: bool = False
    error: Optional[str] = None


class Snapshot(BaseModel):
    current: CurrentView
    next: Optional[ItemView] = None


class RotationResult(BaseModel):
    text: str
    window_start: Optional[datetime] = None
    rotated: bool = False
    degraded: bool = False
    error: Optional[str] = None


class HistoryEntry(ItemView):
    pass


class PreparationResult(BaseModel):
    status: Literal["not_needed", "already_exists", "generated", "error"]
    next_window_start: datetime
    seconds_until_boundary: float
    text: Optional[str] = None
    error: Optional[str] = None


__all__ = [
    "MIN_TEXT_LENGTH",
    "MAX_TEXT_LENGTH",
    "ItemFlag",
    "Item",
    "ItemView",
    "CurrentView",
    "Snapshot",
    "RotationResult",
    "HistoryEntry",
    "PreparationResult",
]
