"""
Domain package for the Question Rotation Engine.

Exports the record model, the response views and the error taxonomy. Keep
this package focused on data definitions and validation concerns.
"""

from question_rotation.domain.errors import (
    CoordinationMiss,
    FlagConflict,
    GenerationError,
    GenerationInvalid,
    GenerationUnavailable,
    RotationError,
    StaleState,
    StoreUnavailable,
)
from question_rotation.domain.models import (
    CurrentView,
    HistoryEntry,
    Item,
    ItemFlag,
    ItemView,
    PreparationResult,
    RotationResult,
    Snapshot,
)

__all__ = [
    "Item",
    "ItemFlag",
    "ItemView",
    "CurrentView",
    "Snapshot",
    "RotationResult",
    "HistoryEntry",
    "PreparationResult",
    "RotationError",
    "GenerationError",
    "GenerationUnavailable",
    "GenerationInvalid",
    "StoreUnavailable",
    "FlagConflict",
    "CoordinationMiss",
    "StaleState",
]
