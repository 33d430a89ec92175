"""
Question Rotation Engine - one shared question per hourly or daily window.

This package keeps a single "current" question visible to every caller,
hands over to a pre-staged "next" question exactly once per window boundary,
and keeps serving something sensible when the text generator or the store
misbehaves:

- Window arithmetic in a configurable reference timezone
- OpenAI-backed candidate generation with a deterministic fallback pool
- A PostgreSQL (or in-process) record store shared by stateless instances
- A coordinator that converges duplicate rotations across instances

Usage:
    from question_rotation import create_coordinator

    coordinator = await create_coordinator()
    view = await coordinator.get_current()
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from question_rotation.clock import Granularity, WindowClock
from question_rotation.config import Settings, get_settings
from question_rotation.coordinator import (
    RotationCoordinator,
    available_backends,
    create_coordinator,
)
from question_rotation.domain.models import (
    CurrentView,
    HistoryEntry,
    Item,
    PreparationResult,
    RotationResult,
    Snapshot,
)
from question_rotation.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Coordination
    "RotationCoordinator",
    "available_backends",
    "create_coordinator",
    # Clock
    "Granularity",
    "WindowClock",
    # Models
    "Item",
    "CurrentView",
    "Snapshot",
    "RotationResult",
    "HistoryEntry",
    "PreparationResult",
    # Logging
    "configure_logging",
    "get_logger",
]
