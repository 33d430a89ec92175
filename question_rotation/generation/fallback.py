"""
Fallback pool: pre-written questions served when generation is unavailable.

Eligibility rules:
- entries absent from the avoid-list are the only eligible ones, if any exist;
- once every entry has been used the whole pool becomes eligible again.

The choice among eligible entries is a pluggable policy. `by_window` hashes
the window boundary so independent instances pick the same entry without
coordinating; `uniform_random` is available where agreement does not matter.
"""

from __future__ import annotations

import hashlib
import random
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from question_rotation.generation.catalog import FALLBACK_QUESTIONS

SelectionPolicy = Callable[[Sequence[str], Optional[datetime]], str]

MIN_POOL_SIZE = 10


def _window_digest(window_start: datetime) -> int:
    key = window_start.astimezone(timezone.utc).isoformat()
    return int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest()[:8], "big")


def by_window(eligible: Sequence[str], window_start: Optional[datetime]) -> str:
    """Deterministic choice keyed on the window boundary."""
    if window_start is None:
        return eligible[0]
    return eligible[_window_digest(window_start) % len(eligible)]


def uniform_random(rng: Optional[random.Random] = None) -> SelectionPolicy:
    chooser = rng or random.Random()

    def _policy(eligible: Sequence[str], window_start: Optional[datetime]) -> str:
        del window_start
        return chooser.choice(list(eligible))

    return _policy


class FallbackPool:
    def __init__(
        self,
        texts: Sequence[str] = FALLBACK_QUESTIONS,
        policy: SelectionPolicy = by_window,
    ) -> None:
        if len(texts) < MIN_POOL_SIZE:
            raise ValueError(f"fallback pool needs at least {MIN_POOL_SIZE} entries, got {len(texts)}")
        self.texts: tuple[str, ...] = tuple(texts)
        self.policy = policy

    def __len__(self) -> int:
        return len(self.texts)

    def __contains__(self, text: object) -> bool:
        return text in self.texts

    def eligible(self, avoid_list: Iterable[str]) -> list[str]:
        avoid = set(avoid_list)
        unused = [text for text in self.texts if text not in avoid]
        return unused or list(self.texts)

    def pick(self, avoid_list: Iterable[str] = (), window_start: Optional[datetime] = None) -> str:
        return self.policy(self.eligible(avoid_list), window_start)

    def emergency(self, window_start: datetime) -> str:
        """Pick for paths that never reached the store; identical on every instance."""
        return by_window(self.texts, window_start)


__all__ = ["FallbackPool", "SelectionPolicy", "by_window", "uniform_random"]
