"""
Candidate generator interface and shared helpers.

Concrete generators implement the CandidateGenerator protocol: given the
recent-history avoid-list and the window the text is for, return one
validated candidate or raise `GenerationUnavailable` / `GenerationInvalid`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

from question_rotation.domain.errors import GenerationInvalid
from question_rotation.domain.models import MAX_TEXT_LENGTH, MIN_TEXT_LENGTH

_SURROUNDING_QUOTES = re.compile(r"^[\"'“‘]+|[\"'”’]+$")
_REPEATED_TRAILING_PUNCT = re.compile(r"([?!.])\1+$")


@dataclass(frozen=True)
class GenerationRequest:
    """
    Everything a completion call needs for one window.

    Attributes
    ----------
    style, topic : str
        Entries picked from the fixed enumerations in `catalog`.
    avoid_list : tuple[str, ...]
        Recent texts to embed as negative examples, already capped.
    temperature : float
        Randomness parameter forwarded to the completion API.
    seed : int | None
        Optional deterministic seed forwarded to the completion API.
    """

    style: str
    topic: str
    avoid_list: tuple[str, ...] = field(default_factory=tuple)
    temperature: float = 0.95
    seed: Optional[int] = None


@runtime_checkable
class CandidateGenerator(Protocol):
    """
    Common interface all candidate generators implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier used in logs.
    """

    name: str

    async def generate(self, avoid_list: Sequence[str], window_start: datetime) -> str:
        """
        Produce one candidate text for the window starting at `window_start`.

        Raises
        ------
        GenerationUnavailable
            No credential, transport failure or timeout.
        GenerationInvalid
            The returned text fails validation.
        """
        ...


def clean_candidate(raw: Optional[str]) -> str:
    """
    Normalize a completion and validate its length.

    Strips whitespace and surrounding quotes and collapses repeated trailing
    punctuation ("Why??" -> "Why?").
    """
    if not raw:
        raise GenerationInvalid("completion returned no text")
    text = _SURROUNDING_QUOTES.sub("", raw.strip()).strip()
    text = _REPEATED_TRAILING_PUNCT.sub(r"\1", text)
    if not MIN_TEXT_LENGTH <= len(text) <= MAX_TEXT_LENGTH:
        raise GenerationInvalid(f"candidate length {len(text)} outside {MIN_TEXT_LENGTH}-{MAX_TEXT_LENGTH}")
    return text


__all__ = ["CandidateGenerator", "GenerationRequest", "clean_candidate"]
