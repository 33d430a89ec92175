"""
Generation package for the Question Rotation Engine.

Re-exports the generator protocol, the OpenAI implementation and the
fallback pool so downstream code can import from
`question_rotation.generation` directly.
"""

from question_rotation.generation.abstract import (
    CandidateGenerator,
    GenerationRequest,
    clean_candidate,
)
from question_rotation.generation.catalog import FALLBACK_QUESTIONS, LAST_RESORT_TEXT
from question_rotation.generation.fallback import FallbackPool, by_window, uniform_random
from question_rotation.generation.openai_generator import OpenAICandidateGenerator

__all__ = [
    # Abstracts
    "CandidateGenerator",
    "GenerationRequest",
    "clean_candidate",
    # Concrete generator
    "OpenAICandidateGenerator",
    # Fallback
    "FallbackPool",
    "by_window",
    "uniform_random",
    "FALLBACK_QUESTIONS",
    "LAST_RESORT_TEXT",
]
