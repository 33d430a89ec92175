"""
OpenAI-backed candidate generator.

Style and topic are chosen deterministically from the window, so every
instance asks for the same kind of question in the same window. The SDK's own
retries are disabled: the coordinator bounds latency and falls back to the
pool instead of waiting on retries.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from question_rotation.clock import WindowClock
from question_rotation.domain.errors import GenerationUnavailable
from question_rotation.generation.abstract import GenerationRequest, clean_candidate
from question_rotation.generation.catalog import EXAMPLE_QUESTIONS, STYLES, TOPICS
from question_rotation.utils.logging import get_logger

log = get_logger(__name__)

_TOPIC_STRIDE = 7


def build_request(
    clock: WindowClock,
    window_start: datetime,
    avoid_list: Sequence[str],
    *,
    avoid_limit: int = 20,
    temperature: float = 0.95,
    deterministic_seed: bool = False,
) -> GenerationRequest:
    seed = clock.window_seed(window_start)
    return GenerationRequest(
        style=STYLES[seed % len(STYLES)],
        topic=TOPICS[(seed * _TOPIC_STRIDE) % len(TOPICS)],
        avoid_list=tuple(avoid_list[-avoid_limit:]) if avoid_limit > 0 else (),
        temperature=temperature,
        seed=seed if deterministic_seed else None,
    )


def render_prompt(request: GenerationRequest) -> str:
    avoid = (
        "\n".join(f"- {text}" for text in request.avoid_list)
        if request.avoid_list
        else "(no previous questions)"
    )
    examples = "\n".join(f'- "{text}"' for text in EXAMPLE_QUESTIONS)
    return (
        f"Generate a single {request.style} thought-provoking question about {request.topic}.\n\n"
        "The question should:\n"
        "- Be unique and not commonly asked\n"
        "- Challenge assumptions or spark deep reflection\n"
        "- Be between 10-30 words\n"
        "- Not be a yes/no question\n"
        "- Feel fresh and unexpected\n"
        "- Be DIFFERENT from these recently used questions:\n"
        f"{avoid}\n\n"
        "Examples of good questions:\n"
        f"{examples}\n\n"
        "Return only the question text, no quotes or extra formatting."
    )


class OpenAICandidateGenerator:
    """
    Ask an OpenAI chat model for one question per window.

    Raises `GenerationUnavailable` when no API key is configured, on SDK
    errors and on timeout; `GenerationInvalid` (from `clean_candidate`) when
    the reply is unusable.
    """

    name: str = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        clock: WindowClock,
        *,
        model: str = "gpt-4o-mini",
        temperature: float = 0.95,
        max_tokens: int = 100,
        timeout_seconds: float = 5.0,
        avoid_limit: int = 20,
        deterministic_seed: bool = False,
        client: Optional[Any] = None,
    ) -> None:
        self.api_key = api_key
        self.clock = clock
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.avoid_limit = avoid_limit
        self.deterministic_seed = deterministic_seed
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key, max_retries=0, timeout=self.timeout_seconds
            )
        return self._client

    async def generate(self, avoid_list: Sequence[str], window_start: datetime) -> str:
        if not self.api_key:
            raise GenerationUnavailable("OPENAI_API_KEY is not configured")

        request = build_request(
            self.clock,
            window_start,
            list(avoid_list),
            avoid_limit=self.avoid_limit,
            temperature=self.temperature,
            deterministic_seed=self.deterministic_seed,
        )
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": render_prompt(request)}],
            "temperature": request.temperature,
            "max_tokens": self.max_tokens,
        }
        if request.seed is not None:
            kwargs["seed"] = request.seed

        log.debug(
            "[GENERATION] requesting candidate",
            extra={"style": request.style, "topic": request.topic, "avoid": len(request.avoid_list)},
        )
        try:
            completion = await asyncio.wait_for(
                self._get_client().chat.completions.create(**kwargs),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationUnavailable(f"completion timed out after {self.timeout_seconds}s") from exc
        except OpenAIError as exc:
            raise GenerationUnavailable(f"completion failed: {exc}") from exc

        choices = getattr(completion, "choices", None) or []
        content = choices[0].message.content if choices else None
        return clean_candidate(content)


__all__ = ["OpenAICandidateGenerator", "build_request", "render_prompt"]
