"""
Fixed enumerations used to steer generation, and the pre-written fallback
questions served whenever generation is unavailable.
"""

from __future__ import annotations

STYLES: tuple[str, ...] = (
    "philosophical",
    "ethical",
    "scientific",
    "psychological",
    "existential",
    "social",
    "technological",
    "personal",
    "abstract",
    "practical",
)

TOPICS: tuple[str, ...] = (
    "consciousness and identity",
    "morality and ethics",
    "reality and perception",
    "time and mortality",
    "knowledge and truth",
    "society and culture",
    "technology and humanity",
    "purpose and meaning",
    "free will and determinism",
    "love and relationships",
)

EXAMPLE_QUESTIONS: tuple[str, ...] = (
    "If all your memories were fiction, would your identity still be real?",
    "Why do we trust our future selves to honor our current decisions?",
    "Does a thought exist before you think it, or only while thinking?",
    "What separates a deeply held belief from a comfortable delusion?",
    "If nobody remembered your kindness, would it still have happened?",
)

FALLBACK_QUESTIONS: tuple[str, ...] = (
    "What assumptions about the world do you hold that you've never questioned?",
    "If you could know the exact date of your death, would you want to?",
    "Is it possible to be truly objective about anything you personally experience?",
    "What would happen to your sense of self if all your memories were gradually replaced?",
    "Do you think free will exists, or are we just very complex biological machines?",
    "If consciousness could be transferred to a machine, would it still be you?",
    "What makes something morally right or wrong beyond cultural agreement?",
    "Is there a difference between existing and being perceived to exist?",
    "What would you do if you discovered your entire life was a simulation?",
    "Can you ever truly know another person, or only your interpretation of them?",
    "What if the universe ended the moment you stopped observing it?",
    "How do you know your memories are real and not implanted five minutes ago?",
    "Why do we find beauty in things that serve no evolutionary purpose?",
    "If everyone forgot you existed, would you still be the same person?",
    "What's the difference between a very sophisticated chatbot and consciousness?",
    "Could you be happy if you knew it was artificially induced?",
    "Is mathematics discovered or invented by humans?",
    "What would change if you found out everyone else was a philosophical zombie?",
    "How many of your beliefs would survive if you had to prove them from scratch?",
    "If you could eliminate all suffering, but also all joy, would you?",
)

LAST_RESORT_TEXT = "What question would you most like to be asked today?"

__all__ = ["STYLES", "TOPICS", "EXAMPLE_QUESTIONS", "FALLBACK_QUESTIONS", "LAST_RESORT_TEXT"]
