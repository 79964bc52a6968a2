"""
LLM client interface.

The engine never depends on a concrete model: the generation loop talks to a
BaseLLMClient, and providers (see serialnovel.providers) implement it.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional, Union

from .errors import ValidationError


class Creativity(str, Enum):
    """Creativity setting requested by the caller of the generation loop."""
    PRECISE = "precise"
    BALANCED = "balanced"
    CREATIVE = "creative"
    EXPERIMENTAL = "experimental"


# Sampling temperature per creativity setting
CREATIVITY_TEMPERATURES: Dict[Creativity, float] = {
    Creativity.PRECISE: 0.3,
    Creativity.BALANCED: 0.7,
    Creativity.CREATIVE: 0.9,
    Creativity.EXPERIMENTAL: 1.1,
}

# Token budget estimates for a single chapter
TOKENS_PER_WORD_ESTIMATE = 1.4
TOKEN_BUFFER_MULTIPLIER = 1.2
TOKEN_BUFFER_ADDITION = 200
DEFAULT_MIN_TOKENS = 1000


def resolve_creativity(creativity: Union[Creativity, str, None]) -> Creativity:
    """
    Coerce a creativity name into a Creativity value.

    Raises:
        ValidationError: If the name is not a known setting
    """
    if creativity is None:
        return Creativity.BALANCED
    if isinstance(creativity, Creativity):
        return creativity
    try:
        return Creativity(str(creativity).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown creativity '{creativity}'",
            details={"allowed": [c.value for c in Creativity]},
        )


def temperature_for(creativity: Union[Creativity, str, None]) -> float:
    return CREATIVITY_TEMPERATURES[resolve_creativity(creativity)]


def estimate_tokens(text: str) -> int:
    """
    Rough token estimate for a text.

    Uses the higher of a character-based (4 chars per token) and a word-based
    (1.4 tokens per word) estimate, plus a small buffer.
    """
    if not text:
        return 0
    char_based = len(text.replace(" ", "")) / 4
    word_based = len(text.split()) * TOKENS_PER_WORD_ESTIMATE
    return int(max(char_based, word_based) * 1.1) + 10


def chapter_max_tokens(target_words: int, ceiling: int) -> int:
    """Output token budget for a chapter of target_words, capped at ceiling."""
    needed = int(target_words * TOKENS_PER_WORD_ESTIMATE * TOKEN_BUFFER_MULTIPLIER) + TOKEN_BUFFER_ADDITION
    return max(min(needed, ceiling), DEFAULT_MIN_TOKENS)


class BaseLLMClient(ABC):
    """Provider-agnostic text generation client."""

    @property
    def model_name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Generate text from a prompt.

        Args:
            prompt: The main prompt
            system_prompt: System/instruction prompt (optional)
            temperature: Sampling temperature override
            max_tokens: Output token limit override

        Returns:
            Generated text
        """

    def check_availability(self) -> bool:
        return True
