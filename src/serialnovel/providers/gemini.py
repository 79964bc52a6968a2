"""
Google Gemini LLM Provider implementation.

This module provides the GeminiProvider class for drafting chapters with
Google's Generative AI models. All Gemini-specific code is isolated here.
"""

import os
import logging
from typing import Optional, List

from ..utils.llm import BaseLLMClient, estimate_tokens, chapter_max_tokens
from ..templates import CHAPTER_MAX_WORDS

logger = logging.getLogger(__name__)

# Used only if the model list cannot be fetched from the API
FALLBACK_ALLOWED_MODELS: List[str] = [
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-1.5-pro",
    "gemini-1.5-flash",
]

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"

GEMINI_MAX_OUTPUT_TOKENS = 8192


def _validate_gemini_model_name(model_name: str, available_models: Optional[List[str]] = None) -> str:
    """
    Validate and normalize a Gemini model name.

    Args:
        model_name: Model name (with or without 'models/' prefix)
        available_models: Model names reported by the API (fallback list if None)

    Returns:
        Normalized model name with 'models/' prefix

    Raises:
        ValueError: If the model is not available
    """
    base_name = model_name.replace("models/", "")
    if available_models is None:
        available_models = FALLBACK_ALLOWED_MODELS
        logger.warning("Using fallback Gemini model list")

    normalized_available = [m.replace("models/", "") for m in available_models]
    if base_name not in normalized_available:
        raise ValueError(
            f"Invalid Gemini model: {model_name}. Allowed models: {', '.join(normalized_available)}"
        )
    return f"models/{base_name}"


class GeminiProvider(BaseLLMClient):
    """
    Provider for Google Gemini API.

    Implements BaseLLMClient so the chapter generation loop stays
    provider-agnostic.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_GEMINI_MODEL,
        temperature: float = 0.7
    ):
        """
        Initialize Gemini provider.

        Args:
            api_key: Google API key (if None, uses GOOGLE_API_KEY env var)
            model_name: Model name (default: gemini-2.5-flash)
            temperature: Default generation temperature

        Raises:
            ImportError: If google-generativeai is not installed
            ValueError: If the API key is missing or the model name is invalid
        """
        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError(
                "Google Generative AI not installed. Install with: pip install google-generativeai"
            )

        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError("GOOGLE_API_KEY environment variable is required")

        genai.configure(api_key=self.api_key)
        self._genai = genai

        try:
            self.available_models = []
            for model in self._genai.list_models():
                name = getattr(model, "name", model)
                if isinstance(name, str) and name:
                    clean = name.replace("models/", "")
                    if clean not in self.available_models:
                        self.available_models.append(clean)
            logger.info(f"Fetched {len(self.available_models)} available Gemini models")
        except Exception as e:
            logger.error(f"Failed to fetch available Gemini models, using fallback list: {e}", exc_info=True)
            self.available_models = FALLBACK_ALLOWED_MODELS.copy()

        self._model_name = _validate_gemini_model_name(model_name, self.available_models)
        self.temperature = temperature
        logger.info(f"Initialized GeminiProvider with model: {self._model_name}")

    @property
    def model_name(self) -> str:
        return self._model_name

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Generate a chapter draft with the configured Gemini model.

        Args:
            prompt: Chapter prompt
            system_prompt: Optional system prompt
            temperature: Generation temperature (overrides instance default)
            max_tokens: Maximum output tokens (sized for one chapter if None)

        Returns:
            Generated text, or "" if the model returned nothing
        """
        full_prompt = f"{system_prompt}\n\n{prompt}" if system_prompt else prompt
        if max_tokens is None:
            max_tokens = chapter_max_tokens(CHAPTER_MAX_WORDS, GEMINI_MAX_OUTPUT_TOKENS)

        try:
            model = self._genai.GenerativeModel(self.model_name)
            from google.generativeai.types import GenerationConfig
            generation_config = GenerationConfig(
                temperature=temperature if temperature is not None else self.temperature,
                max_output_tokens=max_tokens,
            )
            response = model.generate_content(full_prompt, generation_config=generation_config)
        except (ConnectionError, TimeoutError, OSError) as e:
            logger.error(f"Network error generating content with Gemini: {e}", exc_info=True)
            raise
        except Exception as e:
            logger.error(f"Error generating content with Gemini: {e}", exc_info=True)
            raise

        finish_reason = "STOP"
        if getattr(response, "candidates", None):
            finish_reason = getattr(response.candidates[0], "finish_reason", "STOP")

        if not response.text:
            logger.warning(f"Gemini generation finished with reason: {finish_reason}. No text returned.")
            return ""

        text = response.text.strip()
        if finish_reason == "MAX_TOKENS":
            logger.warning(
                f"Gemini generation hit MAX_TOKENS limit ({max_tokens} tokens); output may be truncated "
                f"(~{estimate_tokens(text)} tokens returned)"
            )
        return text

    def check_availability(self) -> bool:
        """Check that the configured model is among the available models."""
        base_model = self.model_name.replace("models/", "")
        is_available = base_model in self.available_models
        if not is_available:
            logger.warning(f"Configured Gemini model '{self.model_name}' not found in available models")
        return is_available
