"""
Chapter generation provider construction.

Providers are looked up by name in PROVIDERS and configured from
EngineSettings. Nothing is cached at module level; callers that need one
client for many chapters keep the instance themselves.
"""

import logging
from typing import Callable, Dict, Optional

from .gemini import GeminiProvider, DEFAULT_GEMINI_MODEL
from ..config import EngineSettings
from ..utils.errors import ValidationError, ServiceUnavailableError
from ..utils.llm import BaseLLMClient

logger = logging.getLogger(__name__)


def _build_gemini(settings: EngineSettings, api_key: Optional[str]) -> BaseLLMClient:
    return GeminiProvider(
        api_key=api_key,
        model_name=settings.llm_model or DEFAULT_GEMINI_MODEL,
        temperature=settings.llm_temperature,
    )


PROVIDERS: Dict[str, Callable[[EngineSettings, Optional[str]], BaseLLMClient]] = {
    "gemini": _build_gemini,
}


def create_provider(settings: Optional[EngineSettings] = None, api_key: Optional[str] = None) -> BaseLLMClient:
    """
    Create the chapter generation client named by settings.llm_provider.

    Args:
        settings: Engine settings (read from the environment if None)
        api_key: Provider API key (the provider's environment variable if None)

    Returns:
        BaseLLMClient instance

    Raises:
        ValidationError: If the provider name is unknown
        ServiceUnavailableError: If the provider SDK is missing or cannot be configured
    """
    settings = settings or EngineSettings.from_env()
    name = settings.llm_provider.strip().lower()
    builder = PROVIDERS.get(name)
    if builder is None:
        raise ValidationError(
            f"Unknown LLM provider '{name}'",
            details={"allowed": sorted(PROVIDERS)},
        )

    try:
        client = builder(settings, api_key)
    except (ImportError, ValueError) as e:
        logger.error(f"Could not create LLM provider '{name}': {e}")
        raise ServiceUnavailableError(name, str(e))
    logger.info(f"Created LLM provider '{name}' with model {client.model_name}")
    return client
