"""
LLM Provider implementations.

Currently supports Google Gemini via GeminiProvider.
"""

from .gemini import GeminiProvider
from .factory import PROVIDERS, create_provider

__all__ = [
    "GeminiProvider",
    "PROVIDERS",
    "create_provider",
]
