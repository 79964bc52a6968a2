"""
Tests for the LLM client interface and the Gemini provider.

The Gemini SDK is patched throughout; no network calls are made.
"""

import pytest
from unittest.mock import patch, MagicMock

from serialnovel.config import EngineSettings
from serialnovel.providers import GeminiProvider, create_provider
from serialnovel.providers.gemini import _validate_gemini_model_name, FALLBACK_ALLOWED_MODELS
from serialnovel.utils.errors import ValidationError, ServiceUnavailableError
from serialnovel.utils.llm import (
    Creativity,
    resolve_creativity,
    temperature_for,
    estimate_tokens,
    chapter_max_tokens,
    DEFAULT_MIN_TOKENS,
)


@pytest.fixture
def genai():
    """Patch the Gemini SDK entry points used by the provider."""
    with patch("google.generativeai.configure") as configure, \
            patch("google.generativeai.list_models") as list_models, \
            patch("google.generativeai.GenerativeModel") as model_cls:
        models = []
        for name in ("models/gemini-2.5-flash", "models/gemini-1.5-pro"):
            model = MagicMock()
            model.name = name
            models.append(model)
        list_models.return_value = models
        yield {"configure": configure, "list_models": list_models, "model_cls": model_cls}


class TestCreativity:
    """Test creativity settings and temperatures."""

    @pytest.mark.parametrize("name,temperature", [
        ("precise", 0.3),
        ("balanced", 0.7),
        ("creative", 0.9),
        ("experimental", 1.1),
    ])
    def test_temperature_for(self, name, temperature):
        assert temperature_for(name) == temperature

    def test_default_is_balanced(self):
        assert resolve_creativity(None) == Creativity.BALANCED

    def test_names_are_normalized(self):
        assert resolve_creativity("  Creative ") == Creativity.CREATIVE

    def test_unknown_name(self):
        with pytest.raises(ValidationError) as exc_info:
            resolve_creativity("wild")
        assert "precise" in exc_info.value.details["allowed"]


class TestTokenEstimates:
    """Test token estimation helpers."""

    def test_empty_text(self):
        assert estimate_tokens("") == 0

    def test_word_based_estimate(self):
        assert estimate_tokens("one two three four") == 16

    def test_longer_text_costs_more(self):
        assert estimate_tokens("word " * 200) > estimate_tokens("word " * 20)

    def test_chapter_budget_floor_and_ceiling(self):
        assert chapter_max_tokens(100, 8192) == DEFAULT_MIN_TOKENS
        assert chapter_max_tokens(10000, 8192) == 8192


class TestModelValidation:
    """Test Gemini model name validation."""

    def test_prefix_added(self):
        assert _validate_gemini_model_name("gemini-2.5-flash", ["gemini-2.5-flash"]) == "models/gemini-2.5-flash"

    def test_fallback_list(self):
        assert _validate_gemini_model_name("models/gemini-1.5-pro") == "models/gemini-1.5-pro"

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Invalid Gemini model"):
            _validate_gemini_model_name("gemini-0.1-tiny", FALLBACK_ALLOWED_MODELS)


class TestGeminiProvider:
    """Test GeminiProvider with a patched SDK."""

    def test_requires_api_key(self, genai, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
            GeminiProvider()

    def test_init_lists_models(self, genai):
        provider = GeminiProvider(api_key="test-key")
        genai["configure"].assert_called_once_with(api_key="test-key")
        assert provider.model_name == "models/gemini-2.5-flash"
        assert provider.available_models == ["gemini-2.5-flash", "gemini-1.5-pro"]
        assert provider.check_availability()

    def test_model_list_failure_uses_fallback(self, genai):
        genai["list_models"].side_effect = RuntimeError("boom")
        provider = GeminiProvider(api_key="test-key", model_name="gemini-2.0-flash")
        assert provider.available_models == FALLBACK_ALLOWED_MODELS

    def test_generate(self, genai):
        response = MagicMock(text="  CHAPTER_NUMBER: 1\nCONTENT:\nAria waits.  ")
        response.candidates = [MagicMock(finish_reason="STOP")]
        genai["model_cls"].return_value.generate_content.return_value = response

        provider = GeminiProvider(api_key="test-key")
        text = provider.generate("Write chapter 1", system_prompt="You are a novelist", temperature=0.3)

        assert text == "CHAPTER_NUMBER: 1\nCONTENT:\nAria waits."
        genai["model_cls"].assert_called_with("models/gemini-2.5-flash")
        prompt = genai["model_cls"].return_value.generate_content.call_args.args[0]
        assert prompt == "You are a novelist\n\nWrite chapter 1"

    def test_generate_empty_response(self, genai):
        response = MagicMock(text="")
        response.candidates = [MagicMock(finish_reason="SAFETY")]
        genai["model_cls"].return_value.generate_content.return_value = response
        assert GeminiProvider(api_key="test-key").generate("Write chapter 1") == ""

    def test_generate_propagates_errors(self, genai):
        genai["model_cls"].return_value.generate_content.side_effect = ConnectionError("offline")
        with pytest.raises(ConnectionError):
            GeminiProvider(api_key="test-key").generate("Write chapter 1")


class TestProviderFactory:
    """Test provider creation from engine settings."""

    def test_unknown_provider(self):
        with pytest.raises(ValidationError) as exc_info:
            create_provider(EngineSettings(llm_provider="openai"))
        assert exc_info.value.details["allowed"] == ["gemini"]

    def test_create_from_settings(self, genai):
        settings = EngineSettings(llm_model="gemini-1.5-pro", llm_temperature=0.5)
        provider = create_provider(settings, api_key="test-key")
        assert isinstance(provider, GeminiProvider)
        assert provider.model_name == "models/gemini-1.5-pro"
        assert provider.temperature == 0.5

    def test_default_model(self, genai):
        provider = create_provider(EngineSettings(), api_key="test-key")
        assert provider.model_name == "models/gemini-2.5-flash"

    def test_create_from_env(self, genai, monkeypatch):
        monkeypatch.delenv("LLM_PROVIDER", raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
        monkeypatch.setenv("LLM_MODEL", "gemini-1.5-pro")
        monkeypatch.setenv("LLM_TEMPERATURE", "0.5")
        provider = create_provider()
        assert provider.model_name == "models/gemini-1.5-pro"
        assert provider.temperature == 0.5

    def test_missing_api_key_is_unavailable(self, genai, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ServiceUnavailableError):
            create_provider(EngineSettings())

    def test_each_call_builds_a_new_client(self, genai):
        settings = EngineSettings()
        first = create_provider(settings, api_key="test-key")
        assert create_provider(settings, api_key="test-key") is not first
