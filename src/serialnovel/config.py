"""
Engine configuration.

Settings are read from environment variables (a .env file is loaded by the
entry points through python-dotenv) into a validated Pydantic model.
"""

import os
import logging
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class EngineSettings(BaseModel):
    """Tunable parameters of the continuity engine."""
    continuity_enabled: bool = True
    storage_backend: str = Field(default="file", pattern="^(file|sqlite)$")
    state_dir: str = "data/story-states"
    db_path: str = "data/story_states.db"
    chapter_output_dir: Optional[str] = None
    max_generation_retries: int = Field(default=3, ge=1)
    completion_threshold_ratio: float = Field(default=1.0, gt=0.0, le=1.0)
    lock_wait_timeout: float = Field(default=0.0, ge=0.0)
    lease_ttl_seconds: float = Field(default=300.0, gt=0.0)
    ruleset_path: Optional[str] = None
    foreshadow_min_gap: int = Field(default=3, ge=0)
    min_chapter_words: int = Field(default=750, ge=0)
    max_chapter_words: int = Field(default=6000, ge=0)
    default_target_chapters: int = Field(default=20, gt=0)
    content_rating: str = "15+"
    llm_provider: str = "gemini"
    llm_model: Optional[str] = None
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """
        Build settings from environment variables.

        Environment variables:
        - CONTINUITY_ENABLED: Enable constraint checks (default: true)
        - STORY_STATE_BACKEND: 'file' or 'sqlite' (default: file; USE_DB_STORAGE=true selects sqlite)
        - STORY_STATE_DIR / STORY_STATE_DB_PATH: storage locations
        - CHAPTER_OUTPUT_DIR: where committed chapters are written as markdown (optional)
        - MAX_GENERATION_RETRIES: attempts per chapter (default: 3)
        - COMPLETION_THRESHOLD_RATIO: share of target chapters required before completion (default: 1.0)
        - LOCK_WAIT_TIMEOUT: seconds to wait for a busy novel; 0 fails fast (default: 0)
        - LEASE_TTL_SECONDS: lease lifetime (default: 300)
        - RULESET_PATH: JSON or YAML rule set overriding the built-in rules
        - FORESHADOW_MIN_GAP: chapters before planted foreshadowing becomes due (default: 3)
        - MIN_CHAPTER_WORDS / MAX_CHAPTER_WORDS: chapter length bounds applied when the
          rule set does not set its own; 0 disables (default: 750 / 6000)
        - LLM_PROVIDER / LLM_MODEL / LLM_TEMPERATURE: chapter generation provider
          (default: gemini / provider default / 0.7); GOOGLE_API_KEY is read by the provider
        - DEFAULT_TARGET_CHAPTERS, CONTENT_RATING, LOG_LEVEL

        Returns:
            EngineSettings instance
        """
        backend = os.getenv("STORY_STATE_BACKEND")
        if not backend:
            backend = "sqlite" if _env_bool("USE_DB_STORAGE", "false") else "file"

        return cls(
            continuity_enabled=_env_bool("CONTINUITY_ENABLED", "true"),
            storage_backend=backend.lower(),
            state_dir=os.getenv("STORY_STATE_DIR", "data/story-states"),
            db_path=os.getenv("STORY_STATE_DB_PATH", "data/story_states.db"),
            chapter_output_dir=os.getenv("CHAPTER_OUTPUT_DIR") or None,
            max_generation_retries=int(os.getenv("MAX_GENERATION_RETRIES", "3")),
            completion_threshold_ratio=float(os.getenv("COMPLETION_THRESHOLD_RATIO", "1.0")),
            lock_wait_timeout=float(os.getenv("LOCK_WAIT_TIMEOUT", "0")),
            lease_ttl_seconds=float(os.getenv("LEASE_TTL_SECONDS", "300")),
            ruleset_path=os.getenv("RULESET_PATH") or None,
            foreshadow_min_gap=int(os.getenv("FORESHADOW_MIN_GAP", "3")),
            min_chapter_words=int(os.getenv("MIN_CHAPTER_WORDS", "750")),
            max_chapter_words=int(os.getenv("MAX_CHAPTER_WORDS", "6000")),
            default_target_chapters=int(os.getenv("DEFAULT_TARGET_CHAPTERS", "20")),
            content_rating=os.getenv("CONTENT_RATING", "15+"),
            llm_provider=os.getenv("LLM_PROVIDER", "gemini").strip().lower(),
            llm_model=os.getenv("LLM_MODEL") or None,
            llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.7")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
