"""
Shared pytest fixtures for test suite.

This module provides common fixtures used across multiple test files:
isolated storage, a wired ContinuityService, a sample novel state and a
builder for raw generated chapters.
"""

import pytest
from typing import Dict, Any, List, Optional
from unittest.mock import MagicMock

from serialnovel.config import EngineSettings
from serialnovel.models import StoryState
from serialnovel.services import (
    StoryStateStore,
    ConstraintValidator,
    PromptConstraintGenerator,
    ContinuityChapterRecorder,
    ContinuityService,
)
from serialnovel.utils.llm import BaseLLMClient
from serialnovel.utils.locks import NovelLockManager
from serialnovel.utils.repository import FileStoryStateRepository


DEFAULT_PROSE = (
    "Aria walked along the quiet harbor while Kael watched the tide.\n\n"
    "She smiled at him, and the evening grew calm around them both."
)


def build_chapter(
    number: Optional[int] = None,
    level: Optional[int] = None,
    content: str = DEFAULT_PROSE,
    title: Optional[str] = None,
    extra: Optional[Dict[str, str]] = None,
) -> str:
    """
    Build raw generated chapter text in the engine's output format.

    Args:
        number: CHAPTER_NUMBER value (omitted if None)
        level: ROMANCE_PROGRESSION_LEVEL value (omitted if None)
        content: Chapter prose
        title: TITLE value (defaults to 'Harbor Lights <number>')
        extra: Additional FIELD_NAME -> value lines

    Returns:
        Raw text as an LLM would return it
    """
    lines: List[str] = []
    if number is not None:
        lines.append(f"CHAPTER_NUMBER: {number}")
    lines.append(f"TITLE: {title or f'Harbor Lights {number or 1}'}")
    lines.append("SUMMARY: Aria and Kael spend an evening at the harbor.")
    lines.append("EMOTIONAL_TONE: calm")
    if level is not None:
        lines.append(f"ROMANCE_PROGRESSION_LEVEL: {level}")
    for key, value in (extra or {}).items():
        lines.append(f"{key}: {value}")
    lines.append("CONTENT:")
    lines.append(content)
    return "\n".join(lines)


@pytest.fixture
def chapter_builder():
    """Expose build_chapter to tests."""
    return build_chapter


@pytest.fixture
def settings(tmp_path):
    """Engine settings pointing at an isolated directory."""
    return EngineSettings(
        storage_backend="file",
        state_dir=str(tmp_path / "story-states"),
        db_path=str(tmp_path / "story_states.db"),
        max_generation_retries=3,
    )


@pytest.fixture
def repository(settings):
    """File repository in a temporary directory."""
    return FileStoryStateRepository(storage_path=settings.state_dir)


@pytest.fixture
def store(repository):
    """State store over the temporary repository."""
    return StoryStateStore(repository)


@pytest.fixture
def service(store, settings):
    """ContinuityService wired to the temporary store."""
    return ContinuityService(
        store=store,
        validator=ConstraintValidator(),
        generator=PromptConstraintGenerator(),
        recorder=ContinuityChapterRecorder(store, content_rating=settings.content_rating),
        locks=NovelLockManager(default_ttl=settings.lease_ttl_seconds),
        settings=settings,
    )


@pytest.fixture
def novel_info() -> Dict[str, Any]:
    """Novel definition with two registered leads."""
    return {
        "title": "Harbor of Stars",
        "targetChapters": 20,
        "tropes": ["enemies-to-lovers"],
        "world": {
            "setting": "A port city lit by captured starlight",
            "rules": ["Starlight magic fades at dawn"],
            "locations": ["Lantern Quay"],
        },
        "characters": {
            "Aria": {
                "role": "protagonist",
                "personalityTraits": ["stubborn", "kind"],
                "currentState": {"location": "harbor", "emotion": "wary"},
            },
            "Kael": {
                "role": "love_interest",
                "personalityTraits": ["guarded"],
                "currentState": {"location": "harbor", "emotion": "curious"},
            },
        },
        "aliases": {"the captain": "Kael"},
    }


@pytest.fixture
def started_novel(service, novel_info) -> str:
    """Slug of a started novel with no chapters."""
    return service.start_new_novel(novel_info)["novelSlug"]


@pytest.fixture
def sample_state() -> StoryState:
    """In-memory state with Aria and Kael registered and no chapters."""
    return StoryState.from_document({
        "novelSlug": "harbor-of-stars",
        "metadata": {"title": "Harbor of Stars", "status": "Active", "targetChapters": 20},
        "characters": {
            "Aria": {"role": "protagonist"},
            "Kael": {"role": "love_interest"},
        },
        "aliases": {"the captain": "Kael"},
    })


@pytest.fixture
def mock_llm_client():
    """LLM client whose generate() returns queued responses."""
    client = MagicMock(spec=BaseLLMClient)
    client.generate.return_value = build_chapter(level=5)
    return client
