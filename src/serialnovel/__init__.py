"""
Serial Novel Continuity Engine

Keeps LLM-written serialized fiction consistent across chapters: a
persistent story state, a stage-based pacing model, a chapter validator and
a recorder that only commits chapters that pass.
"""

from .models import StoryState, NovelStatus, ParsedChapter
from .progression import Stage
from .config import EngineSettings
from .services import (
    StoryStateStore,
    ConstraintValidator,
    PromptConstraintGenerator,
    ContinuityChapterRecorder,
    ContinuityService,
    create_continuity_service,
)

__version__ = "0.1.0"

__all__ = [
    "StoryState",
    "NovelStatus",
    "ParsedChapter",
    "Stage",
    "EngineSettings",
    "StoryStateStore",
    "ConstraintValidator",
    "PromptConstraintGenerator",
    "ContinuityChapterRecorder",
    "ContinuityService",
    "create_continuity_service",
]
