"""
Service layer for the serial novel engine.

Services are independent of the HTTP layer and are used by:
- Flask route handlers
- CLI commands
"""

from .state_store import StoryStateStore
from .constraint_validator import ConstraintValidator, ValidationReport
from .prompt_generator import PromptConstraintGenerator, constraints_json
from .chapter_recorder import ContinuityChapterRecorder, CommitResult
from .continuity_service import ContinuityService, create_continuity_service

__all__ = [
    'StoryStateStore',
    'ConstraintValidator',
    'ValidationReport',
    'PromptConstraintGenerator',
    'constraints_json',
    'ContinuityChapterRecorder',
    'CommitResult',
    'ContinuityService',
    'create_continuity_service',
]
