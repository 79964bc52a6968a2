"""
Utility modules for the serial novel engine.

Modules:
- errors: Exception hierarchy, constraint violations and Flask error handlers
- storage / db_storage: File and SQLite persistence of state documents
- repository: Storage backend abstraction
- locks: Per-novel leases
- chapter_parser: Parsing of generated chapter text
- llm: LLM client interface
"""

from .errors import (
    APIError,
    ValidationError,
    ChapterParseError,
    NotFoundError,
    ConflictError,
    ClosedNovelError,
    GenerationRejectedError,
    ServiceUnavailableError,
    ConstraintViolation,
    ContinuityViolation,
    PacingViolation,
    Severity,
)
from .repository import (
    StoryStateRepository,
    FileStoryStateRepository,
    DatabaseStoryStateRepository,
    create_state_repository,
)
from .locks import NovelLockManager, Lease
from .chapter_parser import parse_generated_chapter, count_words

__all__ = [
    'APIError',
    'ValidationError',
    'ChapterParseError',
    'NotFoundError',
    'ConflictError',
    'ClosedNovelError',
    'GenerationRejectedError',
    'ServiceUnavailableError',
    'ConstraintViolation',
    'ContinuityViolation',
    'PacingViolation',
    'Severity',
    'StoryStateRepository',
    'FileStoryStateRepository',
    'DatabaseStoryStateRepository',
    'create_state_repository',
    'NovelLockManager',
    'Lease',
    'parse_generated_chapter',
    'count_words',
]
