"""
Story state repository abstraction layer.

Provides a unified interface over the storage backends for story state
documents, so the state store does not care whether documents live in JSON
files or in SQLite.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Any, List
import logging

from ..config import EngineSettings

logger = logging.getLogger(__name__)


class StoryStateRepository(ABC):
    """
    Abstract interface for keyed state document storage.

    Implementations must replace documents atomically and give
    read-after-write consistency to a single writer. Storage failures
    propagate to the caller.
    """

    @abstractmethod
    def save(self, slug: str, document: Dict[str, Any]) -> None:
        """
        Replace the document stored under a slug.

        Args:
            slug: Novel slug
            document: Complete JSON-serializable state document
        """
        pass

    @abstractmethod
    def load(self, slug: str) -> Optional[Dict[str, Any]]:
        """
        Load the document stored under a slug.

        Args:
            slug: Novel slug

        Returns:
            The document if found, None otherwise
        """
        pass

    @abstractmethod
    def delete(self, slug: str) -> bool:
        """Delete a document. Returns False if nothing was stored."""
        pass

    @abstractmethod
    def list_slugs(self) -> List[str]:
        """List all stored slugs in sorted order."""
        pass

    def exists(self, slug: str) -> bool:
        return self.load(slug) is not None

    def count(self) -> int:
        """Count stored documents."""
        return len(self.list_slugs())


class FileStoryStateRepository(StoryStateRepository):
    """
    File-based repository.

    Stores one JSON document per novel in a directory, written with an
    atomic temp-file-and-rename.
    """

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize file repository.

        Args:
            storage_path: Directory for state files (default: data/story-states)
        """
        from .storage import DEFAULT_STATE_DIR

        self.storage_path = Path(storage_path) if storage_path else DEFAULT_STATE_DIR

    def save(self, slug: str, document: Dict[str, Any]) -> None:
        from .storage import save_document
        save_document(self.storage_path, slug, document)

    def load(self, slug: str) -> Optional[Dict[str, Any]]:
        from .storage import load_document
        return load_document(self.storage_path, slug)

    def delete(self, slug: str) -> bool:
        from .storage import delete_document
        return delete_document(self.storage_path, slug)

    def list_slugs(self) -> List[str]:
        from .storage import list_document_slugs
        return list_document_slugs(self.storage_path)


class DatabaseStoryStateRepository(StoryStateRepository):
    """
    Database-backed repository.

    Wraps StoryStateStorage (SQLite) to provide the repository interface.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize database repository.

        Args:
            db_path: Path to the SQLite database file
        """
        from .db_storage import StoryStateStorage

        self._storage = StoryStateStorage(Path(db_path) if db_path else None)

    def save(self, slug: str, document: Dict[str, Any]) -> None:
        self._storage.save_document(slug, document)

    def load(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._storage.load_document(slug)

    def delete(self, slug: str) -> bool:
        return self._storage.delete_document(slug)

    def list_slugs(self) -> List[str]:
        return self._storage.list_slugs()

    def count(self) -> int:
        return self._storage.count()


def create_state_repository(settings: Optional[EngineSettings] = None) -> StoryStateRepository:
    """
    Factory function to create the configured state repository.

    Uses settings.storage_backend ('file' or 'sqlite'), which
    EngineSettings.from_env() reads from STORY_STATE_BACKEND.

    Args:
        settings: Engine settings (read from the environment if None)

    Returns:
        StoryStateRepository instance
    """
    settings = settings or EngineSettings.from_env()

    if settings.storage_backend == "sqlite":
        logger.info(f"Creating database state repository at {settings.db_path}")
        return DatabaseStoryStateRepository(db_path=settings.db_path)

    logger.info(f"Creating file-based state repository in {settings.state_dir}")
    return FileStoryStateRepository(storage_path=settings.state_dir)
