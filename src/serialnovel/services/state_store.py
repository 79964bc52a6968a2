"""
Story state store.

Durable per-novel structured record on top of a StoryStateRepository. The
store validates every record before it is written, refuses writes to
completed novels and backward status moves, and always replaces the whole
record.
"""

import logging
from typing import Dict, Any, Optional, List, Union

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..models import StoryState, CharacterRecord, ChapterRecord, NovelStatus, is_valid_slug
from ..utils.errors import ValidationError, NotFoundError, ClosedNovelError
from ..utils.repository import StoryStateRepository

logger = logging.getLogger(__name__)


def camel_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize snake_case record keys to the camelCase document form."""
    result = {}
    for key, value in data.items():
        if "_" in key:
            key = to_camel(key)
        if key == "currentState" and isinstance(value, dict):
            value = camel_keys(value)
        result[key] = value
    return result


def _schema_error(slug: str, error: PydanticValidationError) -> ValidationError:
    return ValidationError(
        f"Story state for '{slug}' failed schema validation",
        details={"errors": error.errors(include_url=False, include_context=False)},
    )


class StoryStateStore:
    """Load and save StoryState records by novel slug."""

    def __init__(self, repository: StoryStateRepository):
        """
        Initialize the store.

        Args:
            repository: Storage backend for state documents
        """
        self.repository = repository

    def _check_slug(self, slug: str) -> None:
        if not is_valid_slug(slug):
            raise ValidationError(
                f"Invalid novel slug '{slug}'",
                details={"novel_slug": slug, "pattern": "lowercase letters, digits and hyphens"},
            )

    def _read(self, slug: str) -> Optional[StoryState]:
        document = self.repository.load(slug)
        if document is None:
            return None
        try:
            return StoryState.from_document(document)
        except PydanticValidationError as e:
            logger.error(f"Stored state for '{slug}' is invalid", exc_info=True)
            raise _schema_error(slug, e)

    def exists(self, slug: str) -> bool:
        return self.repository.load(slug) is not None

    def load(self, slug: str) -> StoryState:
        """
        Load a novel's state, or a default empty state if none is stored.

        The default state is not persisted until save() is called.

        Raises:
            ValidationError: If the slug is malformed or the stored record is invalid
        """
        self._check_slug(slug)
        state = self._read(slug)
        if state is None:
            logger.debug(f"No stored state for '{slug}', returning empty state")
            return StoryState.empty(slug)
        return state

    def get(self, slug: str) -> StoryState:
        """
        Load a novel's state, failing if it was never saved.

        Raises:
            NotFoundError: If no state is stored for the slug
        """
        self._check_slug(slug)
        state = self._read(slug)
        if state is None:
            raise NotFoundError("Novel", slug)
        return state

    def save(self, slug: str, state: Union[StoryState, Dict[str, Any]]) -> StoryState:
        """
        Atomically replace the stored record for a slug.

        Args:
            slug: Novel slug
            state: Complete state (model or camelCase document)

        Returns:
            The validated state that was written

        Raises:
            ValidationError: If the record fails schema or invariant checks,
                its slug does not match, or its status moves backward
            ClosedNovelError: If the stored novel is already Completed
        """
        self._check_slug(slug)
        document = state.to_document() if isinstance(state, StoryState) else state
        try:
            validated = StoryState.from_document(document)
        except PydanticValidationError as e:
            raise _schema_error(slug, e)

        if validated.novel_slug != slug:
            raise ValidationError(
                f"State slug '{validated.novel_slug}' does not match '{slug}'",
                details={"novel_slug": slug},
            )

        previous = self._read(slug)
        if previous is not None:
            if previous.status == NovelStatus.COMPLETED:
                raise ClosedNovelError(slug)
            if not previous.status.can_advance_to(validated.status):
                raise ValidationError(
                    f"Status of '{slug}' cannot move from {previous.status.value} to {validated.status.value}",
                    details={"from": previous.status.value, "to": validated.status.value},
                )

        self.repository.save(slug, validated.to_document())
        logger.info(
            f"Saved state for '{slug}' (status={validated.status.value}, chapters={len(validated.chapters)})"
        )
        return validated

    def upsert_character(
        self,
        slug: str,
        name: str,
        attrs: Optional[Dict[str, Any]] = None,
        role: Optional[str] = None
    ) -> StoryState:
        """
        Register a character or update an existing one.

        Args:
            slug: Novel slug
            name: Character name as it appears in prose
            attrs: CharacterRecord fields (snake_case or camelCase) to set
            role: Optional role override

        Returns:
            The saved state
        """
        if not name or not name.strip():
            raise ValidationError("Character name is required")
        state = self.load(slug)
        name = name.strip()
        existing = state.characters.get(name)
        data = existing.to_document() if existing else {}
        if attrs:
            merged = dict(data)
            for key, value in camel_keys(attrs).items():
                if key == "currentState" and isinstance(value, dict):
                    value = {**merged.get("currentState", {}), **value}
                merged[key] = value
            data = merged
        if role:
            data["role"] = role
        try:
            state.characters[name] = CharacterRecord.model_validate(data)
        except PydanticValidationError as e:
            raise _schema_error(slug, e)
        logger.info(f"{'Updated' if existing else 'Registered'} character '{name}' in '{slug}'")
        return self.save(slug, state)

    def append_chapter(self, slug: str, chapter: Union[ChapterRecord, Dict[str, Any]]) -> StoryState:
        """
        Append a chapter record, enforcing contiguous numbering.

        Raises:
            ValidationError: If the chapter number is not last + 1
            ClosedNovelError: If the novel is Completed
        """
        state = self.load(slug)
        if state.status == NovelStatus.COMPLETED:
            raise ClosedNovelError(slug)
        if isinstance(chapter, ChapterRecord):
            record = chapter
        else:
            try:
                record = ChapterRecord.model_validate(camel_keys(chapter))
            except PydanticValidationError as e:
                raise _schema_error(slug, e)
        expected = state.next_chapter_number
        if record.number != expected:
            raise ValidationError(
                f"Chapter {record.number} cannot follow chapter {state.last_chapter_number}; expected {expected}",
                details={"novel_slug": slug, "expected": expected, "got": record.number},
            )
        state.chapters.append(record)
        return self.save(slug, state)

    def list_slugs(self) -> List[str]:
        return self.repository.list_slugs()

    def list_states(self) -> List[StoryState]:
        states = []
        for slug in self.list_slugs():
            state = self._read(slug)
            if state is not None:
                states.append(state)
        return states

    def delete(self, slug: str) -> bool:
        self._check_slug(slug)
        return self.repository.delete(slug)
