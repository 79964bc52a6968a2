"""
Continuity chapter recorder.

The only component that writes chapters into a novel's state. A chapter is
committed only with a passing validation report; the whole state update
(chapter, characters, foreshadowing, progression, used elements, status)
lands in a single save.
"""

import logging
from datetime import datetime, date
from typing import Dict, Any, List, Optional

from ..models import (
    StoryState,
    ParsedChapter,
    ChapterRecord,
    CharacterState,
    ForeshadowingEntry,
    ProgressionTracking,
    RelationshipMilestone,
    UsedElement,
    NovelStatus,
)
from ..progression import milestones_reached
from ..utils.errors import ClosedNovelError, ValidationError
from ..utils.locks import Lease
from .state_store import StoryStateStore
from .constraint_validator import ValidationReport

logger = logging.getLogger(__name__)


class CommitResult:
    """Outcome of a commit attempt."""

    def __init__(
        self,
        novel_slug: str,
        committed: bool,
        chapter_number: int,
        status: NovelStatus,
        chapter: Optional[ChapterRecord] = None,
        duplicate: bool = False,
        violations: Optional[List[Dict[str, Any]]] = None,
        suggestions: Optional[List[str]] = None,
        aggregate_score: float = 0.0,
        chapter_document: Optional[Dict[str, Any]] = None,
        milestones: Optional[List[str]] = None,
    ):
        self.novel_slug = novel_slug
        self.committed = committed
        self.chapter_number = chapter_number
        self.status = status
        self.chapter = chapter
        self.duplicate = duplicate
        self.violations = violations or []
        self.suggestions = suggestions or []
        self.aggregate_score = aggregate_score
        self.chapter_document = chapter_document
        self.milestones = milestones or []

    @property
    def rejected(self) -> bool:
        return not self.committed and not self.duplicate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "novelSlug": self.novel_slug,
            "committed": self.committed,
            "duplicate": self.duplicate,
            "chapterNumber": self.chapter_number,
            "status": self.status.value,
            "chapter": self.chapter.to_document() if self.chapter else None,
            "violations": list(self.violations),
            "suggestions": list(self.suggestions),
            "aggregateScore": self.aggregate_score,
            "chapterDocument": self.chapter_document,
            "milestones": list(self.milestones),
        }


def build_chapter_document(
    state: StoryState,
    chapter: ChapterRecord,
    content_rating: str = "15+",
    validation_score: float = 0.0
) -> Dict[str, Any]:
    """Front matter fields of a published chapter file."""
    document = {
        "title": chapter.title,
        "novel": state.novel_slug,
        "chapterNumber": chapter.number,
        "publicationDate": chapter.publication_date,
        "wordCount": chapter.word_count,
        "contentRating": content_rating,
        "emotionalTone": chapter.emotional_tone,
        "romanceProgressionLevel": chapter.romance_progression_level,
        "continuityGuaranteed": True,
        "validationScore": validation_score,
    }
    if chapter.summary:
        document["summary"] = chapter.summary
    if chapter.ending_type:
        document["endingType"] = chapter.ending_type
    return document


class ContinuityChapterRecorder:
    """Commits validated chapters into story state."""

    def __init__(self, store: StoryStateStore, content_rating: str = "15+"):
        """
        Args:
            store: State store the recorder writes through
            content_rating: Rating stamped on published chapter documents
        """
        self.store = store
        self.content_rating = content_rating

    def commit_chapter(
        self,
        slug: str,
        parsed_chapter: ParsedChapter,
        validation_result: ValidationReport,
        lease: Optional[Lease] = None,
        state: Optional[StoryState] = None
    ) -> CommitResult:
        """
        Commit a chapter if its validation passed.

        Args:
            slug: Novel slug
            parsed_chapter: Parsed candidate chapter
            validation_result: Report from ConstraintValidator.validate
            lease: Lease held on the slug; checked before writing
            state: State the chapter was validated against (loaded if None)

        Returns:
            CommitResult. Rejected chapters leave state untouched and carry
            the violations; a chapter number that is already recorded
            returns the existing record with duplicate=True.

        Raises:
            NotFoundError: If the novel does not exist
            ClosedNovelError: If the novel is Completed
            ValidationError: If the report was produced for a different chapter
            ConflictError: If the lease was lost before the write
        """
        state = state if state is not None else self.store.get(slug)
        if state.status == NovelStatus.COMPLETED:
            raise ClosedNovelError(slug)

        if parsed_chapter.number is not None and parsed_chapter.number <= state.last_chapter_number:
            logger.info(f"Chapter {parsed_chapter.number} of '{slug}' already committed; skipping")
            return CommitResult(
                novel_slug=slug,
                committed=False,
                duplicate=True,
                chapter_number=parsed_chapter.number,
                status=state.status,
                chapter=state.chapter(parsed_chapter.number),
            )

        chapter_number = state.next_chapter_number
        if not validation_result.valid:
            logger.warning(
                f"Rejected chapter {chapter_number} of '{slug}' with {len(validation_result.violations)} violations"
            )
            return CommitResult(
                novel_slug=slug,
                committed=False,
                chapter_number=chapter_number,
                status=state.status,
                violations=[v.to_dict() for v in validation_result.violations],
                suggestions=validation_result.suggestions,
                aggregate_score=validation_result.aggregate_score,
            )

        if validation_result.chapter_number != chapter_number:
            raise ValidationError(
                f"Validation report is for chapter {validation_result.chapter_number}, "
                f"but the next chapter of '{slug}' is {chapter_number}",
                details={"novel_slug": slug, "expected": chapter_number},
            )

        # Mutations apply to a copy; the caller's state object is never modified
        state = state.model_copy(deep=True)
        now = datetime.now().isoformat()
        level = validation_result.romance_level
        if level is None:
            level = state.last_romance_level
        previous_tracking = state.progression_tracking.as_dict()
        projected = validation_result.projected_tracking

        chapter = ChapterRecord(
            number=chapter_number,
            title=parsed_chapter.title or f"Chapter {chapter_number}",
            summary=parsed_chapter.summary,
            key_events=list(parsed_chapter.key_events),
            emotional_tone=parsed_chapter.emotional_tone,
            word_count=parsed_chapter.word_count,
            romance_progression_level=level,
            ending_type=parsed_chapter.ending_type,
            publication_date=date.today().isoformat(),
            progression_deltas={
                dim: projected[dim] - previous_tracking[dim]
                for dim in sorted(projected)
                if projected[dim] != previous_tracking[dim]
            },
        )
        state.chapters.append(chapter)

        self._apply_character_updates(state, parsed_chapter)
        self._apply_foreshadowing(state, parsed_chapter, chapter_number)

        state.progression_tracking = ProgressionTracking(**projected)
        achieved = {m.id: m.achieved_at_chapter for m in state.relationship_milestones}
        reached = milestones_reached(projected["emotional"], chapter_number, achieved)
        for milestone_id in reached:
            state.relationship_milestones.append(
                RelationshipMilestone(id=milestone_id, achieved_at_chapter=chapter_number)
            )

        for element in parsed_chapter.used_elements:
            state.used_elements.append(
                UsedElement(kind=element["kind"], content=element["content"], chapter=chapter_number)
            )
        for event in parsed_chapter.key_events:
            if event not in state.plot.completed_events:
                state.plot.completed_events.append(event)

        if state.status == NovelStatus.NOT_STARTED:
            state.metadata.status = NovelStatus.ACTIVE
        if state.status == NovelStatus.COMPLETING and parsed_chapter.ending_type:
            state.metadata.status = NovelStatus.COMPLETED
            state.metadata.completed_at = now
        state.metadata.updated_at = now

        if lease is not None:
            lease.ensure_held()
        saved = self.store.save(slug, state)

        logger.info(
            f"Committed chapter {chapter_number} of '{slug}' "
            f"(romance={level}, status={saved.status.value})"
        )
        return CommitResult(
            novel_slug=slug,
            committed=True,
            chapter_number=chapter_number,
            status=saved.status,
            chapter=chapter,
            violations=[v.to_dict() for v in validation_result.violations],
            suggestions=validation_result.suggestions,
            aggregate_score=validation_result.aggregate_score,
            chapter_document=build_chapter_document(
                saved, chapter, self.content_rating, validation_result.aggregate_score
            ),
            milestones=reached,
        )

    def _apply_character_updates(self, state: StoryState, parsed_chapter: ParsedChapter) -> None:
        for name, attrs in parsed_chapter.character_updates.items():
            registered = state.resolve_character(name)
            if registered is None:
                # Unknown names are rejected by validation; skip if validation was disabled
                logger.warning(f"Ignoring update for unregistered character '{name}'")
                continue
            record = state.characters[registered]
            record.current_state = CharacterState.model_validate({
                **record.current_state.model_dump(),
                **attrs,
            })

    def _apply_foreshadowing(self, state: StoryState, parsed_chapter: ParsedChapter, chapter_number: int) -> None:
        for reference in parsed_chapter.foreshadowing_resolved:
            entry = state.plot.find_foreshadowing(reference)
            if entry is not None and not entry.resolved:
                entry.resolved = True
                entry.resolved_chapter = chapter_number
        taken = {entry.id for entry in state.plot.foreshadowing}
        for planted in parsed_chapter.foreshadowing_planted:
            ident = planted.get("id")
            if not ident or ident in taken:
                ident = state.plot.next_foreshadowing_id()
            state.plot.foreshadowing.append(
                ForeshadowingEntry(id=ident, content=planted["content"], planted_chapter=chapter_number)
            )
            taken.add(ident)
