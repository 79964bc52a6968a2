"""
Story state data model.

This module defines the canonical structure of a serialized novel's state
using Pydantic for validation. The persisted JSON document uses camelCase
field names; Python code uses the snake_case attribute names.
"""

import re
from enum import Enum
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


SLUG_PATTERN = r"^[a-z0-9][a-z0-9-]*$"
SLUG_MAX_LENGTH = 64

PROGRESSION_DIMENSIONS = ("physical", "emotional", "social", "plot")


class NovelStatus(str, Enum):
    """Lifecycle states of a novel. Transitions only move forward."""
    NOT_STARTED = "NotStarted"
    ACTIVE = "Active"
    COMPLETING = "Completing"
    COMPLETED = "Completed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, other: "NovelStatus") -> bool:
        return other.rank >= self.rank


_STATUS_ORDER = [
    NovelStatus.NOT_STARTED,
    NovelStatus.ACTIVE,
    NovelStatus.COMPLETING,
    NovelStatus.COMPLETED,
]


class ElementKind(str, Enum):
    """Kinds of plot elements tracked to prevent repetition."""
    CONFLICT = "conflict"
    TWIST = "twist"
    ROMANCE_BEAT = "romance_beat"
    SUBPLOT = "subplot"


class StateModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python, no unknown fields."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class NovelMetadata(StateModel):
    title: str = Field(..., min_length=1)
    author: str = "Anonymous"
    genre: str = "romance fantasy"
    status: NovelStatus = NovelStatus.NOT_STARTED
    target_chapters: int = Field(default=20, gt=0)
    tropes: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completion_requested_at: Optional[str] = None
    completed_at: Optional[str] = None


class WorldState(StateModel):
    setting: str = ""
    rules: List[str] = Field(default_factory=list)
    subsystems: Dict[str, str] = Field(default_factory=dict)
    locations: List[str] = Field(default_factory=list)


class CharacterState(StateModel):
    location: str = ""
    emotion: str = ""
    power_level: int = Field(default=0, ge=0)


class CharacterRecord(StateModel):
    role: str = "supporting"
    personality_traits: List[str] = Field(default_factory=list)
    abilities: List[str] = Field(default_factory=list)
    relationships: Dict[str, str] = Field(default_factory=dict)
    current_state: CharacterState = Field(default_factory=CharacterState)
    arc_summary: str = ""


class ForeshadowingEntry(StateModel):
    id: str = Field(..., min_length=1)
    content: str
    planted_chapter: int = Field(..., ge=0)
    resolved: bool = False
    resolved_chapter: Optional[int] = None


class PlotState(StateModel):
    main_arc_summary: str = ""
    completed_events: List[str] = Field(default_factory=list)
    active_conflicts: List[str] = Field(default_factory=list)
    foreshadowing: List[ForeshadowingEntry] = Field(default_factory=list)

    @field_validator("foreshadowing")
    @classmethod
    def foreshadowing_ids_unique(cls, entries: List[ForeshadowingEntry]) -> List[ForeshadowingEntry]:
        seen = set()
        for entry in entries:
            if entry.id in seen:
                raise ValueError(f"duplicate foreshadowing id '{entry.id}'")
            seen.add(entry.id)
        return entries

    def find_foreshadowing(self, reference: str) -> Optional[ForeshadowingEntry]:
        """Find an entry by exact id, falling back to a content substring match."""
        for entry in self.foreshadowing:
            if entry.id == reference:
                return entry
        needle = reference.strip().lower()
        if not needle:
            return None
        for entry in self.foreshadowing:
            if needle in entry.content.lower() or entry.content.lower() in needle:
                return entry
        return None

    def next_foreshadowing_id(self) -> str:
        taken = {entry.id for entry in self.foreshadowing}
        n = len(self.foreshadowing) + 1
        while f"foreshadow_{n}" in taken:
            n += 1
        return f"foreshadow_{n}"


class ChapterRecord(StateModel):
    number: int = Field(..., ge=1)
    title: str
    summary: str = ""
    key_events: List[str] = Field(default_factory=list)
    emotional_tone: str = ""
    word_count: int = Field(default=0, ge=0)
    romance_progression_level: int = Field(default=0, ge=0, le=100)
    ending_type: Optional[str] = None
    publication_date: Optional[str] = None
    progression_deltas: Dict[str, int] = Field(default_factory=dict)


class ProgressionTracking(StateModel):
    physical: int = Field(default=0, ge=0, le=100)
    emotional: int = Field(default=0, ge=0, le=100)
    social: int = Field(default=0, ge=0, le=100)
    plot: int = Field(default=0, ge=0, le=100)

    def get(self, dimension: str) -> int:
        if dimension not in PROGRESSION_DIMENSIONS:
            raise KeyError(dimension)
        return getattr(self, dimension)

    def as_dict(self) -> Dict[str, int]:
        return {dimension: getattr(self, dimension) for dimension in PROGRESSION_DIMENSIONS}


class RelationshipMilestone(StateModel):
    id: str
    achieved_at_chapter: int = Field(..., ge=1)


class UsedElement(StateModel):
    kind: ElementKind
    content: str = Field(..., min_length=1)
    chapter: int = Field(..., ge=1)


class StoryState(StateModel):
    """
    Complete structured state of one serialized novel.

    Invariants checked on every validation: chapters are numbered 1..N with
    no gaps, foreshadowing ids are unique, and every progression scalar lies
    in [0, 100].
    """
    novel_slug: str = Field(..., min_length=1, max_length=SLUG_MAX_LENGTH, pattern=SLUG_PATTERN)
    metadata: NovelMetadata
    world_state: WorldState = Field(default_factory=WorldState)
    characters: Dict[str, CharacterRecord] = Field(default_factory=dict)
    plot: PlotState = Field(default_factory=PlotState)
    chapters: List[ChapterRecord] = Field(default_factory=list)
    progression_tracking: ProgressionTracking = Field(default_factory=ProgressionTracking)
    relationship_milestones: List[RelationshipMilestone] = Field(default_factory=list)
    used_elements: List[UsedElement] = Field(default_factory=list)
    aliases: Dict[str, str] = Field(default_factory=dict)
    blocked_names: List[str] = Field(default_factory=list)
    known_terms: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_invariants(self) -> "StoryState":
        for index, chapter in enumerate(self.chapters, start=1):
            if chapter.number != index:
                raise ValueError(
                    f"chapter numbers must be contiguous from 1: position {index} holds chapter {chapter.number}"
                )
        for alias, name in self.aliases.items():
            if name not in self.characters:
                raise ValueError(f"alias '{alias}' points to unregistered character '{name}'")
        return self

    @classmethod
    def empty(cls, slug: str, title: Optional[str] = None) -> "StoryState":
        """Default state for a slug that has never been saved."""
        return cls(novel_slug=slug, metadata=NovelMetadata(title=title or slug))

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "StoryState":
        return cls.model_validate(document)

    @property
    def status(self) -> NovelStatus:
        return self.metadata.status

    @property
    def last_chapter_number(self) -> int:
        return self.chapters[-1].number if self.chapters else 0

    @property
    def next_chapter_number(self) -> int:
        return self.last_chapter_number + 1

    @property
    def last_romance_level(self) -> int:
        return self.chapters[-1].romance_progression_level if self.chapters else 0

    def chapter(self, number: int) -> Optional[ChapterRecord]:
        if 1 <= number <= len(self.chapters):
            return self.chapters[number - 1]
        return None

    def pending_foreshadowing(self) -> List[ForeshadowingEntry]:
        return [entry for entry in self.plot.foreshadowing if not entry.resolved]

    def resolve_character(self, name: str) -> Optional[str]:
        """Map a name or alias to its registered character name."""
        if name in self.characters:
            return name
        return self.aliases.get(name)


class ParsedChapter(BaseModel):
    """Structured fields extracted from raw generated chapter text."""
    number: Optional[int] = None
    title: Optional[str] = None
    content: str
    summary: str = ""
    key_events: List[str] = Field(default_factory=list)
    emotional_tone: str = ""
    ending_type: Optional[str] = None
    word_count: int = 0
    romance_progression_level: Optional[int] = None
    romance_progression_increment: Optional[int] = None
    progression_deltas: Dict[str, int] = Field(default_factory=dict)
    character_updates: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    foreshadowing_planted: List[Dict[str, str]] = Field(default_factory=list)
    foreshadowing_resolved: List[str] = Field(default_factory=list)
    used_elements: List[Dict[str, str]] = Field(default_factory=list)
    status: Optional[str] = None

    def resolved_romance_level(self, previous_level: int) -> Optional[int]:
        """Absolute romance level, converting the increment form when that is all we have."""
        if self.romance_progression_level is not None:
            return self.romance_progression_level
        if self.romance_progression_increment is not None:
            return max(0, min(100, previous_level + self.romance_progression_increment))
        return None


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and len(slug) <= SLUG_MAX_LENGTH and re.match(SLUG_PATTERN, slug) is not None
