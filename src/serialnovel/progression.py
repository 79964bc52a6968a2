"""
Progression Model

Pure functions that place a chapter within the arc of a serialized novel and
bound how far each progression dimension may move:

- stage_of: narrative stage from the chapter's share of the target length
- max_delta: largest permitted one-chapter increase per stage and dimension
- expected_range: [low, high] band a dimension should sit in at a chapter
- suggest_pacing_adjustment: slow down / speed up advice for romance pacing

The thresholds are tuning parameters, not measured truths.
"""

import math
from enum import Enum
from typing import Dict, List, Optional, Tuple, Any, Iterable

from .models import PROGRESSION_DIMENSIONS
from .utils.errors import ValidationError


DEFAULT_TARGET_CHAPTERS = 20

# Tolerance around the interpolated target level, in progression points
PACING_TOLERANCE = 15

# |current - target| above this triggers a pacing adjustment
ADJUSTMENT_THRESHOLD = 10


class Stage(str, Enum):
    INTRODUCTION = "Introduction"
    RISING = "Rising"
    CLIMAX = "Climax"
    RESOLUTION = "Resolution"


STAGE_ORDER = [Stage.INTRODUCTION, Stage.RISING, Stage.CLIMAX, Stage.RESOLUTION]

# Upper bound (inclusive) of chapter/target ratio for each stage
STAGE_THRESHOLDS: List[Tuple[float, Stage]] = [
    (0.30, Stage.INTRODUCTION),
    (0.60, Stage.RISING),
    (0.80, Stage.CLIMAX),
]

# Level of each dimension at the ratio anchors 0, .3, .6, .8 and 1.0
RATIO_ANCHORS = (0.0, 0.30, 0.60, 0.80, 1.0)
DIMENSION_BANDS: Dict[str, Tuple[int, int, int, int, int]] = {
    "emotional": (0, 15, 40, 70, 100),
    "physical": (0, 10, 35, 65, 100),
    "social": (0, 20, 45, 75, 100),
    "plot": (0, 30, 60, 80, 100),
}

MAX_DELTAS: Dict[Stage, Dict[str, int]] = {
    Stage.INTRODUCTION: {"physical": 5, "emotional": 10, "social": 5, "plot": 10},
    Stage.RISING: {"physical": 8, "emotional": 12, "social": 8, "plot": 12},
    Stage.CLIMAX: {"physical": 12, "emotional": 15, "social": 12, "plot": 15},
    Stage.RESOLUTION: {"physical": 15, "emotional": 20, "social": 15, "plot": 20},
}

# Largest in-story time skip allowed between consecutive chapters, in days
TIME_JUMP_LIMITS: Dict[Stage, Dict[str, Any]] = {
    Stage.INTRODUCTION: {"max": 1, "unit": "days"},
    Stage.RISING: {"max": 3, "unit": "days"},
    Stage.CLIMAX: {"max": 1, "unit": "days"},
    Stage.RESOLUTION: {"max": 7, "unit": "days"},
}

STAGE_GUIDANCE: Dict[Stage, Dict[str, Any]] = {
    Stage.INTRODUCTION: {
        "description": "First meeting and early friction",
        "key_elements": ["hostility", "curiosity", "a subtle pull"],
        "subplots": ["introduce the world", "protagonist background"],
        "tones": ["curiosity", "tension", "mystery", "anticipation"],
    },
    Stage.RISING: {
        "description": "Feelings deepen while conflicts build",
        "key_elements": ["building trust", "recognizing feelings", "inner conflict"],
        "subplots": ["outside threat", "a secret from the past", "a rival appears"],
        "tones": ["warmth", "confusion", "hope", "fear"],
    },
    Stage.CLIMAX: {
        "description": "The relationship turns and faces its crisis",
        "key_elements": ["confession", "misunderstanding", "separation"],
        "subplots": ["the greatest threat", "a secret revealed", "a moment of choice"],
        "tones": ["passion", "despair", "conflict", "heartache"],
    },
    Stage.RESOLUTION: {
        "description": "Reconciliation and an earned ending",
        "key_elements": ["discovering the truth", "reunion", "lasting love"],
        "subplots": ["final trial", "every conflict resolved"],
        "tones": ["hope", "joy", "relief", "love"],
    },
}

SLOW_DOWN_SUGGESTIONS = [
    "Add conflict or a misunderstanding between the leads",
    "Shift focus to a subplot for this chapter",
    "Express feelings indirectly instead of declaring them",
    "Introduce an external obstacle",
]

SPEED_UP_SUGGESTIONS = [
    "Add an emotionally charged moment between the leads",
    "Increase small physical contact",
    "Show feelings through inner monologue",
    "Set up a romantic situation",
]

# Ordered relationship milestones; each is reached once the emotional scalar
# crosses its threshold and enough chapters passed since the previous one.
RELATIONSHIP_MILESTONES: List[Dict[str, Any]] = [
    {
        "id": "first_encounter",
        "emotional_threshold": 0,
        "minimum_chapters": 1,
        "required_elements": ["the leads meet", "a first impression or emotional reaction"],
        "allowed_emotions": ["curiosity", "wariness", "surprise", "indifference"],
    },
    {
        "id": "repeated_interactions",
        "emotional_threshold": 10,
        "minimum_chapters": 2,
        "required_elements": ["several interactions", "growing interest in each other"],
        "allowed_emotions": ["interest", "concern", "confusion", "amusement"],
    },
    {
        "id": "trust_building",
        "emotional_threshold": 25,
        "minimum_chapters": 3,
        "required_elements": ["mutual understanding", "a trustworthy act", "personal details shared"],
        "allowed_emotions": ["trust", "respect", "fondness", "protectiveness"],
    },
    {
        "id": "emotional_awareness",
        "emotional_threshold": 40,
        "minimum_chapters": 2,
        "required_elements": ["recognizing special feelings", "heightened attention to the other"],
        "allowed_emotions": ["attraction", "longing", "confusion about feelings"],
    },
    {
        "id": "conflict_and_resolution",
        "emotional_threshold": 60,
        "minimum_chapters": 2,
        "required_elements": ["a serious conflict or misunderstanding", "working through it"],
        "allowed_emotions": ["pain", "regret", "determination", "relief"],
    },
    {
        "id": "commitment",
        "emotional_threshold": 85,
        "minimum_chapters": 1,
        "required_elements": ["certainty about each other", "a promise about the future"],
        "allowed_emotions": ["love", "devotion", "happiness", "security"],
    },
]


def _check_position(chapter_number: int, target_chapters: int) -> None:
    if not isinstance(chapter_number, int) or chapter_number < 1:
        raise ValidationError(f"Chapter number must be a positive integer, got {chapter_number!r}")
    if not isinstance(target_chapters, int) or target_chapters < 1:
        raise ValidationError(f"Target chapters must be a positive integer, got {target_chapters!r}")


def _check_dimension(dimension: str) -> None:
    if dimension not in PROGRESSION_DIMENSIONS:
        raise ValidationError(
            f"Unknown progression dimension '{dimension}'",
            details={"allowed": list(PROGRESSION_DIMENSIONS)},
        )


def stage_of(chapter_number: int, target_chapters: int) -> Stage:
    """
    Determine the narrative stage of a chapter.

    Args:
        chapter_number: 1-based chapter number
        target_chapters: Planned length of the novel

    Returns:
        Stage; chapters past the target are in Resolution

    Raises:
        ValidationError: If either argument is not a positive integer
    """
    _check_position(chapter_number, target_chapters)
    ratio = chapter_number / target_chapters
    for upper, stage in STAGE_THRESHOLDS:
        if ratio <= upper:
            return stage
    return Stage.RESOLUTION


def max_delta(stage: Stage, dimension: str) -> int:
    """Maximum permitted one-chapter increase of a dimension in a stage."""
    _check_dimension(dimension)
    return MAX_DELTAS[Stage(stage)][dimension]


def target_level(chapter_number: int, target_chapters: int, dimension: str) -> float:
    """Interpolated level a dimension should have reached at a chapter."""
    _check_position(chapter_number, target_chapters)
    _check_dimension(dimension)
    ratio = min(1.0, chapter_number / target_chapters)
    band = DIMENSION_BANDS[dimension]
    for i in range(1, len(RATIO_ANCHORS)):
        start, end = RATIO_ANCHORS[i - 1], RATIO_ANCHORS[i]
        if ratio <= end:
            fraction = (ratio - start) / (end - start)
            return band[i - 1] + (band[i] - band[i - 1]) * fraction
    return float(band[-1])


def expected_range(chapter_number: int, target_chapters: int, dimension: str) -> Tuple[int, int]:
    """
    Bounds a dimension's level should lie within at a chapter.

    Both bounds are non-decreasing in chapter_number.

    Returns:
        (low, high) clamped to [0, 100]
    """
    target = target_level(chapter_number, target_chapters, dimension)
    low = max(0, int(math.floor(target - PACING_TOLERANCE)))
    high = min(100, int(math.ceil(target + PACING_TOLERANCE)))
    return low, high


def clamp_delta(stage: Stage, dimension: str, delta: int) -> int:
    """Clamp an inferred (not declared) delta into [0, max_delta]."""
    return max(0, min(int(delta), max_delta(stage, dimension)))


def suggest_pacing_adjustment(
    chapter_number: int,
    current_level: int,
    target_chapters: int = DEFAULT_TARGET_CHAPTERS
) -> Dict[str, Any]:
    """
    Compare a romance level with where the arc expects it to be.

    Args:
        chapter_number: Chapter being planned
        current_level: Current romance progression level (0-100)
        target_chapters: Planned length of the novel

    Returns:
        Dict with needed, direction (slow_down|speed_up), intensity,
        target_level and suggestions
    """
    target = int(round(target_level(chapter_number, target_chapters, "emotional")))
    difference = current_level - target
    direction = "slow_down" if difference > 0 else "speed_up"
    return {
        "needed": abs(difference) > ADJUSTMENT_THRESHOLD,
        "direction": direction,
        "intensity": abs(difference),
        "target_level": target,
        "suggestions": list(SLOW_DOWN_SUGGESTIONS if direction == "slow_down" else SPEED_UP_SUGGESTIONS),
    }


def stage_guidance(stage: Stage) -> Dict[str, Any]:
    guidance = STAGE_GUIDANCE[Stage(stage)]
    return {
        "stage": Stage(stage).value,
        "description": guidance["description"],
        "key_elements": list(guidance["key_elements"]),
        "subplots": list(guidance["subplots"]),
    }


def _last_chapters_of_stages(target_chapters: int) -> List[int]:
    return [int(math.floor(upper * target_chapters)) for upper, _ in STAGE_THRESHOLDS]


def tension_level(chapter_number: int, target_chapters: int = DEFAULT_TARGET_CHAPTERS) -> int:
    """
    Tension in a ten-chapter rise-and-release cycle with peaks at stage ends.

    Returns:
        Tension between 20 and 100
    """
    _check_position(chapter_number, target_chapters)
    cycle, position = divmod(chapter_number - 1, 10)
    tension = 30 + cycle * 10
    if position < 7:
        tension += position * 5
    else:
        tension -= (position - 7) * 10
    if chapter_number in _last_chapters_of_stages(target_chapters):
        tension = 90
    return max(20, min(100, tension))


def emotional_tone(chapter_number: int, target_chapters: int = DEFAULT_TARGET_CHAPTERS) -> str:
    """Suggested emotional tone, rotating through the stage's tone list."""
    tones = STAGE_GUIDANCE[stage_of(chapter_number, target_chapters)]["tones"]
    return tones[(chapter_number - 1) % len(tones)]


def time_jump_limit(stage: Stage) -> Dict[str, Any]:
    return dict(TIME_JUMP_LIMITS[Stage(stage)])


def overall_progress(tracking: Dict[str, int]) -> float:
    """
    Combine dimension levels into one progress figure.

    Two or more moving dimensions give their plain average; a single moving
    dimension counts at half weight; no movement is zero.
    """
    scores = [tracking.get(dimension, 0) for dimension in PROGRESSION_DIMENSIONS]
    moving = [score for score in scores if score > 0]
    if len(moving) >= 2:
        return round(sum(scores) / len(scores), 1)
    if len(moving) == 1:
        return round(max(scores) * 0.5, 1)
    return 0.0


def current_milestone(achieved_ids: Iterable[str]) -> Dict[str, Any]:
    """The next milestone not yet achieved (the last one once all are done)."""
    achieved = set(achieved_ids)
    for milestone in RELATIONSHIP_MILESTONES:
        if milestone["id"] not in achieved:
            return milestone
    return RELATIONSHIP_MILESTONES[-1]


def milestones_reached(
    emotional_level: int,
    chapter_number: int,
    achieved: Dict[str, int]
) -> List[str]:
    """
    Milestones newly reached after a chapter commits.

    Args:
        emotional_level: Emotional scalar after the commit
        chapter_number: Chapter being committed
        achieved: Already achieved milestone id -> chapter

    Returns:
        Milestone ids reached at this chapter, in order (at most one per chapter)
    """
    last_chapter: Optional[int] = max(achieved.values()) if achieved else None
    for milestone in RELATIONSHIP_MILESTONES:
        if milestone["id"] in achieved:
            continue
        gap_ok = last_chapter is None or chapter_number - last_chapter >= milestone["minimum_chapters"]
        if emotional_level >= milestone["emotional_threshold"] and gap_ok:
            return [milestone["id"]]
        return []
    return []
