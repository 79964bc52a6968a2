"""
Declarative constraint rules.

A RuleSet is versioned configuration, not code: banned patterns scoped to
narrative stages, progression cues used to infer dimension movement from
prose, and the thresholds that turn weighted violations into a verdict.
Rule sets load from JSON or YAML; DEFAULT_RULESET is used otherwise.
"""

import json
import re
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, PrivateAttr, field_validator, model_validator

from .progression import Stage
from .utils.errors import Severity, ValidationError

logger = logging.getLogger(__name__)


class RuleClass(str, Enum):
    """Which violation type a matching rule produces."""
    PACING = "pacing"
    CONTINUITY = "continuity"


def _coerce_severity(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return Severity[value.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown severity '{value}'")
    return value


class Rule(BaseModel):
    """A banned phrase or pattern, active in the listed stages (all when empty)."""
    id: str = Field(..., min_length=1)
    pattern: str = Field(..., min_length=1)
    label: str
    stages: List[Stage] = Field(default_factory=list)
    violation: RuleClass = RuleClass.PACING
    severity: Severity = Severity.HIGH
    weight: float = Field(default=1.0, ge=0.0)
    message: str = ""
    suggestion: Optional[str] = None
    allow_when_completing: bool = False

    _compiled: Optional[re.Pattern] = PrivateAttr(default=None)

    @field_validator("severity", mode="before")
    @classmethod
    def parse_severity(cls, value):
        return _coerce_severity(value)

    @field_validator("pattern")
    @classmethod
    def pattern_compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid pattern: {e}")
        return value

    @property
    def regex(self) -> re.Pattern:
        if self._compiled is None:
            self._compiled = re.compile(self.pattern, re.IGNORECASE)
        return self._compiled

    def applies_to(self, stage: Stage, completing: bool = False) -> bool:
        if completing and self.allow_when_completing:
            return False
        return not self.stages or stage in self.stages

    def find(self, text: str) -> List[str]:
        return [m.group(0) for m in self.regex.finditer(text)]


class ProgressionCue(BaseModel):
    """A prose cue that nudges one progression dimension forward."""
    dimension: str = Field(..., pattern="^(physical|emotional|social|plot)$")
    pattern: str
    increment: int = Field(..., ge=0, le=100)

    _compiled: Optional[re.Pattern] = PrivateAttr(default=None)

    @property
    def regex(self) -> re.Pattern:
        if self._compiled is None:
            self._compiled = re.compile(self.pattern, re.IGNORECASE)
        return self._compiled


class RuleSet(BaseModel):
    """Versioned collection of rules and verdict thresholds."""
    name: str = "default"
    version: str = "1.0.0"
    rules: List[Rule] = Field(default_factory=list)
    cues: List[ProgressionCue] = Field(default_factory=list)
    hard_threshold: Severity = Severity.HIGH
    soft_threshold: float = Field(default=6.0, ge=0.0)
    repetition_similarity: float = Field(default=0.85, gt=0.0, le=1.0)
    regression_tolerance: int = Field(default=5, ge=0)
    # Sentence-initial words at or above this Zipf frequency are ordinary English, not names
    dictionary_min_zipf: float = Field(default=3.0, ge=0.0, le=8.0)
    name_severity: Severity = Severity.HIGH
    hangul_name_severity: Severity = Severity.HIGH
    # Characters with these roles must be mentioned in every chapter
    required_roles: List[str] = Field(default_factory=lambda: ["protagonist"])
    missing_character_severity: Severity = Severity.MEDIUM
    # Chapter length bounds in words; 0 disables a bound
    min_chapter_words: int = Field(default=0, ge=0)
    max_chapter_words: int = Field(default=0, ge=0)
    length_severity: Severity = Severity.MEDIUM

    @field_validator(
        "hard_threshold", "name_severity", "hangul_name_severity",
        "missing_character_severity", "length_severity",
        mode="before",
    )
    @classmethod
    def parse_threshold(cls, value):
        return _coerce_severity(value)

    @model_validator(mode="after")
    def length_bounds_ordered(self) -> "RuleSet":
        if self.min_chapter_words and self.max_chapter_words and self.max_chapter_words < self.min_chapter_words:
            raise ValueError("max_chapter_words must not be below min_chapter_words")
        return self

    @field_validator("rules")
    @classmethod
    def rule_ids_unique(cls, rules: List[Rule]) -> List[Rule]:
        ids = [rule.id for rule in rules]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate rule ids: {', '.join(duplicates)}")
        return rules

    def active_rules(self, stage: Stage, completing: bool = False) -> List[Rule]:
        return [rule for rule in self.rules if rule.applies_to(stage, completing)]

    def prohibited_keywords(self, stage: Stage, completing: bool = False) -> List[str]:
        """Sorted, de-duplicated labels of the pacing rules active in a stage."""
        return sorted({
            rule.label for rule in self.active_rules(stage, completing)
            if rule.violation == RuleClass.PACING
        })

    def infer_deltas(self, text: str) -> Dict[str, int]:
        """Sum cue increments per dimension for cues that match the text."""
        deltas: Dict[str, int] = {}
        for cue in self.cues:
            if cue.regex.search(text):
                deltas[cue.dimension] = deltas.get(cue.dimension, 0) + cue.increment
        return deltas

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleSet":
        from pydantic import ValidationError as PydanticValidationError
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid rule set",
                details={"errors": e.errors(include_url=False, include_context=False)},
            )

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "RuleSet":
        """
        Load a rule set from a .json, .yaml or .yml file.

        Raises:
            ValidationError: If the file type is unsupported or the content is invalid
            OSError: If the file cannot be read
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                raise ValidationError(
                    f"Unsupported rule set format '{path.suffix}'",
                    details={"path": str(path)},
                )
        if not isinstance(data, dict):
            raise ValidationError("Rule set file must contain a mapping", details={"path": str(path)})
        ruleset = cls.from_dict(data)
        logger.info(f"Loaded rule set '{ruleset.name}' v{ruleset.version} with {len(ruleset.rules)} rules from {path}")
        return ruleset


_EARLY = [Stage.INTRODUCTION]
_BEFORE_CLIMAX = [Stage.INTRODUCTION, Stage.RISING]
_BEFORE_RESOLUTION = [Stage.INTRODUCTION, Stage.RISING, Stage.CLIMAX]

DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "id": "declared_love",
        "pattern": r"\bI love you\b|\bin love with (?:you|him|her|them)\b|사랑한다|사랑해",
        "label": "declared love",
        "stages": _EARLY,
        "message": "A declaration of love is premature this early in the story.",
        "suggestion": "Let attraction show through small gestures instead of a declaration.",
    },
    {
        "id": "kiss",
        "pattern": r"\bkiss(?:ed|es|ing)?\b|키스|입맞춤",
        "label": "kiss",
        "stages": _EARLY,
        "message": "A kiss is premature in the introduction.",
        "suggestion": "Replace the kiss with a charged near-miss or an interrupted moment.",
    },
    {
        "id": "confession",
        "pattern": r"\bconfess(?:ed|es|ing)? (?:my|her|his|their) (?:love|feelings)\b|고백",
        "label": "confession of feelings",
        "stages": _EARLY,
        "message": "A confession of feelings is premature in the introduction.",
    },
    {
        "id": "becoming_a_couple",
        "pattern": r"\b(?:became|are now|were now) lovers\b|\bofficially (?:a couple|together)\b|연인이 되|사귀",
        "label": "becoming a couple",
        "stages": _BEFORE_CLIMAX,
        "message": "The leads cannot become a couple before the climax.",
    },
    {
        "id": "marriage",
        "pattern": r"\bmarr(?:y|ied|iage|ying)\b|\bwedding\b|\bproposed to\b|결혼|청혼",
        "label": "marriage",
        "stages": _BEFORE_CLIMAX,
        "message": "Marriage or a proposal is outside the bounds of this stage.",
        "suggestion": "Keep marriage as a future possibility, not an event.",
    },
    {
        "id": "pregnancy",
        "pattern": r"\bpregnan(?:t|cy)\b|임신",
        "label": "pregnancy",
        "stages": _BEFORE_RESOLUTION,
        "message": "Pregnancy is reserved for the resolution.",
    },
    {
        "id": "multi_year_time_skip",
        "pattern": (
            r"\b(?:several|many|a few|two|three|four|five|six|seven|eight|nine|ten|\d+)\s+years\s+"
            r"(?:later|passed|had passed|went by)\b|\d+\s*년\s*(?:후|뒤)"
        ),
        "label": "multi-year time skip",
        "stages": _BEFORE_CLIMAX,
        "message": "A multi-year time skip jumps over story that has not been told yet.",
        "suggestion": "Keep the timeline continuous; cover at most a few days.",
    },
    {
        "id": "premature_ending",
        # A closing "The End" line, an epilogue heading or a fairy-tale close
        "pattern": (
            r"(?m)^[\s*#_]*(?:the end|fin|완결|끝)[\s*_.!]*$"
            r"|^[\s*#_]*(?:epilogue|에필로그)\b[^\n]{0,60}$"
            r"|\blived happily ever after\b"
        ),
        "label": "story ending",
        "stages": _BEFORE_RESOLUTION,
        "allow_when_completing": True,
        "message": "The chapter reads like an ending, but the story is not completing.",
    },
    {
        "id": "memory_reset",
        "pattern": r"\blost (?:all )?(?:her|his|their) memor(?:y|ies)\b|기억을 잃",
        "label": "memory-loss reset",
        "violation": "continuity",
        "severity": "medium",
        "message": "Memory loss resets established character knowledge.",
        "suggestion": "Keep characters' knowledge of earlier events intact.",
    },
    {
        "id": "resurrection",
        "pattern": r"\b(?:came back to life|rose from the dead|was alive after all)\b|되살아났",
        "label": "unexplained resurrection",
        "violation": "continuity",
        "severity": "medium",
        "message": "A return from death contradicts recorded events unless set up by foreshadowing.",
    },
]

DEFAULT_CUES: List[Dict[str, Any]] = [
    {"dimension": "physical", "pattern": r"\b(?:met|bumped into|ran into)\b|만났|마주쳤|부딪혔", "increment": 3},
    {"dimension": "physical", "pattern": r"\b(?:alone together|just the two of them)\b|단둘이|둘만", "increment": 5},
    {"dimension": "physical", "pattern": r"\b(?:took (?:her|his|their) hand|held hands|brushed against)\b|손을 잡|스쳤", "increment": 5},
    {"dimension": "emotional", "pattern": r"\b(?:trusted|relied on|curious about)\b|신뢰|믿었", "increment": 3},
    {"dimension": "emotional", "pattern": r"\b(?:her past|his past|their past|a secret|old wound)\b|과거|비밀|상처", "increment": 5},
    {"dimension": "social", "pattern": r"\b(?:rumou?rs?|in public|everyone saw)\b|소문|공개적", "increment": 3},
    {"dimension": "plot", "pattern": r"\b(?:alliance|allied|cooperat\w*|side by side)\b|협력|동맹", "increment": 3},
    {"dimension": "plot", "pattern": r"\b(?:danger|attacked|ambush\w*|rescued|crisis)\b|위험|위기|구했", "increment": 5},
]

DEFAULT_RULESET = RuleSet(
    name="default",
    version="1.1.0",
    rules=[Rule(**rule) for rule in DEFAULT_RULES],
    cues=[ProgressionCue(**cue) for cue in DEFAULT_CUES],
)


def load_ruleset(path: Optional[Union[str, Path]] = None) -> RuleSet:
    """Load a rule set from a file, or return the built-in rules when no path is given."""
    if path is None:
        return DEFAULT_RULESET
    return RuleSet.from_file(path)
