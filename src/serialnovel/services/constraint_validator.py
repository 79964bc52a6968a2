"""
Constraint validator for candidate chapters.

Checks a generated chapter against the novel's recorded state and the
progression model before anything is committed:

- Character consistency: names in the prose must be registered (or aliases),
  and main characters must appear
- Pacing: romance level and declared deltas must fit the stage bounds
- Banned patterns: stage-scoped rules from the RuleSet
- Repetition: plot elements and events already used may not recur
- Lifecycle markers: ENDING_TYPE only while the novel is completing
- Length: optional word-count bounds from the RuleSet

Violations are collected into a ValidationReport, never raised. The verdict
is rule based: no violation at or above the hard threshold, and a weighted
severity sum no larger than the soft threshold.
"""

import re
import difflib
import logging
from collections import Counter
from typing import Dict, Any, List, Optional, Set, Union

from wordfreq import zipf_frequency

from ..models import StoryState, ParsedChapter, NovelStatus, PROGRESSION_DIMENSIONS
from ..progression import (
    Stage,
    stage_of,
    max_delta,
    expected_range,
    clamp_delta,
    suggest_pacing_adjustment,
    overall_progress,
    time_jump_limit,
)
from ..rules import RuleSet, RuleClass, DEFAULT_RULESET
from ..utils.chapter_parser import count_words
from ..utils.errors import (
    Severity,
    ConstraintViolation,
    ContinuityViolation,
    PacingViolation,
)

logger = logging.getLogger(__name__)

LATIN_NAME_RE = re.compile(r"\b[A-Z][a-z][A-Za-z'’-]*")
HANGUL_NAME_RE = re.compile(r"([가-힣]{2,4})(?=은|는|이|가|을|를|의|에게|에서|와|과|로|으로)")
LOWER_WORD_RE = re.compile(r"\b[a-z][a-z'’-]*\b")
SENTENCE_BREAK_CHARS = set('.!?"“”\'‘’:;—–-*…([')

# Hangul candidates must repeat this often before they count as names
HANGUL_MIN_OCCURRENCES = 3

COMMON_CAPITALIZED_WORDS: Set[str] = {
    # pronouns and determiners
    "i", "i'm", "i'd", "i'll", "i've", "you", "he", "she", "it", "we", "they", "me", "him", "her",
    "us", "them", "my", "your", "his", "its", "our", "their", "this", "that", "these", "those",
    "the", "a", "an", "some", "any", "every", "each", "no", "none", "all", "both", "either",
    "neither", "another", "other", "such", "what", "which", "who", "whom", "whose", "someone",
    "something", "nothing", "everyone", "everything", "anyone", "nobody", "somebody",
    # conjunctions, prepositions
    "and", "but", "or", "nor", "so", "yet", "for", "because", "although", "though", "if", "unless",
    "when", "whenever", "while", "where", "wherever", "after", "before", "since", "until", "as",
    "at", "by", "in", "on", "of", "to", "from", "with", "without", "into", "onto", "over", "under",
    "above", "below", "between", "behind", "beside", "beyond", "through", "across", "around",
    "against", "along", "among", "inside", "outside", "upon", "within", "despite", "during",
    # adverbs and sentence openers
    "then", "now", "there", "here", "still", "just", "only", "even", "again", "once", "twice",
    "perhaps", "maybe", "suddenly", "finally", "meanwhile", "later", "soon", "later", "instead",
    "however", "therefore", "besides", "yes", "no", "not", "never", "always", "sometimes",
    "often", "slowly", "quietly", "carefully", "somewhere", "nowhere", "everywhere", "outside",
    "inside", "tonight", "today", "tomorrow", "yesterday", "how", "why", "well", "too", "very",
    "ah", "oh", "hmm", "huh", "hey", "please", "thank", "thanks", "sorry", "okay", "ok",
    "let", "let's", "don't", "didn't", "can't", "couldn't", "wouldn't", "won't", "isn't", "wasn't",
    "it's", "that's", "there's", "what's", "who's", "he's", "she's", "we're", "they're", "you're",
    "chapter", "part", "prologue", "epilogue", "end",
    # titles and forms of address
    "lord", "lady", "sir", "dame", "madam", "captain", "commander", "general", "king", "queen",
    "prince", "princess", "duke", "duchess", "count", "countess", "baron", "baroness", "emperor",
    "empress", "master", "mistress", "mr", "mrs", "ms", "miss", "dr", "doctor", "professor",
    "highness", "majesty", "grace", "excellency", "father", "mother", "brother", "sister",
    "god", "gods", "heaven", "hell",
    # calendar
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "january", "february", "march", "april", "may", "june", "july", "august", "september",
    "october", "november", "december",
}

COMMON_HANGUL_WORDS: Set[str] = {
    "그녀", "그는", "그가", "그들", "우리", "당신", "자신", "사람", "사람들", "그것", "이것", "저것",
    "마음", "순간", "시간", "모두", "서로", "하나", "모습", "생각", "얼굴", "목소리", "눈빛", "눈물",
    "오늘", "내일", "어제", "지금", "여기", "거기", "무엇", "누구", "황제", "황후", "공작", "공녀",
    "기사", "기사단", "마법", "마법사", "왕국", "제국", "황궁", "황녀", "왕자", "공주", "전하", "폐하",
    "아버지", "어머니", "가문", "세상", "사랑", "감정", "이야기", "대화", "소리", "시선", "손끝",
}

TIME_SKIP_EN_RE = re.compile(
    r"\b(\d+|a|an|one|two|three|four|five|six|seven|eight|nine|ten|several|a few)\s+"
    r"(hours?|days?|weeks?|months?|years?)\s+(?:later|passed|had passed|went by)\b",
    re.IGNORECASE,
)
TIME_SKIP_KO_RE = re.compile(r"(\d+)\s*(시간|일|주|달|개월|년)\s*(?:후|뒤)")

NUMBER_WORDS = {
    "a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "several": 3, "a few": 3,
}
UNIT_DAYS = {
    "hour": 1 / 24, "day": 1, "week": 7, "month": 30, "year": 365,
    "시간": 1 / 24, "일": 1, "주": 7, "달": 30, "개월": 30, "년": 365,
}


class ValidationReport:
    """Outcome of validating one candidate chapter."""

    def __init__(
        self,
        valid: bool,
        violations: List[ConstraintViolation],
        chapter_number: int,
        stage: Stage,
        overall_progress: float,
        suggestions: List[str],
        aggregate_score: float,
        projected_tracking: Dict[str, int],
        romance_level: Optional[int] = None,
    ):
        self.valid = valid
        self.violations = violations
        self.chapter_number = chapter_number
        self.stage = stage
        self.overall_progress = overall_progress
        self.suggestions = suggestions
        self.aggregate_score = aggregate_score
        self.projected_tracking = projected_tracking
        self.romance_level = romance_level

    @property
    def continuity_violations(self) -> List[ConstraintViolation]:
        return [v for v in self.violations if isinstance(v, ContinuityViolation)]

    @property
    def pacing_violations(self) -> List[ConstraintViolation]:
        return [v for v in self.violations if isinstance(v, PacingViolation)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "chapterNumber": self.chapter_number,
            "stage": self.stage.value,
            "violations": [v.to_dict() for v in self.violations],
            "overallProgress": self.overall_progress,
            "suggestions": list(self.suggestions),
            "aggregateScore": self.aggregate_score,
            "projectedTracking": dict(self.projected_tracking),
        }


def _normalize(text: str) -> str:
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def _similar(a: str, b: str, threshold: float) -> bool:
    na, nb = _normalize(a), _normalize(b)
    if not na or not nb:
        return False
    if na == nb:
        return True
    return difflib.SequenceMatcher(None, na, nb).ratio() >= threshold


def is_dictionary_word(word: str, min_zipf: float) -> bool:
    """True when the English lexicon rates the word as ordinary vocabulary (0 disables)."""
    return min_zipf > 0 and zipf_frequency(word, "en") >= min_zipf


def _mentions(text: str, name: str) -> bool:
    if re.match(r"[A-Za-z]", name):
        return re.search(rf"(?<![A-Za-z]){re.escape(name)}(?![A-Za-z])", text) is not None
    return name in text


def _overage_severity(overage: int) -> Severity:
    if overage > 20:
        return Severity.CRITICAL
    if overage > 5:
        return Severity.HIGH
    return Severity.MEDIUM


def _time_skip_days(text: str) -> float:
    """Largest explicit time skip in the text, in days."""
    longest = 0.0
    for match in TIME_SKIP_EN_RE.finditer(text):
        amount_text = match.group(1).lower()
        amount = int(amount_text) if amount_text.isdigit() else NUMBER_WORDS.get(amount_text, 1)
        unit = match.group(2).lower().rstrip("s")
        longest = max(longest, amount * UNIT_DAYS[unit])
    for match in TIME_SKIP_KO_RE.finditer(text):
        longest = max(longest, int(match.group(1)) * UNIT_DAYS[match.group(2)])
    return longest


class ConstraintValidator:
    """Validates candidate chapters against story state and stage bounds."""

    def __init__(self, ruleset: Optional[RuleSet] = None, enabled: bool = True):
        """
        Args:
            ruleset: Rules and thresholds (built-in rules if None)
            enabled: When False only structural checks run (chapter
                sequence and ending markers); content checks are skipped
        """
        self.ruleset = ruleset or DEFAULT_RULESET
        self.enabled = enabled

    def validate(
        self,
        candidate_text: str,
        candidate_metadata: Union[ParsedChapter, Dict[str, Any], None],
        state: StoryState
    ) -> ValidationReport:
        """
        Validate a candidate chapter.

        Args:
            candidate_text: Chapter prose
            candidate_metadata: Parsed chapter fields (ParsedChapter or dict of its fields)
            state: Current state of the novel

        Returns:
            ValidationReport
        """
        meta = self._coerce_metadata(candidate_text, candidate_metadata)
        chapter_number = state.next_chapter_number
        target = state.metadata.target_chapters
        stage = stage_of(chapter_number, target)
        previous_level = state.last_romance_level
        level = meta.resolved_romance_level(previous_level)

        violations: List[ConstraintViolation] = []
        violations.extend(self._check_structure(meta, state, chapter_number))
        if self.enabled:
            violations.extend(self.check_characters(candidate_text, meta, state))
            violations.extend(self.check_required_characters(candidate_text, state))
            violations.extend(self.check_pacing(meta, state, chapter_number, stage, level))
            violations.extend(self.check_banned_patterns(candidate_text, stage, state.status == NovelStatus.COMPLETING))
            violations.extend(self.check_repetition(meta, state))
            violations.extend(self._check_foreshadowing(meta, state))
            violations.extend(self.check_length(candidate_text))

        aggregate = round(sum(v.score for v in violations), 2)
        hard_hit = any(v.severity >= self.ruleset.hard_threshold for v in violations)
        valid = not hard_hit and aggregate <= self.ruleset.soft_threshold

        projected = self.project_tracking(candidate_text, meta, state, chapter_number, level)

        suggestions: List[str] = []
        for violation in violations:
            if violation.suggestion and violation.suggestion not in suggestions:
                suggestions.append(violation.suggestion)
        if level is not None:
            adjustment = suggest_pacing_adjustment(chapter_number, level, target)
            if adjustment["needed"]:
                for suggestion in adjustment["suggestions"]:
                    if suggestion not in suggestions:
                        suggestions.append(suggestion)

        report = ValidationReport(
            valid=valid,
            violations=violations,
            chapter_number=chapter_number,
            stage=stage,
            overall_progress=overall_progress(projected),
            suggestions=suggestions,
            aggregate_score=aggregate,
            projected_tracking=projected,
            romance_level=level,
        )
        log = logger.info if valid else logger.warning
        log(
            f"Validated chapter {chapter_number} of '{state.novel_slug}': valid={valid}, "
            f"violations={len(violations)}, score={aggregate}"
        )
        return report

    def _coerce_metadata(self, text: str, metadata: Union[ParsedChapter, Dict[str, Any], None]) -> ParsedChapter:
        if isinstance(metadata, ParsedChapter):
            return metadata
        data = dict(metadata or {})
        data.setdefault("content", text)
        return ParsedChapter(**data)

    def _check_structure(self, meta: ParsedChapter, state: StoryState, chapter_number: int) -> List[ConstraintViolation]:
        violations: List[ConstraintViolation] = []
        if meta.number is not None and meta.number != chapter_number:
            violations.append(ContinuityViolation(
                "chapter_sequence",
                f"Chapter is numbered {meta.number} but the next chapter is {chapter_number}.",
                severity=Severity.HIGH,
                suggestion=f"Write chapter {chapter_number}, continuing from chapter {chapter_number - 1}.",
                details={"expected": chapter_number, "got": meta.number},
            ))

        completing = state.status == NovelStatus.COMPLETING
        if meta.ending_type and not completing:
            violations.append(PacingViolation(
                "unrequested_ending",
                f"Chapter carries ENDING_TYPE '{meta.ending_type}' but completion was not requested.",
                severity=Severity.HIGH,
                suggestion="Continue the story; do not end it in this chapter.",
            ))
        if completing and not meta.ending_type:
            violations.append(PacingViolation(
                "missing_ending_marker",
                "The novel is completing but the chapter has no ENDING_TYPE marker.",
                severity=Severity.HIGH,
                suggestion="Write the final chapter and include an ENDING_TYPE line.",
            ))
        return violations

    def allowed_names(self, state: StoryState) -> Set[str]:
        """Names and vocabulary that may appear capitalized without being flagged."""
        allowed: Set[str] = set()

        def add(phrase: str) -> None:
            phrase = phrase.strip()
            if not phrase:
                return
            allowed.add(phrase)
            for part in re.split(r"[\s,.;:()/]+", phrase):
                part = part.strip("'’\"")
                if part:
                    allowed.add(part)
                    if part.endswith(("'s", "’s")):
                        allowed.add(part[:-2])

        for name, record in state.characters.items():
            add(name)
            add(record.current_state.location)
            for label in record.relationships:
                add(label)
            for ability in record.abilities:
                add(ability)
        for alias in state.aliases:
            add(alias)
        for term in state.known_terms:
            add(term)
        world = state.world_state
        for text in [world.setting, *world.rules, *world.locations, *world.subsystems.keys(), *world.subsystems.values()]:
            for token in LATIN_NAME_RE.findall(text):
                add(token)
            for token in HANGUL_NAME_RE.findall(text):
                add(token)
        add(state.metadata.title)
        return allowed

    def check_characters(self, text: str, meta: ParsedChapter, state: StoryState) -> List[ConstraintViolation]:
        """
        Flag unregistered or blocked character names.

        A capitalized Latin token is a name candidate unless it is registered
        vocabulary, a common capitalized word, or also used in lowercase in the
        same text. Tokens seen only at sentence starts (including the first word
        of dialogue) are also dropped when the English lexicon rates them as
        ordinary words, so "Rain fell." passes while "Seraphine waited." does not.
        """
        violations: List[ConstraintViolation] = []
        allowed = self.allowed_names(state)
        allowed_lower = {name.lower() for name in allowed}
        blocked_set = set(state.blocked_names)

        for blocked in sorted(blocked_set):
            if re.search(rf"(?<![\w가-힣]){re.escape(blocked)}", text):
                violations.append(ContinuityViolation(
                    "blocked_name",
                    f"'{blocked}' is not a character in this novel.",
                    severity=Severity.HIGH,
                    suggestion=f"Remove '{blocked}'; use only registered characters.",
                    details={"name": blocked},
                ))

        lowercase_words = {w.lower() for w in LOWER_WORD_RE.findall(text)}
        mid_sentence: Counter = Counter()
        total: Counter = Counter()
        for match in LATIN_NAME_RE.finditer(text):
            token = re.sub(r"['’]s$", "", match.group(0)).rstrip("'’-")
            if len(token) < 2:
                continue
            total[token] += 1
            prefix = text[:match.start()].rstrip(" \t")
            if prefix and prefix[-1] not in SENTENCE_BREAK_CHARS and prefix[-1] != "\n":
                mid_sentence[token] += 1

        registered = ", ".join(sorted(state.characters)) or "none registered"
        for token in sorted(total):
            lowered = token.lower()
            if token in blocked_set or lowered in COMMON_CAPITALIZED_WORDS or lowered in allowed_lower:
                continue
            if lowered in lowercase_words:
                continue
            if not mid_sentence[token] and is_dictionary_word(lowered, self.ruleset.dictionary_min_zipf):
                continue
            violations.append(ContinuityViolation(
                "unregistered_character",
                f"'{token}' appears in the chapter but is not a registered character.",
                severity=self.ruleset.name_severity,
                suggestion=f"Use only registered characters: {registered}.",
                details={"name": token, "occurrences": total[token]},
            ))

        hangul_counts = Counter(HANGUL_NAME_RE.findall(text))
        for token in sorted(hangul_counts):
            if hangul_counts[token] < HANGUL_MIN_OCCURRENCES or token in COMMON_HANGUL_WORDS:
                continue
            if token in allowed or token in blocked_set:
                continue
            if any(name.startswith(token) or token.startswith(name) for name in allowed if re.match(r"[가-힣]", name)):
                continue
            violations.append(ContinuityViolation(
                "unregistered_character",
                f"'{token}' looks like a character name but is not registered.",
                severity=self.ruleset.hangul_name_severity,
                suggestion=f"Use only registered characters: {registered}.",
                details={"name": token, "occurrences": hangul_counts[token]},
            ))

        for name in sorted(meta.character_updates):
            if state.resolve_character(name) is None:
                violations.append(ContinuityViolation(
                    "unknown_character_update",
                    f"CHARACTER_UPDATES names '{name}', who is not a registered character.",
                    severity=Severity.HIGH,
                    details={"name": name},
                ))
        return violations

    def check_required_characters(self, text: str, state: StoryState) -> List[ConstraintViolation]:
        """Flag main characters (by role) that the chapter never mentions by name or alias."""
        violations: List[ConstraintViolation] = []
        required_roles = {role.lower() for role in self.ruleset.required_roles}
        if not required_roles:
            return violations

        names_by_character: Dict[str, List[str]] = {}
        for alias, target in state.aliases.items():
            names_by_character.setdefault(target, []).append(alias)

        for name in sorted(state.characters):
            record = state.characters[name]
            if record.role.lower() not in required_roles:
                continue
            mentions = [name, *names_by_character.get(name, [])]
            if any(_mentions(text, mention) for mention in mentions):
                continue
            violations.append(ContinuityViolation(
                "missing_main_character",
                f"Main character '{name}' ({record.role}) does not appear in the chapter.",
                severity=self.ruleset.missing_character_severity,
                suggestion=f"Keep {name} present in the chapter.",
                details={"name": name, "role": record.role},
            ))
        return violations

    def check_length(self, text: str) -> List[ConstraintViolation]:
        """Compare the chapter's word count with the rule set's length bounds."""
        words = count_words(text)
        low, high = self.ruleset.min_chapter_words, self.ruleset.max_chapter_words
        if low and words < low:
            return [PacingViolation(
                "chapter_too_short",
                f"The chapter has {words} words; at least {low} are required.",
                severity=self.ruleset.length_severity,
                suggestion=f"Develop the scenes further to reach at least {low} words.",
                details={"words": words, "min": low},
            )]
        if high and words > high:
            return [PacingViolation(
                "chapter_too_long",
                f"The chapter has {words} words; at most {high} are allowed.",
                severity=self.ruleset.length_severity,
                suggestion=f"Tighten the chapter to {high} words or fewer.",
                details={"words": words, "max": high},
            )]
        return []

    def check_pacing(
        self,
        meta: ParsedChapter,
        state: StoryState,
        chapter_number: int,
        stage: Stage,
        level: Optional[int]
    ) -> List[ConstraintViolation]:
        """Compare romance level and declared deltas with the stage bounds."""
        violations: List[ConstraintViolation] = []
        target = state.metadata.target_chapters
        tracking = state.progression_tracking

        if level is not None:
            previous = state.last_romance_level
            delta = level - previous
            allowed = max_delta(stage, "emotional")
            low, high = expected_range(chapter_number, target, "emotional")
            if delta > allowed:
                overage = delta - allowed
                violations.append(PacingViolation(
                    "romance_delta",
                    f"Romance progression jumps {delta} points (from {previous} to {level}); "
                    f"the {stage.value} stage allows at most {allowed} per chapter.",
                    severity=_overage_severity(overage),
                    suggestion=f"Keep romance progression at or below {min(previous + allowed, high)} this chapter.",
                    details={"previous": previous, "level": level, "max_delta": allowed, "overage": overage},
                ))
            if level > high:
                violations.append(PacingViolation(
                    "romance_ahead_of_stage",
                    f"Romance level {level} is above the expected range {low}-{high} for chapter {chapter_number}.",
                    severity=Severity.HIGH,
                    suggestion="Add conflict or an obstacle instead of advancing the relationship.",
                    details={"level": level, "expected_range": [low, high]},
                ))
            elif level < low:
                violations.append(PacingViolation(
                    "romance_behind_stage",
                    f"Romance level {level} is below the expected range {low}-{high} for chapter {chapter_number}.",
                    severity=Severity.LOW,
                    suggestion="Add an emotionally charged moment between the leads.",
                    details={"level": level, "expected_range": [low, high]},
                ))
            if delta < -self.ruleset.regression_tolerance:
                violations.append(PacingViolation(
                    "romance_regression",
                    f"Romance level falls from {previous} to {level}.",
                    severity=Severity.MEDIUM,
                    suggestion="Relationship progress does not reset; show setbacks as conflict, not lost ground.",
                    details={"previous": previous, "level": level},
                ))

        for dimension in sorted(meta.progression_deltas):
            delta = meta.progression_deltas[dimension]
            if delta < 0:
                violations.append(PacingViolation(
                    "negative_delta",
                    f"Declared {dimension} delta {delta} would move progression backward.",
                    severity=Severity.MEDIUM,
                    details={"dimension": dimension, "delta": delta},
                ))
                continue
            allowed = max_delta(stage, dimension)
            if delta > allowed:
                violations.append(PacingViolation(
                    "dimension_delta",
                    f"Declared {dimension} delta {delta} exceeds the {stage.value} limit of {allowed}.",
                    severity=_overage_severity(delta - allowed),
                    suggestion=f"Limit {dimension} progression to {allowed} points this chapter.",
                    details={"dimension": dimension, "delta": delta, "max_delta": allowed},
                ))
            _, high = expected_range(chapter_number, target, dimension)
            if tracking.get(dimension) + delta > high:
                violations.append(PacingViolation(
                    "dimension_ahead_of_stage",
                    f"{dimension.capitalize()} progression would reach {tracking.get(dimension) + delta}, "
                    f"above {high} for chapter {chapter_number}.",
                    severity=Severity.HIGH,
                    details={"dimension": dimension, "projected": tracking.get(dimension) + delta, "high": high},
                ))
        return violations

    def check_banned_patterns(self, text: str, stage: Stage, completing: bool = False) -> List[ConstraintViolation]:
        """Scan the stage's active rules and the time-skip limit."""
        violations: List[ConstraintViolation] = []
        for rule in self.ruleset.active_rules(stage, completing):
            matches = rule.find(text)
            if not matches:
                continue
            cls = ContinuityViolation if rule.violation == RuleClass.CONTINUITY else PacingViolation
            violations.append(cls(
                rule.id,
                rule.message or f"'{rule.label}' is not allowed in the {stage.value} stage.",
                severity=rule.severity,
                suggestion=rule.suggestion,
                weight=rule.weight,
                details={"matches": sorted(set(matches))[:5], "stage": stage.value, "ruleset_version": self.ruleset.version},
            ))

        if not completing:
            limit = time_jump_limit(stage)
            skipped = _time_skip_days(text)
            if skipped > limit["max"]:
                violations.append(PacingViolation(
                    "time_jump",
                    f"The chapter skips about {skipped:g} days; the {stage.value} stage allows {limit['max']} {limit['unit']}.",
                    severity=Severity.MEDIUM,
                    suggestion=f"Keep the time between chapters within {limit['max']} {limit['unit']}.",
                    details={"days": skipped, "limit": limit},
                ))
        return violations

    def check_repetition(self, meta: ParsedChapter, state: StoryState) -> List[ConstraintViolation]:
        """Flag plot elements and key events that were already used."""
        violations: List[ConstraintViolation] = []
        threshold = self.ruleset.repetition_similarity
        for element in meta.used_elements:
            for used in state.used_elements:
                if _similar(element["content"], used.content, threshold):
                    violations.append(ContinuityViolation(
                        "repeated_element",
                        f"{element['kind'].replace('_', ' ').capitalize()} '{element['content']}' "
                        f"repeats an element from chapter {used.chapter}.",
                        severity=Severity.MEDIUM,
                        suggestion="Introduce a new development instead of reusing an earlier beat.",
                        details={"kind": element["kind"], "previous_chapter": used.chapter},
                    ))
                    break
        for event in meta.key_events:
            for completed in state.plot.completed_events:
                if _similar(event, completed, threshold):
                    violations.append(ContinuityViolation(
                        "repeated_event",
                        f"Key event '{event}' already happened earlier in the story.",
                        severity=Severity.MEDIUM,
                        suggestion="Build on the earlier event instead of repeating it.",
                        details={"event": event},
                    ))
                    break
        return violations

    def _check_foreshadowing(self, meta: ParsedChapter, state: StoryState) -> List[ConstraintViolation]:
        violations: List[ConstraintViolation] = []
        for reference in meta.foreshadowing_resolved:
            if state.plot.find_foreshadowing(reference) is None:
                violations.append(ContinuityViolation(
                    "unknown_foreshadowing",
                    f"Resolved foreshadowing '{reference}' was never planted.",
                    severity=Severity.MEDIUM,
                    details={"reference": reference},
                ))
        existing_ids = {entry.id for entry in state.plot.foreshadowing}
        for planted in meta.foreshadowing_planted:
            if planted.get("id") in existing_ids:
                violations.append(ContinuityViolation(
                    "duplicate_foreshadowing_id",
                    f"Foreshadowing id '{planted['id']}' is already in use.",
                    severity=Severity.MEDIUM,
                    details={"id": planted["id"]},
                ))
        return violations

    def project_tracking(
        self,
        text: str,
        meta: ParsedChapter,
        state: StoryState,
        chapter_number: int,
        level: Optional[int] = None
    ) -> Dict[str, int]:
        """
        Progression scalars as they would stand after committing the chapter.

        Declared deltas are used as given; missing dimensions are inferred
        from prose cues (plot also advances with chapter count) and clamped
        to the stage's max delta. Every result is at least the current value
        and at most the expected high bound for the chapter.
        """
        target = state.metadata.target_chapters
        stage = stage_of(chapter_number, target)
        inferred = self.ruleset.infer_deltas(text)
        current = state.progression_tracking.as_dict()
        projected: Dict[str, int] = {}
        for dimension in PROGRESSION_DIMENSIONS:
            if dimension in meta.progression_deltas:
                delta = max(0, meta.progression_deltas[dimension])
            elif dimension == "emotional" and level is not None:
                delta = max(0, level - current[dimension])
            elif dimension == "plot":
                delta = clamp_delta(stage, dimension, max(inferred.get("plot", 0), round(100 / target)))
            else:
                delta = clamp_delta(stage, dimension, inferred.get(dimension, 0))
            _, high = expected_range(chapter_number, target, dimension)
            projected[dimension] = max(current[dimension], min(current[dimension] + delta, high))
        return projected
