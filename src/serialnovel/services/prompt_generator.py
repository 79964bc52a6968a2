"""
Prompt constraint generator.

Turns a novel's state and the progression model into the instruction
payload for the generation collaborator: a structured constraints dict and
a prompt that embeds a state summary plus those constraints.

Output is deterministic for a given state: collections are emitted in a
fixed order and nothing depends on the clock.
"""

import json
import logging
from typing import Dict, Any, List, Optional

from ..models import StoryState, NovelStatus, PROGRESSION_DIMENSIONS
from ..progression import (
    Stage,
    stage_of,
    max_delta,
    expected_range,
    suggest_pacing_adjustment,
    stage_guidance,
    tension_level,
    emotional_tone,
    time_jump_limit,
    overall_progress,
    current_milestone,
)
from ..rules import RuleSet, DEFAULT_RULESET
from ..templates import (
    SYSTEM_PROMPT,
    CHAPTER_MIN_WORDS,
    CHAPTER_MAX_WORDS,
    DEFAULT_ENDING_TYPE,
    output_format,
    ending_plan,
)

logger = logging.getLogger(__name__)

# Number of previous chapter summaries included in the prompt
RECENT_CHAPTER_COUNT = 3


def constraints_json(constraints: Dict[str, Any]) -> str:
    """Canonical serialization of a constraints dict."""
    return json.dumps(constraints, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


class PromptConstraintGenerator:
    """Builds next-chapter constraints and prompts from story state."""

    def __init__(self, ruleset: Optional[RuleSet] = None, foreshadow_min_gap: int = 3):
        """
        Args:
            ruleset: Rule set supplying prohibited keywords
            foreshadow_min_gap: Chapters a hint must wait before it is due for resolution
        """
        self.ruleset = ruleset or DEFAULT_RULESET
        self.foreshadow_min_gap = foreshadow_min_gap

    def due_foreshadowing(self, state: StoryState, chapter_number: int, stage: Stage) -> List[Dict[str, Any]]:
        """Unresolved hints ready to pay off; all of them once the story is climaxing or ending."""
        late = stage in (Stage.CLIMAX, Stage.RESOLUTION) or state.status == NovelStatus.COMPLETING
        due = [
            entry for entry in state.pending_foreshadowing()
            if late or entry.planted_chapter <= chapter_number - self.foreshadow_min_gap
        ]
        due.sort(key=lambda entry: (entry.planted_chapter, entry.id))
        return [
            {"id": entry.id, "content": entry.content, "plantedChapter": entry.planted_chapter}
            for entry in due
        ]

    def build_constraints(self, state: StoryState) -> Dict[str, Any]:
        """
        Compute the constraint set for the next chapter.

        Returns:
            Dict with chapterNumber, stage, progress, prohibitedKeywords,
            allowedEmotions, mustInclude, mustNotForget, avoidElements,
            registeredCharacters, timeJumpLimit and pacingAdjustment
        """
        chapter_number = state.next_chapter_number
        target = state.metadata.target_chapters
        stage = stage_of(chapter_number, target)
        completing = state.status == NovelStatus.COMPLETING
        tracking = state.progression_tracking.as_dict()
        last_level = state.last_romance_level

        ranges = {dim: list(expected_range(chapter_number, target, dim)) for dim in PROGRESSION_DIMENSIONS}
        deltas = {dim: max_delta(stage, dim) for dim in PROGRESSION_DIMENSIONS}
        max_level = min(last_level + deltas["emotional"], ranges["emotional"][1])

        achieved = [milestone.id for milestone in state.relationship_milestones]
        milestone = current_milestone(achieved)

        must_include: List[str] = []
        for entry in self.due_foreshadowing(state, chapter_number, stage):
            must_include.append(f"Resolve foreshadowing {entry['id']}: {entry['content']}")
        for element in milestone["required_elements"]:
            must_include.append(f"Relationship ({milestone['id']}): {element}")
        if completing:
            plan = ending_plan(state.metadata.tropes)
            for scene in plan["scenes"]:
                must_include.append(f"Ending scene: {scene}")
            must_include.append(f"Epilogue: {plan['epilogue']}")
            must_include.append(f"Mark the chapter with ENDING_TYPE: {DEFAULT_ENDING_TYPE}")

        must_not_forget: List[str] = []
        for rule in state.world_state.rules:
            must_not_forget.append(f"World rule: {rule}")
        for name in sorted(state.world_state.subsystems):
            must_not_forget.append(f"{name}: {state.world_state.subsystems[name]}")
        for name in sorted(state.characters):
            record = state.characters[name]
            current = record.current_state
            facts = [f"role={record.role}"]
            if current.location:
                facts.append(f"location={current.location}")
            if current.emotion:
                facts.append(f"emotion={current.emotion}")
            if current.power_level:
                facts.append(f"powerLevel={current.power_level}")
            if record.abilities:
                facts.append(f"abilities={', '.join(record.abilities)}")
            must_not_forget.append(f"{name}: {'; '.join(facts)}")
        for conflict in state.plot.active_conflicts:
            must_not_forget.append(f"Active conflict: {conflict}")

        avoid = sorted({f"{used.kind.value}: {used.content}" for used in state.used_elements})

        adjustment = suggest_pacing_adjustment(chapter_number, last_level, target)

        return {
            "chapterNumber": chapter_number,
            "stage": stage.value,
            "progress": {
                "current": tracking,
                "overall": overall_progress(tracking),
                "expectedRange": ranges,
                "maxDelta": deltas,
                "romanceLevel": last_level,
                "maxRomanceLevel": max_level,
                "targetChapters": target,
            },
            "prohibitedKeywords": self.ruleset.prohibited_keywords(stage, completing),
            "allowedEmotions": sorted(milestone["allowed_emotions"]),
            "mustInclude": must_include,
            "mustNotForget": must_not_forget,
            "avoidElements": avoid,
            "registeredCharacters": sorted(set(state.characters) | set(state.aliases)),
            "timeJumpLimit": time_jump_limit(stage),
            "pacingAdjustment": {
                "needed": adjustment["needed"],
                "direction": adjustment["direction"],
                "intensity": adjustment["intensity"],
                "suggestions": adjustment["suggestions"] if adjustment["needed"] else [],
            },
            "rulesetVersion": self.ruleset.version,
        }

    def _state_summary(self, state: StoryState) -> List[str]:
        parts = []
        meta = state.metadata
        parts.append(f"**Novel:** {meta.title} ({meta.genre}) by {meta.author}")
        if meta.tropes:
            parts.append(f"**Tropes:** {', '.join(meta.tropes)}")
        if state.world_state.setting:
            parts.append(f"**Setting:** {state.world_state.setting}")
        if state.plot.main_arc_summary:
            parts.append(f"**Main Arc:** {state.plot.main_arc_summary}")
        parts.append("")

        if state.characters:
            parts.append("**Characters:**")
            for name in sorted(state.characters):
                record = state.characters[name]
                line = f"- {name} ({record.role})"
                if record.personality_traits:
                    line += f": {', '.join(record.personality_traits)}"
                parts.append(line)
                for other in sorted(record.relationships):
                    parts.append(f"  - {other}: {record.relationships[other]}")
            aliases = sorted(state.aliases.items())
            if aliases:
                parts.append("- Also called: " + ", ".join(f"{alias} = {name}" for alias, name in aliases))
            parts.append("")

        recent = state.chapters[-RECENT_CHAPTER_COUNT:]
        if recent:
            parts.append("**Previous Chapters:**")
            for chapter in recent:
                summary = chapter.summary or ", ".join(chapter.key_events) or "(no summary)"
                parts.append(f"- Chapter {chapter.number} \"{chapter.title}\": {summary}")
            parts.append("")
        return parts

    def _constraint_block(self, constraints: Dict[str, Any]) -> List[str]:
        progress = constraints["progress"]
        parts = ["**Progress Limits:**"]
        parts.append(
            f"- Romance progression: currently {progress['romanceLevel']}, "
            f"this chapter may reach at most {progress['maxRomanceLevel']}"
        )
        for dim in PROGRESSION_DIMENSIONS:
            low, high = progress["expectedRange"][dim]
            parts.append(
                f"- {dim}: {progress['current'][dim]} now, expected {low}-{high}, "
                f"advance at most {progress['maxDelta'][dim]}"
            )
        limit = constraints["timeJumpLimit"]
        parts.append(f"- Time skip: at most {limit['max']} {limit['unit']} since the previous chapter")
        parts.append("")

        if constraints["allowedEmotions"]:
            parts.append(f"**Allowed Emotions:** {', '.join(constraints['allowedEmotions'])}")
        if constraints["prohibitedKeywords"]:
            parts.append(f"**Prohibited:** {', '.join(constraints['prohibitedKeywords'])}")
        parts.append(f"**Registered Characters Only:** {', '.join(constraints['registeredCharacters']) or '(none yet)'}")
        parts.append("")

        for heading, key in (("Must Include", "mustInclude"), ("Must Not Forget", "mustNotForget"), ("Already Used (do not repeat)", "avoidElements")):
            if constraints[key]:
                parts.append(f"**{heading}:**")
                parts.extend(f"- {item}" for item in constraints[key])
                parts.append("")

        adjustment = constraints["pacingAdjustment"]
        if adjustment["needed"]:
            verb = "Slow down" if adjustment["direction"] == "slow_down" else "Speed up"
            parts.append(f"**Pacing Adjustment:** {verb} the romance")
            parts.extend(f"- {item}" for item in adjustment["suggestions"])
            parts.append("")
        return parts

    def _feedback_block(self, feedback: List[Dict[str, Any]]) -> List[str]:
        parts = ["**The previous draft was rejected. Fix these problems:**"]
        suggestions: List[str] = []
        for violation in feedback:
            parts.append(f"- [{violation.get('severity', 'medium')}] {violation.get('message', '')}")
            suggestion = violation.get("suggestion")
            if suggestion and suggestion not in suggestions:
                suggestions.append(suggestion)
        if suggestions:
            parts.append("**How to fix:**")
            parts.extend(f"- {item}" for item in suggestions)
        parts.append("")
        return parts

    def build_prompt(
        self,
        state: StoryState,
        constraints: Dict[str, Any],
        feedback: Optional[List[Dict[str, Any]]] = None
    ) -> str:
        chapter_number = constraints["chapterNumber"]
        target = state.metadata.target_chapters
        stage = Stage(constraints["stage"])
        completing = state.status == NovelStatus.COMPLETING
        guidance = stage_guidance(stage)

        prompt_parts = [SYSTEM_PROMPT, ""]
        prompt_parts.extend(self._state_summary(state))

        if completing:
            plan = ending_plan(state.metadata.tropes)
            prompt_parts.append(f"**Task:** Write chapter {chapter_number}, the FINAL chapter of the novel.")
            prompt_parts.append("- Resolve every open conflict and plant no new foreshadowing")
            prompt_parts.append(f"- Follow the {plan['trope']} ending: {', '.join(plan['scenes'])}")
            prompt_parts.append(f"- Close with an epilogue: {plan['epilogue']}")
        elif chapter_number == 1:
            prompt_parts.append(f"**Task:** Write chapter 1, the opening chapter ({target} chapters planned).")
            prompt_parts.append("- Introduce the world and the leads and stage their first encounter")
        else:
            prompt_parts.append(f"**Task:** Write chapter {chapter_number} of {target}, continuing directly from chapter {chapter_number - 1}.")
        prompt_parts.append(f"- Stage: {stage.value} ({guidance['description']})")
        prompt_parts.append(f"- Key elements: {', '.join(guidance['key_elements'])}")
        prompt_parts.append(f"- Tension: {tension_level(chapter_number, target)}/100, suggested tone: {emotional_tone(chapter_number, target)}")
        prompt_parts.append(f"- Length: {CHAPTER_MIN_WORDS:,}-{CHAPTER_MAX_WORDS:,} words")
        prompt_parts.append("")

        prompt_parts.extend(self._constraint_block(constraints))
        if feedback:
            prompt_parts.extend(self._feedback_block(feedback))

        prompt_parts.append("**Output Format:**")
        prompt_parts.append(output_format(
            chapter_number,
            constraints["progress"]["maxRomanceLevel"],
            ending_type=DEFAULT_ENDING_TYPE if completing else "",
        ))
        return "\n".join(prompt_parts)

    def prepare_next_chapter(
        self,
        state: StoryState,
        feedback: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """
        Build the instruction payload for the next chapter.

        Args:
            state: Current story state
            feedback: Violation dicts from a rejected attempt, appended to the
                prompt; the constraints themselves do not change

        Returns:
            Dict with 'prompt' and 'constraints'
        """
        constraints = self.build_constraints(state)
        prompt = self.build_prompt(state, constraints, feedback)
        logger.debug(
            f"Prepared chapter {constraints['chapterNumber']} of '{state.novel_slug}' "
            f"at stage {constraints['stage']}"
        )
        return {"prompt": prompt, "constraints": constraints}

    def first_chapter_prompt(self, state: StoryState) -> str:
        """Prompt for the opening chapter of a freshly started novel."""
        if state.chapters:
            raise ValueError(f"Novel '{state.novel_slug}' already has {len(state.chapters)} chapters")
        return self.prepare_next_chapter(state)["prompt"]

    def ending_prompt(self, state: StoryState) -> str:
        """Prompt for the final chapter of a completing novel."""
        return self.prepare_next_chapter(state)["prompt"]
