"""
Prompt and chapter templates.

Static text blocks used to build generation prompts, the ending plans used
when a novel is completing, and rendering of committed chapters as markdown
files with YAML front matter for the publishing site.
"""

from typing import Dict, List, Any

import yaml


CHAPTER_MIN_WORDS = 1500
CHAPTER_MAX_WORDS = 3000

DEFAULT_ENDING_TYPE = "HAPPY_ENDING"

# Ending scenes and epilogue per relationship trope
ENDING_PLANS: Dict[str, Dict[str, Any]] = {
    "enemies-to-lovers": {
        "scenes": ["final confrontation", "truth revealed", "confession", "reconciliation", "union"],
        "epilogue": "a happy everyday life some years later",
    },
    "fake-relationship": {
        "scenes": ["the pretense ends", "realizing the feelings were real", "reunion", "a sincere confession", "union"],
        "epilogue": "the relationship made real",
    },
    "second-chance": {
        "scenes": ["settling the past", "forgiveness", "a new beginning", "a promise", "plans for the future"],
        "epilogue": "a more mature relationship",
    },
    "forbidden-love": {
        "scenes": ["overcoming the obstacle", "public acceptance", "the moment of choice", "sacrifice", "victory"],
        "epilogue": "love set free",
    },
}

SYSTEM_PROMPT = """You are writing one chapter of a serialized web novel.

Continuity comes first:
1. Use only the characters listed in the story state; do not invent named characters
2. Respect every world rule and every fact already established
3. Advance the relationship only as far as the progress limits allow
4. Never use a prohibited keyword or skip ahead in time beyond the limit
5. Do not repeat conflicts, twists or romance beats listed as already used

Reply using exactly the output format below. Field lines come first;
CONTENT comes last and holds only the chapter prose."""

OUTPUT_FORMAT_LINES: List[str] = [
    "CHAPTER_NUMBER: {chapter_number}",
    "TITLE: <chapter title>",
    "SUMMARY: <two or three sentence summary>",
    "KEY_EVENTS: <event> | <event> | <event>",
    "EMOTIONAL_TONE: <one word>",
    "ROMANCE_PROGRESSION_LEVEL: <0-100, at most {max_level}>",
    "PROGRESSION_DELTAS: physical=<n>, emotional=<n>, social=<n>, plot=<n>",
    "CHARACTER_UPDATES: <Name>: location=<place>; emotion=<feeling> | <Name>: ...",
    "FORESHADOWING_PLANTED: <short hint> | <short hint>",
    "FORESHADOWING_RESOLVED: <foreshadowing id> | <foreshadowing id>",
    "USED_ELEMENTS: conflict: <description> | twist: <description> | romance_beat: <description>",
]

ENDING_OUTPUT_LINES: List[str] = [
    "ENDING_TYPE: {ending_type}",
    "STATUS: completed",
]


def output_format(chapter_number: int, max_level: int, ending_type: str = "") -> str:
    """Render the required reply format for a chapter."""
    lines = [line.format(chapter_number=chapter_number, max_level=max_level) for line in OUTPUT_FORMAT_LINES]
    if ending_type:
        lines.extend(line.format(ending_type=ending_type) for line in ENDING_OUTPUT_LINES)
    lines.append("CONTENT:")
    lines.append("<chapter prose>")
    return "\n".join(lines)


def ending_plan(tropes: List[str]) -> Dict[str, Any]:
    """Pick the ending plan for the first trope that has one."""
    for trope in tropes:
        plan = ENDING_PLANS.get(trope.strip().lower())
        if plan:
            return {"trope": trope.strip().lower(), **plan}
    return {"trope": "enemies-to-lovers", **ENDING_PLANS["enemies-to-lovers"]}


def render_chapter_markdown(document: Dict[str, Any], content: str) -> str:
    """
    Render a committed chapter as markdown with YAML front matter.

    Args:
        document: Chapter record fields (title, novel, chapterNumber, ...)
        content: Chapter prose

    Returns:
        Markdown text
    """
    front_matter = yaml.safe_dump(
        document,
        allow_unicode=True,
        sort_keys=False,
        default_flow_style=False,
    )
    return f"---\n{front_matter}---\n\n{content.strip()}\n"
