"""
Parser for raw generated chapter text.

The generation collaborator returns structured fields as ``FIELD_NAME: value``
lines. ``CONTENT:`` spans every following line until the end of the text or
the next recognized field marker. A ``--- CONTENT START --- / --- CONTENT END ---``
block is accepted in place of ``CONTENT:``.
"""

import re
import logging
from typing import Dict, Any, List, Optional, Tuple

from ..models import ParsedChapter, ElementKind, PROGRESSION_DIMENSIONS
from .errors import ChapterParseError

logger = logging.getLogger(__name__)

RECOGNIZED_FIELDS = frozenset([
    "CHAPTER_NUMBER",
    "TITLE",
    "CHAPTER_TITLE",
    "CONTENT",
    "SUMMARY",
    "KEY_EVENTS",
    "EMOTIONAL_TONE",
    "ENDING_TYPE",
    "WORD_COUNT",
    "ROMANCE_PROGRESSION_LEVEL",
    "ROMANCE_PROGRESSION",
    "PROGRESSION_DELTAS",
    "CHARACTER_UPDATES",
    "FORESHADOWING_PLANTED",
    "FORESHADOWING_RESOLVED",
    "USED_ELEMENTS",
    "STATUS",
])

# Markdown emphasis around the field name is tolerated: **TITLE:** value
FIELD_LINE_RE = re.compile(r"^\s*(?:\*\*)?([A-Z][A-Z_]*)(?:\*\*)?\s*:\s*(?:\*\*)?\s?(.*)$")
CONTENT_BLOCK_RE = re.compile(
    r"^-{3,}\s*CONTENT START\s*-{3,}\s*$(.*?)(?:^-{3,}\s*CONTENT END\s*-{3,}\s*$|\Z)",
    re.MULTILINE | re.DOTALL,
)
INT_RE = re.compile(r"[-+]?\d+")

CHARACTER_ATTRIBUTE_KEYS = {
    "location": "location",
    "emotion": "emotion",
    "powerlevel": "power_level",
    "power_level": "power_level",
    "power": "power_level",
}


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    if not text or not isinstance(text, str):
        return 0
    return len(text.split())


def _split_fields(raw: str) -> Tuple[Dict[str, str], Optional[str]]:
    """Split raw text into recognized field values and the content body."""
    fields: Dict[str, str] = {}
    content: Optional[str] = None

    block = CONTENT_BLOCK_RE.search(raw)
    if block:
        content = block.group(1)
        raw = raw[:block.start()] + raw[block.end():]

    current: Optional[str] = None
    buffer: List[str] = []

    def flush():
        nonlocal content
        if current is None:
            return
        value = "\n".join(buffer)
        if current == "CONTENT":
            content = value if content is None else content
        else:
            fields[current] = value.strip()

    for line in raw.split("\n"):
        match = FIELD_LINE_RE.match(line)
        if match and match.group(1) in RECOGNIZED_FIELDS:
            flush()
            current = match.group(1)
            buffer = [match.group(2)]
        elif current == "CONTENT":
            buffer.append(line)
        elif current is not None and line.strip():
            # Continuation of a multi-line value such as SUMMARY
            buffer.append(line)
    flush()

    return fields, content


def _parse_int(field: str, value: str) -> int:
    match = INT_RE.search(value.replace(",", ""))
    if not match:
        raise ChapterParseError(f"{field} must contain a number, got '{value}'", details={"field": field})
    return int(match.group())


def _split_list(value: str) -> List[str]:
    separator = "|" if "|" in value else ","
    return [item.strip() for item in value.split(separator) if item.strip()]


def _parse_deltas(value: str) -> Dict[str, int]:
    deltas: Dict[str, int] = {}
    for item in re.split(r"[,;|]", value):
        if not item.strip():
            continue
        key, _, amount = _pair(item)
        dimension = key.strip().lower()
        if dimension not in PROGRESSION_DIMENSIONS:
            raise ChapterParseError(
                f"Unknown progression dimension '{key.strip()}'",
                details={"field": "PROGRESSION_DELTAS", "allowed": list(PROGRESSION_DIMENSIONS)},
            )
        deltas[dimension] = _parse_int("PROGRESSION_DELTAS", amount)
    return deltas


def _pair(item: str) -> Tuple[str, str, str]:
    match = re.match(r"^\s*([^=:]+?)\s*([=:])\s*(.*)$", item)
    if not match:
        raise ChapterParseError(f"Expected 'key=value', got '{item.strip()}'")
    return match.group(1), match.group(2), match.group(3)


def _parse_character_updates(value: str) -> Dict[str, Dict[str, Any]]:
    updates: Dict[str, Dict[str, Any]] = {}
    for entry in value.split("|"):
        if not entry.strip():
            continue
        name, _, attrs = entry.partition(":")
        name = name.strip()
        if not name or not attrs.strip():
            raise ChapterParseError(
                f"Character update must look like 'Name: key=value; ...', got '{entry.strip()}'",
                details={"field": "CHARACTER_UPDATES"},
            )
        parsed: Dict[str, Any] = {}
        for attr in attrs.split(";"):
            if not attr.strip():
                continue
            key, _, raw_value = _pair(attr)
            normalized = CHARACTER_ATTRIBUTE_KEYS.get(key.strip().lower().replace(" ", ""))
            if normalized is None:
                logger.debug(f"Ignoring unknown character attribute '{key}' for {name}")
                continue
            if normalized == "power_level":
                parsed[normalized] = _parse_int("CHARACTER_UPDATES", raw_value)
            else:
                parsed[normalized] = raw_value.strip()
        updates[name] = parsed
    return updates


def _parse_planted(value: str) -> List[Dict[str, str]]:
    planted = []
    for entry in value.split("|"):
        entry = entry.strip()
        if not entry:
            continue
        ident, sep, content = entry.partition(":")
        if sep and re.match(r"^[A-Za-z0-9_\-]+$", ident.strip()) and content.strip():
            planted.append({"id": ident.strip(), "content": content.strip()})
        else:
            planted.append({"content": entry})
    return planted


def _parse_used_elements(value: str) -> List[Dict[str, str]]:
    elements = []
    allowed = [kind.value for kind in ElementKind]
    for entry in value.split("|"):
        entry = entry.strip()
        if not entry:
            continue
        kind, sep, content = entry.partition(":")
        kind = kind.strip().lower().replace(" ", "_").replace("-", "_")
        if not sep or kind not in allowed or not content.strip():
            raise ChapterParseError(
                f"Used element must look like 'kind: description' with kind in {allowed}, got '{entry}'",
                details={"field": "USED_ELEMENTS"},
            )
        elements.append({"kind": kind, "content": content.strip()})
    return elements


def parse_generated_chapter(raw: str) -> ParsedChapter:
    """
    Parse raw generated text into a ParsedChapter.

    Args:
        raw: Text returned by the generation collaborator

    Returns:
        ParsedChapter with all recognized fields

    Raises:
        ChapterParseError: If CONTENT is missing or empty, or a field is malformed
    """
    if not raw or not isinstance(raw, str):
        raise ChapterParseError("Generated chapter text is empty")

    fields, content = _split_fields(raw.replace("\r\n", "\n"))
    content = (content or "").strip()
    if not content:
        raise ChapterParseError(
            "Generated chapter has no CONTENT",
            details={"fields_found": sorted(fields)},
        )

    data: Dict[str, Any] = {"content": content}

    if fields.get("CHAPTER_NUMBER"):
        data["number"] = _parse_int("CHAPTER_NUMBER", fields["CHAPTER_NUMBER"])
        if data["number"] < 1:
            raise ChapterParseError("CHAPTER_NUMBER must be positive", details={"field": "CHAPTER_NUMBER"})

    title = fields.get("TITLE") or fields.get("CHAPTER_TITLE")
    if title:
        data["title"] = title.strip().strip('"')

    for field, key in (("SUMMARY", "summary"), ("EMOTIONAL_TONE", "emotional_tone"), ("STATUS", "status")):
        if fields.get(field):
            data[key] = fields[field]

    if fields.get("ENDING_TYPE"):
        data["ending_type"] = fields["ENDING_TYPE"].strip()

    if fields.get("KEY_EVENTS"):
        data["key_events"] = _split_list(fields["KEY_EVENTS"])

    data["word_count"] = (
        _parse_int("WORD_COUNT", fields["WORD_COUNT"]) if fields.get("WORD_COUNT") else count_words(content)
    )

    if fields.get("ROMANCE_PROGRESSION_LEVEL"):
        level = _parse_int("ROMANCE_PROGRESSION_LEVEL", fields["ROMANCE_PROGRESSION_LEVEL"])
        if not 0 <= level <= 100:
            raise ChapterParseError(
                f"ROMANCE_PROGRESSION_LEVEL must be within 0-100, got {level}",
                details={"field": "ROMANCE_PROGRESSION_LEVEL"},
            )
        data["romance_progression_level"] = level
    if fields.get("ROMANCE_PROGRESSION"):
        data["romance_progression_increment"] = _parse_int("ROMANCE_PROGRESSION", fields["ROMANCE_PROGRESSION"])

    if fields.get("PROGRESSION_DELTAS"):
        data["progression_deltas"] = _parse_deltas(fields["PROGRESSION_DELTAS"])
    if fields.get("CHARACTER_UPDATES"):
        data["character_updates"] = _parse_character_updates(fields["CHARACTER_UPDATES"])
    if fields.get("FORESHADOWING_PLANTED"):
        data["foreshadowing_planted"] = _parse_planted(fields["FORESHADOWING_PLANTED"])
    if fields.get("FORESHADOWING_RESOLVED"):
        data["foreshadowing_resolved"] = _split_list(fields["FORESHADOWING_RESOLVED"])
    if fields.get("USED_ELEMENTS"):
        data["used_elements"] = _parse_used_elements(fields["USED_ELEMENTS"])

    return ParsedChapter(**data)
