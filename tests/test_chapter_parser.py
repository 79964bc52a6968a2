"""
Tests for parsing raw generated chapter text.
"""

import pytest

from serialnovel.utils.chapter_parser import parse_generated_chapter, count_words
from serialnovel.utils.errors import ValidationError


class TestParseGeneratedChapter:
    """Test suite for parse_generated_chapter."""

    def test_basic_fields(self, chapter_builder):
        parsed = parse_generated_chapter(chapter_builder(number=3, level=12))
        assert parsed.number == 3
        assert parsed.title == "Harbor Lights 3"
        assert parsed.emotional_tone == "calm"
        assert parsed.romance_progression_level == 12
        assert parsed.content.startswith("Aria walked")
        assert parsed.word_count == count_words(parsed.content)

    def test_content_spans_multiple_paragraphs(self, chapter_builder):
        parsed = parse_generated_chapter(chapter_builder())
        assert "\n\n" in parsed.content
        assert parsed.content.endswith("around them both.")

    def test_content_stops_at_next_field(self, chapter_builder):
        raw = chapter_builder() + "\nENDING_TYPE: open"
        parsed = parse_generated_chapter(raw)
        assert parsed.ending_type == "open"
        assert "ENDING_TYPE" not in parsed.content

    def test_content_block_markers(self):
        raw = (
            "TITLE: Tides\n"
            "--- CONTENT START ---\n"
            "Aria counted the boats.\n"
            "--- CONTENT END ---\n"
            "SUMMARY: Counting boats."
        )
        parsed = parse_generated_chapter(raw)
        assert parsed.content == "Aria counted the boats."
        assert parsed.summary == "Counting boats."

    def test_markdown_emphasis_tolerated(self):
        parsed = parse_generated_chapter("**TITLE:** Tides\n**CONTENT:**\nAria counted the boats.")
        assert parsed.title == "Tides"
        assert parsed.content == "Aria counted the boats."

    def test_missing_content_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_generated_chapter("TITLE: Tides\nSUMMARY: nothing here")
        assert exc_info.value.details["fields_found"] == ["SUMMARY", "TITLE"]

    def test_empty_input_rejected(self):
        with pytest.raises(ValidationError):
            parse_generated_chapter("")

    def test_romance_level_out_of_range(self, chapter_builder):
        with pytest.raises(ValidationError):
            parse_generated_chapter(chapter_builder(level=140))

    def test_increment_form(self, chapter_builder):
        parsed = parse_generated_chapter(chapter_builder(extra={"ROMANCE_PROGRESSION": "+4"}))
        assert parsed.romance_progression_level is None
        assert parsed.romance_progression_increment == 4
        assert parsed.resolved_romance_level(10) == 14

    def test_structured_lists(self, chapter_builder):
        raw = chapter_builder(extra={
            "KEY_EVENTS": "Aria finds a lantern | Kael repairs the pier",
            "PROGRESSION_DELTAS": "emotional=3, plot=5",
            "CHARACTER_UPDATES": "Aria: location=Lantern Quay; emotion=hopeful | Kael: power=4",
            "FORESHADOWING_PLANTED": "lantern_code: a coded lantern signal | a torn sail",
            "FORESHADOWING_RESOLVED": "foreshadow_1",
            "USED_ELEMENTS": "conflict: smugglers at the quay | romance_beat: shared umbrella",
        })
        parsed = parse_generated_chapter(raw)
        assert parsed.key_events == ["Aria finds a lantern", "Kael repairs the pier"]
        assert parsed.progression_deltas == {"emotional": 3, "plot": 5}
        assert parsed.character_updates == {
            "Aria": {"location": "Lantern Quay", "emotion": "hopeful"},
            "Kael": {"power_level": 4},
        }
        assert parsed.foreshadowing_planted == [
            {"id": "lantern_code", "content": "a coded lantern signal"},
            {"content": "a torn sail"},
        ]
        assert parsed.foreshadowing_resolved == ["foreshadow_1"]
        assert parsed.used_elements[1] == {"kind": "romance_beat", "content": "shared umbrella"}

    def test_unknown_dimension_rejected(self, chapter_builder):
        with pytest.raises(ValidationError):
            parse_generated_chapter(chapter_builder(extra={"PROGRESSION_DELTAS": "magic=4"}))

    def test_unknown_element_kind_rejected(self, chapter_builder):
        with pytest.raises(ValidationError):
            parse_generated_chapter(chapter_builder(extra={"USED_ELEMENTS": "villain: a pirate"}))

    def test_explicit_word_count(self, chapter_builder):
        parsed = parse_generated_chapter(chapter_builder(extra={"WORD_COUNT": "2,450"}))
        assert parsed.word_count == 2450


@pytest.mark.parametrize("text,expected", [
    ("", 0),
    ("one", 1),
    ("one two\nthree", 3),
    (None, 0),
])
def test_count_words(text, expected):
    assert count_words(text) == expected
