"""
Tests for ContinuityService lifecycle operations.
"""

import pytest
from pathlib import Path
from unittest.mock import MagicMock

from conftest import build_chapter
from serialnovel.config import EngineSettings
from serialnovel.models import NovelStatus
from serialnovel.progression import PROGRESSION_DIMENSIONS, expected_range, target_level
from serialnovel.services import (
    ConstraintValidator,
    PromptConstraintGenerator,
    ContinuityChapterRecorder,
    ContinuityService,
    create_continuity_service,
)
from serialnovel.services.continuity_service import slugify
from serialnovel.utils.errors import (
    ValidationError,
    NotFoundError,
    ConflictError,
    ClosedNovelError,
    GenerationRejectedError,
    ChapterParseError,
)


def _level(chapter_number: int, target: int = 20) -> int:
    return int(round(target_level(chapter_number, target, "emotional")))


class TestStartNewNovel:
    """Test suite for start_new_novel."""

    def test_creates_active_novel(self, service, novel_info):
        result = service.start_new_novel(novel_info)
        assert result["novelSlug"] == "harbor-of-stars"
        assert "Write chapter 1, the opening chapter" in result["prompt"]

        state = service.get_state("harbor-of-stars")
        assert state.status == NovelStatus.ACTIVE
        assert state.metadata.target_chapters == 20
        assert state.metadata.created_at is not None
        assert state.characters["Aria"].current_state.emotion == "wary"
        assert state.world_state.locations == ["Lantern Quay"]
        assert state.aliases == {"the captain": "Kael"}

    def test_snake_case_input(self, service):
        result = service.start_new_novel({
            "title": "Quiet Tides",
            "target_chapters": 12,
            "characters": {"Aria": {"personality_traits": ["stubborn"]}},
        })
        state = service.get_state(result["novelSlug"])
        assert state.metadata.target_chapters == 12
        assert state.characters["Aria"].personality_traits == ["stubborn"]

    def test_explicit_slug(self, service):
        assert service.start_new_novel({"title": "Quiet Tides", "slug": "tides-2"})["novelSlug"] == "tides-2"

    def test_non_ascii_title_gets_generated_slug(self, service):
        slug = service.start_new_novel({"title": "별빛 항구"})["novelSlug"]
        assert slug.startswith("novel-")
        assert service.get_state(slug).metadata.title == "별빛 항구"

    def test_title_required(self, service):
        with pytest.raises(ValidationError):
            service.start_new_novel({"genre": "fantasy"})

    def test_existing_slug_conflicts(self, service, novel_info):
        service.start_new_novel(novel_info)
        with pytest.raises(ConflictError):
            service.start_new_novel(novel_info)

    def test_invalid_record_rejected(self, service):
        with pytest.raises(ValidationError):
            service.start_new_novel({"title": "Bad Alias", "aliases": {"the ghost": "Nobody"}})
        assert service.store.list_slugs() == []


class TestPrepareAndCommit:
    """Test suite for prepare_next_chapter and commit_chapter."""

    def test_prepare_unknown_novel(self, service):
        with pytest.raises(NotFoundError):
            service.prepare_next_chapter("missing-novel")

    def test_pacing_scenario(self, service, started_novel):
        """A modest first chapter passes, a romance jump is rejected, a measured step passes."""
        first = service.commit_chapter(started_novel, build_chapter(number=1, level=5))
        assert first.committed

        constraints = service.prepare_next_chapter(started_novel)["constraints"]
        assert constraints["chapterNumber"] == 2
        assert constraints["progress"]["expectedRange"]["emotional"] == [0, 20]
        assert constraints["progress"]["maxDelta"]["emotional"] == 10

        jump = service.commit_chapter(started_novel, build_chapter(number=2, level=80))
        assert jump.rejected
        rule_ids = {v["ruleId"]: v["severity"] for v in jump.violations}
        assert rule_ids["romance_delta"] == "critical"
        assert rule_ids["romance_ahead_of_stage"] == "high"
        assert len(service.get_state(started_novel).chapters) == 1

        step = service.commit_chapter(started_novel, build_chapter(number=2, level=12))
        assert step.committed
        state = service.get_state(started_novel)
        assert [c.romance_progression_level for c in state.chapters] == [5, 12]

    def test_unregistered_name_then_registered(self, service, started_novel):
        raw = build_chapter(content="Aria walked to the harbor where Seraphine waited.")
        assert service.commit_chapter(started_novel, raw).rejected

        service.register_character(started_novel, "Seraphine", role="rival", aliases=["the harbormaster"])
        assert service.commit_chapter(started_novel, raw).committed
        assert service.get_state(started_novel).aliases["the harbormaster"] == "Seraphine"

    def test_unparseable_text(self, service, started_novel):
        with pytest.raises(ChapterParseError) as exc_info:
            service.commit_chapter(started_novel, "TITLE: nothing else")
        assert exc_info.value.error_code == "CHAPTER_PARSE_ERROR"
        assert isinstance(exc_info.value, ValidationError)
        assert not service.locks.is_locked(started_novel)

    def test_busy_novel_conflicts(self, service, started_novel):
        lease = service.locks.acquire(started_novel)
        with pytest.raises(ConflictError):
            service.commit_chapter(started_novel, build_chapter(level=5))
        lease.release()
        assert service.commit_chapter(started_novel, build_chapter(level=5)).committed

    def test_chapter_file_written(self, tmp_path, novel_info):
        settings = EngineSettings(
            state_dir=str(tmp_path / "states"),
            chapter_output_dir=str(tmp_path / "chapters"),
        )
        service = create_continuity_service(settings)
        slug = service.start_new_novel(novel_info)["novelSlug"]
        service.commit_chapter(slug, build_chapter(level=5))

        text = (Path(settings.chapter_output_dir) / f"{slug}-ch1.md").read_text(encoding="utf-8")
        assert text.startswith("---\n")
        assert "continuityGuaranteed: true" in text
        assert text.rstrip().endswith("around them both.")


class TestProgressionTracking:
    """Test suite for the committed progression scalars."""

    CUE_PROSE = (
        "Aria met Kael on the quay while rumors spread in public about the danger "
        "at the docks, and they stood side by side."
    )

    def test_tracking_monotone_and_within_expected_range(self, service, started_novel):
        """Each commit keeps every dimension at or above its previous value and under the stage's high bound."""
        previous = service.get_state(started_novel).progression_tracking.as_dict()
        for number in range(1, 21):
            result = service.commit_chapter(
                started_novel,
                build_chapter(number=number, level=_level(number), content=self.CUE_PROSE),
            )
            assert result.committed, result.violations

            tracking = service.get_state(started_novel).progression_tracking.as_dict()
            for dimension in PROGRESSION_DIMENSIONS:
                _, high = expected_range(number, 20, dimension)
                assert tracking[dimension] >= previous[dimension], (number, dimension)
                assert tracking[dimension] <= high, (number, dimension)
            previous = tracking

        assert previous["physical"] > 0
        assert previous["social"] > 0
        assert previous["plot"] > 0


class TestCompletion:
    """Test suite for request_completion and terminal status."""

    def test_too_early(self, service, started_novel):
        with pytest.raises(ValidationError) as exc_info:
            service.request_completion(started_novel)
        assert exc_info.value.details["threshold"] == 20

    def test_threshold_ratio(self, service, started_novel):
        service.settings = service.settings.model_copy(update={"completion_threshold_ratio": 0.05})
        service.commit_chapter(started_novel, build_chapter(level=5))
        assert service.request_completion(started_novel)["status"] == "Completing"

    def test_full_novel_to_completion(self, service, started_novel):
        """Twenty paced chapters, completion, a final chapter, then the novel is closed."""
        for number in range(1, 21):
            result = service.commit_chapter(started_novel, build_chapter(number=number, level=_level(number)))
            assert result.committed, result.violations

        completion = service.request_completion(started_novel)
        assert completion["status"] == "Completing"
        assert "the FINAL chapter" in completion["prompt"]
        assert service.request_completion(started_novel)["status"] == "Completing"

        final = service.commit_chapter(
            started_novel,
            build_chapter(number=21, level=_level(21), extra={"ENDING_TYPE": "HAPPY_ENDING"}),
        )
        assert final.committed
        assert final.status == NovelStatus.COMPLETED

        with pytest.raises(ClosedNovelError):
            service.commit_chapter(started_novel, build_chapter(number=22, level=100))
        with pytest.raises(ClosedNovelError):
            service.prepare_next_chapter(started_novel)
        with pytest.raises(ClosedNovelError):
            service.request_completion(started_novel)
        assert len(service.get_state(started_novel).chapters) == 21

    def test_completing_rejects_chapter_without_marker(self, service, started_novel):
        service.settings = service.settings.model_copy(update={"completion_threshold_ratio": 0.05})
        service.commit_chapter(started_novel, build_chapter(level=5))
        service.request_completion(started_novel)
        result = service.commit_chapter(started_novel, build_chapter(level=8))
        assert result.rejected
        assert "missing_ending_marker" in [v["ruleId"] for v in result.violations]


class TestGenerateChapter:
    """Test suite for the generate-validate-retry loop."""

    def test_first_attempt_accepted(self, service, started_novel, mock_llm_client):
        result = service.generate_chapter(started_novel, mock_llm_client, creativity="precise")
        assert result.committed
        mock_llm_client.generate.assert_called_once()
        assert mock_llm_client.generate.call_args.kwargs["temperature"] == 0.3

    def test_rejection_feeds_back(self, service, started_novel, mock_llm_client):
        mock_llm_client.generate.side_effect = [build_chapter(level=80), build_chapter(level=5)]
        result = service.generate_chapter(started_novel, mock_llm_client)
        assert result.committed
        assert mock_llm_client.generate.call_count == 2
        second_prompt = mock_llm_client.generate.call_args_list[1].args[0]
        assert "The previous draft was rejected" in second_prompt
        assert "Romance progression jumps 80 points" in second_prompt

    def test_unparseable_output_retried(self, service, started_novel, mock_llm_client):
        mock_llm_client.generate.side_effect = ["I could not write this chapter.", build_chapter(level=5)]
        assert service.generate_chapter(started_novel, mock_llm_client).committed
        second_prompt = mock_llm_client.generate.call_args_list[1].args[0]
        assert "no CONTENT" in second_prompt

    def test_other_validation_errors_not_retried(self, service, started_novel, mock_llm_client, monkeypatch):
        """Only malformed output is retried; other validation failures propagate on the first attempt."""
        commit = MagicMock(side_effect=ValidationError("Invalid novel record"))
        monkeypatch.setattr(service, "commit_chapter", commit)
        with pytest.raises(ValidationError) as exc_info:
            service.generate_chapter(started_novel, mock_llm_client, max_retries=3)
        assert not isinstance(exc_info.value, ChapterParseError)
        assert mock_llm_client.generate.call_count == 1
        commit.assert_called_once()

    def test_gives_up_after_retries(self, service, started_novel, mock_llm_client):
        mock_llm_client.generate.return_value = build_chapter(level=80)
        with pytest.raises(GenerationRejectedError) as exc_info:
            service.generate_chapter(started_novel, mock_llm_client, max_retries=2)
        assert exc_info.value.attempts == 2
        assert exc_info.value.violations
        assert mock_llm_client.generate.call_count == 2
        assert service.get_state(started_novel).chapters == []

    def test_unknown_creativity(self, service, started_novel, mock_llm_client):
        with pytest.raises(ValidationError):
            service.generate_chapter(started_novel, mock_llm_client, creativity="wild")
        mock_llm_client.generate.assert_not_called()


class TestSystemStatus:
    """Test suite for get_system_status."""

    def test_empty(self, service):
        assert service.get_system_status() == {"enabled": True, "activeNovelCount": 0, "novels": []}

    def test_lists_novels(self, service, started_novel):
        service.commit_chapter(started_novel, build_chapter(level=5))
        status = service.get_system_status()
        assert status["activeNovelCount"] == 1
        novel = status["novels"][0]
        assert novel["novelSlug"] == started_novel
        assert novel["chapterCount"] == 1
        assert novel["stage"] == "Introduction"
        assert novel["overallProgress"] == 2.5


@pytest.mark.parametrize("title,slug", [
    ("Harbor of Stars", "harbor-of-stars"),
    ("  The Duke's Secret!  ", "the-duke-s-secret"),
    ("별빛 항구", ""),
])
def test_slugify(title, slug):
    assert slugify(title) == slug


def test_service_wiring_uses_settings(tmp_path):
    settings = EngineSettings(state_dir=str(tmp_path), continuity_enabled=False, foreshadow_min_gap=5)
    service = create_continuity_service(settings)
    assert isinstance(service, ContinuityService)
    assert isinstance(service.validator, ConstraintValidator) and not service.validator.enabled
    assert isinstance(service.generator, PromptConstraintGenerator)
    assert service.generator.foreshadow_min_gap == 5
    assert isinstance(service.recorder, ContinuityChapterRecorder)


def test_service_wiring_applies_length_bounds(tmp_path):
    settings = EngineSettings(state_dir=str(tmp_path), min_chapter_words=900, max_chapter_words=5000)
    ruleset = create_continuity_service(settings).validator.ruleset
    assert (ruleset.min_chapter_words, ruleset.max_chapter_words) == (900, 5000)


def test_ruleset_length_bounds_win_over_settings(tmp_path):
    rules = tmp_path / "rules.yaml"
    rules.write_text("min_chapter_words: 300\n", encoding="utf-8")
    settings = EngineSettings(state_dir=str(tmp_path), ruleset_path=str(rules))
    ruleset = create_continuity_service(settings).validator.ruleset
    assert ruleset.min_chapter_words == 300
    assert ruleset.max_chapter_words == 6000
