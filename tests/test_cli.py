"""
Tests for the serialnovel command-line interface.
"""

import json
import pytest
import yaml
from click.testing import CliRunner

from conftest import build_chapter
from serialnovel.cli import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def obj(settings, service):
    """Context object with an isolated service."""
    return {"settings": settings, "service": service}


def _start(runner, obj, *args):
    return runner.invoke(cli, ["start", "--title", "Harbor of Stars", *args], obj=obj)


class TestStart:
    """Test suite for the start command."""

    def test_start_prints_prompt(self, runner, obj):
        result = _start(runner, obj, "--target-chapters", "12", "--trope", "slow-burn")
        assert result.exit_code == 0, result.output
        assert "Started novel 'harbor-of-stars'" in result.output
        assert "CHAPTER_NUMBER: 1" in result.output
        state = obj["service"].get_state("harbor-of-stars")
        assert state.metadata.target_chapters == 12
        assert state.metadata.tropes == ["slow-burn"]

    def test_start_from_yaml_file(self, runner, obj, novel_info, tmp_path):
        path = tmp_path / "novel.yaml"
        path.write_text(yaml.safe_dump(novel_info, allow_unicode=True), encoding="utf-8")
        result = runner.invoke(cli, ["start", "--from-file", str(path), "--slug", "harbor-two"], obj=obj)
        assert result.exit_code == 0, result.output
        state = obj["service"].get_state("harbor-two")
        assert sorted(state.characters) == ["Aria", "Kael"]

    def test_start_from_json_file(self, runner, obj, novel_info, tmp_path):
        path = tmp_path / "novel.json"
        path.write_text(json.dumps(novel_info), encoding="utf-8")
        result = runner.invoke(cli, ["start", "--from-file", str(path)], obj=obj)
        assert result.exit_code == 0, result.output

    def test_start_without_title_fails(self, runner, obj):
        result = runner.invoke(cli, ["start", "--genre", "fantasy"], obj=obj)
        assert result.exit_code == 1
        assert "title is required" in result.output

    def test_start_duplicate_fails(self, runner, obj):
        _start(runner, obj)
        result = _start(runner, obj)
        assert result.exit_code == 1


class TestChapterCommands:
    """Test suite for prepare and commit."""

    def test_prepare_constraints_only(self, runner, obj):
        _start(runner, obj)
        result = runner.invoke(cli, ["prepare", "harbor-of-stars", "--constraints-only"], obj=obj)
        assert result.exit_code == 0, result.output
        constraints = json.loads(result.output)
        assert constraints["chapterNumber"] == 1

    def test_prepare_missing_novel(self, runner, obj):
        result = runner.invoke(cli, ["prepare", "missing-novel"], obj=obj)
        assert result.exit_code == 1

    def test_commit_from_file(self, runner, obj, tmp_path):
        _start(runner, obj)
        path = tmp_path / "chapter.txt"
        path.write_text(build_chapter(number=1, level=5), encoding="utf-8")
        result = runner.invoke(cli, ["commit", "harbor-of-stars", str(path)], obj=obj)
        assert result.exit_code == 0, result.output
        assert "Committed chapter 1" in result.output
        assert "first_encounter" in result.output

    def test_commit_from_stdin_rejected(self, runner, obj):
        _start(runner, obj)
        result = runner.invoke(
            cli, ["commit", "harbor-of-stars", "-"], input=build_chapter(level=80), obj=obj
        )
        assert result.exit_code == 1
        assert "romance_delta" in result.output


class TestOtherCommands:
    """Test suite for status, show, complete, generate and add-character."""

    def test_status_table(self, runner, obj):
        _start(runner, obj)
        result = runner.invoke(cli, ["status"], obj=obj)
        assert result.exit_code == 0
        assert "Active novels: 1" in result.output
        assert "harbor-of-stars" in result.output

    def test_status_json(self, runner, obj):
        result = runner.invoke(cli, ["status", "--format", "json"], obj=obj)
        assert json.loads(result.output)["novels"] == []

    def test_show(self, runner, obj):
        _start(runner, obj)
        result = runner.invoke(cli, ["show", "harbor-of-stars"], obj=obj)
        assert json.loads(result.output)["novelSlug"] == "harbor-of-stars"

    def test_complete_too_early(self, runner, obj):
        _start(runner, obj)
        result = runner.invoke(cli, ["complete", "harbor-of-stars"], obj=obj)
        assert result.exit_code == 1
        assert "required before completion" in result.output

    def test_generate_with_client(self, runner, obj, mock_llm_client):
        _start(runner, obj)
        obj["client"] = mock_llm_client
        result = runner.invoke(cli, ["generate", "harbor-of-stars", "--creativity", "creative"], obj=obj)
        assert result.exit_code == 0, result.output
        assert "Committed chapter 1" in result.output
        assert mock_llm_client.generate.call_args.kwargs["temperature"] == 0.9

    def test_generate_gives_up(self, runner, obj, mock_llm_client):
        _start(runner, obj)
        mock_llm_client.generate.return_value = build_chapter(level=80)
        obj["client"] = mock_llm_client
        result = runner.invoke(cli, ["generate", "harbor-of-stars", "--retries", "2"], obj=obj)
        assert result.exit_code == 1
        assert "generation rejected after 2 attempts" in result.output

    def test_add_character(self, runner, obj):
        _start(runner, obj)
        result = runner.invoke(cli, [
            "add-character", "harbor-of-stars", "Mira",
            "--role", "rival", "--alias", "the harbormaster", "--trait", "sly", "--location", "Lantern Quay",
        ], obj=obj)
        assert result.exit_code == 0, result.output
        state = obj["service"].get_state("harbor-of-stars")
        assert state.characters["Mira"].personality_traits == ["sly"]
        assert state.characters["Mira"].current_state.location == "Lantern Quay"
        assert state.aliases["the harbormaster"] == "Mira"
