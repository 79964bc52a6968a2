"""
Continuity service.

Lifecycle operations exposed to the HTTP and CLI surfaces: starting a
novel, preparing and committing chapters, requesting completion, and the
bounded generate-validate-retry loop around an LLM client. Every write to a
novel happens under that novel's lease.
"""

import math
import re
import time
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from ..config import EngineSettings
from ..models import StoryState, ParsedChapter, NovelStatus, is_valid_slug, SLUG_MAX_LENGTH
from ..progression import stage_of, overall_progress
from ..rules import load_ruleset
from ..templates import render_chapter_markdown
from ..utils.chapter_parser import parse_generated_chapter
from ..utils.errors import (
    ValidationError,
    ChapterParseError,
    ConflictError,
    ClosedNovelError,
    GenerationRejectedError,
)
from ..utils.llm import BaseLLMClient, Creativity, temperature_for
from ..utils.locks import NovelLockManager
from ..utils.repository import create_state_repository
from ..utils.storage import write_text_atomic
from .state_store import StoryStateStore, camel_keys
from .constraint_validator import ConstraintValidator
from .prompt_generator import PromptConstraintGenerator
from .chapter_recorder import ContinuityChapterRecorder, CommitResult

logger = logging.getLogger(__name__)


def slugify(title: str) -> str:
    """Lowercase ASCII slug of a title; empty if the title has no ASCII letters or digits."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:SLUG_MAX_LENGTH].rstrip("-")


def _unparseable_feedback(error: ChapterParseError) -> Dict[str, Any]:
    return {
        "type": "format",
        "ruleId": "unparseable_output",
        "severity": "high",
        "message": error.message,
        "suggestion": "Reply using exactly the output format, with a CONTENT section",
    }


class ContinuityService:
    """Orchestrates the store, validator, prompt generator and recorder."""

    def __init__(
        self,
        store: StoryStateStore,
        validator: ConstraintValidator,
        generator: PromptConstraintGenerator,
        recorder: ContinuityChapterRecorder,
        locks: Optional[NovelLockManager] = None,
        settings: Optional[EngineSettings] = None
    ):
        self.store = store
        self.validator = validator
        self.generator = generator
        self.recorder = recorder
        self.settings = settings or EngineSettings()
        self.locks = locks or NovelLockManager(default_ttl=self.settings.lease_ttl_seconds)

    def _lease(self, slug: str):
        return self.locks.lease(slug, wait_timeout=self.settings.lock_wait_timeout)

    def _open_state(self, slug: str) -> StoryState:
        state = self.store.get(slug)
        if state.status == NovelStatus.COMPLETED:
            raise ClosedNovelError(slug)
        return state

    def start_new_novel(self, novel_info: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a novel and return the prompt for its first chapter.

        Args:
            novel_info: title (required) plus optional slug, author, genre,
                targetChapters, tropes, world, characters, aliases,
                knownTerms, blockedNames, mainArc, activeConflicts.
                snake_case keys are accepted too.

        Returns:
            Dict with 'prompt' and 'novelSlug'

        Raises:
            ValidationError: If the title is missing or the record is invalid
            ConflictError: If a novel with the slug already exists
        """
        info = camel_keys(novel_info or {})
        title = str(info.get("title") or "").strip()
        if not title:
            raise ValidationError("Novel title is required", details={"field": "title"})

        slug = info.get("slug") or slugify(title) or f"novel-{int(time.time() * 1000)}"
        if not is_valid_slug(slug):
            raise ValidationError(f"Invalid novel slug '{slug}'", details={"novel_slug": slug})

        now = datetime.now().isoformat()
        document = {
            "novelSlug": slug,
            "metadata": {
                "title": title,
                "author": info.get("author") or "Anonymous",
                "genre": info.get("genre") or "romance fantasy",
                "status": NovelStatus.ACTIVE.value,
                "targetChapters": info.get("targetChapters") or self.settings.default_target_chapters,
                "tropes": list(info.get("tropes") or []),
                "createdAt": now,
                "updatedAt": now,
            },
            "worldState": camel_keys(info.get("world") or {}),
            "characters": {
                name: camel_keys(attrs or {})
                for name, attrs in (info.get("characters") or {}).items()
            },
            "plot": {
                "mainArcSummary": info.get("mainArc") or "",
                "activeConflicts": list(info.get("activeConflicts") or []),
            },
            "aliases": dict(info.get("aliases") or {}),
            "knownTerms": list(info.get("knownTerms") or []),
            "blockedNames": list(info.get("blockedNames") or []),
        }

        with self._lease(slug):
            if self.store.exists(slug):
                raise ConflictError(slug, f"Novel '{slug}' already exists.")
            state = self.store.save(slug, document)

        logger.info(f"Started novel '{slug}' ({state.metadata.target_chapters} chapters planned)")
        return {
            "prompt": self.generator.first_chapter_prompt(state),
            "novelSlug": slug,
        }

    def prepare_next_chapter(
        self,
        slug: str,
        feedback: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """
        Build the prompt and constraints for a novel's next chapter.

        Raises:
            NotFoundError: If the novel does not exist
            ClosedNovelError: If the novel is Completed
        """
        state = self._open_state(slug)
        return self.generator.prepare_next_chapter(state, feedback)

    def commit_chapter(self, slug: str, parsed_chapter_text: Union[str, ParsedChapter]) -> CommitResult:
        """
        Parse, validate and (if valid) commit a generated chapter.

        Args:
            slug: Novel slug
            parsed_chapter_text: Raw LLM output, or an already parsed chapter

        Returns:
            CommitResult; a rejected chapter comes back with committed=False
            and its violations

        Raises:
            ChapterParseError: If the text cannot be parsed
            NotFoundError: If the novel does not exist
            ClosedNovelError: If the novel is Completed
            ConflictError: If another operation holds the novel's lease
        """
        with self._lease(slug) as lease:
            state = self._open_state(slug)
            if isinstance(parsed_chapter_text, ParsedChapter):
                parsed = parsed_chapter_text
            else:
                parsed = parse_generated_chapter(parsed_chapter_text)
            report = self.validator.validate(parsed.content, parsed, state)
            result = self.recorder.commit_chapter(slug, parsed, report, lease=lease, state=state)

        if result.committed and self.settings.chapter_output_dir:
            self._write_chapter_file(slug, result, parsed.content)
        return result

    def _write_chapter_file(self, slug: str, result: CommitResult, content: str) -> Path:
        path = Path(self.settings.chapter_output_dir) / f"{slug}-ch{result.chapter_number}.md"
        try:
            write_text_atomic(path, render_chapter_markdown(result.chapter_document, content))
        except OSError:
            logger.error(f"Chapter {result.chapter_number} of '{slug}' committed but not written to {path}", exc_info=True)
            raise
        logger.info(f"Wrote chapter file {path}")
        return path

    def completion_threshold(self, state: StoryState) -> int:
        return max(1, math.ceil(state.metadata.target_chapters * self.settings.completion_threshold_ratio))

    def request_completion(self, slug: str) -> Dict[str, Any]:
        """
        Move a novel to Completing and return the final chapter prompt.

        Repeated requests on a Completing novel return the prompt again.

        Raises:
            ValidationError: If fewer chapters than the completion threshold exist
            ClosedNovelError: If the novel is already Completed
        """
        with self._lease(slug) as lease:
            state = self._open_state(slug)
            if state.status != NovelStatus.COMPLETING:
                threshold = self.completion_threshold(state)
                if len(state.chapters) < threshold:
                    raise ValidationError(
                        f"Novel '{slug}' has {len(state.chapters)} chapters; {threshold} are required before completion",
                        details={"novel_slug": slug, "chapters": len(state.chapters), "threshold": threshold},
                    )
                now = datetime.now().isoformat()
                state.metadata.status = NovelStatus.COMPLETING
                state.metadata.completion_requested_at = now
                state.metadata.updated_at = now
                lease.ensure_held()
                state = self.store.save(slug, state)
                logger.info(f"Completion requested for '{slug}' after {len(state.chapters)} chapters")

        return {
            "prompt": self.generator.ending_prompt(state),
            "novelSlug": slug,
            "status": state.status.value,
        }

    def get_system_status(self) -> Dict[str, Any]:
        """Summarize every stored novel."""
        novels = []
        for state in self.store.list_states():
            entry = {
                "novelSlug": state.novel_slug,
                "title": state.metadata.title,
                "status": state.status.value,
                "chapterCount": len(state.chapters),
                "targetChapters": state.metadata.target_chapters,
                "overallProgress": overall_progress(state.progression_tracking.as_dict()),
            }
            if state.status != NovelStatus.COMPLETED:
                entry["stage"] = stage_of(state.next_chapter_number, state.metadata.target_chapters).value
            novels.append(entry)

        active = [n for n in novels if n["status"] in (NovelStatus.ACTIVE.value, NovelStatus.COMPLETING.value)]
        return {
            "enabled": self.settings.continuity_enabled,
            "activeNovelCount": len(active),
            "novels": novels,
        }

    def generate_chapter(
        self,
        slug: str,
        client: BaseLLMClient,
        creativity: Union[Creativity, str, None] = None,
        max_retries: Optional[int] = None
    ) -> CommitResult:
        """
        Draft, validate and commit the next chapter, retrying on rejection.

        Each rejected draft's violations are fed back into the next prompt.
        Unparseable output counts as a failed attempt.

        Args:
            slug: Novel slug
            client: LLM client producing chapter drafts
            creativity: Creativity setting mapped to sampling temperature
            max_retries: Attempts before giving up (settings default if None)

        Returns:
            CommitResult of the accepted chapter

        Raises:
            GenerationRejectedError: If every attempt was rejected; nothing is committed
        """
        attempts = max_retries or self.settings.max_generation_retries
        temperature = temperature_for(creativity)
        feedback: Optional[List[Dict[str, Any]]] = None
        violations: List[Dict[str, Any]] = []

        for attempt in range(1, attempts + 1):
            payload = self.prepare_next_chapter(slug, feedback)
            raw = client.generate(payload["prompt"], temperature=temperature)
            try:
                result = self.commit_chapter(slug, raw)
            except ChapterParseError as e:
                logger.warning(f"Attempt {attempt}/{attempts} for '{slug}' produced unusable output: {e.message}")
                violations = [_unparseable_feedback(e)]
                feedback = violations
                continue

            if result.committed or result.duplicate:
                logger.info(f"Chapter {result.chapter_number} of '{slug}' accepted on attempt {attempt}")
                return result

            logger.warning(
                f"Attempt {attempt}/{attempts} for chapter {result.chapter_number} of '{slug}' "
                f"rejected with {len(result.violations)} violations"
            )
            violations = result.violations
            feedback = violations

        logger.error(f"Generation for '{slug}' rejected after {attempts} attempts")
        raise GenerationRejectedError(slug, attempts, violations)

    def register_character(
        self,
        slug: str,
        name: str,
        attrs: Optional[Dict[str, Any]] = None,
        role: Optional[str] = None,
        aliases: Optional[List[str]] = None
    ) -> StoryState:
        """Register or update a character, optionally with aliases that resolve to it."""
        with self._lease(slug) as lease:
            self._open_state(slug)
            state = self.store.upsert_character(slug, name, attrs, role)
            if aliases:
                for alias in aliases:
                    state.aliases[alias.strip()] = name.strip()
                lease.ensure_held()
                state = self.store.save(slug, state)
        return state

    def get_state(self, slug: str) -> StoryState:
        return self.store.get(slug)


def create_continuity_service(settings: Optional[EngineSettings] = None) -> ContinuityService:
    """
    Build a ContinuityService from settings.

    Args:
        settings: Engine settings (read from the environment if None)

    Returns:
        ContinuityService wired to the configured repository and rule set
    """
    settings = settings or EngineSettings.from_env()
    store = StoryStateStore(create_state_repository(settings))
    ruleset = load_ruleset(settings.ruleset_path)
    length_bounds = {
        field: getattr(settings, field)
        for field in ("min_chapter_words", "max_chapter_words")
        if not getattr(ruleset, field)
    }
    if length_bounds:
        ruleset = ruleset.model_copy(update=length_bounds)
    return ContinuityService(
        store=store,
        validator=ConstraintValidator(ruleset, enabled=settings.continuity_enabled),
        generator=PromptConstraintGenerator(ruleset, foreshadow_min_gap=settings.foreshadow_min_gap),
        recorder=ContinuityChapterRecorder(store, content_rating=settings.content_rating),
        locks=NovelLockManager(default_ttl=settings.lease_ttl_seconds),
        settings=settings,
    )
