"""
CLI tool for running serialized novels locally.

Provides commands for starting novels, preparing and committing chapters,
requesting completion and inspecting state without the HTTP API.
"""

import sys
import json
from pathlib import Path
from typing import Optional, Dict, Any, Tuple

import click
import yaml
from dotenv import load_dotenv

from .app import configure_logging
from .config import EngineSettings
from .services.continuity_service import ContinuityService, create_continuity_service
from .services.chapter_recorder import CommitResult
from .utils.errors import APIError, GenerationRejectedError
from .utils.llm import Creativity


def _service(ctx: click.Context) -> ContinuityService:
    obj = ctx.ensure_object(dict)
    if "service" not in obj:
        obj["service"] = create_continuity_service(obj["settings"])
    return obj["service"]


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _load_info_file(path: str) -> Dict[str, Any]:
    text = Path(path).read_text(encoding="utf-8")
    if path.endswith((".yaml", ".yml")):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        _fail(f"{path} must contain a mapping of novel fields")
    return data


def _echo_violations(violations) -> None:
    for violation in violations:
        click.echo(f"  - [{violation.get('severity')}] {violation.get('ruleId')}: {violation.get('message')}")
        if violation.get("suggestion"):
            click.echo(f"      fix: {violation['suggestion']}")


def _echo_commit(result: CommitResult) -> None:
    if result.committed:
        click.echo(f"✓ Committed chapter {result.chapter_number} of '{result.novel_slug}' (status: {result.status.value})")
        if result.milestones:
            click.echo(f"  Milestones reached: {', '.join(result.milestones)}")
    elif result.duplicate:
        click.echo(f"Chapter {result.chapter_number} of '{result.novel_slug}' was already committed.")
    else:
        click.echo(f"✗ Chapter {result.chapter_number} rejected (score {result.aggregate_score}):", err=True)
        _echo_violations(result.violations)


@click.group()
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]) -> None:
    """Continuity engine for serialized novels."""
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        load_dotenv()
        obj["settings"] = EngineSettings.from_env()
    configure_logging(log_level or obj["settings"].log_level)


@cli.command()
@click.option('--title', help='Novel title')
@click.option('--slug', help='Novel slug (default: derived from the title)')
@click.option('--author', help='Author name')
@click.option('--genre', help='Genre')
@click.option('--target-chapters', type=int, help='Planned number of chapters')
@click.option('--trope', 'tropes', multiple=True, help='Relationship trope (repeatable)')
@click.option('--from-file', 'info_file', type=click.Path(exists=True, dir_okay=False),
              help='JSON or YAML file with novel fields (world, characters, ...)')
@click.pass_context
def start(
    ctx: click.Context,
    title: Optional[str],
    slug: Optional[str],
    author: Optional[str],
    genre: Optional[str],
    target_chapters: Optional[int],
    tropes: Tuple[str, ...],
    info_file: Optional[str]
) -> None:
    """
    Start a new novel and print the first chapter prompt.

    Command-line options override fields read from --from-file.
    """
    info = _load_info_file(info_file) if info_file else {}
    overrides = {
        "title": title,
        "slug": slug,
        "author": author,
        "genre": genre,
        "targetChapters": target_chapters,
        "tropes": list(tropes) if tropes else None,
    }
    info.update({key: value for key, value in overrides.items() if value is not None})
    try:
        result = _service(ctx).start_new_novel(info)
    except APIError as e:
        _fail(e.message)
    click.echo(f"✓ Started novel '{result['novelSlug']}'\n")
    click.echo(result["prompt"])


@cli.command()
@click.argument('slug')
@click.option('--constraints-only', is_flag=True, help='Print only the constraints JSON')
@click.pass_context
def prepare(ctx: click.Context, slug: str, constraints_only: bool) -> None:
    """Print the prompt and constraints for the next chapter."""
    try:
        payload = _service(ctx).prepare_next_chapter(slug)
    except APIError as e:
        _fail(e.message)
    if constraints_only:
        click.echo(json.dumps(payload["constraints"], indent=2, sort_keys=True, ensure_ascii=False))
    else:
        click.echo(payload["prompt"])


@cli.command()
@click.argument('slug')
@click.argument('chapter_file', type=click.File('r', encoding='utf-8'))
@click.pass_context
def commit(ctx: click.Context, slug: str, chapter_file) -> None:
    """
    Validate and commit a generated chapter read from CHAPTER_FILE ('-' for stdin).

    Exits with code 1 if the chapter is rejected.
    """
    try:
        result = _service(ctx).commit_chapter(slug, chapter_file.read())
    except APIError as e:
        _fail(e.message)
    _echo_commit(result)
    if result.rejected:
        sys.exit(1)


@cli.command()
@click.argument('slug')
@click.pass_context
def complete(ctx: click.Context, slug: str) -> None:
    """Request completion and print the final chapter prompt."""
    try:
        result = _service(ctx).request_completion(slug)
    except APIError as e:
        _fail(e.message)
    click.echo(f"✓ Novel '{slug}' is {result['status']}\n")
    click.echo(result["prompt"])


@cli.command()
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format (default: table)')
@click.pass_context
def status(ctx: click.Context, output_format: str) -> None:
    """Show engine status and every stored novel."""
    try:
        result = _service(ctx).get_system_status()
    except APIError as e:
        _fail(e.message)

    if output_format == 'json':
        click.echo(json.dumps(result, indent=2, ensure_ascii=False))
        return

    click.echo(f"Continuity checks: {'enabled' if result['enabled'] else 'disabled'}")
    click.echo(f"Active novels: {result['activeNovelCount']}")
    if not result["novels"]:
        click.echo("No novels found.")
        return
    click.echo(f"\n{'Slug':<30} {'Status':<12} {'Chapters':<10} {'Stage':<14}")
    click.echo("-" * 70)
    for novel in result["novels"]:
        chapters = f"{novel['chapterCount']}/{novel['targetChapters']}"
        click.echo(f"{novel['novelSlug']:<30} {novel['status']:<12} {chapters:<10} {novel.get('stage', '-'):<14}")


@cli.command()
@click.argument('slug')
@click.pass_context
def show(ctx: click.Context, slug: str) -> None:
    """Print a novel's stored state as JSON."""
    try:
        state = _service(ctx).get_state(slug)
    except APIError as e:
        _fail(e.message)
    click.echo(json.dumps(state.to_document(), indent=2, ensure_ascii=False))


@cli.command()
@click.argument('slug')
@click.option('--creativity', type=click.Choice([c.value for c in Creativity]),
              default=Creativity.BALANCED.value, help='Sampling creativity (default: balanced)')
@click.option('--retries', type=int, default=None, help='Attempts before giving up (default: MAX_GENERATION_RETRIES)')
@click.pass_context
def generate(ctx: click.Context, slug: str, creativity: str, retries: Optional[int]) -> None:
    """Generate, validate and commit the next chapter with the configured LLM provider."""
    obj = ctx.ensure_object(dict)
    try:
        if "client" not in obj:
            from .providers import create_provider
            obj["client"] = create_provider(obj.get("settings"))
        result = _service(ctx).generate_chapter(slug, obj["client"], creativity, max_retries=retries)
    except GenerationRejectedError as e:
        click.echo(f"Error: {e.message}", err=True)
        _echo_violations(e.violations)
        sys.exit(1)
    except APIError as e:
        _fail(e.message)
    _echo_commit(result)


@cli.command('add-character')
@click.argument('slug')
@click.argument('name')
@click.option('--role', help='Character role (protagonist, love_interest, ...)')
@click.option('--alias', 'aliases', multiple=True, help='Alternative name (repeatable)')
@click.option('--trait', 'traits', multiple=True, help='Personality trait (repeatable)')
@click.option('--location', help='Current location')
@click.option('--emotion', help='Current emotion')
@click.pass_context
def add_character(
    ctx: click.Context,
    slug: str,
    name: str,
    role: Optional[str],
    aliases: Tuple[str, ...],
    traits: Tuple[str, ...],
    location: Optional[str],
    emotion: Optional[str]
) -> None:
    """Register a character (or update an existing one)."""
    attrs: Dict[str, Any] = {}
    if traits:
        attrs["personalityTraits"] = list(traits)
    current_state = {key: value for key, value in (("location", location), ("emotion", emotion)) if value}
    if current_state:
        attrs["currentState"] = current_state
    try:
        _service(ctx).register_character(slug, name, attrs=attrs, role=role, aliases=list(aliases))
    except APIError as e:
        _fail(e.message)
    click.echo(f"✓ Registered '{name}' in '{slug}'")


if __name__ == '__main__':
    cli()
