"""Storage utilities for persisting story state documents to disk."""

import json
import os
import tempfile
import logging
from pathlib import Path
from typing import Dict, Optional, Any, List


logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = Path("data") / "story-states"


def ensure_dir(directory: Path) -> Path:
    """Ensure a storage directory exists."""
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def get_state_path(directory: Path, slug: str) -> Path:
    """Get the file path for a novel's state document."""
    return directory / f"{slug}.json"


def write_text_atomic(path: Path, text: str) -> None:
    """
    Write text so that readers see either the old file or the new one.

    The text goes to a temporary file in the same directory, is flushed to
    disk and then renamed over the target. On any failure the temporary file
    is removed and the exception propagates; the previous file is untouched.

    Args:
        path: Destination file
        text: Full file contents
    """
    ensure_dir(path.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        logger.error(f"Atomic write to {path} failed; keeping previous contents", exc_info=True)
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def save_document(directory: Path, slug: str, document: Dict[str, Any]) -> None:
    """
    Save a state document to disk, replacing any previous version atomically.

    Args:
        directory: Storage directory
        slug: Novel slug
        document: JSON-serializable state document
    """
    text = json.dumps(document, indent=2, ensure_ascii=False, sort_keys=True)
    write_text_atomic(get_state_path(directory, slug), text + "\n")


def load_document(directory: Path, slug: str) -> Optional[Dict[str, Any]]:
    """
    Load a state document from disk.

    Args:
        directory: Storage directory
        slug: Novel slug

    Returns:
        The document, or None if no document exists for the slug

    Raises:
        OSError: If the file exists but cannot be read
        json.JSONDecodeError: If the file is corrupt
    """
    file_path = get_state_path(directory, slug)
    if not file_path.exists():
        return None
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def delete_document(directory: Path, slug: str) -> bool:
    """Delete a state document. Returns False if it did not exist."""
    file_path = get_state_path(directory, slug)
    if not file_path.exists():
        return False
    file_path.unlink()
    return True


def list_document_slugs(directory: Path) -> List[str]:
    """List slugs of all stored documents, sorted."""
    if not directory.exists():
        return []
    return sorted(
        p.stem for p in directory.glob("*.json")
        if not p.name.startswith(".")
    )
