"""
Tests for story state repository implementations.
"""

import pytest

from serialnovel.config import EngineSettings
from serialnovel.utils.repository import (
    FileStoryStateRepository,
    DatabaseStoryStateRepository,
    create_state_repository,
)


@pytest.fixture
def sample_document():
    """Minimal camelCase state document."""
    return {
        "novelSlug": "test-novel",
        "metadata": {"title": "Test Novel", "status": "Active"},
        "chapters": [],
    }


@pytest.fixture(params=["file", "sqlite"])
def repo(request, tmp_path):
    """Each repository backend over a temporary location."""
    if request.param == "file":
        return FileStoryStateRepository(storage_path=str(tmp_path / "states"))
    return DatabaseStoryStateRepository(db_path=str(tmp_path / "states.db"))


class TestRepositoryContract:
    """Behaviour shared by every backend."""

    def test_load_missing_returns_none(self, repo):
        assert repo.load("missing-novel") is None
        assert repo.exists("missing-novel") is False

    def test_save_and_load(self, repo, sample_document):
        repo.save("test-novel", sample_document)
        assert repo.load("test-novel") == sample_document
        assert repo.exists("test-novel")

    def test_save_replaces_whole_document(self, repo, sample_document):
        """A second save replaces the stored document rather than merging."""
        repo.save("test-novel", sample_document)
        replacement = {"novelSlug": "test-novel", "metadata": {"title": "Renamed"}}
        repo.save("test-novel", replacement)
        assert repo.load("test-novel") == replacement

    def test_list_and_count(self, repo, sample_document):
        for slug in ("beta-novel", "alpha-novel", "gamma-novel"):
            repo.save(slug, dict(sample_document, novelSlug=slug))
        assert repo.list_slugs() == ["alpha-novel", "beta-novel", "gamma-novel"]
        assert repo.count() == 3

    def test_delete(self, repo, sample_document):
        repo.save("test-novel", sample_document)
        assert repo.delete("test-novel") is True
        assert repo.delete("test-novel") is False
        assert repo.load("test-novel") is None

    def test_unicode_survives(self, repo, sample_document):
        document = dict(sample_document, metadata={"title": "별빛 항구"})
        repo.save("test-novel", document)
        assert repo.load("test-novel")["metadata"]["title"] == "별빛 항구"


class TestFileRepository:
    """File-specific behaviour."""

    def test_documents_are_pretty_printed_json(self, tmp_path, sample_document):
        repo = FileStoryStateRepository(storage_path=str(tmp_path))
        repo.save("test-novel", sample_document)
        text = (tmp_path / "test-novel.json").read_text(encoding="utf-8")
        assert text.startswith("{\n")
        assert text.endswith("}\n")

    def test_list_ignores_hidden_temp_files(self, tmp_path, sample_document):
        repo = FileStoryStateRepository(storage_path=str(tmp_path))
        repo.save("test-novel", sample_document)
        (tmp_path / ".test-novel.json.abc.tmp").write_text("{}", encoding="utf-8")
        assert repo.list_slugs() == ["test-novel"]


class TestDatabaseRepository:
    """SQLite-specific behaviour."""

    def test_count_by_status(self, tmp_path, sample_document):
        repo = DatabaseStoryStateRepository(db_path=str(tmp_path / "states.db"))
        repo.save("test-novel", sample_document)
        repo.save("done-novel", {"novelSlug": "done-novel", "metadata": {"title": "Done", "status": "Completed"}})
        assert repo._storage.count(status="Completed") == 1
        assert repo._storage.list_slugs(status="Active") == ["test-novel"]


class TestCreateStateRepository:
    """Test suite for the repository factory."""

    def test_file_backend(self, tmp_path):
        settings = EngineSettings(storage_backend="file", state_dir=str(tmp_path))
        repo = create_state_repository(settings)
        assert isinstance(repo, FileStoryStateRepository)
        assert repo.storage_path == tmp_path

    def test_sqlite_backend(self, tmp_path):
        settings = EngineSettings(storage_backend="sqlite", db_path=str(tmp_path / "states.db"))
        assert isinstance(create_state_repository(settings), DatabaseStoryStateRepository)

    def test_backend_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.delenv("STORY_STATE_BACKEND", raising=False)
        monkeypatch.setenv("USE_DB_STORAGE", "true")
        monkeypatch.setenv("STORY_STATE_DB_PATH", str(tmp_path / "env.db"))
        assert isinstance(create_state_repository(), DatabaseStoryStateRepository)
