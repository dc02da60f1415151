"""
Tests for the JSON document store and the local-device backend.
"""

import asyncio
import json

import pytest

from elevatr.core.config import StorageConfig
from elevatr.core.models import (
    JournalEntry,
    SprintStatus,
    TaskState,
    TaskStatus,
    TaskType,
    UserProgress,
)
from elevatr.core.storage import (
    InvalidInputError,
    JsonDocumentStore,
    LocalBackend,
    StorageCorruptedError,
    StorageError,
)
from elevatr.core.storage.local import progress_key, sprints_key

USER = "local_1700000000000_abc123xyz"
CACHED_USER = "cached_Zk81hFq2cloud"


@pytest.fixture
def documents(tmp_path):
    return JsonDocumentStore(tmp_path / "docs")


@pytest.fixture
def backend(tmp_path, documents):
    return LocalBackend(tmp_path / "docs", documents=documents)


# ==============================================================================
# JsonDocumentStore
# ==============================================================================


class TestJsonDocumentStore:
    """Tests for JsonDocumentStore."""

    def test_set_and_get(self, documents):
        """Test a document round-trips through disk."""
        documents.set("elevatr_local_sprints_u1", [{"id": "s1"}])
        assert documents.get("elevatr_local_sprints_u1") == [{"id": "s1"}]

    def test_missing_returns_default(self, documents):
        """Test missing documents return the default."""
        assert documents.get("missing") is None
        assert documents.get("missing", default=[]) == []

    def test_corrupted_document(self, documents):
        """Test unparseable JSON raises StorageCorruptedError."""
        documents.root.mkdir(parents=True)
        (documents.root / "broken.json").write_text("{oops")
        with pytest.raises(StorageCorruptedError):
            documents.get("broken")

    def test_no_temp_files_left(self, documents):
        """Test atomic writes clean up after themselves."""
        documents.set("a", {"x": 1})
        documents.set("a", {"x": 2})
        assert [p.name for p in documents.root.iterdir()] == ["a.json"]

    def test_delete(self, documents):
        """Test delete reports whether something was removed."""
        documents.set("a", 1)
        assert documents.delete("a") is True
        assert documents.delete("a") is False

    def test_keys_by_prefix(self, documents):
        """Test keys filters by prefix."""
        documents.set("elevatr_local_sprints_u1", [])
        documents.set("elevatr_local_sprints_u2", [])
        documents.set("other", {})
        assert documents.keys("elevatr_local_sprints_") == [
            "elevatr_local_sprints_u1",
            "elevatr_local_sprints_u2",
        ]

    def test_unsafe_key_chars_replaced(self, documents):
        """Test keys can't escape the root directory."""
        documents.set("../escape", 1)
        assert (documents.root / ".._escape.json").exists()

    def test_empty_key_rejected(self, documents):
        """Test the empty key is invalid."""
        with pytest.raises(StorageError):
            documents.set("", 1)


# ==============================================================================
# LocalBackend
# ==============================================================================


class TestLocalSprints:
    """Tests for sprint operations of LocalBackend."""

    def test_backend_name(self, backend):
        assert backend.backend_name == "local"

    @pytest.mark.asyncio
    async def test_create_and_list(self, backend, make_draft):
        """Test created sprints are listed newest first with local ids."""
        first = await backend.create_sprint(USER, make_draft(title="First"))
        second = await backend.create_sprint(USER, make_draft(title="Second"))

        sprints = await backend.get_sprints_by_user(USER)

        assert [s.id for s in sprints] == [second, first]
        assert first.startswith("local_")
        assert all(s.user_id == USER for s in sprints)

    @pytest.mark.asyncio
    async def test_documents_are_camel_case(self, backend, documents, make_draft):
        """Test the stored sprint list uses the shared document shape."""
        await backend.create_sprint(USER, make_draft())
        stored = documents.get(sprints_key(USER))
        assert stored[0]["userId"] == USER
        assert "coreTasks" in stored[0]["days"][0]

    @pytest.mark.asyncio
    async def test_create_requires_title(self, backend, make_draft):
        """Test a blank title is rejected before any write."""
        draft = make_draft().model_copy(update={"title": "   "})
        with pytest.raises(InvalidInputError, match="title"):
            await backend.create_sprint(USER, draft)

    @pytest.mark.asyncio
    async def test_invalid_user(self, backend):
        """Test empty user ids are rejected."""
        with pytest.raises(InvalidInputError, match="Invalid user ID"):
            await backend.get_sprints_by_user("")

    @pytest.mark.asyncio
    async def test_active_sprint(self, backend, make_draft):
        """Test the active sprint wins over newer non-active ones."""
        active = await backend.create_sprint(USER, make_draft(title="Active"))
        await backend.create_sprint(USER, make_draft(title="Planned", status=SprintStatus.PLANNING))

        assert (await backend.get_active_sprint(USER)).id == active

    @pytest.mark.asyncio
    async def test_active_falls_back_to_newest(self, backend, make_draft):
        """Test the newest sprint is returned when none is active."""
        await backend.create_sprint(USER, make_draft(status=SprintStatus.COMPLETED))
        newest = await backend.create_sprint(USER, make_draft(status=SprintStatus.PAUSED))
        assert (await backend.get_active_sprint(USER)).id == newest

    @pytest.mark.asyncio
    async def test_no_sprints(self, backend):
        """Test a new user has nothing."""
        assert await backend.get_sprints_by_user(USER) == []
        assert await backend.get_active_sprint(USER) is None

    @pytest.mark.asyncio
    async def test_get_sprint_with_and_without_owner(self, backend, make_draft):
        """Test lookup by id scans all users when the owner is unknown."""
        sprint_id = await backend.create_sprint(CACHED_USER, make_draft(user_id=CACHED_USER))

        assert (await backend.get_sprint(sprint_id, CACHED_USER)).id == sprint_id
        assert (await backend.get_sprint(sprint_id)).id == sprint_id
        assert await backend.get_sprint(sprint_id, USER) is None

    @pytest.mark.asyncio
    async def test_update_sprint(self, backend, make_draft):
        """Test partial updates merge and bump updated_at."""
        sprint_id = await backend.create_sprint(USER, make_draft())
        before = await backend.get_sprint(sprint_id, USER)

        await backend.update_sprint(USER, sprint_id, {"status": "paused", "title": "Renamed"})

        after = await backend.get_sprint(sprint_id, USER)
        assert after.status == SprintStatus.PAUSED
        assert after.title == "Renamed"
        assert after.days == before.days
        assert after.updated_at >= before.updated_at

    @pytest.mark.asyncio
    async def test_update_missing_sprint_is_ignored(self, backend, caplog):
        """Test updating an unknown sprint only logs."""
        await backend.update_sprint(USER, "nope", {"title": "x"})
        assert "not found" in caplog.text

    @pytest.mark.asyncio
    async def test_corrupted_sprint_list(self, backend, documents):
        """Test a non-list document is reported as corrupted."""
        documents.set(sprints_key(USER), {"not": "a list"})
        with pytest.raises(StorageCorruptedError):
            await backend.get_sprints_by_user(USER)

    @pytest.mark.asyncio
    async def test_sprint_with_wrong_shape(self, backend, documents):
        """Test a sprint document missing required fields is reported as corrupted."""
        documents.set(sprints_key(USER), [{"title": 5}])
        with pytest.raises(StorageCorruptedError):
            await backend.get_sprints_by_user(USER)

    @pytest.mark.asyncio
    async def test_put_sprint_replaces_by_id(self, backend, make_sprint):
        """Test put_sprint inserts once and then replaces."""
        await backend.put_sprint(make_sprint("s1", title="First"))
        await backend.put_sprint(make_sprint("s1", title="Second"))

        sprints = await backend.get_sprints_by_user(USER)
        assert [(s.id, s.title) for s in sprints] == [("s1", "Second")]

    def test_from_config(self, tmp_path):
        """Test the backend keeps its documents under data_dir."""
        backend = LocalBackend.from_config(StorageConfig(data_dir=tmp_path))
        assert backend.documents.root == tmp_path


class TestLocalProgress:
    """Tests for progress and task operations of LocalBackend."""

    @pytest.mark.asyncio
    async def test_missing_progress(self, backend):
        """Test the backend itself returns None for a missing record."""
        assert await backend.get_progress(USER, "s1") is None

    @pytest.mark.asyncio
    async def test_task_status_upsert_and_recompute(self, backend, make_draft):
        """Test status upserts are keyed and stats use the sprint size."""
        sprint_id = await backend.create_sprint(USER, make_draft(days=5))

        await backend.update_task_status(USER, sprint_id, TaskStatus.build("1", TaskType.CORE, 0, True))
        await backend.update_task_status(USER, sprint_id, TaskStatus.build("1", TaskType.CORE, 0, True))
        await backend.update_task_status(USER, sprint_id, TaskStatus.build("1", TaskType.CORE, 1, True))

        progress = await backend.get_progress(USER, sprint_id)
        assert len(progress.task_statuses) == 2
        assert progress.stats.total_tasks_completed == 2
        assert progress.stats.completion_percentage == 13  # 2 of 15

    @pytest.mark.asyncio
    async def test_journal_upsert(self, backend, make_draft):
        """Test one journal entry per day."""
        sprint_id = await backend.create_sprint(USER, make_draft())
        entry = JournalEntry(id=f"{sprint_id}_1", user_id=USER, day_id="1", content="draft")

        await backend.update_journal_entry(USER, sprint_id, entry)
        await backend.update_journal_entry(
            USER, sprint_id, entry.model_copy(update={"content": "final"})
        )

        progress = await backend.get_progress(USER, sprint_id)
        assert [e.content for e in progress.journal_entries] == ["final"]
        assert progress.streaks.current_journal_streak == 1

    @pytest.mark.asyncio
    async def test_tasks_derived_and_updated(self, backend, make_draft):
        """Test the flat task list is derived and writable."""
        sprint_id = await backend.create_sprint(USER, make_draft())
        await backend.update_task_status(
            USER, sprint_id, TaskStatus.build("2", TaskType.SPECIAL, 0, False)
        )
        task_id = f"{sprint_id}-2-special-0"

        await backend.update_task(USER, task_id, {"status": TaskState.COMPLETED})

        tasks = await backend.get_tasks_by_user(USER)
        assert [(t.id, t.status) for t in tasks] == [(task_id, TaskState.COMPLETED)]

    @pytest.mark.asyncio
    async def test_update_task_bad_id(self, backend):
        """Test malformed task ids are invalid input."""
        with pytest.raises(InvalidInputError, match="Invalid task ID format"):
            await backend.update_task(USER, "temp-1", {"status": "completed"})

    @pytest.mark.asyncio
    async def test_clear_user(self, backend, documents, make_draft):
        """Test clear_user removes sprints and progress."""
        sprint_id = await backend.create_sprint(USER, make_draft())
        await backend.update_task_status(USER, sprint_id, TaskStatus.build("1", TaskType.CORE, 0, True))

        backend.clear_user(USER)

        assert documents.get(sprints_key(USER)) is None
        assert documents.get(progress_key(USER, sprint_id)) is None

    @pytest.mark.asyncio
    async def test_progress_document_shape(self, backend, documents):
        """Test saved progress is stored as a camelCase document."""
        await backend.save_progress(UserProgress.empty(USER, "s1"))

        raw = json.loads((documents.root / f"{progress_key(USER, 's1')}.json").read_text())
        assert raw["userId"] == USER
        assert raw["taskStatuses"] == []

    @pytest.mark.asyncio
    async def test_progress_with_wrong_shape(self, backend, documents):
        """Test a progress document with a bad field is reported as corrupted."""
        documents.set(progress_key(USER, "s1"), {"userId": USER, "sprintId": "s1", "taskStatuses": 3})
        with pytest.raises(StorageCorruptedError):
            await backend.get_progress(USER, "s1")

    @pytest.mark.asyncio
    async def test_concurrent_status_writes_all_persist(self, backend, make_draft):
        """Test simultaneous writes to different slots are all kept."""
        sprint_id = await backend.create_sprint(USER, make_draft(days=10))
        slots = [
            (str(day), task_type, index)
            for day in range(1, 11)
            for task_type, index in ((TaskType.CORE, 0), (TaskType.CORE, 1), (TaskType.SPECIAL, 0))
        ]

        await asyncio.gather(
            *(
                backend.update_task_status(USER, sprint_id, TaskStatus.build(d, t, i, True))
                for d, t, i in slots
            )
        )

        progress = await backend.get_progress(USER, sprint_id)
        assert len(progress.task_statuses) == 30
        assert progress.stats.completion_percentage == 100
