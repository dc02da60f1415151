"""
Pytest configuration and shared fixtures.

Provides an in-memory storage backend that records calls and can be told to
fail or to hold a call until released, sample sprints, and isolated
config/env for every test.
"""

import asyncio
from typing import Any

import pytest

from elevatr.core.config import ElevatrConfig, clear_cache
from elevatr.core.context import StoreContext, create_context
from elevatr.core.identity import UserKind
from elevatr.core.models import (
    CoreTask,
    Day,
    JournalEntry,
    Sprint,
    SprintDraft,
    SprintStatus,
    Task,
    TaskStatus,
    UserProgress,
)
from elevatr.core.progress_math import derive_tasks, recompute
from elevatr.core.storage import StorageError, StorageRouter
from elevatr.core.storage.local import pick_active_sprint
from elevatr.core.stores import AppStore

LOCAL_USER = "local_1700000000000_abc123xyz"
GUEST_USER = "guest_1700000000000_k3j9x0a1b"
CLOUD_USER = "Zk81hFq2cloud"

# ==============================================================================
# Environment isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point XDG dirs at tmp, drop ELEVATR_* vars and reset the config cache."""
    for key in (
        "ELEVATR_DATA_DIR",
        "ELEVATR_CLOUD_URL",
        "ELEVATR_CLOUD_TOKEN",
        "ELEVATR_REFRESH_INTERVAL",
        "ELEVATR_ENVIRONMENT",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg_config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg_data"))
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Fake backend
# ==============================================================================


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """
    In-memory StorageBackend.

    - ``calls`` records (method, args) of every contract call
    - ``fail(method)`` makes every call of ``method`` raise
    - ``script(method, gate=..., error=...)`` queues a one-shot behaviour for
      the next call of ``method``: wait for ``gate``, then raise ``error``
    """

    def __init__(self, name: str = "fake") -> None:
        self.name = name
        self.sprints: dict[str, Sprint] = {}
        self.progress: dict[tuple[str, str], UserProgress] = {}
        self.extra_tasks: dict[str, list[Task]] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.failures: dict[str, Exception] = {}
        self._scripts: dict[str, list[tuple[asyncio.Event | None, Exception | None]]] = {}
        self._next_id = 0

    @property
    def backend_name(self) -> str:
        return self.name

    # Test controls --------------------------------------------------------

    def fail(self, method: str, error: Exception | None = None) -> None:
        self.failures[method] = error or StorageError(f"{method} failed")

    def script(
        self,
        method: str,
        gate: asyncio.Event | None = None,
        error: Exception | None = None,
    ) -> None:
        self._scripts.setdefault(method, []).append((gate, error))

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def add_sprint(self, sprint: Sprint) -> Sprint:
        self.sprints[sprint.id] = sprint
        return sprint

    async def _call(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        steps = self._scripts.get(method)
        if steps:
            gate, error = steps.pop(0)
            if gate is not None:
                await gate.wait()
            if error is not None:
                raise error
        if method in self.failures:
            raise self.failures[method]

    # StorageBackend --------------------------------------------------------

    async def get_sprints_by_user(self, user_id: str) -> list[Sprint]:
        await self._call("get_sprints_by_user", user_id)
        sprints = [s for s in self.sprints.values() if s.user_id == user_id]
        return sorted(sprints, key=lambda s: s.created_at, reverse=True)

    async def get_active_sprint(self, user_id: str) -> Sprint | None:
        await self._call("get_active_sprint", user_id)
        return pick_active_sprint([s for s in self.sprints.values() if s.user_id == user_id])

    async def get_sprint(self, sprint_id: str, user_id: str | None = None) -> Sprint | None:
        await self._call("get_sprint", sprint_id, user_id)
        return self.sprints.get(sprint_id)

    async def create_sprint(self, user_id: str, draft: SprintDraft) -> str:
        await self._call("create_sprint", user_id, draft)
        self._next_id += 1
        sprint_id = f"sprint-{self._next_id}"
        self.sprints[sprint_id] = Sprint.from_draft(draft, sprint_id)
        return sprint_id

    async def update_sprint(self, user_id: str, sprint_id: str, updates: dict[str, Any]) -> None:
        await self._call("update_sprint", user_id, sprint_id, updates)
        if sprint_id in self.sprints:
            self.sprints[sprint_id] = self.sprints[sprint_id].with_updates(updates)

    async def put_sprint(self, sprint: Sprint) -> None:
        await self._call("put_sprint", sprint)
        self.sprints[sprint.id] = sprint

    async def get_tasks_by_user(self, user_id: str) -> list[Task]:
        await self._call("get_tasks_by_user", user_id)
        sprints = [s for s in self.sprints.values() if s.user_id == user_id]
        progresses = [p for (uid, _), p in self.progress.items() if uid == user_id]
        return derive_tasks(sprints, progresses) + self.extra_tasks.get(user_id, [])

    async def update_task(self, user_id: str, task_id: str, updates: dict[str, Any]) -> None:
        await self._call("update_task", user_id, task_id, updates)

    async def get_progress(self, user_id: str, sprint_id: str) -> UserProgress | None:
        await self._call("get_progress", user_id, sprint_id)
        return self.progress.get((user_id, sprint_id))

    async def save_progress(self, progress: UserProgress) -> None:
        await self._call("save_progress", progress)
        self.progress[(progress.user_id, progress.sprint_id)] = progress

    async def update_task_status(self, user_id: str, sprint_id: str, status: TaskStatus) -> None:
        await self._call("update_task_status", user_id, sprint_id, status)
        current = self.progress.get((user_id, sprint_id)) or UserProgress.empty(user_id, sprint_id)
        updated = current.upsert_task_status(status)
        self.progress[(user_id, sprint_id)] = recompute(updated, self.sprints.get(sprint_id))

    async def update_journal_entry(
        self, user_id: str, sprint_id: str, entry: JournalEntry
    ) -> None:
        await self._call("update_journal_entry", user_id, sprint_id, entry)
        current = self.progress.get((user_id, sprint_id)) or UserProgress.empty(user_id, sprint_id)
        self.progress[(user_id, sprint_id)] = current.upsert_journal_entry(entry)


@pytest.fixture
def fake_backend():
    """One in-memory backend."""
    return FakeBackend()


@pytest.fixture
def router(fake_backend):
    """Router sending every kind of user to the same fake backend."""
    return StorageRouter(
        {UserKind.CLOUD: fake_backend, UserKind.LOCAL: fake_backend, UserKind.GUEST: fake_backend}
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def context(router, clock, tmp_path) -> StoreContext:
    """Fresh store context over the fake backend with a fake clock."""
    config = ElevatrConfig(storage={"data_dir": str(tmp_path / "data")})
    return create_context(config=config, router=router, app=AppStore(clock=clock))


# ==============================================================================
# Sample data
# ==============================================================================


def _days(count: int, core: int = 2, special: int = 1) -> list[Day]:
    return [
        Day(
            day=str(n),
            date=f"2026-01-{n:02d}",
            core_tasks=[CoreTask(category=f"Core {n}.{i}", description="") for i in range(core)],
            special_tasks=[f"Special {n}.{i}" for i in range(special)],
        )
        for n in range(1, count + 1)
    ]


@pytest.fixture
def make_draft():
    """Factory for sprint drafts (5 days x 3 tasks by default)."""

    def _make(
        user_id: str = LOCAL_USER,
        title: str = "Interview prep",
        status: SprintStatus = SprintStatus.ACTIVE,
        days: int = 5,
    ) -> SprintDraft:
        return SprintDraft(user_id=user_id, title=title, status=status, days=_days(days))

    return _make


@pytest.fixture
def make_sprint(make_draft):
    """Factory for persisted sprints."""

    def _make(sprint_id: str = "sprint-a", **kwargs: Any) -> Sprint:
        return Sprint.from_draft(make_draft(**kwargs), sprint_id)

    return _make
