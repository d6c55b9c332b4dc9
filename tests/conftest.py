import asyncio
from collections import defaultdict, deque
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Optional

import pytest

from fieldtrack.sync.connectivity import ConnectivityMonitor
from fieldtrack.sync.errors import ConflictError, MediaUploadError
from fieldtrack.sync.models import AchievementRow
from fieldtrack.sync.persistence import AchievementPersistence
from fieldtrack.sync.queue import OfflineQueue
from fieldtrack.sync.storage import MediaStorage
from fieldtrack.tracker.evidence import EvidenceManager
from fieldtrack.tracker.models import Task, TaskStatus
from fieldtrack.tracker.service import TrackerService
from fieldtrack.tracker.store import TaskStore

NOW = datetime(2025, 3, 10, 9, 0)
TODAY = NOW.date()


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeRemote:
    """In-memory achievements table with scriptable failures."""

    def __init__(self):
        self.rows: dict[str, AchievementRow] = {}
        self.calls: list[str] = []
        self._errors: dict[str, deque] = defaultdict(deque)
        self._next_id = 1
        self.stale_finds = 0
        self.gates: dict[str, asyncio.Event] = {}

    def fail(self, method: str, *errors: Exception):
        """Raise the given errors on the next calls of a method, in order."""
        self._errors[method].extend(errors)

    def _call(self, method: str):
        self.calls.append(method)
        if self._errors[method]:
            raise self._errors[method].popleft()

    def hold(self, method: str) -> asyncio.Event:
        """Suspend a method mid-call until the returned event is set."""
        self.gates[method] = asyncio.Event()
        return self.gates[method]

    async def _wait(self, method: str):
        if method in self.gates:
            await self.gates[method].wait()

    def _lookup(self, task_id: str, on_date: date) -> Optional[AchievementRow]:
        for row in self.rows.values():
            if row.task_id == task_id and row.date == on_date:
                return row
        return None

    def seed(self, row: AchievementRow) -> AchievementRow:
        stored = row.model_copy(update={"id": str(self._next_id)})
        self._next_id += 1
        self.rows[stored.id] = stored
        return stored

    async def find_by_task_and_date(self, task_id: str, on_date: date) -> Optional[AchievementRow]:
        self._call("find")
        if self.stale_finds:
            # Simulates a concurrent writer inserting after our lookup
            self.stale_finds -= 1
            return None
        return self._lookup(task_id, on_date)

    async def list_for_task(self, task_id: str) -> list[AchievementRow]:
        self._call("list")
        rows = sorted((r for r in self.rows.values() if r.task_id == task_id), key=lambda r: r.date)
        await self._wait("list")
        return rows

    async def insert(self, row: AchievementRow) -> AchievementRow:
        self._call("insert")
        if self._lookup(row.task_id, row.date) is not None:
            raise ConflictError("409: duplicate key value violates unique constraint", 409, "23505")
        return self.seed(row)

    async def update(self, row_id: str, row: AchievementRow) -> AchievementRow:
        self._call("update")
        stored = row.model_copy(update={"id": row_id})
        self.rows[row_id] = stored
        return stored

    async def delete(self, row_id: str):
        self._call("delete")
        await self._wait("delete")
        self.rows.pop(row_id, None)


class FakeStorage(MediaStorage):
    def __init__(self):
        self.uploads: list[tuple[str, bytes, str]] = []
        self.fail_next = False

    async def upload(self, data: bytes, path_hint: str, content_type: str) -> str:
        if self.fail_next:
            self.fail_next = False
            raise MediaUploadError(f"Upload of {path_hint} failed: 500")
        self.uploads.append((path_hint, data, content_type))
        return f"https://files.example.com/{path_hint}"


def make_task(started: bool = True, **overrides) -> Task:
    fields = dict(
        id="task-1",
        title="Lay fibre cable",
        start_date=date(2025, 3, 1),
        end_date=date(2025, 3, 31),
        total_target=100.0,
    )
    fields.update(overrides)
    task = Task(**fields)
    if started and task.actual_start_date is None:
        task = replace(task, status=TaskStatus.IN_PROGRESS, actual_start_date=datetime(2025, 3, 1, 8, 0))
    return task


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def queue(tmp_path):
    return OfflineQueue(str(tmp_path / "offline_queue.db"))


@pytest.fixture
def store():
    return TaskStore()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor()


@pytest.fixture
def persistence(remote, queue, store, connectivity, clock, sleeps):
    async def fake_sleep(delay: float):
        sleeps.append(delay)

    return AchievementPersistence(
        remote, queue, store=store, connectivity=connectivity, sleep=fake_sleep, clock=clock
    )


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def evidence(storage, persistence, store, clock):
    return EvidenceManager(storage, persistence, store, clock)


@pytest.fixture
def service(store, persistence, evidence, clock):
    return TrackerService(store, persistence, evidence, clock)


@pytest.fixture
def task(store):
    task = make_task()
    store.add(task)
    return task
