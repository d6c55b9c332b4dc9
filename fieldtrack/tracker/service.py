"""Tracker service: the entry point the owning application calls into.

Each operation reads the latest task snapshot from the store, applies a pure
ledger / attendance / evidence change, publishes the new snapshot and hands the
touched achievement to the persistence layer.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from ..sync.persistence import AchievementPersistence, FlushReport, SaveResult
from . import ledger, rules
from .attendance import AttendanceManager, record_check_in, record_check_out
from .evidence import EvidenceManager, EvidenceOutcome, RecordingSession
from .geolocation import GeolocationProvider
from .ledger import Decision, Ok, achievement_for
from .models import RiskLevel, Task
from .store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recorded(Ok):
    """Value committed; carries the save result of the touched achievement."""
    save: Optional[SaveResult] = None


class TrackerService:
    """Coordinates the ledger, attendance, evidence and persistence components."""

    def __init__(
        self,
        store: TaskStore,
        persistence: AchievementPersistence,
        evidence: EvidenceManager,
        clock: Callable[[], datetime] = datetime.now,
        tolerance: float = rules.TARGET_TOLERANCE,
        ceiling: float = rules.VALUE_CEILING,
    ):
        self.store = store
        self.persistence = persistence
        self.evidence = evidence
        self.clock = clock
        self.tolerance = tolerance
        self.ceiling = ceiling

    async def _commit(self, task: Task, on_date: date) -> SaveResult:
        """Publish a snapshot optimistically, then persist the date's achievement."""
        self.store.apply(task)
        return await self.persistence.save(task.id, achievement_for(task, on_date))

    async def record_value(
        self,
        task_id: str,
        on_date: date,
        value,
        override: bool = False,
        notes: Optional[str] = None,
    ) -> Decision:
        """
        Record the achieved value for a date.

        Returns:
            Recorded(task, save), NeedsConfirmation(headroom, ...) or Err(error).
            Nothing is published or saved unless the result is Recorded.

        Raises:
            Remote errors that are not retryable (see AchievementPersistence.save)
        """
        task = self.store.get(task_id)
        decision = ledger.record_value(
            task, on_date, value, override=override, notes=notes, tolerance=self.tolerance, ceiling=self.ceiling
        )
        if not isinstance(decision, Ok):
            return decision

        result = await self._commit(decision.task, on_date)
        return Recorded(task=self.store.get(task_id), save=result)

    async def delete_achievement(self, task_id: str, on_date: date, confirmed: bool = False) -> Task:
        """
        Delete the achievement for a date, locally and remotely.

        The local snapshot only changes once the remote delete went through.
        """
        task = self.store.get(task_id)
        ledger.remove_achievement(task, on_date, confirmed)
        await self.persistence.delete(task_id, achievement_for(task, on_date))

        # Other dates may have changed during the remote delete
        current = self.store.get(task_id)
        if achievement_for(current, on_date) is None:
            return current
        return self.store.apply(ledger.remove_achievement(current, on_date, confirmed=True))

    def start_task(self, task_id: str) -> Task:
        task = ledger.start_task(self.store.get(task_id), self.clock())
        logger.info(f"Task {task_id} started")
        return self.store.apply(task)

    def end_task(self, task_id: str) -> Task:
        task = ledger.end_task(self.store.get(task_id), self.clock())
        logger.info(f"Task {task_id} completed")
        return self.store.apply(task)

    async def check_in(
        self, task_id: str, on_date: date, members: Sequence[str], geolocation: GeolocationProvider
    ) -> tuple[Task, SaveResult]:
        manager = AttendanceManager(geolocation, self.clock)
        event = await manager.check_in(self.store.get(task_id), on_date, members)
        task = record_check_in(self.store.get(task_id), on_date, event)
        result = await self._commit(task, on_date)
        return self.store.get(task_id), result

    async def check_out(
        self, task_id: str, on_date: date, geolocation: GeolocationProvider
    ) -> tuple[Task, SaveResult]:
        manager = AttendanceManager(geolocation, self.clock)
        event = await manager.check_out(self.store.get(task_id), on_date)
        task = record_check_out(self.store.get(task_id), on_date, event)
        result = await self._commit(task, on_date)
        return self.store.get(task_id), result

    async def attach_media(
        self, task_id: str, on_date: date, data: bytes, filename: str, content_type: str
    ) -> EvidenceOutcome:
        return await self.evidence.attach_media(self.store.get(task_id), on_date, data, filename, content_type)

    async def detach_media(self, task_id: str, on_date: date, timestamp: datetime) -> EvidenceOutcome:
        return await self.evidence.detach_media(self.store.get(task_id), on_date, timestamp)

    def start_recording(self, task_id: str, on_date: date) -> RecordingSession:
        return self.evidence.start_recording(self.store.get(task_id), on_date)

    def append_recording(self, task_id: str, on_date: date, chunk: bytes):
        self.evidence.append_recording(task_id, on_date, chunk)

    async def stop_recording(self, task_id: str, on_date: date) -> EvidenceOutcome:
        return await self.evidence.stop_recording(self.store.get(task_id), on_date)

    async def attach_voice_note(
        self, task_id: str, on_date: date, audio: bytes, content_type: str, duration: Optional[float] = None
    ) -> EvidenceOutcome:
        return await self.evidence.attach_voice_note(self.store.get(task_id), on_date, audio, content_type, duration)

    async def detach_voice_note(self, task_id: str, on_date: date, timestamp: datetime) -> EvidenceOutcome:
        return await self.evidence.detach_voice_note(self.store.get(task_id), on_date, timestamp)

    def risk_level(self, task_id: str, as_of: Optional[date] = None) -> RiskLevel:
        return rules.classify_risk(self.store.get(task_id), as_of or self.clock().date())

    def pending_offline_count(self) -> int:
        return self.persistence.pending_offline_count()

    async def flush_pending(self) -> FlushReport:
        return await self.persistence.flush_pending()

    async def hydrate(self, task_id: str) -> Task:
        """
        Replace a task's achievements with what the remote store holds.

        Dates with writes still waiting in the offline queue keep their local
        version, as do dates recorded or deleted locally while the remote rows
        were loading.
        """
        before = {a.date: a for a in self.store.get(task_id).achievements}
        remote = await self.persistence.load(task_id)

        task = self.store.get(task_id)
        pending = {
            entry.payload.date
            for entry in self.persistence.queue.list_pending()
            if entry.payload.task_id == task_id
        }
        merged = {a.date: a for a in remote}
        current = {a.date: a for a in task.achievements}
        for on_date in before.keys() - current.keys():
            merged.pop(on_date, None)
        for on_date, achievement in current.items():
            if on_date in pending or before.get(on_date) is not achievement:
                merged[on_date] = achievement

        return self.store.apply(replace(task, achievements=tuple(merged.values())))
