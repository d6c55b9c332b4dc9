"""Persistence and resilience layer for achievement records.

Every remote write for an achievement goes through `AchievementPersistence`:

1. Look up the remote row for (task_id, date).
2. Update it by id if found, insert otherwise.
3. Merge the remote id back into the task store.
4. On failure:
   - duplicate key: re-query and retry once as an update
   - network: retry with exponential backoff, then fall back to the offline queue
   - auth / validation: raise immediately

Queued writes are replayed by `flush_pending`, which also runs whenever the
connectivity monitor reports that the network is back.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..tracker.models import DailyAchievement
from ..tracker.store import TaskStore
from .client import AchievementStoreClient
from .connectivity import ConnectivityMonitor
from .errors import AuthorizationError, ConflictError, NetworkError, RemoteStoreError, TrackerError
from .models import AchievementRow, QueueEntry, SyncState, SyncStatus, queue_key
from .queue import OfflineQueue

logger = logging.getLogger(__name__)


class SaveOutcome(str, Enum):
    SAVED = "saved"
    QUEUED = "queued"


@dataclass(frozen=True)
class SaveResult:
    """Result of a save that did not fail terminally."""
    outcome: SaveOutcome
    row: AchievementRow  # persisted row (with id) or the queued payload
    attempts: int

    @property
    def message(self) -> str:
        if self.outcome == SaveOutcome.QUEUED:
            return "Saved locally, will sync later"
        return "Saved"


@dataclass
class FlushReport:
    """Keys replayed by a sync sweep."""
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class AchievementPersistence:
    """Saves achievements remotely with retry, duplicate recovery and offline fallback."""

    def __init__(
        self,
        remote: AchievementStoreClient,
        queue: OfflineQueue,
        store: Optional[TaskStore] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        max_attempts: int = 3,
        backoff_base: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize persistence layer.

        Args:
            remote: Remote store client
            queue: Durable offline queue
            store: Task store receiving remote ids after successful saves
            connectivity: Monitor whose online transitions trigger a flush
            max_attempts: Attempts per save before falling back to the queue
            backoff_base: Delay after failed attempt n is backoff_base ** n seconds
            sleep: Coroutine used to wait between attempts
            clock: Returns the current time
        """
        self.remote = remote
        self.queue = queue
        self.store = store
        self.connectivity = connectivity
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.sleep = sleep
        self.clock = clock
        self._status_listeners: list[Callable[[SyncStatus], None]] = []
        self.last_status: dict[str, SyncStatus] = {}
        self._flush_lock = asyncio.Lock()

        if connectivity is not None:
            connectivity.subscribe(self._on_connectivity_change)

    def subscribe_status(self, listener: Callable[[SyncStatus], None]):
        """Register a listener for transient sync states (retrying, queued, synced)."""
        self._status_listeners.append(listener)

    def _report(self, status: SyncStatus):
        self.last_status[status.key] = status
        for listener in self._status_listeners:
            listener(status)

    async def save(self, task_id: str, achievement: DailyAchievement) -> SaveResult:
        """
        Persist an achievement.

        Args:
            task_id: Owning task
            achievement: Achievement snapshot to write

        Returns:
            SaveResult with outcome SAVED or QUEUED

        Raises:
            AuthorizationError: Not allowed to write
            ValidationError: Remote store rejected the payload
            ConflictError: Duplicate-key recovery failed
            RemoteStoreError: Any other non-retryable remote failure
        """
        return await self.save_row(AchievementRow.from_achievement(task_id, achievement))

    async def save_row(self, row: AchievementRow) -> SaveResult:
        """Persist a wire row. See `save`."""
        key = row.key

        for attempt in range(1, self.max_attempts + 1):
            try:
                saved = await self._upsert(row)
            except NetworkError as e:
                logger.warning(f"Save {key} attempt {attempt}/{self.max_attempts} failed: {e}")
                if attempt < self.max_attempts:
                    self._report(
                        SyncStatus(
                            state=SyncState.RETRYING,
                            key=key,
                            attempt=attempt,
                            max_attempts=self.max_attempts,
                            message=f"Retrying ({attempt}/{self.max_attempts})",
                        )
                    )
                    await self.sleep(self.backoff_base ** attempt)
                    continue

                self.queue.enqueue(QueueEntry(key=key, payload=row, timestamp=self.clock()))
                result = SaveResult(outcome=SaveOutcome.QUEUED, row=row, attempts=attempt)
                self._report(SyncStatus(state=SyncState.QUEUED, key=key, attempt=attempt, message=result.message))
                return result

            # A successful write supersedes anything still queued for this key
            self.queue.dequeue(key)
            self._merge(saved)
            self._report(SyncStatus(state=SyncState.SYNCED, key=key, attempt=attempt, message="Saved"))
            return SaveResult(outcome=SaveOutcome.SAVED, row=saved, attempts=attempt)

        raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    async def _upsert(self, row: AchievementRow) -> AchievementRow:
        """Update the existing remote row for the key, or insert a new one."""
        existing = await self.remote.find_by_task_and_date(row.task_id, row.date)
        if existing is not None:
            logger.debug(f"Updating {row.key} (id={existing.id})")
            return await self.remote.update(existing.id, row)

        try:
            return await self.remote.insert(row)
        except ConflictError as e:
            logger.warning(f"Duplicate key on insert of {row.key}, retrying as update")
            return await self._recover_duplicate(row, e)

    async def _recover_duplicate(self, row: AchievementRow, error: ConflictError) -> AchievementRow:
        """Turn a colliding insert into a single update of the canonical row."""
        existing = await self.remote.find_by_task_and_date(row.task_id, row.date)
        if existing is None:
            raise ConflictError(f"Duplicate key for {row.key} but no existing row found") from error

        try:
            return await self.remote.update(existing.id, row)
        except (NetworkError, AuthorizationError):
            raise
        except RemoteStoreError as e:
            logger.error(f"Duplicate-key recovery for {row.key} failed: {e}")
            raise ConflictError(f"Could not recover duplicate key for {row.key}: {e}") from e

    def _merge(self, saved: AchievementRow):
        if self.store is not None and saved.id is not None:
            self.store.merge_achievement_id(saved.task_id, saved.date, saved.id)

    async def flush_pending(self) -> FlushReport:
        """
        Replay every queued write once.

        Successful entries leave the queue; failures stay for the next sweep.
        Sweeps never overlap.
        """
        async with self._flush_lock:
            report = FlushReport()
            entries = self.queue.list_pending()
            if entries:
                logger.info(f"Replaying {len(entries)} offline writes")

            for entry in entries:
                try:
                    saved = await self._upsert(entry.payload)
                except TrackerError as e:
                    logger.warning(f"Replay of {entry.key} failed, keeping it queued: {e}")
                    report.failed.append(entry.key)
                    continue

                # Keep a newer payload that was queued while this one was replaying
                current = self.queue.get(entry.key)
                if current is not None and current.timestamp == entry.timestamp:
                    self.queue.dequeue(entry.key)
                self._merge(saved)
                self._report(SyncStatus(state=SyncState.SYNCED, key=entry.key, message="Synced"))
                report.synced.append(entry.key)

            if entries:
                logger.info(f"Sync sweep done: {len(report.synced)} synced, {len(report.failed)} still pending")
            return report

    async def _on_connectivity_change(self, online: bool):
        if online and self.queue.count():
            await self.flush_pending()

    def pending_offline_count(self) -> int:
        return self.queue.count()

    def unsettled_statuses(self) -> list[SyncStatus]:
        """Latest status of every key whose last save did not reach the remote store."""
        return [status for status in self.last_status.values() if status.state != SyncState.SYNCED]

    async def delete(self, task_id: str, achievement: DailyAchievement):
        """
        Delete the remote row for an achievement and drop any queued write for it.

        Raises:
            NetworkError, AuthorizationError, RemoteStoreError
        """
        remote_id = achievement.id
        if remote_id is None:
            existing = await self.remote.find_by_task_and_date(task_id, achievement.date)
            remote_id = existing.id if existing else None

        if remote_id is not None:
            await self.remote.delete(remote_id)
            logger.info(f"Deleted remote achievement {task_id} {achievement.date} (id={remote_id})")

        key = queue_key(task_id, achievement.date)
        self.queue.dequeue(key)
        self.last_status.pop(key, None)

    async def load(self, task_id: str) -> list[DailyAchievement]:
        """Fetch all remote achievements of a task."""
        rows = await self.remote.list_for_task(task_id)
        return [row.to_achievement() for row in rows]
