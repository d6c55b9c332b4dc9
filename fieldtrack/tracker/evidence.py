"""Evidence attachments: photos, videos and voice notes on daily achievements.

Attachments are optimistic: the local snapshot shows a preview right away, the
bytes are uploaded, and the owning achievement is re-saved so evidence is not
lost if the session ends.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

from ..media.preview import build_preview
from ..sync.errors import MediaUploadError, PreconditionError, TrackerError, ValidationError
from ..sync.persistence import AchievementPersistence, SaveResult
from ..sync.storage import MediaStorage
from .ledger import achievement_for, upsert_achievement
from .models import DailyAchievement, MediaItem, MediaType, Task, VoiceNote
from .store import TaskStore

logger = logging.getLogger(__name__)

AUDIO_CONTENT_TYPE = "audio/webm"
DELETION_MAY_REAPPEAR = "The deletion could not be saved and may reappear after reload"
EVIDENCE_NOT_SAVED = "The evidence is visible here but could not be saved yet"


@dataclass
class RecordingSession:
    """Audio capture state for one (task, date) slot."""
    task_id: str
    date: date
    started_at: datetime
    content_type: str = AUDIO_CONTENT_TYPE
    chunks: list[bytes] = field(default_factory=list)
    active: bool = True

    @property
    def size(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    def append(self, chunk: bytes):
        if not self.active:
            raise PreconditionError(f"Recording for {self.task_id} {self.date} is not active")
        self.chunks.append(chunk)

    def stop(self) -> bytes:
        """Finish capture and return the recorded audio."""
        self.active = False
        return b"".join(self.chunks)


@dataclass(frozen=True)
class EvidenceOutcome:
    """Result of an evidence operation."""
    task: Task
    save: Optional[SaveResult] = None
    error: Optional[TrackerError] = None
    warning: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def media_type_for(content_type: str) -> MediaType:
    """
    Classify a MIME type as image or video evidence.

    Raises:
        ValidationError: Neither image nor video
    """
    if content_type.startswith("image/"):
        return MediaType.IMAGE
    if content_type.startswith("video/"):
        return MediaType.VIDEO
    raise ValidationError(f"Only image or video files can be attached, got {content_type!r}")


def _millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _unique_timestamp(moment: datetime, taken: set[datetime]) -> datetime:
    # Timestamps identify items within an achievement
    while moment in taken:
        moment += timedelta(microseconds=1)
    return moment


class EvidenceManager:
    """Uploads, attaches and detaches evidence, re-saving the owning achievement."""

    def __init__(
        self,
        storage: MediaStorage,
        persistence: AchievementPersistence,
        store: TaskStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize evidence manager.

        Args:
            storage: Media storage provider
            persistence: Save chokepoint for achievements
            store: Task store receiving optimistic snapshots
            clock: Returns the current time
        """
        self.storage = storage
        self.persistence = persistence
        self.store = store
        self.clock = clock
        self._sessions: dict[tuple[str, date], RecordingSession] = {}

    def _require_started(self, task: Task):
        if task.actual_start_date is None:
            raise PreconditionError("Start the task before attaching evidence")

    def _update_achievement(
        self, task: Task, on_date: date, change: Callable[[DailyAchievement], DailyAchievement]
    ) -> Task:
        existing = achievement_for(task, on_date) or DailyAchievement(date=on_date)
        return upsert_achievement(task, change(existing))

    async def _persist(self, task: Task, on_date: date, warning: str) -> EvidenceOutcome:
        """Publish the snapshot and save the owning achievement."""
        self.store.apply(task)
        achievement = achievement_for(task, on_date)
        try:
            result = await self.persistence.save(task.id, achievement)
        except TrackerError as e:
            logger.error(f"Saving evidence for {task.id} {on_date} failed: {e}")
            return EvidenceOutcome(task=self.store.get(task.id), error=e, warning=warning)
        return EvidenceOutcome(task=self.store.get(task.id), save=result)

    async def attach_media(
        self, task: Task, on_date: date, data: bytes, filename: str, content_type: str
    ) -> EvidenceOutcome:
        """
        Attach a photo or video.

        The preview is published first. If the upload fails, the preview stays
        in the local snapshot and the outcome carries the error.

        Raises:
            PreconditionError: Task not started
            ValidationError: Empty file or unsupported type
        """
        self._require_started(task)
        media_type = media_type_for(content_type)
        if not data:
            raise ValidationError("Cannot attach an empty file")

        existing = achievement_for(task, on_date)
        taken = {m.timestamp for m in existing.media} if existing else set()
        timestamp = _unique_timestamp(self.clock(), taken)

        preview = MediaItem(
            url=build_preview(data, content_type),
            type=media_type,
            timestamp=timestamp,
            size=len(data),
            name=filename,
            uploaded=False,
        )
        task = self.store.apply(
            self._update_achievement(task, on_date, lambda a: replace(a, media=a.media + (preview,)))
        )

        extension = Path(filename).suffix.lstrip(".") or media_type.value
        path = f"{task.id}/{on_date.isoformat()}/{_millis(timestamp)}.{extension}"
        try:
            url = await self.storage.upload(data, path, content_type)
        except MediaUploadError as e:
            logger.error(f"Media upload for {task.id} {on_date} failed: {e}")
            return EvidenceOutcome(task=self.store.get(task.id), error=e)

        # Other edits may have landed while uploading
        current = self.store.get(task.id)
        uploaded = replace(preview, url=url, uploaded=True)
        current = self._update_achievement(
            current,
            on_date,
            lambda a: replace(a, media=tuple(uploaded if m.timestamp == timestamp else m for m in a.media)),
        )
        logger.info(f"Attached {media_type.value} {filename} to {task.id} {on_date}")
        return await self._persist(current, on_date, EVIDENCE_NOT_SAVED)

    async def detach_media(self, task: Task, on_date: date, timestamp: datetime) -> EvidenceOutcome:
        """
        Remove the media item with the given timestamp and re-save.

        Raises:
            PreconditionError: No such media item
        """
        existing = achievement_for(task, on_date)
        if existing is None or not any(m.timestamp == timestamp for m in existing.media):
            raise PreconditionError(f"No media at {timestamp.isoformat()} for {on_date}")

        remaining = tuple(m for m in existing.media if m.timestamp != timestamp)
        task = upsert_achievement(task, replace(existing, media=remaining))
        logger.info(f"Detached media {timestamp.isoformat()} from {task.id} {on_date}")
        return await self._persist(task, on_date, DELETION_MAY_REAPPEAR)

    def start_recording(self, task: Task, on_date: date) -> RecordingSession:
        """
        Open a recording session for a slot.

        Raises:
            PreconditionError: Task not started, or a recording is already active
        """
        self._require_started(task)
        slot = (task.id, on_date)
        session = self._sessions.get(slot)
        if session is not None and session.active:
            raise PreconditionError(f"A recording is already in progress for {on_date}")

        session = RecordingSession(task_id=task.id, date=on_date, started_at=self.clock())
        self._sessions[slot] = session
        logger.debug(f"Recording started for {task.id} {on_date}")
        return session

    def get_recording(self, task_id: str, on_date: date) -> RecordingSession:
        session = self._sessions.get((task_id, on_date))
        if session is None or not session.active:
            raise PreconditionError(f"No recording in progress for {on_date}")
        return session

    def append_recording(self, task_id: str, on_date: date, chunk: bytes):
        self.get_recording(task_id, on_date).append(chunk)

    def cancel_recording(self, task_id: str, on_date: date):
        session = self._sessions.pop((task_id, on_date), None)
        if session is not None:
            session.stop()
            logger.debug(f"Recording cancelled for {task_id} {on_date}")

    async def stop_recording(self, task: Task, on_date: date) -> EvidenceOutcome:
        """
        Finish a recording, upload it and attach it as a voice note.

        Raises:
            PreconditionError: No recording in progress
            ValidationError: Nothing was recorded
        """
        session = self.get_recording(task.id, on_date)
        del self._sessions[(task.id, on_date)]
        audio = session.stop()
        if not audio:
            raise ValidationError("Recording is empty")

        duration = (self.clock() - session.started_at).total_seconds()
        return await self.attach_voice_note(task, on_date, audio, session.content_type, duration)

    async def attach_voice_note(
        self,
        task: Task,
        on_date: date,
        audio: bytes,
        content_type: str = AUDIO_CONTENT_TYPE,
        duration: Optional[float] = None,
    ) -> EvidenceOutcome:
        """
        Upload recorded audio and attach it as a voice note.

        Args:
            task: Current task snapshot
            on_date: Achievement date
            audio: Complete recording
            content_type: MIME type of the recording
            duration: Length in seconds, if known

        Raises:
            PreconditionError: Task not started
            ValidationError: Empty or non-audio payload
        """
        self._require_started(task)
        if not content_type.startswith("audio/"):
            raise ValidationError(f"Voice notes must be audio, got {content_type!r}")
        if not audio:
            raise ValidationError("Recording is empty")

        existing = achievement_for(task, on_date)
        taken = {v.timestamp for v in existing.voice_notes} if existing else set()
        timestamp = _unique_timestamp(self.clock(), taken)

        note = VoiceNote(
            audio_url=build_preview(audio, content_type),
            timestamp=timestamp,
            size=len(audio),
            duration=duration,
            uploaded=False,
        )
        task = self.store.apply(
            self._update_achievement(task, on_date, lambda a: replace(a, voice_notes=a.voice_notes + (note,)))
        )

        path = f"{task.id}/{on_date.isoformat()}/audio_{_millis(timestamp)}.webm"
        try:
            url = await self.storage.upload(audio, path, content_type)
        except MediaUploadError as e:
            logger.error(f"Voice note upload for {task.id} {on_date} failed: {e}")
            return EvidenceOutcome(task=self.store.get(task.id), error=e)

        current = self.store.get(task.id)
        uploaded = replace(note, audio_url=url, uploaded=True)
        current = self._update_achievement(
            current,
            on_date,
            lambda a: replace(a, voice_notes=tuple(uploaded if v.timestamp == timestamp else v for v in a.voice_notes)),
        )
        logger.info(f"Attached voice note ({len(audio)} bytes) to {task.id} {on_date}")
        return await self._persist(current, on_date, EVIDENCE_NOT_SAVED)

    async def detach_voice_note(self, task: Task, on_date: date, timestamp: datetime) -> EvidenceOutcome:
        """
        Remove the voice note with the given timestamp and re-save.

        Raises:
            PreconditionError: No such voice note
        """
        existing = achievement_for(task, on_date)
        if existing is None or not any(v.timestamp == timestamp for v in existing.voice_notes):
            raise PreconditionError(f"No voice note at {timestamp.isoformat()} for {on_date}")

        remaining = tuple(v for v in existing.voice_notes if v.timestamp != timestamp)
        task = upsert_achievement(task, replace(existing, voice_notes=remaining))
        logger.info(f"Detached voice note {timestamp.isoformat()} from {task.id} {on_date}")
        return await self._persist(task, on_date, DELETION_MAY_REAPPEAR)
