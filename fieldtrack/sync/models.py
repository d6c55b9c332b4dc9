"""Wire models for the remote achievement table and the offline queue."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

from ..tracker.models import (
    AttendanceEvent,
    DailyAchievement,
    Location,
    MediaItem,
    MediaType,
    VoiceNote,
)


class LocationPayload(BaseModel):
    latitude: float
    longitude: float


class MediaPayload(BaseModel):
    """Media item as stored in the `media` JSON column."""

    url: str
    type: MediaType
    timestamp: datetime
    size: int = 0
    name: Optional[str] = None


class VoiceNotePayload(BaseModel):
    """Voice note as stored in the `voice_notes` JSON column."""

    audio_url: str
    timestamp: datetime
    size: int = 0
    duration: Optional[float] = None


class AchievementRow(BaseModel):
    """One row of the remote `daily_achievements` table."""

    id: Optional[str] = None
    task_id: str
    date: date
    value: float = 0.0
    work_hours: Optional[float] = None
    notes: Optional[str] = None
    check_in_time: Optional[datetime] = None
    check_in_location: Optional[LocationPayload] = None
    check_out_time: Optional[datetime] = None
    check_out_location: Optional[LocationPayload] = None
    media: list[MediaPayload] = []
    voice_notes: list[VoiceNotePayload] = []

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value):
        return None if value is None else str(value)

    @property
    def key(self) -> str:
        return queue_key(self.task_id, self.date)

    @classmethod
    def from_achievement(cls, task_id: str, achievement: DailyAchievement) -> "AchievementRow":
        """
        Build a row from a domain achievement.

        Media that only exists as a local preview is left out.
        """
        check_in = achievement.check_in
        check_out = achievement.check_out
        return cls(
            id=achievement.id,
            task_id=task_id,
            date=achievement.date,
            value=achievement.value,
            work_hours=achievement.work_hours,
            notes=achievement.notes,
            check_in_time=check_in.timestamp if check_in else None,
            check_in_location=_location_payload(check_in),
            check_out_time=check_out.timestamp if check_out else None,
            check_out_location=_location_payload(check_out),
            media=[
                MediaPayload(url=m.url, type=m.type, timestamp=m.timestamp, size=m.size, name=m.name)
                for m in achievement.media
                if m.uploaded
            ],
            voice_notes=[
                VoiceNotePayload(audio_url=v.audio_url, timestamp=v.timestamp, size=v.size, duration=v.duration)
                for v in achievement.voice_notes
                if v.uploaded
            ],
        )

    def to_achievement(self) -> DailyAchievement:
        """Convert back into a domain achievement."""
        return DailyAchievement(
            id=self.id,
            date=self.date,
            value=self.value,
            work_hours=self.work_hours,
            notes=self.notes,
            check_in=_event(self.check_in_time, self.check_in_location),
            check_out=_event(self.check_out_time, self.check_out_location),
            media=tuple(
                MediaItem(url=m.url, type=m.type, timestamp=m.timestamp, size=m.size, name=m.name)
                for m in self.media
            ),
            voice_notes=tuple(
                VoiceNote(audio_url=v.audio_url, timestamp=v.timestamp, size=v.size, duration=v.duration)
                for v in self.voice_notes
            ),
        )

    def to_payload(self) -> dict:
        """JSON-ready body for insert/update (the id is never sent)."""
        return self.model_dump(mode="json", exclude={"id"})


class QueueEntry(BaseModel):
    """A write that could not reach the remote store yet."""

    key: str
    payload: AchievementRow
    timestamp: datetime


class SyncState(str, Enum):
    RETRYING = "retrying"
    QUEUED = "queued"
    SYNCED = "synced"


class SyncStatus(BaseModel):
    """Transient status reported while a save is in flight."""

    state: SyncState
    key: str
    attempt: int = 0
    max_attempts: int = 0
    message: str = ""


def queue_key(task_id: str, on_date: date) -> str:
    """Offline queue key for a (task, date) pair."""
    return f"{task_id}:{on_date.isoformat()}"


def _location_payload(event: Optional[AttendanceEvent]) -> Optional[LocationPayload]:
    if event is None:
        return None
    return LocationPayload(latitude=event.location.latitude, longitude=event.location.longitude)


def _event(timestamp: Optional[datetime], location: Optional[LocationPayload]) -> Optional[AttendanceEvent]:
    if timestamp is None or location is None:
        return None
    return AttendanceEvent(
        timestamp=timestamp,
        location=Location(latitude=location.latitude, longitude=location.longitude),
    )
