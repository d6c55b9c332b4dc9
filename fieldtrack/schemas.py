"""Request and response models for the HTTP API."""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from .sync.models import AchievementRow, SyncStatus
from .sync.persistence import SaveResult
from .tracker import ledger, rules
from .tracker.attendance import overtime_hours, session_state
from .tracker.models import DailyAchievement, MediaType, RiskLevel, SessionState, Task, TaskStatus


class TaskCreate(BaseModel):
    """Body for registering a task with the tracker."""

    id: str
    title: str
    start_date: date
    end_date: date
    total_target: float = 100.0
    planned_effort_hours: Optional[float] = None
    assigned_team_id: Optional[str] = None

    def to_task(self, default_effort_hours: float = 8.0) -> Task:
        return Task(
            id=self.id,
            title=self.title,
            start_date=self.start_date,
            end_date=self.end_date,
            total_target=self.total_target,
            planned_effort_hours=(
                self.planned_effort_hours if self.planned_effort_hours is not None else default_effort_hours
            ),
            assigned_team_id=self.assigned_team_id,
        )


class ValueRequest(BaseModel):
    value: float
    override: bool = False
    notes: Optional[str] = None


class CheckInRequest(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    members: list[str] = []


class CheckOutRequest(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ConnectivityRequest(BaseModel):
    online: bool


class LocationView(BaseModel):
    latitude: float
    longitude: float


class AttendanceView(BaseModel):
    timestamp: datetime
    location: LocationView


class MediaView(BaseModel):
    url: str
    type: MediaType
    timestamp: datetime
    size: int
    name: Optional[str] = None
    uploaded: bool = True


class VoiceNoteView(BaseModel):
    audio_url: str
    timestamp: datetime
    size: int
    duration: Optional[float] = None
    uploaded: bool = True


class AchievementView(BaseModel):
    """Achievement with derived attendance figures."""

    id: Optional[str] = None
    date: date
    value: float
    work_hours: Optional[float] = None
    overtime_hours: float = 0.0
    notes: Optional[str] = None
    session: SessionState
    check_in: Optional[AttendanceView] = None
    check_out: Optional[AttendanceView] = None
    media: list[MediaView] = []
    voice_notes: list[VoiceNoteView] = []

    @classmethod
    def from_achievement(cls, achievement: DailyAchievement, planned_effort_hours: float) -> "AchievementView":
        return cls(
            id=achievement.id,
            date=achievement.date,
            value=achievement.value,
            work_hours=achievement.work_hours,
            overtime_hours=overtime_hours(achievement, planned_effort_hours),
            notes=achievement.notes,
            session=session_state(achievement),
            check_in=_attendance(achievement.check_in),
            check_out=_attendance(achievement.check_out),
            media=[
                MediaView(url=m.url, type=m.type, timestamp=m.timestamp, size=m.size, name=m.name, uploaded=m.uploaded)
                for m in achievement.media
            ],
            voice_notes=[
                VoiceNoteView(
                    audio_url=v.audio_url,
                    timestamp=v.timestamp,
                    size=v.size,
                    duration=v.duration,
                    uploaded=v.uploaded,
                )
                for v in achievement.voice_notes
            ],
        )


class TaskView(BaseModel):
    """Task snapshot with derived progress and risk."""

    id: str
    title: str
    status: TaskStatus
    display_status: str
    start_date: date
    end_date: date
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    total_target: float
    planned_effort_hours: float
    total_achieved: float
    remaining_target: float
    progress: int
    mission_complete: bool
    risk_level: RiskLevel
    achievements: list[AchievementView] = []

    @classmethod
    def from_task(cls, task: Task, today: date) -> "TaskView":
        return cls(
            id=task.id,
            title=task.title,
            status=task.status,
            display_status=rules.display_status(task, today),
            start_date=task.start_date,
            end_date=task.end_date,
            actual_start_date=task.actual_start_date,
            actual_end_date=task.actual_end_date,
            total_target=task.total_target,
            planned_effort_hours=task.planned_effort_hours,
            total_achieved=task.total_achieved,
            remaining_target=ledger.remaining_target(task),
            progress=task.progress,
            mission_complete=ledger.is_mission_complete(task),
            risk_level=rules.classify_risk(task, today),
            achievements=[
                AchievementView.from_achievement(a, task.planned_effort_hours)
                for a in sorted(task.achievements, key=lambda a: a.date)
            ],
        )


class SyncView(BaseModel):
    outcome: str
    message: str
    attempts: int

    @classmethod
    def from_result(cls, result: Optional[SaveResult]) -> Optional["SyncView"]:
        if result is None:
            return None
        return cls(outcome=result.outcome.value, message=result.message, attempts=result.attempts)


class MutationResponse(BaseModel):
    """Task snapshot after a mutation plus how its persistence went."""

    task: TaskView
    sync: Optional[SyncView] = None
    error: Optional[str] = None
    warning: Optional[str] = None


class ConfirmationResponse(BaseModel):
    """Returned instead of applying a value that needs explicit consent."""

    detail: str
    headroom: float
    projected_total: float
    limit: float


class FlushResponse(BaseModel):
    synced: list[str]
    failed: list[str]
    pending: int


class PendingResponse(BaseModel):
    pending: int
    entries: list[AchievementRow] = []
    statuses: list[SyncStatus] = []


def _attendance(event) -> Optional[AttendanceView]:
    if event is None:
        return None
    return AttendanceView(
        timestamp=event.timestamp,
        location=LocationView(latitude=event.location.latitude, longitude=event.location.longitude),
    )
