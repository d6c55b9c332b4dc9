"""Data models for tasks, daily achievements and their evidence."""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class RiskLevel(str, Enum):
    """Schedule risk, derived from expected vs actual progress. Never stored."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SessionState(str, Enum):
    """Attendance session state for one achievement date."""

    NO_SESSION = "no_session"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass(frozen=True)
class Location:
    """Geocoordinate pair."""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class AttendanceEvent:
    """A check-in or check-out, produced from a successful geolocation read."""
    timestamp: datetime
    location: Location


@dataclass(frozen=True)
class MediaItem:
    """Photo or video evidence attached to an achievement."""
    url: str
    type: MediaType
    timestamp: datetime  # identity within the achievement
    size: int = 0
    name: Optional[str] = None
    uploaded: bool = True  # False while only the local preview exists


@dataclass(frozen=True)
class VoiceNote:
    """Recorded audio evidence."""
    audio_url: str
    timestamp: datetime  # identity within the achievement
    size: int = 0
    duration: Optional[float] = None
    uploaded: bool = True


@dataclass(frozen=True)
class DailyAchievement:
    """One dated contribution toward a task target. Identity is the date."""
    date: date
    value: float = 0.0
    work_hours: Optional[float] = None
    notes: Optional[str] = None
    check_in: Optional[AttendanceEvent] = None
    check_out: Optional[AttendanceEvent] = None
    media: tuple[MediaItem, ...] = ()
    voice_notes: tuple[VoiceNote, ...] = ()

    # Assigned by the remote store once persisted
    id: Optional[str] = None


@dataclass(frozen=True)
class Task:
    """A unit of trackable work with a numeric target."""
    id: str
    title: str
    start_date: date  # planned window
    end_date: date
    total_target: float = 100.0
    status: TaskStatus = TaskStatus.TODO
    planned_effort_hours: float = 8.0  # per day
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    assigned_team_id: Optional[str] = None
    achievements: tuple[DailyAchievement, ...] = field(default=())

    @property
    def total_achieved(self) -> float:
        """Sum of all achievement values."""
        return sum(achievement.value for achievement in self.achievements)

    @property
    def progress(self) -> int:
        """
        Percentage of target achieved, capped at 100.

        A completed task always reports 100. Rounds half up.
        """
        if self.status == TaskStatus.COMPLETED:
            return 100
        if self.total_target <= 0:
            return 0
        percent = self.total_achieved / self.total_target * 100
        return min(100, math.floor(percent + 0.5))
