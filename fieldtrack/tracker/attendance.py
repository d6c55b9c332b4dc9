"""Attendance sessions: geolocated check-in / check-out per achievement date."""

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from ..sync.errors import PreconditionError
from .geolocation import GeolocationProvider
from .ledger import achievement_for, upsert_achievement
from .models import AttendanceEvent, DailyAchievement, SessionState, Task

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600


def session_state(achievement: Optional[DailyAchievement]) -> SessionState:
    """Get the attendance state of an achievement (None means no record yet)."""
    if achievement is None or achievement.check_in is None:
        return SessionState.NO_SESSION
    if achievement.check_out is None:
        return SessionState.CHECKED_IN
    return SessionState.CHECKED_OUT


def work_hours(achievement: DailyAchievement) -> float:
    """Hours between check-in and check-out; 0 while the session is open."""
    if achievement.check_in is None or achievement.check_out is None:
        return 0.0
    delta = achievement.check_out.timestamp - achievement.check_in.timestamp
    return delta.total_seconds() / SECONDS_PER_HOUR


def overtime_hours(achievement: DailyAchievement, planned_effort_hours: float) -> float:
    """Hours worked beyond the planned effort for the day."""
    return max(0.0, work_hours(achievement) - planned_effort_hours)


def format_duration(hours: float) -> str:
    """Format hours as "Xh Ym"."""
    if not hours or hours < 0:
        return "0h"
    total_minutes = int(hours * 60)
    return f"{total_minutes // 60}h {total_minutes % 60}m"


def _require_session(achievement: Optional[DailyAchievement], expected: SessionState, on_date: date):
    state = session_state(achievement)
    if state == expected:
        return
    if expected == SessionState.NO_SESSION:
        raise PreconditionError(f"Already checked in for {on_date}")
    if state == SessionState.NO_SESSION:
        raise PreconditionError(f"Cannot check out for {on_date} without a check-in")
    raise PreconditionError(f"Already checked out for {on_date}")


def record_check_in(task: Task, on_date: date, event: AttendanceEvent) -> Task:
    """
    Apply a check-in event to a task snapshot.

    Raises:
        PreconditionError: The date already has a check-in
    """
    existing = achievement_for(task, on_date)
    _require_session(existing, SessionState.NO_SESSION, on_date)

    achievement = replace(existing, check_in=event) if existing else DailyAchievement(date=on_date, check_in=event)
    logger.info(
        f"Task {task.id} {on_date}: checked in at {event.timestamp.isoformat()} "
        f"({event.location.latitude}, {event.location.longitude})"
    )
    return upsert_achievement(task, achievement)


def record_check_out(task: Task, on_date: date, event: AttendanceEvent) -> Task:
    """
    Apply a check-out event to a task snapshot and store the worked hours.

    Raises:
        PreconditionError: No open check-in for the date
    """
    existing = achievement_for(task, on_date)
    _require_session(existing, SessionState.CHECKED_IN, on_date)

    achievement = replace(existing, check_out=event)
    achievement = replace(achievement, work_hours=work_hours(achievement))

    overtime = overtime_hours(achievement, task.planned_effort_hours)
    logger.info(
        f"Task {task.id} {on_date}: checked out, worked {format_duration(achievement.work_hours)}"
        + (f", overtime {format_duration(overtime)}" if overtime else "")
    )
    return upsert_achievement(task, achievement)


class AttendanceManager:
    """Produces geolocated check-in and check-out events for the current day."""

    def __init__(self, geolocation: GeolocationProvider, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize attendance manager.

        Args:
            geolocation: Position source for attendance events
            clock: Returns the current time
        """
        self.geolocation = geolocation
        self.clock = clock

    def _require_today(self, on_date: date, action: str):
        today = self.clock().date()
        if on_date != today:
            raise PreconditionError(f"{action} is only possible for today ({today}), not {on_date}")

    async def _event(self) -> AttendanceEvent:
        location = await self.geolocation.get_current_position()
        return AttendanceEvent(timestamp=self.clock(), location=location)

    async def check_in(self, task: Task, on_date: date, members: Sequence[str]) -> AttendanceEvent:
        """
        Acquire a check-in event for a date.

        The task snapshot may change while the position is read, so the event
        is returned for the caller to apply with `record_check_in` on the
        latest snapshot.

        Args:
            task: Current task snapshot
            on_date: Must be today
            members: Participating team members

        Returns:
            The check-in event

        Raises:
            PreconditionError: Task not started, no members, wrong date, or
                already checked in
            GeolocationError: Position unavailable
        """
        if task.actual_start_date is None:
            raise PreconditionError("You must 'Start Task' before you can check in.")
        if not members:
            raise PreconditionError("Select the participating members before checking in.")
        self._require_today(on_date, "Check-in")
        _require_session(achievement_for(task, on_date), SessionState.NO_SESSION, on_date)

        event = await self._event()
        logger.debug(f"Task {task.id} {on_date}: check-in position acquired for {len(members)} members")
        return event

    async def check_out(self, task: Task, on_date: date) -> AttendanceEvent:
        """
        Acquire a check-out event for a date. Apply it with `record_check_out`.

        Raises:
            PreconditionError: No check-in, already checked out, or wrong date
            GeolocationError: Position unavailable
        """
        _require_session(achievement_for(task, on_date), SessionState.CHECKED_IN, on_date)
        self._require_today(on_date, "Check-out")
        return await self._event()
