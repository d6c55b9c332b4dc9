"""Achievement ledger and progress engine.

Stateless functions over immutable Task snapshots. Every mutation returns a new
Task; the caller decides when to publish and persist it.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional, Union

from ..sync.errors import ConfirmationRequired, PreconditionError, TrackerError
from . import rules
from .models import DailyAchievement, Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Ok:
    """Mutation applied."""
    task: Task

    def unwrap(self) -> Task:
        return self.task


@dataclass(frozen=True)
class NeedsConfirmation:
    """Mutation held back until the caller re-invokes with override consent."""
    headroom: float  # value that would bring the task exactly to its target
    projected_total: float
    limit: float

    def unwrap(self) -> Task:
        raise ConfirmationRequired(self.headroom, self.projected_total, self.limit)


@dataclass(frozen=True)
class Err:
    """Mutation rejected by a local rule."""
    error: TrackerError

    def unwrap(self) -> Task:
        raise self.error


Decision = Union[Ok, NeedsConfirmation, Err]


def achievement_for(task: Task, on_date: date) -> Optional[DailyAchievement]:
    """Get the achievement recorded for a date, if any."""
    for achievement in task.achievements:
        if achievement.date == on_date:
            return achievement
    return None


def upsert_achievement(task: Task, achievement: DailyAchievement) -> Task:
    """Replace the record for the achievement's date, or append it."""
    others = tuple(a for a in task.achievements if a.date != achievement.date)
    return replace(task, achievements=others + (achievement,))


def record_value(
    task: Task,
    on_date: date,
    value,
    override: bool = False,
    notes: Optional[str] = None,
    tolerance: float = rules.TARGET_TOLERANCE,
    ceiling: float = rules.VALUE_CEILING,
) -> Decision:
    """
    Record the achieved value for a date.

    The value replaces whatever was recorded for that date before. Totals that
    would exceed the tolerated share of the target are not applied unless
    `override` is set.

    Args:
        task: Current task snapshot
        on_date: Achievement date
        value: New value for that date
        override: Commit even past the tolerated target
        notes: Optional notes; keeps existing notes when None
        tolerance: Allowed multiple of the target before confirmation
        ceiling: Absolute sanity ceiling for a single value

    Returns:
        Ok(task), NeedsConfirmation(headroom, ...) or Err(error)
    """
    try:
        number = rules.validate_value(value, ceiling)
    except TrackerError as e:
        return Err(e)

    if task.actual_start_date is None:
        return Err(PreconditionError("Start the task before logging daily achievements"))

    existing = achievement_for(task, on_date)
    previous = existing.value if existing else 0.0
    others_total = task.total_achieved - previous
    projected_total = others_total + number

    if not override and rules.requires_confirmation(projected_total, task.total_target, tolerance):
        logger.info(
            f"Task {task.id} {on_date}: projected {projected_total:g} exceeds "
            f"{task.total_target * tolerance:g}, confirmation required"
        )
        return NeedsConfirmation(
            headroom=task.total_target - others_total,
            projected_total=projected_total,
            limit=task.total_target * tolerance,
        )

    if existing:
        updated = replace(existing, value=number, notes=notes if notes is not None else existing.notes)
    else:
        updated = DailyAchievement(date=on_date, value=number, notes=notes)

    return Ok(upsert_achievement(task, updated))


def remove_achievement(task: Task, on_date: date, confirmed: bool = False) -> Task:
    """
    Delete the achievement for a date.

    Raises:
        PreconditionError: Not confirmed, or nothing recorded for that date
    """
    if not confirmed:
        raise PreconditionError(f"Deleting the achievement for {on_date} requires confirmation")
    if achievement_for(task, on_date) is None:
        raise PreconditionError(f"No achievement recorded for {on_date}")

    remaining = tuple(a for a in task.achievements if a.date != on_date)
    return replace(task, achievements=remaining)


def start_task(task: Task, now: datetime) -> Task:
    """Move a task to in-progress and stamp its actual start."""
    if task.actual_start_date is not None:
        raise PreconditionError(f"Task {task.id} was already started")
    return replace(task, status=TaskStatus.IN_PROGRESS, actual_start_date=now)


def end_task(task: Task, now: datetime) -> Task:
    """Complete a task and stamp its actual end. Progress reads 100 afterwards."""
    if task.actual_start_date is None:
        raise PreconditionError("Start the task first")
    if task.actual_end_date is not None:
        raise PreconditionError(f"Task {task.id} already ended")
    return replace(task, status=TaskStatus.COMPLETED, actual_end_date=now)


def dates_in_range(task: Task) -> list[date]:
    """All calendar dates of the planned window, inclusive."""
    days = (task.end_date - task.start_date).days
    return [task.start_date + timedelta(days=offset) for offset in range(days + 1)]


def remaining_target(task: Task) -> float:
    return task.total_target - task.total_achieved


def is_mission_complete(task: Task) -> bool:
    """True once the target is reached (or the task has no target)."""
    if not task.total_target:
        return True
    return task.total_achieved >= task.total_target
