"""In-memory store of task snapshots."""

import logging
from dataclasses import replace
from datetime import date
from typing import Callable, Optional

from ..sync.errors import UnknownTaskError
from .models import Task

logger = logging.getLogger(__name__)


class TaskStore:
    """Holds the latest snapshot of each task and notifies on every change."""

    def __init__(self):
        self._tasks: dict[str, Task] = {}
        self._listeners: list[Callable[[Task], None]] = []

    def subscribe(self, listener: Callable[[Task], None]):
        """Register an `on_task_updated(task)` callback."""
        self._listeners.append(listener)

    def add(self, task: Task):
        """Register a task without notifying listeners."""
        self._tasks[task.id] = task

    def get(self, task_id: str) -> Task:
        """
        Get current snapshot.

        Raises:
            UnknownTaskError: Unknown task
        """
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(f"Unknown task: {task_id}")
        return task

    def find(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def all(self) -> list[Task]:
        return list(self._tasks.values())

    def apply(self, task: Task) -> Task:
        """Replace the snapshot for a task and notify listeners."""
        self._tasks[task.id] = task
        for listener in self._listeners:
            listener(task)
        return task

    def merge_achievement_id(self, task_id: str, on_date: date, remote_id: str) -> Optional[Task]:
        """
        Record the remote id of a persisted achievement.

        Returns:
            The updated snapshot, or None when the task or achievement is gone
        """
        task = self._tasks.get(task_id)
        if task is None:
            return None

        achievements = []
        found = False
        for achievement in task.achievements:
            if achievement.date == on_date:
                found = True
                if achievement.id == remote_id:
                    return task
                achievement = replace(achievement, id=remote_id)
            achievements.append(achievement)

        if not found:
            logger.debug(f"Achievement {task_id} {on_date} no longer in store, id {remote_id} not merged")
            return None

        return self.apply(replace(task, achievements=tuple(achievements)))
