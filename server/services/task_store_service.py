"""
Task Store Service

In-memory stand-in for the hosted backend's tasks table.
Keeps tasks per user and enforces the one rule the scheduling core
cannot: two scheduled tasks of the same user may not overlap.
"""

import threading
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from fastmcp.utilities.logging import get_logger

from scheduling.models import Task, TaskStatus, TimeInterval, TimeOfDay
from scheduling.schedule_index import task_interval


class TaskConflictError(RuntimeError):
    """Raised when a write would overlap an existing scheduled task."""

    def __init__(self, task: Task, conflicting: List[Task]):
        self.task = task
        self.conflicting = conflicting
        titles = ", ".join(t.title or t.id for t in conflicting)
        super().__init__(
            f"Task '{task.title or task.id}' overlaps existing task(s): {titles}"
        )


def _sort_key(task: Task):
    return (
        task.due_date or date.max,
        task.start_time or TimeOfDay(24, 0),
    )


class TaskStoreService:
    """
    Per-user task storage.

    All reads return copies so callers never hold a reference to stored state.
    """

    def __init__(self, excluded_statuses: Iterable[TaskStatus] = ()):
        """
        Initialize Task Store Service.

        Args:
            excluded_statuses: Statuses whose tasks do not block a time slot
        """
        self.logger = get_logger("TaskStoreService")
        self.excluded_statuses = frozenset(TaskStatus(s) for s in excluded_statuses)
        self._tasks: Dict[str, Dict[str, Task]] = {}
        self._lock = threading.Lock()

    # === QUERIES ===

    def list_tasks(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[Task]:
        """
        List a user's tasks, ordered by due date then start time.

        Args:
            user_id: User identifier
            start_date: Inclusive lower bound on due_date
            end_date: Inclusive upper bound on due_date

        Returns:
            Matching tasks. Tasks without a due date are only included
            when no bound is given.
        """
        with self._lock:
            tasks = list(self._tasks.get(user_id, {}).values())

        if start_date is not None or end_date is not None:
            tasks = [
                t for t in tasks
                if t.due_date is not None
                and (start_date is None or t.due_date >= start_date)
                and (end_date is None or t.due_date <= end_date)
            ]

        tasks.sort(key=_sort_key)
        return [t.model_copy() for t in tasks]

    def get_task(self, user_id: str, task_id: str) -> Task:
        """
        Raises:
            KeyError: If the task does not exist for this user
        """
        with self._lock:
            task = self._tasks.get(user_id, {}).get(task_id)
        if task is None:
            raise KeyError(f"Task not found: {task_id}")
        return task.model_copy()

    # === WRITES ===

    def insert_task(
        self,
        user_id: str,
        task: Task,
        excluded_statuses: Optional[Iterable[TaskStatus]] = None
    ) -> Task:
        """
        Store a new task.

        The overlap check and the write happen under one lock, so two
        callers that computed the same free slot cannot both claim it.

        Args:
            user_id: User identifier
            task: Task to store
            excluded_statuses: Statuses that do not block a time slot for
                this write (defaults to the store's own set)

        Raises:
            TaskConflictError: If the task overlaps another scheduled task
            MalformedTaskError: If the task's times are inconsistent
            ValueError: If a task with the same id already exists
        """
        excluded = self._excluded(excluded_statuses)
        now = datetime.now()
        stored = task.model_copy(update={
            "user_id": user_id,
            "created_at": task.created_at or now,
            "updated_at": now,
        })
        new_interval = task_interval(stored)

        with self._lock:
            user_tasks = self._tasks.setdefault(user_id, {})
            if stored.id in user_tasks:
                raise ValueError(f"Task already exists: {stored.id}")

            self._check_conflicts(user_id, stored, new_interval, user_tasks.values(), excluded)
            user_tasks[stored.id] = stored

        self.logger.info(f"Stored task {stored.id} for user {user_id}")
        return stored.model_copy()

    def update_status(
        self,
        user_id: str,
        task_id: str,
        status: TaskStatus,
        excluded_statuses: Optional[Iterable[TaskStatus]] = None
    ) -> Task:
        """
        Change a task's status.

        A task moving from a non-blocking status back to a blocking one is
        checked against the user's other tasks like a new insert.

        Raises:
            KeyError: If the task does not exist for this user
            TaskConflictError: If the task would now overlap another scheduled task
        """
        status = TaskStatus(status)
        excluded = self._excluded(excluded_statuses)
        with self._lock:
            user_tasks = self._tasks.get(user_id, {})
            task = user_tasks.get(task_id)
            if task is None:
                raise KeyError(f"Task not found: {task_id}")
            updated = task.model_copy(update={"status": status, "updated_at": datetime.now()})

            if task.status in excluded:
                others = [t for t in user_tasks.values() if t.id != task_id]
                self._check_conflicts(user_id, updated, task_interval(updated), others, excluded)

            user_tasks[task_id] = updated
        self.logger.info(f"Task {task_id} status -> {status.value}")
        return updated.model_copy()

    def delete_task(self, user_id: str, task_id: str) -> Task:
        """
        Raises:
            KeyError: If the task does not exist for this user
        """
        with self._lock:
            removed = self._tasks.get(user_id, {}).pop(task_id, None)
        if removed is None:
            raise KeyError(f"Task not found: {task_id}")
        self.logger.info(f"Deleted task {task_id} for user {user_id}")
        return removed

    def clear(self, user_id: str) -> int:
        """
        Remove all of a user's tasks.

        Returns:
            Number of tasks removed
        """
        with self._lock:
            removed = self._tasks.pop(user_id, {})
        self.logger.info(f"Cleared {len(removed)} tasks for user {user_id}")
        return len(removed)

    def _excluded(self, excluded_statuses: Optional[Iterable[TaskStatus]]) -> frozenset:
        if excluded_statuses is None:
            return self.excluded_statuses
        return frozenset(TaskStatus(s) for s in excluded_statuses)

    def _check_conflicts(
        self,
        user_id: str,
        task: Task,
        interval: Optional[TimeInterval],
        others: Iterable[Task],
        excluded: frozenset
    ) -> None:
        """Raise TaskConflictError if a blocking task overlaps a blocking interval. Caller holds the lock."""
        if interval is None or task.status in excluded:
            return
        conflicting = [
            existing for existing in others
            if existing.status not in excluded and self._overlaps(existing, interval)
        ]
        if conflicting:
            self.logger.warning(
                f"Rejected task {task.id} for user {user_id}: "
                f"overlaps {[t.id for t in conflicting]}"
            )
            raise TaskConflictError(task, conflicting)

    @staticmethod
    def _overlaps(existing: Task, interval: TimeInterval) -> bool:
        # Stored tasks were validated on insert
        existing_interval = task_interval(existing)
        return existing_interval is not None and existing_interval.overlaps(interval)
