"""
Schedule Index

Per-day view of the time already claimed by a user's tasks.
"""

from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple, Union

from fastmcp.utilities.logging import get_logger

from .errors import MalformedTaskError
from .models import Task, TaskStatus, TimeInterval, TimeOfDay

logger = get_logger(__name__)


def task_interval(task: Task) -> Optional[TimeInterval]:
    """
    Derive the occupied interval of a task.

    Returns:
        The interval, or None for unscheduled tasks

    Raises:
        MalformedTaskError: If the task has inconsistent times
    """
    if task.due_date is None:
        return None
    if task.start_time is None and task.end_time is None:
        return None
    if task.start_time is None:
        raise MalformedTaskError(task.id, "end_time without start_time")

    end = task.effective_end()
    if end is None:
        raise MalformedTaskError(task.id, "start_time without end_time or usable duration")
    if end <= task.start_time:
        raise MalformedTaskError(
            task.id, f"end_time {end} is not after start_time {task.start_time}"
        )
    return TimeInterval(task.due_date, task.start_time, end)


class ScheduleIndex:
    """
    Answers "which intervals are occupied on day D?" for a set of tasks.

    Only the derived intervals are kept; the tasks themselves are not
    retained or modified.

    Malformed tasks are skipped (their ids end up in skipped_task_ids)
    unless strict=True, in which case construction raises MalformedTaskError.
    """

    def __init__(
        self,
        tasks: Iterable[Task],
        exclude_statuses: Iterable[Union[TaskStatus, str]] = (),
        strict: bool = False,
    ):
        self.exclude_statuses = frozenset(TaskStatus(s) for s in exclude_statuses)
        self.strict = strict
        self.skipped_task_ids: List[str] = []
        self._by_date: Dict[date, List[Tuple[TimeOfDay, TimeOfDay]]] = {}

        for task in tasks:
            if task.status in self.exclude_statuses:
                continue
            try:
                interval = task_interval(task)
            except MalformedTaskError as e:
                if strict:
                    raise
                logger.warning(f"Ignoring malformed task for occupancy: {e}")
                self.skipped_task_ids.append(task.id)
                continue
            if interval is None:
                continue
            self._by_date.setdefault(interval.date, []).append((interval.start, interval.end))

        for intervals in self._by_date.values():
            intervals.sort()

    def occupied_intervals(self, day: date) -> List[Tuple[TimeOfDay, TimeOfDay]]:
        """Occupied (start, end) pairs on the given day, ascending by start."""
        return list(self._by_date.get(day, ()))

    def dates(self) -> List[date]:
        return sorted(self._by_date)

    def __len__(self) -> int:
        return sum(len(intervals) for intervals in self._by_date.values())

    def __repr__(self) -> str:
        return f"ScheduleIndex(days={len(self._by_date)}, intervals={len(self)})"


def build_index(
    tasks: Iterable[Task],
    exclude_statuses: Optional[Iterable[Union[TaskStatus, str]]] = None,
    strict: bool = False,
) -> ScheduleIndex:
    """Build a ScheduleIndex over the given tasks."""
    return ScheduleIndex(tasks, exclude_statuses=exclude_statuses or (), strict=strict)
