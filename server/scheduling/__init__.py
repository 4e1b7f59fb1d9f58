"""
Scheduling Core

Pure scheduling logic with no I/O:
- Value types and parsing (models.py)
- Error taxonomy (errors.py)
- Per-day occupancy (schedule_index.py)
- Free slot search (slot_finder.py)
"""

from .errors import InvalidInputError, MalformedTaskError, SchedulingError
from .models import (
    Slot,
    Task,
    TaskPriority,
    TaskStatus,
    TimeInterval,
    TimeOfDay,
    intervals_overlap,
    parse_date,
)
from .schedule_index import ScheduleIndex, build_index, task_interval
from .slot_finder import SlotSearchOptions, find_next_available_slot, free_windows

__all__ = [
    "InvalidInputError",
    "MalformedTaskError",
    "SchedulingError",
    "Slot",
    "SlotSearchOptions",
    "ScheduleIndex",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "TimeInterval",
    "TimeOfDay",
    "build_index",
    "find_next_available_slot",
    "free_windows",
    "intervals_overlap",
    "parse_date",
    "task_interval",
]
