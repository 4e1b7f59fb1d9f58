"""
Scheduling Errors

Error taxonomy for the scheduling core. "No slot found" is not an error:
the slot finder returns None for it.
"""

from typing import Optional


class SchedulingError(ValueError):
    """Base class for all scheduling core errors."""


class InvalidInputError(SchedulingError):
    """Raised when search parameters are out of range. The search never starts."""


class MalformedTaskError(SchedulingError):
    """
    Raised by a strict ScheduleIndex when a task has inconsistent times.

    Attributes:
        task_id: Identifier of the offending task
        reason: Human readable description of the inconsistency
    """

    def __init__(self, task_id: Optional[str], reason: str):
        self.task_id = task_id
        self.reason = reason
        super().__init__(f"Task {task_id} is malformed: {reason}")
