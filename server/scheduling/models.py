"""
Scheduling Models

Value types shared by the scheduling core and the services:
- TimeOfDay: validated wall-clock time (hour/minute)
- Task: a user's task record as stored by the backend
- TimeInterval: a task's occupied range on one day
- Slot: a proposed placement for a new task

All string parsing happens here, so the search code only ever sees
dates and TimeOfDay values.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

MINUTES_PER_DAY = 24 * 60


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """
    Wall-clock time with minute precision.

    Valid values are 00:00 through 23:59, plus 24:00 which marks the
    end of the day. Any value parses as a start time; a task starting at
    24:00 has no room before midnight and is treated as malformed when indexed.
    """

    hour: int
    minute: int = 0

    def __post_init__(self):
        if not isinstance(self.hour, int) or not isinstance(self.minute, int):
            raise ValueError("hour and minute must be integers")
        if not 0 <= self.minute <= 59:
            raise ValueError(f"minute out of range: {self.minute}")
        if self.hour == 24:
            if self.minute != 0:
                raise ValueError("24:00 is the only valid time in hour 24")
        elif not 0 <= self.hour <= 23:
            raise ValueError(f"hour out of range: {self.hour}")

    @classmethod
    def from_minutes(cls, minutes: int) -> "TimeOfDay":
        """Build a TimeOfDay from minutes since midnight (0 to 1440)."""
        if not 0 <= minutes <= MINUTES_PER_DAY:
            raise ValueError(f"minutes out of range: {minutes}")
        return cls(minutes // 60, minutes % 60)

    @classmethod
    def parse(cls, value: Union[str, time, "TimeOfDay"]) -> "TimeOfDay":
        """
        Parse "HH:MM", "HH:MM:SS" or a datetime.time.

        Seconds are accepted only when zero, since the backend stores
        time columns as HH:MM:SS.

        Raises:
            ValueError: If the value is not a valid time of day
        """
        if isinstance(value, TimeOfDay):
            return value
        if isinstance(value, time):
            if value.second or value.microsecond:
                raise ValueError(f"Time must have minute precision: {value}")
            return cls(value.hour, value.minute)
        if not isinstance(value, str):
            raise ValueError(f"Cannot convert {type(value)} to TimeOfDay")

        parts = value.strip().split(":")
        if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
            raise ValueError(f"Time must be in HH:MM format: {value!r}")
        if len(parts) == 3 and int(parts[2]) != 0:
            raise ValueError(f"Time must have minute precision: {value!r}")
        return cls(int(parts[0]), int(parts[1]))

    def to_minutes(self) -> int:
        return self.hour * 60 + self.minute

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


def parse_date(value: Union[str, date, datetime]) -> date:
    """Parse an ISO date string (YYYY-MM-DD), or take the date part of a datetime."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value.strip())
    raise ValueError(f"Cannot convert {type(value)} to date")


def _new_task_id() -> str:
    return uuid.uuid4().hex


class Task(BaseModel):
    """
    A task record.

    Only due_date/start_time/end_time/duration_minutes/status matter for
    scheduling; the rest is carried for the callers that create and list tasks.
    The model does not enforce start < end: malformed records must be
    representable so the index can apply its policy to them.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    id: str = Field(default_factory=_new_task_id)
    user_id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    category: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[date] = None
    start_time: Optional[TimeOfDay] = None
    end_time: Optional[TimeOfDay] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("due_date", mode="before")
    @classmethod
    def _parse_due_date(cls, value: Any) -> Optional[date]:
        if value is None or value == "":
            return None
        return parse_date(value)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_time(cls, value: Any) -> Optional[TimeOfDay]:
        if value is None or value == "":
            return None
        return TimeOfDay.parse(value)

    @property
    def is_scheduled(self) -> bool:
        return self.due_date is not None and (
            self.start_time is not None or self.end_time is not None
        )

    def effective_end(self) -> Optional[TimeOfDay]:
        """End time, derived from start_time + duration_minutes when not stored."""
        if self.end_time is not None:
            return self.end_time
        if self.start_time is None or not self.duration_minutes:
            return None
        end_minutes = self.start_time.to_minutes() + self.duration_minutes
        if end_minutes > MINUTES_PER_DAY:
            return None
        return TimeOfDay.from_minutes(end_minutes)

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the backend's row format (ISO dates, HH:MM times)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "priority": self.priority.value,
            "status": self.status.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "start_time": str(self.start_time) if self.start_time else None,
            "end_time": str(self.end_time) if self.end_time else None,
            "duration_minutes": self.duration_minutes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def intervals_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    """Half-open overlap test: [start1, end1) and [start2, end2) share time."""
    return start1 < end2 and start2 < end1


@dataclass(frozen=True)
class TimeInterval:
    """Occupied range [start, end) on a single date."""

    date: date
    start: TimeOfDay
    end: TimeOfDay

    @property
    def duration_minutes(self) -> int:
        return self.end.to_minutes() - self.start.to_minutes()

    def overlaps(self, other: "TimeInterval") -> bool:
        if self.date != other.date:
            return False
        return intervals_overlap(
            self.start.to_minutes(), self.end.to_minutes(),
            other.start.to_minutes(), other.end.to_minutes(),
        )


@dataclass(frozen=True)
class Slot:
    """Proposed placement for a new task. Never persisted on its own."""

    date: date
    start_time: TimeOfDay
    end_time: TimeOfDay

    @property
    def duration_minutes(self) -> int:
        return self.end_time.to_minutes() - self.start_time.to_minutes()

    def as_interval(self) -> TimeInterval:
        return TimeInterval(self.date, self.start_time, self.end_time)

    def as_task_fields(self) -> Dict[str, str]:
        """Fields to merge into a new task payload."""
        return {
            "due_date": self.date.isoformat(),
            "start_time": str(self.start_time),
            "end_time": str(self.end_time),
        }

    def __str__(self) -> str:
        return f"{self.date.isoformat()} {self.start_time}-{self.end_time}"
