"""Tests for scheduling/models.py: value types and parsing."""

from datetime import date, datetime, time

import pytest
from pydantic import ValidationError

from scheduling.models import (
    Slot,
    Task,
    TaskPriority,
    TaskStatus,
    TimeInterval,
    TimeOfDay,
    intervals_overlap,
    parse_date,
)


def test_time_of_day_parses_backend_formats():
    assert TimeOfDay.parse("09:30") == TimeOfDay(9, 30)
    assert TimeOfDay.parse("17:00:00") == TimeOfDay(17, 0)
    assert TimeOfDay.parse(time(8, 15)) == TimeOfDay(8, 15)
    assert str(TimeOfDay(7, 5)) == "07:05"


@pytest.mark.parametrize("raw", ["9", "25:00", "12:60", "ab:cd", "10:00:30", "24:30"])
def test_time_of_day_rejects_invalid_strings(raw):
    with pytest.raises(ValueError):
        TimeOfDay.parse(raw)


def test_time_of_day_end_of_day_marker():
    assert TimeOfDay.from_minutes(24 * 60) == TimeOfDay(24, 0)
    assert TimeOfDay(24, 0).to_minutes() == 1440
    with pytest.raises(ValueError):
        TimeOfDay.from_minutes(1441)


def test_time_of_day_ordering():
    assert TimeOfDay(9, 0) < TimeOfDay(9, 30) < TimeOfDay(10, 0)


def test_parse_date_accepts_strings_dates_and_datetimes():
    assert parse_date("2026-03-02") == date(2026, 3, 2)
    assert parse_date(date(2026, 3, 2)) == date(2026, 3, 2)
    assert parse_date(datetime(2026, 3, 2, 15, 45)) == date(2026, 3, 2)
    with pytest.raises(ValueError):
        parse_date("03/02/2026")


def test_task_parses_strings_once():
    task = Task(
        title="Write report",
        due_date="2026-03-02",
        start_time="09:00:00",
        end_time="10:30",
        status="in_progress",
        priority="high",
    )
    assert task.due_date == date(2026, 3, 2)
    assert task.start_time == TimeOfDay(9, 0)
    assert task.end_time == TimeOfDay(10, 30)
    assert task.status is TaskStatus.IN_PROGRESS
    assert task.priority is TaskPriority.HIGH
    assert task.is_scheduled


def test_task_defaults_and_generated_id():
    first, second = Task(title="a"), Task(title="b")
    assert first.id != second.id
    assert first.status is TaskStatus.PENDING
    assert first.priority is TaskPriority.MEDIUM
    assert not first.is_scheduled


def test_task_rejects_bad_fields():
    with pytest.raises(ValidationError):
        Task(title="x", start_time="9am")
    with pytest.raises(ValidationError):
        Task(title="x", duration_minutes=0)
    with pytest.raises(ValidationError):
        Task(title="x", status="archived")


def test_effective_end_derived_from_duration():
    task = Task(title="x", due_date="2026-03-02", start_time="09:00", duration_minutes=45)
    assert task.effective_end() == TimeOfDay(9, 45)


def test_effective_end_prefers_stored_end_time():
    task = Task(title="x", start_time="09:00", end_time="11:00", duration_minutes=30)
    assert task.effective_end() == TimeOfDay(11, 0)


def test_effective_end_does_not_cross_midnight():
    task = Task(title="x", start_time="23:30", duration_minutes=60)
    assert task.effective_end() is None


def test_to_record_uses_backend_formats():
    task = Task(title="x", due_date="2026-03-02", start_time="09:00", end_time="10:00")
    record = task.to_record()
    assert record["due_date"] == "2026-03-02"
    assert record["start_time"] == "09:00"
    assert record["end_time"] == "10:00"
    assert record["status"] == "pending"


def test_half_open_overlap():
    assert intervals_overlap(540, 600, 570, 630)
    assert not intervals_overlap(540, 600, 600, 660)
    assert not intervals_overlap(600, 660, 540, 600)
    assert intervals_overlap(540, 660, 570, 600)


def test_time_interval_overlap_requires_same_date():
    monday = TimeInterval(date(2026, 3, 2), TimeOfDay(9), TimeOfDay(10))
    tuesday = TimeInterval(date(2026, 3, 3), TimeOfDay(9), TimeOfDay(10))
    assert not monday.overlaps(tuesday)
    assert monday.overlaps(TimeInterval(date(2026, 3, 2), TimeOfDay(9, 30), TimeOfDay(11)))


def test_slot_task_fields():
    slot = Slot(date(2026, 3, 2), TimeOfDay(10), TimeOfDay(11, 30))
    assert slot.duration_minutes == 90
    assert slot.as_task_fields() == {
        "due_date": "2026-03-02",
        "start_time": "10:00",
        "end_time": "11:30",
    }
    assert str(slot) == "2026-03-02 10:00-11:30"
