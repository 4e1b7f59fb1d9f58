"""
Slot Finder

Searches a ScheduleIndex for the earliest free window of a given length.

Algorithm (find_next_available_slot):
    1. Scan horizon_days consecutive days starting at reference_date
    2. Fetch the day's occupied intervals once
    3. Step candidate starts from work_start_hour by granularity_minutes
       while start + duration still ends inside the work window
    4. Return the first candidate that overlaps no occupied interval
       (half-open: touching endpoints do not conflict)
    5. Return None once the horizon is exhausted
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from fastmcp.utilities.logging import get_logger

from .errors import InvalidInputError
from .models import Slot, TimeInterval, TimeOfDay, intervals_overlap, parse_date
from .schedule_index import ScheduleIndex

logger = get_logger(__name__)

DEFAULT_HORIZON_DAYS = 7
DEFAULT_WORK_START_HOUR = 9
DEFAULT_WORK_END_HOUR = 17
DEFAULT_GRANULARITY_MINUTES = 60


@dataclass(frozen=True)
class SlotSearchOptions:
    horizon_days: int = DEFAULT_HORIZON_DAYS
    work_start_hour: int = DEFAULT_WORK_START_HOUR
    work_end_hour: int = DEFAULT_WORK_END_HOUR
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES

    def as_kwargs(self) -> Dict[str, int]:
        return asdict(self)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_work_window(work_start_hour: int, work_end_hour: int) -> None:
    """
    Raises:
        InvalidInputError: Unless 0 <= work_start_hour < work_end_hour <= 24
    """
    if not _is_int(work_start_hour) or not _is_int(work_end_hour):
        raise InvalidInputError("Work hours must be integers")
    if not 0 <= work_start_hour <= 23:
        raise InvalidInputError(f"work_start_hour must be between 0 and 23, got {work_start_hour}")
    if not 1 <= work_end_hour <= 24:
        raise InvalidInputError(f"work_end_hour must be between 1 and 24, got {work_end_hour}")
    if work_start_hour >= work_end_hour:
        raise InvalidInputError(
            f"work_start_hour ({work_start_hour}) must be less than work_end_hour ({work_end_hour})"
        )


def _validate_search(
    duration_minutes: int,
    horizon_days: int,
    work_start_hour: int,
    work_end_hour: int,
    granularity_minutes: int,
) -> None:
    if not _is_int(duration_minutes) or duration_minutes <= 0:
        raise InvalidInputError(f"duration_minutes must be a positive integer, got {duration_minutes!r}")
    if not _is_int(horizon_days) or horizon_days < 0:
        raise InvalidInputError(f"horizon_days must be a non-negative integer, got {horizon_days!r}")
    if not _is_int(granularity_minutes) or granularity_minutes <= 0:
        raise InvalidInputError(
            f"granularity_minutes must be a positive integer, got {granularity_minutes!r}"
        )
    validate_work_window(work_start_hour, work_end_hour)


def _coerce_reference_date(reference_date: Union[date, datetime, str]) -> date:
    try:
        return parse_date(reference_date)
    except ValueError as e:
        raise InvalidInputError(f"Invalid reference_date {reference_date!r}: {e}") from e


def find_next_available_slot(
    index: ScheduleIndex,
    duration_minutes: int,
    reference_date: Union[date, datetime, str],
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    work_start_hour: int = DEFAULT_WORK_START_HOUR,
    work_end_hour: int = DEFAULT_WORK_END_HOUR,
    granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
) -> Optional[Slot]:
    """
    Find the earliest conflict-free slot of duration_minutes.

    Earliest day wins, then earliest start within the day. A task never
    spans two days, so a duration longer than the work window scans the
    whole horizon and finds nothing.

    Args:
        index: Occupancy of the user's existing tasks
        duration_minutes: Length of the requested slot
        reference_date: First day to consider (inclusive)
        horizon_days: Number of consecutive days to scan
        work_start_hour: First hour a slot may start at
        work_end_hour: Hour by which a slot must have ended
        granularity_minutes: Step between candidate start times

    Returns:
        The slot, or None if nothing fits within the horizon

    Raises:
        InvalidInputError: If any parameter is out of range
    """
    _validate_search(duration_minutes, horizon_days, work_start_hour, work_end_hour, granularity_minutes)
    first_day = _coerce_reference_date(reference_date)

    window_start = work_start_hour * 60
    window_end = work_end_hour * 60

    for day_offset in range(horizon_days):
        candidate_date = first_day + timedelta(days=day_offset)
        occupied = [
            (start.to_minutes(), end.to_minutes())
            for start, end in index.occupied_intervals(candidate_date)
        ]

        candidate_start = window_start
        while candidate_start + duration_minutes <= window_end:
            candidate_end = candidate_start + duration_minutes
            has_conflict = any(
                intervals_overlap(candidate_start, candidate_end, busy_start, busy_end)
                for busy_start, busy_end in occupied
            )
            if not has_conflict:
                slot = Slot(
                    candidate_date,
                    TimeOfDay.from_minutes(candidate_start),
                    TimeOfDay.from_minutes(candidate_end),
                )
                logger.debug(f"Found slot {slot} for {duration_minutes} minutes")
                return slot
            candidate_start += granularity_minutes

    logger.debug(
        f"No {duration_minutes}-minute slot within {horizon_days} days from {first_day.isoformat()}"
    )
    return None


def free_windows(
    index: ScheduleIndex,
    day: Union[date, datetime, str],
    work_start_hour: int = DEFAULT_WORK_START_HOUR,
    work_end_hour: int = DEFAULT_WORK_END_HOUR,
) -> List[TimeInterval]:
    """
    List the free gaps inside the work window on one day.

    Overlapping occupied intervals are merged; intervals that only touch
    leave no gap between them.
    """
    validate_work_window(work_start_hour, work_end_hour)
    target_day = _coerce_reference_date(day)

    window_start = work_start_hour * 60
    window_end = work_end_hour * 60

    gaps = []
    cursor = window_start
    for start, end in index.occupied_intervals(target_day):
        busy_start, busy_end = start.to_minutes(), end.to_minutes()
        if busy_start > cursor:
            gap_end = min(busy_start, window_end)
            if cursor < gap_end:
                gaps.append((cursor, gap_end))
        cursor = max(cursor, busy_end)
        if cursor >= window_end:
            break

    if cursor < window_end:
        gaps.append((cursor, window_end))

    return [
        TimeInterval(target_day, TimeOfDay.from_minutes(s), TimeOfDay.from_minutes(e))
        for s, e in gaps
    ]
