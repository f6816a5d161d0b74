"""
Availability Engine - free time inside a working-hour window.

Everything here is a pure function of its arguments. Events are anything
with an ``interval`` property (stored events, extracted events).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo

from brain.errors import ValidationError
from scheduling.interval import Interval


def parse_date(value) -> date:
    """Accept a date or a YYYY-MM-DD string."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value!r}") from e


def day_window(
    target_date: date, day_start: int, day_end: int, tz: tzinfo
) -> Interval:
    """[day_start:00, day_end:00) on target_date in tz. day_end=24 is next midnight."""
    if not (0 <= day_start < day_end <= 24):
        raise ValidationError(
            f"Working hours must satisfy 0 <= start < end <= 24, "
            f"got {day_start}-{day_end}"
        )
    midnight = datetime.combine(target_date, time(0), tzinfo=tz)
    return Interval(
        midnight + timedelta(hours=day_start),
        midnight + timedelta(hours=day_end),
    )


def events_on_date(events, target_date: date, tz: tzinfo) -> list:
    """Events whose start falls on target_date in local civil time."""
    return [
        e for e in events
        if e.interval.start.astimezone(tz).date() == target_date
    ]


def sweep_free(busy: list[Interval], window: Interval) -> list[Interval]:
    """
    Invert busy time into free time with a single forward sweep.
    The cursor never moves backwards, so overlapping and nested busy
    intervals collapse without a separate merge step.
    """
    free: list[Interval] = []
    cursor = window.start
    for block in sorted(busy, key=lambda b: (b.start, b.end)):
        block = block.clip(window)
        if block is None:
            continue
        if cursor < block.start:
            free.append(Interval(cursor, block.start))
        if block.end > cursor:
            cursor = block.end
    if cursor < window.end:
        free.append(Interval(cursor, window.end))
    return free


def free_slots(
    events,
    target_date,
    day_start: int,
    day_end: int,
    tz: tzinfo,
) -> list[Interval]:
    """Chronological free intervals on target_date between the working hours."""
    target_date = parse_date(target_date)
    window = day_window(target_date, day_start, day_end, tz)
    todays = events_on_date(events, target_date, tz)
    return sweep_free([e.interval for e in todays], window)


def total_free_hours(slots: list[Interval]) -> float:
    return sum(slot.hours for slot in slots)


def busy_blocks(
    events, target_date, day_start: int, day_end: int, tz: tzinfo
) -> list[Interval]:
    """Merged busy time on target_date, clipped to the working window."""
    target_date = parse_date(target_date)
    window = day_window(target_date, day_start, day_end, tz)
    free = free_slots(events, target_date, day_start, day_end, tz)
    # Busy time is whatever the free slots leave uncovered
    blocks: list[Interval] = []
    cursor = window.start
    for slot in free:
        if cursor < slot.start:
            blocks.append(Interval(cursor, slot.start))
        cursor = slot.end
    if cursor < window.end:
        blocks.append(Interval(cursor, window.end))
    return blocks


@dataclass
class DayAvailability:
    date: date
    window: Interval
    day_events: list = field(default_factory=list)
    free_slots: list[Interval] = field(default_factory=list)

    @property
    def total_free_hours(self) -> float:
        return total_free_hours(self.free_slots)


def day_availability(
    events, target_date, day_start: int, day_end: int, tz: tzinfo
) -> DayAvailability:
    """Everything the dashboard needs for one day, from one computation."""
    target_date = parse_date(target_date)
    todays = sorted(
        events_on_date(events, target_date, tz),
        key=lambda e: e.interval.start,
    )
    window = day_window(target_date, day_start, day_end, tz)
    return DayAvailability(
        date=target_date,
        window=window,
        day_events=todays,
        free_slots=sweep_free([e.interval for e in todays], window),
    )
