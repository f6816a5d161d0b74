"""
Schedule Comparison - common free time between my calendar and someone
else's schedule (typically read off a screenshot by the vision model).

Extracted events are untrusted: every entry is validated and a single bad
entry rejects the whole comparison so the user can fix it.
"""

from datetime import datetime, tzinfo

from pydantic import BaseModel, ValidationInfo, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from brain.errors import ValidationError
from scheduling.availability import free_slots, parse_date
from scheduling.interval import Interval, localize


class ExtractedEvent(BaseModel):
    title: str = "(untitled)"
    start_time: datetime
    end_time: datetime
    all_day: bool = False

    model_config = {"extra": "ignore"}

    @field_validator("start_time", "end_time")
    @classmethod
    def _localize(cls, value: datetime, info: ValidationInfo) -> datetime:
        return localize(value, (info.context or {}).get("tz"))

    @model_validator(mode="after")
    def _end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


def parse_extracted_events(raw: list, tz: tzinfo) -> list[ExtractedEvent]:
    """Validate raw extracted events. Raises ValidationError listing every bad entry."""
    parsed: list[ExtractedEvent] = []
    problems: list[str] = []
    for index, item in enumerate(raw):
        if isinstance(item, ExtractedEvent):
            parsed.append(item)
            continue
        try:
            parsed.append(
                ExtractedEvent.model_validate(item, context={"tz": tz})
            )
        except PydanticValidationError as e:
            reasons = "; ".join(err["msg"] for err in e.errors())
            title = item.get("title") if isinstance(item, dict) else None
            problems.append(f"event {index} ({title or 'untitled'}): {reasons}")
    if problems:
        raise ValidationError(
            "Invalid extracted events; fix their times before comparing",
            details=problems,
        )
    return parsed


def compare_schedules(
    my_events,
    their_events: list,
    target_date,
    day_start: int,
    day_end: int,
    tz: tzinfo,
    exclude_all_day: bool = True,
) -> list[Interval]:
    """Slots inside the working window where neither calendar has anything."""
    target_date = parse_date(target_date)
    theirs = parse_extracted_events(their_events, tz)
    mine = list(my_events)

    if exclude_all_day:
        mine = [e for e in mine if not e.all_day]
        theirs = [e for e in theirs if not e.all_day]

    theirs = [
        e for e in theirs
        if e.start_time.astimezone(tz).date() == target_date
    ]

    return free_slots(mine + theirs, target_date, day_start, day_end, tz)
