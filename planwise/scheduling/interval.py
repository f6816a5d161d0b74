"""
Interval Model - half-open [start, end) time ranges.
Every conflict decision in Planwise goes through overlaps().
"""

from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo

from brain.errors import ValidationError


def localize(value: datetime, tz: tzinfo | None) -> datetime:
    """Attach tz to a naive datetime; aware datetimes pass through."""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz or UTC)
    return value


def parse_timestamp(value, tz: tzinfo | None = None) -> datetime:
    """
    Parse an ISO-8601 timestamp (str or datetime).
    Naive values are read as civil time in tz.
    """
    if isinstance(value, datetime):
        return localize(value, tz)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid timestamp: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid timestamp: {value!r}") from e
    return localize(parsed, tz)


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValidationError(
                f"Interval end must be after start "
                f"({self.start.isoformat()} -> {self.end.isoformat()})"
            )

    @property
    def hours(self) -> float:
        # Elapsed time, not wall-clock difference (DST days are 23 or 25 h)
        return (
            self.end.astimezone(UTC) - self.start.astimezone(UTC)
        ).total_seconds() / 3600

    def clip(self, window: "Interval") -> "Interval | None":
        """The part of this interval inside window, or None."""
        start = max(self.start, window.start)
        end = min(self.end, window.end)
        if end <= start:
            return None
        return Interval(start, end)

    def as_dict(self, tz: tzinfo | None = None) -> dict:
        start, end = self.start, self.end
        if tz is not None:
            start, end = start.astimezone(tz), end.astimezone(tz)
        return {"start": start.isoformat(), "end": end.isoformat()}


def overlaps(a: Interval, b: Interval) -> bool:
    """Strict overlap: intervals that only share an endpoint do not conflict."""
    return a.start < b.end and b.start < a.end
