"""
Overlap/Conflict Checker - which existing events collide with a candidate slot.
"""

from dataclasses import dataclass, field

from scheduling.interval import Interval, overlaps


@dataclass
class OverlapResult:
    has_overlap: bool
    conflicts: list = field(default_factory=list)


def check_overlap(candidate: Interval, existing) -> OverlapResult:
    """Conflicting events in input order. Touching endpoints are not conflicts."""
    conflicts = [e for e in existing if overlaps(candidate, e.interval)]
    return OverlapResult(has_overlap=bool(conflicts), conflicts=conflicts)
