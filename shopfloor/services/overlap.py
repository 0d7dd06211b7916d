"""Half-open time window arithmetic.

A window is ``[start, end)``: a slot ending at 11:00 and one starting at
11:00 touch but do not overlap.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from pydantic import BaseModel, model_validator

from shopfloor.domain.errors import ValidationFailed


def overlaps(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Return True if ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect."""
    return a_start < b_end and b_start < a_end


class TimeWindow(BaseModel):
    model_config = {"frozen": True}

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def _end_after_start(self) -> TimeWindow:
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    @classmethod
    def from_duration(cls, start: datetime, duration_min: int) -> TimeWindow:
        try:
            end = start + timedelta(minutes=duration_min)
        except OverflowError:
            raise ValidationFailed(
                "INVALID_TIME_SLOT",
                "Time slot runs past the latest supported date",
                details={"duration_min": duration_min},
            ) from None
        return cls(start=start, end=end)

    @property
    def duration_min(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: TimeWindow) -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def intersection(self, other: TimeWindow) -> TimeWindow | None:
        if not self.overlaps(other):
            return None
        return TimeWindow(start=max(self.start, other.start), end=min(self.end, other.end))


def find_internal_overlap(
    windows: Sequence[TimeWindow],
) -> tuple[int, int] | None:
    """Return the indexes of the first pair of overlapping windows, if any."""
    for i in range(len(windows)):
        for j in range(i + 1, len(windows)):
            if windows[i].overlaps(windows[j]):
                return i, j
    return None
