"""Turn one availability template into the bookable slots of a single day.

Everything here is pure: no session, no clock. Callers load the template
and the busy intervals, pick which templates apply to the date (a date
override beats the recurring weekday rule) and hand them over.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Optional, Tuple

from medislot.core.exceptions import ValidationError
from medislot.core.utils import intervals_overlap
from medislot.db.models import Recurring, TemplateRule, Weekday


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    @classmethod
    def of(cls, day: date, start_time: time, duration_minutes: int) -> "BusyInterval":
        start = datetime.combine(day, start_time)
        return cls(start=start, end=start + timedelta(minutes=duration_minutes))


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    duration: int
    available: bool = True

    def as_dict(self) -> dict:
        return {
            "time": self.start.strftime("%H:%M"),
            "datetime": self.start.isoformat(),
            "duration": self.duration,
            "available": self.available,
        }


@dataclass(frozen=True)
class SlotWindow:
    """Validated, immutable copy of the fields slot generation reads."""
    rule: TemplateRule
    start_time: time
    end_time: time
    slot_duration_minutes: int
    break_start: Optional[time] = None
    break_end: Optional[time] = None
    max_concurrent: int = 1

    @classmethod
    def from_template(cls, template) -> "SlotWindow":
        window = cls(
            rule=template.rule,
            start_time=template.start_time,
            end_time=template.end_time,
            slot_duration_minutes=template.slot_duration_minutes,
            break_start=template.break_start,
            break_end=template.break_end,
            max_concurrent=1 if template.max_concurrent is None else template.max_concurrent,
        )
        window.validate()
        return window

    def validate(self) -> None:
        check_window(
            self.start_time,
            self.end_time,
            self.slot_duration_minutes,
            self.break_start,
            self.break_end,
            self.max_concurrent,
        )

    def covers(self, day: date, start: datetime, end: datetime) -> bool:
        """True when [start, end) lies inside this window on ``day``."""
        return (
            self.rule.matches(day)
            and datetime.combine(day, self.start_time) <= start
            and end <= datetime.combine(day, self.end_time)
        )


def check_window(
    start_time: time,
    end_time: time,
    slot_duration_minutes: int,
    break_start: Optional[time] = None,
    break_end: Optional[time] = None,
    max_concurrent: int = 1,
) -> None:
    if start_time is None or end_time is None:
        raise ValidationError("Start time and end time are required")
    if any(t is not None and t.tzinfo is not None for t in (start_time, end_time, break_start, break_end)):
        raise ValidationError("Times must not include a UTC offset")
    if end_time < start_time:
        raise ValidationError("End time must not be before start time")
    if slot_duration_minutes is None or slot_duration_minutes <= 0:
        raise ValidationError("Slot duration must be a positive number of minutes")
    if max_concurrent is None or max_concurrent < 1:
        raise ValidationError("Max concurrent bookings must be at least 1")
    if (break_start is None) != (break_end is None):
        raise ValidationError("Break start and break end must be given together")
    if break_start is not None:
        if break_start >= break_end:
            raise ValidationError("Break start must be before break end")
        if break_start < start_time or break_end > end_time:
            raise ValidationError("Break must fall inside the availability window")


def count_overlapping(busy: Iterable[BusyInterval], start: datetime, end: datetime) -> int:
    return sum(1 for interval in busy if intervals_overlap(start, end, interval.start, interval.end))


class SlotSequence:
    """Lazy sequence of open slots.

    Iterating it walks the window again from the start, so the same
    instance can be consumed any number of times with the same result.
    """

    def __init__(self, window: SlotWindow, day: date, busy: Iterable[BusyInterval] = ()):
        self.window = window
        self.day = day
        self.busy: Tuple[BusyInterval, ...] = tuple(busy)

    def __iter__(self) -> Iterator[TimeSlot]:
        window = self.window
        step = timedelta(minutes=window.slot_duration_minutes)
        cursor = datetime.combine(self.day, window.start_time)
        window_end = datetime.combine(self.day, window.end_time)

        pause = None
        if window.break_start is not None:
            pause = (
                datetime.combine(self.day, window.break_start),
                datetime.combine(self.day, window.break_end),
            )

        while cursor < window_end:
            slot_end = cursor + step

            if pause and intervals_overlap(cursor, slot_end, *pause):
                cursor = pause[1]
                continue

            # No partial trailing slot
            if slot_end > window_end:
                break

            if count_overlapping(self.busy, cursor, slot_end) < window.max_concurrent:
                yield TimeSlot(start=cursor, end=slot_end, duration=window.slot_duration_minutes)

            cursor = slot_end

    def __repr__(self) -> str:
        return f"SlotSequence(day={self.day.isoformat()}, window={self.window!r})"


def generate_slots(template, day: date, busy: Iterable[BusyInterval] = ()) -> SlotSequence:
    """Build the open slots of ``template`` on ``day``.

    Raises ValidationError when the template is malformed or does not apply
    to ``day`` (wrong weekday for a recurring rule, other date for an
    override).
    """
    window = template if isinstance(template, SlotWindow) else SlotWindow.from_template(template)
    window.validate()
    if not window.rule.matches(day):
        if isinstance(window.rule, Recurring):
            raise ValidationError(
                f"Template applies to {window.rule.weekday.value}, not {Weekday.of(day).value}"
            )
        raise ValidationError(f"Template applies to {window.rule.on.isoformat()}, not {day.isoformat()}")
    return SlotSequence(window, day, busy)

