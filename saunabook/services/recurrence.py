"""Day-of-week and timezone helpers for the weekly recurrence model.

Day numbers follow the stored convention (Sunday = 0 .. Saturday = 6).
Wall-clock times are always interpreted in an IANA timezone through
``zoneinfo`` so every date gets the UTC offset in force on that date.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.constants import (
    DAY_LABELS,
    DAY_NAMES,
    DEFAULT_GENERATION_HORIZON_MONTHS,
    DEFAULT_TIMEZONE,
    TIME_OF_DAY_PATTERN,
)
from ..core.errors import ValidationError


def day_name_to_int(name: str) -> int:
    token = (name or "").strip().lower()[:3]
    if token not in DAY_NAMES:
        raise ValidationError(f"Invalid day: {name!r}")
    return DAY_NAMES.index(token)


def int_to_day_name(day: int, short: bool = True) -> str:
    if not 0 <= day <= 6:
        raise ValidationError(f"Invalid day of week: {day}")
    return DAY_NAMES[day] if short else DAY_LABELS[day]


def day_of_week(value: date) -> int:
    # date.weekday() is Monday = 0
    return (value.weekday() + 1) % 7


def parse_time_of_day(value: str | time) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    text = (value or "").strip()
    # Accept "HH:mm:ss" as returned by time columns
    if text.count(":") == 2:
        text = text.rsplit(":", 1)[0]
    if not TIME_OF_DAY_PATTERN.match(text):
        raise ValidationError(f"Invalid time of day: {value!r}, expected HH:mm")
    hours, minutes = text.split(":")
    return time(int(hours), int(minutes))


def get_zone(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone: {tz_name!r}") from exc


def local_to_utc(day: date, time_of_day: time, tz_name: str | None) -> datetime:
    local = datetime.combine(day, time_of_day, tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


def utc_to_local(value: datetime, tz_name: str | None) -> datetime:
    return ensure_utc(value).astimezone(get_zone(tz_name))


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores that drop tzinfo."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_today(tz_name: str | None, now: datetime | None = None) -> date:
    now = now or datetime.now(timezone.utc)
    return utc_to_local(now, tz_name).date()


def add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def generation_window(
    recurrence_start: date | None,
    recurrence_end: date | None,
    today: date,
    horizon_months: int = DEFAULT_GENERATION_HORIZON_MONTHS,
) -> tuple[date, date]:
    start = recurrence_start or today
    end = recurrence_end or add_months(today, horizon_months)
    return start, end


@dataclass(slots=True)
class ScheduleGroup:
    time_of_day: time
    duration_minutes: int | None
    days: list[str] = field(default_factory=list)
    schedule_ids: list[int] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.time_of_day.strftime("%H:%M")


def group_schedules_by_time(schedules: Iterable) -> dict[time, ScheduleGroup]:
    """Collapse one-row-per-day schedules into one group per time of day."""
    groups: dict[time, ScheduleGroup] = {}
    for schedule in sorted(schedules, key=lambda item: (item.time_of_day, item.day_of_week)):
        group = groups.get(schedule.time_of_day)
        if group is None:
            group = ScheduleGroup(
                time_of_day=schedule.time_of_day,
                duration_minutes=schedule.duration_minutes,
            )
            groups[schedule.time_of_day] = group
        group.days.append(int_to_day_name(schedule.day_of_week))
        group.schedule_ids.append(schedule.id)
    return groups
