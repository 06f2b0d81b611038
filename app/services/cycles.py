"""
Billing cycle and delivery calendar helpers.

Weekly cycles run Monday to Sunday and monthly cycles run to the last day of
the month. A subscription starting mid-period gets a short first cycle; every
later cycle begins on the renewal date. Weekdays use Python's convention
(0 = Monday, 6 = Sunday).
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class CycleWindow:
    cycle_start: date
    cycle_end: date
    renewal_date: date


def cycle_window(period_type: str, start: date) -> CycleWindow:
    if period_type == "weekly":
        end = start + timedelta(days=6 - start.weekday())
    elif period_type == "monthly":
        last_day = calendar.monthrange(start.year, start.month)[1]
        end = start.replace(day=last_day)
    else:
        raise ValueError(f"Unknown period type: {period_type}")
    return CycleWindow(cycle_start=start, cycle_end=end, renewal_date=end + timedelta(days=1))


def iter_days(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def service_dates(
    start: date,
    end: date,
    weekdays: Iterable[int],
    holidays: Iterable[date] = (),
) -> list[date]:
    """Dates in [start, end] on the given weekdays, excluding holidays."""
    wanted = set(weekdays)
    skipped = set(holidays)
    return [d for d in iter_days(start, end) if d.weekday() in wanted and d not in skipped]


def count_scheduled_meals(
    start: date,
    end: date,
    weekdays: Iterable[int],
    holidays: Iterable[date] = (),
) -> int:
    return len(service_dates(start, end, weekdays, holidays))


def delivery_datetime(service_date: date, window_start: Optional[time], tz_name: str) -> datetime:
    """
    Naive UTC datetime of a delivery window start given in the platform timezone.

    Orders without a window are treated as starting at local midnight.
    """
    local = datetime.combine(service_date, window_start or time(0, 0), tzinfo=ZoneInfo(tz_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def hours_until(moment: datetime, now: datetime) -> float:
    return (moment - now).total_seconds() / 3600


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_date(moment: datetime, tz_name: str) -> date:
    """Calendar date in the platform timezone of a naive UTC ``moment``."""
    return moment.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name)).date()
