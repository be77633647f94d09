"""Scheduling clock for chases.

Computes when the next chase for an enrollment should go out: a fixed
cadence in calendar days, optionally skipping weekends, landing at a
randomized time in the first half of the practice's business hours.

Randomness is injected so schedules are reproducible in tests:

    rng = random.Random(42)
    when = next_chase_at(now, 7, True, "09:00", "17:30", rng, tz="Europe/London")
"""

import random
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chase_core.domain.errors import ConfigError
from chase_core.domain.models import as_naive_utc


_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")

SATURDAY = 5


def parse_hhmm(value: str) -> time:
    """Parse an "HH:MM" business-hours bound.

    Raises:
        ConfigError: If the value is not a valid 24-hour time.
    """
    match = _HHMM.match(value.strip()) if isinstance(value, str) else None
    if match is None:
        raise ConfigError(f"Business hours must be HH:MM, got {value!r}")

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ConfigError(f"Business hours out of range: {value!r}")

    return time(hour, minute)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Load an IANA timezone, raising ConfigError for unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Unknown timezone: {name!r}") from e


def validate_business_hours(hours_start: str, hours_end: str) -> tuple[time, time]:
    """Parse and check a business-hours window.

    Raises:
        ConfigError: If either bound is malformed or start is not before end.
    """
    start = parse_hhmm(hours_start)
    end = parse_hhmm(hours_end)
    if start >= end:
        raise ConfigError(
            f"Business hours start ({hours_start}) must be before end ({hours_end})"
        )
    return start, end


def skip_weekend(day: date) -> date:
    """Move a Saturday or Sunday forward to the following Monday."""
    while day.weekday() >= SATURDAY:
        day += timedelta(days=1)
    return day


def next_chase_at(
    from_: datetime,
    cadence_days: int,
    skip_weekends: bool,
    hours_start: str,
    hours_end: str,
    rng: random.Random,
    tz: str = "UTC",
) -> datetime:
    """Compute the next chase time.

    Adds cadence_days calendar days to from_ (in the practice timezone),
    moves past Saturday/Sunday when skip_weekends is set, then picks a
    minute in the first half of the business-hours window using rng.

    Args:
        from_: Reference instant; naive values are taken as UTC.
        cadence_days: Days between chases, must be positive.
        skip_weekends: Whether weekend days are skipped.
        hours_start: Business-hours start, "HH:MM" local time.
        hours_end: Business-hours end, "HH:MM" local time.
        rng: Randomness source for the time of day.
        tz: IANA timezone the business hours are expressed in.

    Returns:
        The next chase instant as naive UTC.

    Raises:
        ConfigError: On a non-positive cadence, malformed or empty business
            hours, or an unknown timezone.
    """
    if isinstance(cadence_days, bool) or not isinstance(cadence_days, int) or cadence_days <= 0:
        raise ConfigError(f"Chase cadence must be a positive number of days, got {cadence_days!r}")

    start, end = validate_business_hours(hours_start, hours_end)
    zone = resolve_timezone(tz)

    reference = from_ if from_.tzinfo is not None else from_.replace(tzinfo=timezone.utc)
    local_day = reference.astimezone(zone).date() + timedelta(days=cadence_days)
    if skip_weekends:
        local_day = skip_weekend(local_day)

    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute
    half_window = (end_minutes - start_minutes) // 2
    offset = rng.randrange(half_window) if half_window > 0 else 0

    send_minutes = start_minutes + offset
    local_send = datetime.combine(
        local_day,
        time(send_minutes // 60, send_minutes % 60),
        tzinfo=zone,
    )

    return as_naive_utc(local_send)


__all__ = [
    "parse_hhmm",
    "resolve_timezone",
    "validate_business_hours",
    "skip_weekend",
    "next_chase_at",
]
