from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from .errors import TimeParseError

CLOCK_RE = re.compile(r"^\d{1,2}:\d{2}$")

# Rows up to this many seconds in the past still count as today (vehicle boarding).
PAST_GRACE_SECONDS = 300
ROLLOVER = timedelta(seconds=86_400)


@dataclass(frozen=True)
class ResolvedTime:
    scheduled: datetime
    predicted: datetime
    minutes: int


def is_clock_time(text: str) -> bool:
    return bool(CLOCK_RE.match(text))


def parse_clock(text: str) -> time:
    text = text.strip()
    if not CLOCK_RE.match(text):
        raise TimeParseError(f"Not a clock time: {text!r}")
    hour, minute = (int(p) for p in text.split(":"))
    try:
        return time(hour, minute)
    except ValueError as e:
        raise TimeParseError(f"Clock time out of range: {text!r}") from e


def _utc(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc)


def minutes_until(predicted: datetime, now: datetime) -> int:
    # elapsed real time; same-tzinfo subtraction would use wall clock
    return max(0, math.floor((_utc(predicted) - _utc(now)).total_seconds() / 60))


def resolve_departure_time(
    today: date,
    clock: str,
    delay_minutes: Optional[int],
    now: datetime,
) -> ResolvedTime:
    """Turn a board clock string into absolute scheduled/predicted instants.

    The board only shows a same-day clock time, so a time more than
    ``PAST_GRACE_SECONDS`` behind ``now`` belongs to the next day and is moved
    forward by exactly 24 hours (once).

    Args:
        today: Calendar date in the service time zone.
        clock: "H:MM" or "HH:MM".
        delay_minutes: Reported delay; None is treated as 0 for prediction.
        now: Current instant (timezone-aware, in the service time zone).

    Returns:
        ResolvedTime with scheduled, predicted and whole minutes until predicted.
    """
    tz = now.tzinfo
    scheduled = datetime.combine(today, parse_clock(clock), tzinfo=tz)
    if _utc(scheduled) < _utc(now) - timedelta(seconds=PAST_GRACE_SECONDS):
        # exactly 86400 s, independent of DST
        scheduled = (_utc(scheduled) + ROLLOVER).astimezone(tz)

    predicted = (_utc(scheduled) + timedelta(minutes=delay_minutes or 0)).astimezone(tz)
    return ResolvedTime(
        scheduled=scheduled,
        predicted=predicted,
        minutes=minutes_until(predicted, now),
    )
