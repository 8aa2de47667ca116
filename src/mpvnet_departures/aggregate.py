from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .models import (
    CanonicalDeparture,
    DepartureTimes,
    RawDepartureRow,
    Region,
    RouteInfo,
    StopInfo,
    TripInfo,
    VehicleInfo,
)
from .timeparse import ResolvedTime

SOURCE_PREFIX = "MPVNET"

CACHE_REALTIME_SECONDS = 30  # short cache once the first departure is close
CACHE_MAX_SECONDS = 900
REFRESH_BEFORE_MINUTES = 15
NO_DEPARTURE_MINUTES = 999  # sentinel when nothing survives filtering


@dataclass(frozen=True)
class AggregateResult:
    departures: List[CanonicalDeparture]
    cache_max_age: int
    first_departure_minutes: Optional[int]


def stop_identifier(region: Region, stop_id: int) -> str:
    return f"{SOURCE_PREFIX}_{Region(region).value}_{stop_id}"


def to_canonical(
    row: RawDepartureRow,
    resolved: ResolvedTime,
    stop_id: int,
    stop_name: Optional[str],
    region: Region,
) -> CanonicalDeparture:
    delay_seconds = row.delay_minutes * 60 if row.delay_minutes is not None else None
    return CanonicalDeparture(
        departure=DepartureTimes(
            timestamp_scheduled=resolved.scheduled,
            timestamp_predicted=resolved.predicted,
            delay_seconds=delay_seconds,
            minutes=resolved.minutes,
        ),
        stop=StopInfo(
            id=stop_identifier(region, stop_id),
            name=stop_name,
            platform_code=row.platform,
        ),
        route=RouteInfo(type=row.vehicle_type, short_name=row.line),
        trip=TripInfo(id=row.trip_id, headsign=row.headsign),
        vehicle=VehicleInfo(is_wheelchair_accessible=row.is_wheelchair_accessible),
    )


def compute_cache_ttl(first_minutes: int) -> int:
    """Seconds to cache a board whose first departure leaves in ``first_minutes``.

    Within ``REFRESH_BEFORE_MINUTES`` of departure delays change quickly, so the
    short realtime TTL applies; further out the entry lives until that window
    opens, capped at ``CACHE_MAX_SECONDS``.
    """
    if first_minutes <= REFRESH_BEFORE_MINUTES:
        return CACHE_REALTIME_SECONDS
    return min((first_minutes - REFRESH_BEFORE_MINUTES) * 60, CACHE_MAX_SECONDS)


def _is_excluded(headsign: str, excludes: Sequence[str]) -> bool:
    folded = headsign.casefold()
    return any(e.casefold() in folded for e in excludes)


def aggregate_departures(
    departures: Iterable[CanonicalDeparture],
    exclude_headsigns: Sequence[str] = (),
    min_minutes: int = 0,
    limit: int = 15,
) -> AggregateResult:
    """Filter, order and truncate merged departures, then derive the cache TTL.

    Input order (stop order, then row order) is the tie-break for equal
    scheduled times.
    """
    excludes = [e for e in exclude_headsigns if e]
    kept = [
        d
        for d in departures
        if not _is_excluded(d.trip.headsign, excludes) and d.departure.minutes >= min_minutes
    ]
    kept.sort(key=lambda d: d.departure.timestamp_scheduled.timestamp())
    kept = kept[:limit]

    first_minutes = kept[0].departure.minutes if kept else None
    ttl = compute_cache_ttl(first_minutes if first_minutes is not None else NO_DEPARTURE_MINUTES)
    return AggregateResult(
        departures=kept,
        cache_max_age=ttl,
        first_departure_minutes=first_minutes,
    )
