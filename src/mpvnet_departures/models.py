from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidQuery

MAX_STOPS = 3
MIN_LIMIT = 1
MAX_LIMIT = 50
DEFAULT_LIMIT = 15


class Region(str, Enum):
    ZLIN = "zlin"  # Zlínský kraj (IDZK)
    ODIS = "odis"  # Ostrava
    IDOL = "idol"  # Liberec
    JIKORD = "jikord"  # Jihočeský kraj
    PID = "pid"  # Praha


class VehicleType(str, Enum):
    BUS = "bus"
    TRAM = "tram"
    TROLLEYBUS = "trolleybus"


def _as_int(v) -> int:
    if isinstance(v, bool):
        raise ValueError(f"expected an integer, got {v!r}")
    try:
        return int(v)
    except (TypeError, OverflowError) as e:
        raise ValueError(f"expected an integer, got {v!r}") from e


class StopQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    stops: Tuple[int, ...] = ()
    exclude_headsigns: Tuple[str, ...] = ()
    limit: int = DEFAULT_LIMIT
    min_minutes: int = 0
    region: Region = Region.ZLIN

    @field_validator("stops")
    @classmethod
    def _unique_stops(cls, v: Tuple[int, ...]) -> Tuple[int, ...]:
        # ordered set: first occurrence wins
        return tuple(dict.fromkeys(v))

    @field_validator("exclude_headsigns", mode="before")
    @classmethod
    def _strip_excludes(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split(",")
        return tuple(s.strip() for s in v if s and s.strip())

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, v) -> int:
        if v is None:
            return DEFAULT_LIMIT
        return min(MAX_LIMIT, max(MIN_LIMIT, _as_int(v)))

    @field_validator("min_minutes", mode="before")
    @classmethod
    def _clamp_min_minutes(cls, v) -> int:
        if v is None:
            return 0
        return max(0, _as_int(v))

    @classmethod
    def parse(cls, **params) -> "StopQuery":
        """Build a query from loosely typed parameters.

        Raises:
            InvalidQuery: a parameter cannot be converted (e.g. non-numeric limit).
        """
        try:
            return cls(**params)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise InvalidQuery(f"Invalid query parameters: {problems}") from e

    def cache_key_parts(self) -> tuple:
        """Normalized identity of the query; stop order is kept since it drives merge order."""
        excludes = sorted({s.casefold() for s in self.exclude_headsigns})
        return (
            self.region.value,
            list(self.stops),
            excludes,
            self.limit,
            self.min_minutes,
        )


class RawDepartureRow(BaseModel):
    line: str
    trip_id: Optional[str] = None
    headsign: str = ""
    vehicle_type: VehicleType = VehicleType.BUS
    departure_time: str
    delay_minutes: Optional[int] = None  # None means unknown, not on time
    platform: Optional[str] = None
    is_wheelchair_accessible: bool = False


class ParsedBoard(BaseModel):
    stop_name: Optional[str] = None
    rows: List[RawDepartureRow] = Field(default_factory=list)


class DepartureTimes(BaseModel):
    timestamp_scheduled: datetime
    timestamp_predicted: datetime
    delay_seconds: Optional[int] = None
    minutes: int


class StopInfo(BaseModel):
    id: str
    name: Optional[str] = None
    sequence: Optional[int] = None
    platform_code: Optional[str] = None


class RouteInfo(BaseModel):
    type: VehicleType
    short_name: str


class TripInfo(BaseModel):
    id: Optional[str] = None
    headsign: str
    is_canceled: bool = False


class VehicleInfo(BaseModel):
    id: Optional[str] = None
    is_wheelchair_accessible: bool = False
    is_air_conditioned: Optional[bool] = None
    has_charger: Optional[bool] = None


class CanonicalDeparture(BaseModel):
    departure: DepartureTimes
    stop: StopInfo
    route: RouteInfo
    trip: TripInfo
    vehicle: VehicleInfo


class DeparturesResult(BaseModel):
    departures: List[CanonicalDeparture] = Field(default_factory=list)
    cache_max_age: int
    first_departure_minutes: Optional[int] = None
    from_cache: bool = False


class CacheEntry(BaseModel):
    departures: List[CanonicalDeparture] = Field(default_factory=list)
    expires: int  # unix epoch seconds
    first_min: Optional[int] = None
