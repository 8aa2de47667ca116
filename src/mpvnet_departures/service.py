from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .aggregate import aggregate_departures, to_canonical
from .cache import CacheStore
from .config import Settings
from .errors import InvalidQuery, TimeParseError
from .fetcher import BoardFetcher
from .http import create_session
from .markup import BoardParser, parse_board
from .models import MAX_STOPS, CanonicalDeparture, DeparturesResult, StopQuery
from .timeparse import resolve_departure_time

logger = logging.getLogger(__name__)


def validate_query(query: StopQuery) -> None:
    if not query.stops:
        raise InvalidQuery("Missing required parameter: stops")
    if len(query.stops) > MAX_STOPS:
        raise InvalidQuery(f"At most {MAX_STOPS} stops are allowed")
    bad = [s for s in query.stops if s <= 0]
    if bad:
        raise InvalidQuery(f"Invalid stop ids: {bad}")


class DeparturesService:
    """Entry point: cached, merged departure boards for up to three stops."""

    def __init__(
        self,
        settings: Settings,
        fetcher: Optional[BoardFetcher] = None,
        parser: BoardParser = parse_board,
        cache: Optional[CacheStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self.fetcher = fetcher or BoardFetcher(
            base_url=settings.base_url,
            timeout=settings.request_timeout_seconds,
            session_factory=lambda region: create_session(
                settings.base_url, region, total_retries=settings.http_retries
            ),
        )
        self.parser = parser
        if cache is None and settings.cache_dir is not None:
            cache = CacheStore(settings.cache_dir)
        self.cache = cache
        self._clock = clock or (lambda: datetime.now(tz=settings.tzinfo))

    def _departures_for_stop(self, query: StopQuery, stop_id: int, now: datetime) -> List[CanonicalDeparture]:
        markup = self.fetcher.fetch(query.region, stop_id)
        if markup is None:
            return []

        board = self.parser(markup, stop_id)
        today = now.date()
        out: List[CanonicalDeparture] = []
        for row in board.rows:
            try:
                resolved = resolve_departure_time(today, row.departure_time, row.delay_minutes, now)
            except TimeParseError as e:
                logger.debug("Stop %s: skipping row for line %s: %s", stop_id, row.line, e)
                continue
            out.append(to_canonical(row, resolved, stop_id, board.stop_name, query.region))
        return out

    def _fetch_all(self, query: StopQuery, now: datetime) -> List[CanonicalDeparture]:
        # map() keeps stop order, which is the merge tie-break
        workers = max(1, min(self.settings.max_workers, len(query.stops)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            per_stop = list(
                executor.map(lambda sid: self._departures_for_stop(query, sid, now), query.stops)
            )
        merged: List[CanonicalDeparture] = []
        for deps in per_stop:
            merged.extend(deps)
        return merged

    def get(self, query: StopQuery) -> DeparturesResult:
        """Return departures for ``query``, from cache when still fresh.

        Raises:
            InvalidQuery: stops missing, more than three, or not positive.
        """
        validate_query(query)

        if self.cache is not None:
            cached = self.cache.get(query)
            if cached is not None:
                return cached

        now = self._clock()
        merged = self._fetch_all(query, now)
        agg = aggregate_departures(
            merged,
            exclude_headsigns=query.exclude_headsigns,
            min_minutes=query.min_minutes,
            limit=query.limit,
        )
        result = DeparturesResult(
            departures=agg.departures,
            cache_max_age=agg.cache_max_age,
            first_departure_minutes=agg.first_departure_minutes,
            from_cache=False,
        )

        if self.cache is not None:
            try:
                self.cache.set(query, result)
            except OSError as e:
                logger.warning("Could not write cache entry: %s", e)
        return result


def board_payload(result: DeparturesResult) -> list:
    """JSON-ready board body: the departure list nested one level."""
    return [[d.model_dump(mode="json") for d in result.departures]]


def cache_headers(result: DeparturesResult) -> Dict[str, str]:
    headers = {
        "Cache-Control": f"public, max-age={result.cache_max_age}",
        "X-Cache": "HIT" if result.from_cache else "MISS",
    }
    if result.first_departure_minutes is not None:
        headers["X-First-Departure-In"] = f"{result.first_departure_minutes} min"
    return headers
