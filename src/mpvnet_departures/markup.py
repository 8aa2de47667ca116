from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from .models import ParsedBoard, RawDepartureRow, VehicleType
from .timeparse import is_clock_time

logger = logging.getLogger(__name__)

# Item classes that never carry the departure time or platform.
NON_TIME_ITEM_CLASSES = {
    "timetable-line",
    "timetable-destination",
    "timetable-icon",
    "timetable-delay",
}

DELAY_RE = re.compile(r"(\d+)\s*min", re.IGNORECASE)

BoardParser = Callable[[str, int], ParsedBoard]


def _text(node: Optional[Tag]) -> Optional[str]:
    if node is None:
        return None
    return node.get_text().strip()


def _direct_text(node: Tag) -> str:
    # Only the node's own text; nested elements hold the via-stops.
    parts = [str(child).strip() for child in node.children if type(child) is NavigableString]
    return "".join(parts).strip()


def _is_row(row: Tag) -> bool:
    return row.select_one("div.timetable-line > div.timetable-value") is not None


def _vehicle_type(row: Tag) -> VehicleType:
    if row.select_one("div.trolley-icon") is not None:
        return VehicleType.TROLLEYBUS
    if row.select_one("div.tram-icon") is not None:
        return VehicleType.TRAM
    return VehicleType.BUS


def _time_and_platform(row: Tag) -> tuple[Optional[str], Optional[str]]:
    departure_time = None
    platform = None
    for item in row.select("div.timetable-item"):
        classes = set(item.get("class") or [])
        if classes & NON_TIME_ITEM_CLASSES:
            continue
        text = item.get_text().strip()
        if departure_time is None:
            if is_clock_time(text):
                departure_time = text
        elif text.isdigit():
            platform = text
            break
    return departure_time, platform


def _delay_minutes(row: Tag) -> Optional[int]:
    text = _text(row.select_one("div.timetable-delay span")) or ""
    m = DELAY_RE.search(text)
    if not m:
        return None
    return int(m.group(1))


def parse_row(row: Tag) -> Optional[RawDepartureRow]:
    """Extract one departure row; returns None when line or time is missing."""
    line = _text(row.select_one("div.timetable-line div.timetable-value > div"))
    if not line:
        return None

    departure_time, platform = _time_and_platform(row)
    if not departure_time:
        return None

    trip_id = _text(
        row.select_one("div.timetable-line div.timetable-value > div.timetable-direction")
    )
    dest = row.select_one("div.timetable-destination div.timetable-value")
    headsign = _direct_text(dest) if dest is not None else ""

    return RawDepartureRow(
        line=line,
        trip_id=trip_id or None,
        headsign=headsign,
        vehicle_type=_vehicle_type(row),
        departure_time=departure_time,
        delay_minutes=_delay_minutes(row),
        platform=platform,
        is_wheelchair_accessible=row.select_one("div.ztp-icon") is not None,
    )


def parse_board(markup: str, stop_id: int) -> ParsedBoard:
    """Parse an MPVnet departure board fragment.

    Args:
        markup: HTML fragment returned by the board endpoint.
        stop_id: Stop being parsed, used for log context only.

    Returns:
        ParsedBoard with the stop title and rows in document order.
    """
    soup = BeautifulSoup(markup, "html.parser")
    stop_name = _text(soup.select_one("span.box-title.tab")) or None

    rows: List[RawDepartureRow] = []
    skipped = 0
    for node in soup.select("div.timetable-row"):
        if not _is_row(node):
            continue
        parsed = parse_row(node)
        if parsed is None:
            skipped += 1
            continue
        rows.append(parsed)

    if skipped:
        logger.debug("Stop %s: skipped %d malformed board rows", stop_id, skipped)
    return ParsedBoard(stop_name=stop_name, rows=rows)
