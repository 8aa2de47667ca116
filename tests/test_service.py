import unittest
import sys
import random
import tempfile
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

# Ensure src/ is importable
SYS_PATH_ADDED = str(Path(__file__).resolve().parents[1] / "src")
if SYS_PATH_ADDED not in sys.path:
    sys.path.insert(0, SYS_PATH_ADDED)

from mpvnet_departures.cache import CacheStore  # noqa: E402
from mpvnet_departures.config import Settings  # noqa: E402
from mpvnet_departures.errors import InvalidQuery  # noqa: E402
from mpvnet_departures.models import Region, StopQuery  # noqa: E402
from mpvnet_departures.service import DeparturesService, board_payload, cache_headers  # noqa: E402

PRAGUE = ZoneInfo("Europe/Prague")
NOW = datetime(2024, 3, 5, 10, 0, tzinfo=PRAGUE)
FIXTURE = (Path(__file__).parent / "fixtures" / "board_37445.html").read_text(encoding="utf-8")


def board(title, rows):
    body = "".join(
        '<div class="timetable-row">'
        f'<div class="timetable-item timetable-line"><div class="timetable-value"><div>{line}</div></div></div>'
        f'<div class="timetable-item timetable-destination"><div class="timetable-value">{dest}</div></div>'
        f'<div class="timetable-item">{clock}</div>'
        "</div>"
        for line, dest, clock in rows
    )
    return f'<span class="box-title tab">{title}</span><div class="timetable">{body}</div>'


class FakeFetcher:
    def __init__(self, boards):
        self.boards = boards
        self.calls = []

    def fetch(self, region, stop_id):
        self.calls.append((region, stop_id))
        return self.boards.get(stop_id)


class DeparturesServiceTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.settings = Settings(cache_dir=Path(self._tmp.name))
        self.cache = CacheStore(
            self.settings.cache_dir, rng=random.Random(1), clock=lambda: NOW.timestamp()
        )

    def tearDown(self):
        self._tmp.cleanup()

    def service(self, boards, cache=None):
        fetcher = FakeFetcher(boards)
        svc = DeparturesService(
            self.settings,
            fetcher=fetcher,
            cache=cache if cache is not None else self.cache,
            clock=lambda: NOW,
        )
        return svc, fetcher

    def test_single_stop_end_to_end(self):
        svc, _ = self.service({37445: FIXTURE})
        res = svc.get(StopQuery(stops=[37445], limit=10))
        self.assertFalse(res.from_cache)
        self.assertEqual(len(res.departures), 3)
        self.assertEqual([d.route.short_name for d in res.departures], ["7", "5", "31"])
        times = [d.departure.timestamp_scheduled for d in res.departures]
        self.assertEqual(times, sorted(times))
        self.assertEqual(res.first_departure_minutes, 10)
        self.assertEqual(res.cache_max_age, 30)
        first = res.departures[0]
        self.assertEqual(first.stop.id, "MPVNET_zlin_37445")
        self.assertEqual(first.stop.name, "Zlín, nám. Míru")
        self.assertEqual(first.departure.delay_seconds, 720)

    def test_two_stops_merge_and_limit(self):
        boards = {
            1: board("A", [("10", "X", "10:30"), ("11", "Y", "10:50")]),
            2: board("B", [("20", "Z", "10:20"), ("21", "W", "10:40")]),
        }
        svc, fetcher = self.service(boards)
        res = svc.get(StopQuery(stops=[1, 2], limit=10))
        self.assertEqual([d.route.short_name for d in res.departures], ["20", "10", "21", "11"])
        self.assertEqual([c[1] for c in sorted(fetcher.calls, key=lambda c: c[1])], [1, 2])

        svc, _ = self.service(boards, cache=CacheStore(Path(self._tmp.name) / "other"))
        res = svc.get(StopQuery(stops=[1, 2], limit=3))
        self.assertEqual([d.route.short_name for d in res.departures], ["20", "10", "21"])
        self.assertEqual(res.departures[0].stop.id, "MPVNET_zlin_2")
        self.assertEqual(res.departures[1].stop.name, "A")

    def test_equal_times_keep_stop_order(self):
        boards = {
            5: board("A", [("first", "X", "10:30")]),
            3: board("B", [("second", "Y", "10:30")]),
        }
        svc, _ = self.service(boards)
        res = svc.get(StopQuery(stops=[5, 3]))
        self.assertEqual([d.route.short_name for d in res.departures], ["first", "second"])

    def test_failed_stop_is_skipped(self):
        boards = {1: board("A", [("10", "X", "10:30")])}
        svc, _ = self.service(boards)
        res = svc.get(StopQuery(stops=[1, 2]))
        self.assertEqual(len(res.departures), 1)

    def test_total_upstream_failure_returns_empty(self):
        svc, _ = self.service({})
        res = svc.get(StopQuery(stops=[1, 2, 3]))
        self.assertEqual(res.departures, [])
        self.assertIsNone(res.first_departure_minutes)
        self.assertEqual(res.cache_max_age, 900)

    def test_exclusions_and_min_minutes(self):
        svc, _ = self.service({37445: FIXTURE})
        res = svc.get(StopQuery(stops=[37445], exclude_headsigns=["terminál"], min_minutes=6))
        self.assertEqual([d.route.short_name for d in res.departures], ["7"])

    def test_second_call_served_from_cache(self):
        svc, fetcher = self.service({37445: FIXTURE})
        query = StopQuery(stops=[37445], limit=10)
        first = svc.get(query)
        second = svc.get(query)
        self.assertEqual(len(fetcher.calls), 1)
        self.assertTrue(second.from_cache)
        self.assertEqual(
            [d.model_dump(mode="json") for d in second.departures],
            [d.model_dump(mode="json") for d in first.departures],
        )

    def test_duplicate_stops_fetched_once(self):
        boards = {1: board("A", [("10", "X", "10:30")])}
        svc, fetcher = self.service(boards)
        res = svc.get(StopQuery(stops=[1, 1]))
        self.assertEqual(len(res.departures), 1)
        self.assertEqual(fetcher.calls, [(Region.ZLIN, 1)])

    def test_region_passed_to_fetcher(self):
        svc, fetcher = self.service({})
        svc.get(StopQuery(stops=[9], region=Region.IDOL))
        self.assertEqual(fetcher.calls, [(Region.IDOL, 9)])

    def test_without_cache_dir(self):
        settings = Settings(cache_dir=None)
        svc = DeparturesService(settings, fetcher=FakeFetcher({1: FIXTURE}), clock=lambda: NOW)
        self.assertIsNone(svc.cache)
        self.assertFalse(svc.get(StopQuery(stops=[1])).from_cache)
        self.assertFalse(svc.get(StopQuery(stops=[1])).from_cache)

    def test_invalid_queries(self):
        svc, fetcher = self.service({})
        with self.assertRaises(InvalidQuery):
            svc.get(StopQuery(stops=[]))
        with self.assertRaises(InvalidQuery):
            svc.get(StopQuery(stops=[1, 2, 3, 4]))
        with self.assertRaises(InvalidQuery):
            svc.get(StopQuery(stops=[0]))
        self.assertEqual(fetcher.calls, [])

    def test_custom_parser(self):
        from mpvnet_departures.models import ParsedBoard, RawDepartureRow

        def parser(markup, stop_id):
            return ParsedBoard(
                stop_name=markup,
                rows=[
                    RawDepartureRow(line="X", headsign="H", departure_time="10:45"),
                    RawDepartureRow(line="Y", headsign="H", departure_time="99:99"),
                ],
            )

        svc = DeparturesService(
            self.settings, fetcher=FakeFetcher({1: "custom"}), parser=parser,
            cache=CacheStore(Path(self._tmp.name) / "p"), clock=lambda: NOW,
        )
        res = svc.get(StopQuery(stops=[1]))
        self.assertEqual([d.route.short_name for d in res.departures], ["X"])
        self.assertEqual(res.departures[0].stop.name, "custom")


class BoardOutputTests(unittest.TestCase):
    def test_payload_and_headers(self):
        svc = DeparturesService(
            Settings(cache_dir=None), fetcher=FakeFetcher({37445: FIXTURE}), clock=lambda: NOW
        )
        res = svc.get(StopQuery(stops=[37445]))
        payload = board_payload(res)
        self.assertEqual(len(payload), 1)
        self.assertEqual(len(payload[0]), 3)
        self.assertEqual(
            set(payload[0][0]), {"departure", "stop", "route", "trip", "vehicle"}
        )
        self.assertEqual(payload[0][0]["departure"]["timestamp_scheduled"], "2024-03-05T09:58:00+01:00")
        self.assertEqual(
            cache_headers(res),
            {
                "Cache-Control": "public, max-age=30",
                "X-Cache": "MISS",
                "X-First-Departure-In": "10 min",
            },
        )

    def test_headers_without_departures(self):
        svc = DeparturesService(Settings(cache_dir=None), fetcher=FakeFetcher({}), clock=lambda: NOW)
        headers = cache_headers(svc.get(StopQuery(stops=[1])))
        self.assertNotIn("X-First-Departure-In", headers)
        self.assertEqual(headers["Cache-Control"], "public, max-age=900")


if __name__ == "__main__":
    unittest.main()
