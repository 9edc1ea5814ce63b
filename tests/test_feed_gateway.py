"""Tests for FeedGateway."""

import unittest
from unittest.mock import MagicMock
import sys
from pathlib import Path

import pandas as pd
import requests
from google.transit import gtfs_realtime_pb2

# Add src to path so we can import commutetrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from commutetrack.cache_manager import CacheManager
from commutetrack.config import MTA_ALERT_FEEDS, MTA_FEEDS
from commutetrack.errors import ErrorKind, FeedUnavailableError
from commutetrack.feed_gateway import FeedGateway, parse_trip_updates
from commutetrack.models import Severity
from commutetrack.schedule import StaticSchedule
from commutetrack.stations import StationIndex
from commutetrack.static_data import STATION_RECORDS

NOW = 1_700_000_000


def _response(content: bytes = b"", status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    return response


def _trip_feed(stop_times) -> bytes:
    """Build a trip-update feed from (trip_id, route_id, stop_id, departure) tuples."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    for i, (trip_id, route_id, stop_id, departure) in enumerate(stop_times):
        entity = feed.entity.add()
        entity.id = str(i)
        trip_update = entity.trip_update
        trip_update.trip.trip_id = trip_id
        trip_update.trip.route_id = route_id
        stop_time = trip_update.stop_time_update.add()
        stop_time.stop_id = stop_id
        stop_time.stop_sequence = 3
        if departure is not None:
            stop_time.arrival.time = departure
            stop_time.departure.time = departure
    return feed.SerializeToString()


def _alert_feed() -> bytes:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"

    entity = feed.entity.add()
    entity.id = "lmm:planned_work:1"
    alert = entity.alert
    alert.header_text.translation.add().text = "Coney Island-bound F skips Carroll St"
    alert.description_text.translation.add().text = "Take the F to 4 Av-9 St and transfer."
    alert.effect = gtfs_realtime_pb2.Alert.NO_SERVICE
    informed = alert.informed_entity.add()
    informed.trip.route_id = "F"
    informed.trip.direction_id = 0
    informed.stop_id = "F20S"
    period = alert.active_period.add()
    period.start = NOW - 3600
    period.end = NOW + 3600

    entity = feed.entity.add()
    entity.id = "lmm:alert:2"
    alert = entity.alert
    alert.header_text.translation.add().text = "C trains are delayed"
    alert.effect = gtfs_realtime_pb2.Alert.SIGNIFICANT_DELAYS
    alert.informed_entity.add().route_id = "C"
    alert.informed_entity.add().route_id = "E"

    # entities without an alert are ignored
    feed.entity.add().id = "empty"
    return feed.SerializeToString()


class TestFeedGateway(unittest.TestCase):

    def setUp(self):
        self.index = StationIndex.from_records(STATION_RECORDS)
        self.cache = CacheManager()
        self.session = MagicMock()
        self.gateway = FeedGateway(self.index, cache=self.cache, session=self.session, clock=lambda: NOW)
        self.carroll = self.index.get("F20")

    def tearDown(self):
        self.cache.shutdown()

    def _serve(self, payload: bytes):
        self.session.get.return_value = _response(payload)

    def test_fetch_arrivals_filters_and_sorts(self):
        self._serve(
            _trip_feed(
                [
                    ("late", "F", "F20N", NOW + 900),
                    ("early", "F", "F20N", NOW + 600),
                    ("south", "F", "F20S", NOW + 300),
                    ("g-train", "G", "F20N", NOW + 400),
                    ("stale", "F", "F20N", NOW - 120),
                    ("no-time", "F", "F20N", None),
                ]
            )
        )

        northbound = list(self.gateway.fetch_arrivals("F", self.carroll, 1))
        self.assertEqual([p.trip_id for p in northbound], ["early", "late"])
        self.assertTrue(all(p.direction_id == 1 for p in northbound))

        southbound = list(self.gateway.fetch_arrivals("F", self.carroll, 0))
        self.assertEqual([p.trip_id for p in southbound], ["south"])

        g_trains = list(self.gateway.fetch_arrivals("G", "F20", 1))
        self.assertEqual([p.trip_id for p in g_trains], ["g-train"])

    def test_fetch_arrivals_is_restartable(self):
        self._serve(_trip_feed([("a", "F", "F20N", NOW + 60), ("b", "F", "F20N", NOW + 120)]))

        first = self.gateway.fetch_arrivals("F", self.carroll, 1)
        second = self.gateway.fetch_arrivals("F", self.carroll, 1)
        self.assertEqual(next(first).trip_id, "a")
        self.assertEqual([p.trip_id for p in second], ["a", "b"])
        self.assertEqual([p.trip_id for p in first], ["b"])

        # both calls share one download
        self.session.get.assert_called_once()
        self.assertEqual(self.session.get.call_args[0][0], MTA_FEEDS["bdfm"])

    def test_uses_feed_stop_id_for_line(self):
        w4 = self.index.get("A32")
        self._serve(_trip_feed([("f", "F", "D20N", NOW + 60), ("c", "C", "A32N", NOW + 90)]))
        self.assertEqual([p.trip_id for p in self.gateway.fetch_arrivals("F", w4, 1)], ["f"])

    def test_unknown_line_has_no_arrivals(self):
        self.assertEqual(list(self.gateway.fetch_arrivals("X", self.carroll, 1)), [])
        self.session.get.assert_not_called()

    def test_http_errors_raise_feed_unavailable(self):
        self.session.get.return_value = _response(status_code=403)
        with self.assertRaises(FeedUnavailableError) as ctx:
            list(self.gateway.fetch_arrivals("F", self.carroll, 1))
        self.assertIn("403", str(ctx.exception))
        self.assertEqual(ctx.exception.kind, ErrorKind.FEED_UNAVAILABLE)

        self.cache.clear()
        self.session.get.return_value = _response(status_code=503)
        with self.assertRaises(FeedUnavailableError):
            list(self.gateway.fetch_arrivals("F", self.carroll, 1))

    def test_connection_error_raises_feed_unavailable(self):
        self.session.get.side_effect = requests.ConnectionError("connection refused")
        with self.assertRaises(FeedUnavailableError):
            list(self.gateway.fetch_arrivals("F", self.carroll, 1))

    def test_undecodable_payload(self):
        self._serve(b"not a protobuf")
        with self.assertRaises(FeedUnavailableError) as ctx:
            list(self.gateway.fetch_arrivals("F", self.carroll, 1))
        self.assertEqual(ctx.exception.kind, ErrorKind.DATA_INCONSISTENCY)

    def test_api_key_header(self):
        gateway = FeedGateway(self.index, cache=self.cache, session=self.session, api_key="secret")
        self._serve(_trip_feed([]))
        list(gateway.fetch_arrivals("F", self.carroll, 1))
        self.assertEqual(self.session.get.call_args[1]["headers"], {"x-api-key": "secret"})

    def test_parse_skips_malformed_updates(self):
        by_stop = parse_trip_updates(_trip_feed([("ok", "F", "F20N", NOW), ("bad", "F", "", NOW)]))
        self.assertEqual(list(by_stop), ["F20N"])
        self.assertEqual(by_stop["F20N"][0].direction_id, 1)


class TestTransitTimes(unittest.TestCase):

    def setUp(self):
        self.index = StationIndex.from_records(STATION_RECORDS)
        self.cache = CacheManager()
        self.gateway = FeedGateway(self.index, cache=self.cache, session=MagicMock())

    def tearDown(self):
        self.cache.shutdown()

    def test_transit_time_from_schedule(self):
        self.assertEqual(self.gateway.transit_time("F20", "A41", "F"), 7)
        self.assertEqual(self.gateway.transit_time("F20", "F18", "F"), 18)
        self.assertEqual(self.gateway.transit_time("A41", "A23", "C"), 12)

    def test_fallback_is_bounded(self):
        result = self.gateway.transit_time_lookup("F20", "A23", "F")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, ErrorKind.NOT_FOUND)
        # longer than any scheduled F ride, below the 90 minute ceiling
        self.assertEqual(result.value, 49)
        self.assertGreater(result.value, self.gateway.transit_time("F22", "F11", "F"))
        self.assertLess(result.value, 90)

    def test_fallback_outlasts_long_lines(self):
        # 11 stops, 10 minutes apart: a 100 minute end-to-end run
        rows = [("F", "F20" if seq == 0 else f"X{seq}", seq, 10) for seq in range(11)]
        gateway = FeedGateway(
            self.index,
            cache=self.cache,
            session=MagicMock(),
            schedule_loader=lambda: StaticSchedule.from_rows(rows),
        )
        result = gateway.transit_time_lookup("F20", "A23", "F")
        self.assertFalse(result.ok)
        self.assertEqual(StaticSchedule.from_rows(rows).longest_run("F"), 100)
        self.assertEqual(result.value, 101)

    def test_fallback_for_unknown_line(self):
        self.assertEqual(self.gateway.transit_time("F20", "F18", "X"), 30)

    def test_fallback_when_schedule_unavailable(self):
        gateway = FeedGateway(
            self.index,
            cache=self.cache,
            session=MagicMock(),
            schedule_loader=MagicMock(side_effect=OSError("schedule missing")),
        )
        result = gateway.transit_time_lookup("F20", "F18", "F")
        self.assertEqual(result.error, ErrorKind.FEED_UNAVAILABLE)
        self.assertEqual(result.value, 30)

    def test_fallback_when_schedule_malformed(self):
        gateway = FeedGateway(
            self.index,
            cache=self.cache,
            session=MagicMock(),
            schedule_loader=lambda: StaticSchedule(pd.DataFrame({"line": ["F"]})),
        )
        result = gateway.transit_time_lookup("F20", "F18", "F")
        self.assertEqual(result.error, ErrorKind.DATA_INCONSISTENCY)
        self.assertEqual(result.value, 30)

    def test_schedule_is_cached(self):
        loader = MagicMock(wraps=lambda: self.gateway.schedule_loader())
        gateway = FeedGateway(self.index, cache=CacheManager(), session=MagicMock(), schedule_loader=loader)
        try:
            gateway.transit_time("F20", "F18", "F")
            gateway.transit_time("F20", "A41", "F")
            loader.assert_called_once()
        finally:
            gateway.cache.shutdown()

    def test_direction_between(self):
        self.assertEqual(self.gateway.direction_between("F20", "A41", "F"), 1)
        self.assertEqual(self.gateway.direction_between("A23", "A41", "C"), 0)
        self.assertIsNone(self.gateway.direction_between("F20", "NOWHERE", "F"))


class TestAlertsAndHealth(unittest.TestCase):

    def setUp(self):
        self.index = StationIndex.from_records(STATION_RECORDS)
        self.cache = CacheManager()
        self.session = MagicMock()
        self.gateway = FeedGateway(self.index, cache=self.cache, session=self.session)

    def tearDown(self):
        self.cache.shutdown()

    def test_fetch_alerts_parses_entities(self):
        self.session.get.return_value = _response(_alert_feed())

        alerts = self.gateway.fetch_alerts()
        self.assertEqual(len(alerts), 2)

        skip = alerts[0]
        self.assertEqual(skip.id, "lmm:planned_work:1")
        self.assertEqual(skip.affected_routes, ["F"])
        self.assertEqual(skip.severity, Severity.SEVERE)
        self.assertEqual(skip.informed_entities[0].direction_id, 0)
        self.assertEqual(skip.informed_entities[0].stop_id, "F20S")
        self.assertEqual(skip.active_period.start, NOW - 3600)
        self.assertEqual(skip.active_period.end, NOW + 3600)
        self.assertIn("Carroll St", skip.text)

        delay = alerts[1]
        self.assertEqual(delay.affected_routes, ["C", "E"])
        self.assertEqual(delay.severity, Severity.WARNING)
        self.assertEqual(delay.description_text, "")
        self.assertIsNone(delay.active_period)
        self.assertIsNone(delay.informed_entities[0].direction_id)

    def test_fetch_alerts_falls_back_to_next_feed(self):
        def get(url, **kwargs):
            if url == MTA_ALERT_FEEDS[0]:
                return _response(status_code=500)
            return _response(_alert_feed())

        self.session.get.side_effect = get
        alerts = self.gateway.fetch_alerts()
        self.assertEqual(len(alerts), 2)

    def test_fetch_alerts_all_feeds_down(self):
        self.session.get.return_value = _response(status_code=500)
        with self.assertRaises(FeedUnavailableError):
            self.gateway.fetch_alerts()

    def test_check_feed_health(self):
        def get(url, **kwargs):
            if url == MTA_FEEDS["g"]:
                return _response(status_code=503)
            return _response(b"")

        self.session.get.side_effect = get
        health = self.gateway.check_feed_health()
        self.assertEqual(set(health), set(MTA_FEEDS))
        self.assertFalse(health["g"])
        self.assertTrue(health["bdfm"])

        calls = self.session.get.call_count
        self.gateway.check_feed_health()
        self.assertEqual(self.session.get.call_count, calls)


if __name__ == "__main__":
    unittest.main()
