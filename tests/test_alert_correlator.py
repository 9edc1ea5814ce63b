"""Tests for AlertCorrelator and station-skip classification."""

import unittest
from unittest.mock import MagicMock
from datetime import datetime
import sys
from pathlib import Path

# Add src to path so we can import commutetrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from commutetrack.alerts import AlertCorrelator, KeywordStationSkipClassifier, StationSkipClassifier, mentions_name
from commutetrack.errors import FeedUnavailableError
from commutetrack.models import (
    ActivePeriod,
    DataSource,
    InformedEntity,
    Route,
    RouteStep,
    ServiceAlert,
    Severity,
    StepType,
)
from commutetrack.stations import StationIndex
from commutetrack.static_data import STATION_RECORDS

NOW = 1_700_000_000


def make_alert(alert_id, header, description="", routes=("F",), direction=None, stops=(), severity=Severity.WARNING, periods=()):
    entities = [InformedEntity(route_id=route, direction_id=direction) for route in routes]
    entities.extend(InformedEntity(route_id=routes[0], stop_id=stop, direction_id=direction) for stop in stops)
    return ServiceAlert(
        id=alert_id,
        header_text=header,
        description_text=description,
        affected_routes=list(routes),
        severity=severity,
        informed_entities=entities,
        active_periods=list(periods),
    )


class TestStationSkipClassifier(unittest.TestCase):
    """Test keyword detection of station-skipping alerts."""

    def setUp(self):
        index = StationIndex.from_records(STATION_RECORDS)
        self.classifier = KeywordStationSkipClassifier(index.names())

    def assertSkipping(self, header, description="", expected=True):
        alert = make_alert("a", header, description)
        self.assertEqual(self.classifier.is_station_skipping(alert), expected, header)

    def test_skip_with_station_names(self):
        self.assertSkipping("F trains skip Carroll St and Bergen St")
        self.assertSkipping("In Brooklyn, Coney Island-bound [F] skips Bergen St, Carroll St and Smith-9 Sts")
        self.assertSkipping("In Manhattan, uptown [C] skips Spring St, 23 St and 50 St")
        self.assertSkipping("F trains are not stopping at Jay St-MetroTech", "Use alternate stations for service.")
        self.assertSkipping("Service suspended between Carroll St and Jay St", "F trains skip all stations between Carroll St and Jay St")
        self.assertSkipping("Manhattan-bound F trains bypass Bergen St")

    def test_skip_with_known_station_name_only(self):
        self.assertSkipping("uptown trains skip hoyt-schermerhorn sts this weekend")

    def test_not_skipping(self):
        self.assertSkipping("F trains are delayed", expected=False)
        self.assertSkipping("Weekend service changes", "F trains will run on a modified schedule this weekend.", expected=False)
        self.assertSkipping("F trains are running slower than normal", "Allow extra travel time.", expected=False)

    def test_skip_keyword_without_station(self):
        self.assertSkipping("Planned construction: F trains will skip stations this weekend", expected=False)

    def test_mentions_name_normalizes_ordinals(self):
        self.assertTrue(mentions_name("Trains skip 23 St", "23rd St"))
        self.assertTrue(mentions_name("skips 4 Av-9 St", "4th Ave-9th St"))
        self.assertFalse(mentions_name("skips 123 St", "23rd St"))


class TestAlertCorrelator(unittest.TestCase):
    """Test alert relevance filtering and escalation."""

    def setUp(self):
        self.index = StationIndex.from_records(STATION_RECORDS)
        self.alerts = []
        self.correlator = AlertCorrelator(lambda: self.alerts, self.index, clock=lambda: NOW)

    def test_direction_filter(self):
        self.alerts = [make_alert("delay", "F trains are delayed", direction=0)]

        self.assertEqual(len(self.correlator.get_service_alerts_for_commute(["F"], 0)), 1)
        self.assertEqual(self.correlator.get_service_alerts_for_commute(["F"], 1), [])

    def test_station_skip_bypasses_direction_filter(self):
        self.alerts = [make_alert("skip", "F trains skip Carroll St and Bergen St", direction=0)]

        self.assertEqual(len(self.correlator.get_service_alerts_for_commute(["F"], 0)), 1)
        self.assertEqual(len(self.correlator.get_service_alerts_for_commute(["F"], 1)), 1)

    def test_station_skip_still_needs_rider_line(self):
        self.alerts = [make_alert("skip", "G trains skip Carroll St", routes=("G",))]
        self.assertEqual(self.correlator.get_service_alerts_for_commute(["F", "C"], 1), [])

    def test_line_filter(self):
        self.alerts = [
            make_alert("g", "G trains are delayed", routes=("G",)),
            make_alert("f", "F trains are delayed"),
        ]
        result = self.correlator.get_service_alerts_for_commute(["F", "C"], 1)
        self.assertEqual([a.id for a in result], ["f"])

    def test_stop_filter_matches_route_stations(self):
        self.alerts = [
            make_alert("jay", "Elevator outage", routes=("C",), stops=("A41S",)),
            make_alert("14th", "Elevator outage", routes=("C",), stops=("A27N",)),
            make_alert("line-wide", "C trains are delayed", routes=("C",)),
        ]
        result = self.correlator.get_service_alerts_for_commute(["C"], 1, ["F20", "A41"])
        self.assertEqual([a.id for a in result], ["jay", "line-wide"])

    def test_stop_filter_uses_feed_stop_ids(self):
        # Jay St is A41 in the index; the F platform is F25 in the feed
        self.alerts = [make_alert("jay-f", "Platform work", stops=("F25N",))]
        result = self.correlator.get_service_alerts_for_commute(["F"], 1, ["A41"])
        self.assertEqual([a.id for a in result], ["jay-f"])

    def test_temporal_filter(self):
        self.alerts = [
            make_alert("expired", "F trains are delayed", periods=[ActivePeriod(NOW - 7200, NOW - 3600)]),
            make_alert("always", "F trains are delayed"),
            make_alert("current", "F trains are delayed", periods=[ActivePeriod(NOW - 60, NOW + 60)]),
            make_alert("future", "F trains are delayed", periods=[ActivePeriod(NOW + 3600, None)]),
            make_alert("open-start", "F trains are delayed", periods=[ActivePeriod(None, NOW + 60)]),
            make_alert(
                "second-window",
                "F trains are delayed",
                periods=[ActivePeriod(NOW - 7200, NOW - 3600), ActivePeriod(NOW - 60, None)],
            ),
        ]
        active = [a.id for a in self.correlator.get_active_service_alerts()]
        self.assertEqual(active, ["always", "current", "open-start", "second-window"])

    def test_escalates_skip_on_route_station(self):
        alert = make_alert("skip", "F trains skip Carroll St")
        self.assertEqual(self.correlator.get_escalated_severity(alert, ["F20"]), Severity.SEVERE)
        self.assertEqual(self.correlator.get_escalated_severity(alert, ["A23"]), Severity.WARNING)

    def test_escalates_skip_by_stop_id(self):
        alert = make_alert("skip", "Southbound F trains bypass two stations", stops=("F24S",))
        classifier = MagicMock(spec=StationSkipClassifier)
        classifier.is_station_skipping.return_value = True
        correlator = AlertCorrelator(lambda: [alert], self.index, classifier=classifier)
        self.assertEqual(correlator.get_escalated_severity(alert, ["F24"]), Severity.SEVERE)

    def test_non_skip_alert_is_not_escalated(self):
        alert = make_alert("delay", "F trains are delayed near Carroll St")
        self.assertEqual(self.correlator.get_escalated_severity(alert, ["F20"]), Severity.WARNING)

    def test_escalation_never_downgrades(self):
        alert = make_alert("severe", "F trains are suspended", severity=Severity.SEVERE)
        self.assertEqual(self.correlator.get_escalated_severity(alert, ["A23"]), Severity.SEVERE)

    def test_commute_alerts_carry_escalated_severity(self):
        self.alerts = [make_alert("skip", "F trains skip Carroll St", severity=Severity.INFO)]
        result = self.correlator.get_service_alerts_for_commute(["F"], 1, ["F20"])
        self.assertEqual(result[0].severity, Severity.SEVERE)
        # the source alert is untouched
        self.assertEqual(self.alerts[0].severity, Severity.INFO)

    def test_default_route_stations(self):
        correlator = AlertCorrelator(lambda: self.alerts, self.index, route_station_ids=["F20"], clock=lambda: NOW)
        self.alerts = [make_alert("skip", "F trains skip Carroll St")]
        result = correlator.get_service_alerts_for_commute(["F"], 1)
        self.assertEqual(result[0].severity, Severity.SEVERE)

    def test_alert_feed_failure_means_no_alerts(self):
        source = MagicMock(side_effect=FeedUnavailableError("alerts down"))
        correlator = AlertCorrelator(source, self.index)
        self.assertEqual(correlator.get_service_alerts_for_commute(["F"], 1), [])

    def test_custom_classifier(self):
        class EverythingSkips(StationSkipClassifier):
            def is_station_skipping(self, alert):
                return True

        self.alerts = [make_alert("delay", "F trains are delayed", direction=0)]
        correlator = AlertCorrelator(lambda: self.alerts, self.index, classifier=EverythingSkips(), clock=lambda: NOW)
        self.assertEqual(len(correlator.get_service_alerts_for_commute(["F"], 1)), 1)


class TestRouteAlerts(unittest.TestCase):
    """Test alert checks against whole routes."""

    def setUp(self):
        self.index = StationIndex.from_records(STATION_RECORDS)
        self.alerts = []
        self.correlator = AlertCorrelator(lambda: self.alerts, self.index, clock=lambda: NOW)
        self.route = Route(
            id=1000,
            arrival_time=datetime(2026, 10, 19, 9, 10),
            total_time_minutes=40,
            steps=[
                RouteStep(StepType.WALK, 12, DataSource.FIXED, "Walk to Carroll St"),
                RouteStep(StepType.WAIT, 3, DataSource.REALTIME, line="F"),
                RouteStep(
                    StepType.TRANSIT, 7, DataSource.FIXED, line="F",
                    from_station="Carroll St", to_station="Jay St-MetroTech",
                    from_station_id="F20", to_station_id="A41",
                ),
                RouteStep(
                    StepType.TRANSFER, 0, DataSource.FIXED, line="C",
                    from_station="Jay St-MetroTech", to_station="Jay St-MetroTech",
                    from_station_id="A41", to_station_id="A41",
                ),
                RouteStep(StepType.WAIT, 1, DataSource.REALTIME, line="C"),
                RouteStep(
                    StepType.TRANSIT, 12, DataSource.FIXED, line="C",
                    from_station="Jay St-MetroTech", to_station="23rd St-8th Ave",
                    from_station_id="A41", to_station_id="A23",
                ),
                RouteStep(StepType.WALK, 5, DataSource.FIXED),
            ],
            confidence=90,
        )

    def test_check_route_for_alerts(self):
        self.alerts = [
            make_alert("skip", "F trains skip Carroll St"),
            make_alert("delay", "C trains are delayed", routes=("C",), severity=Severity.INFO),
            make_alert("other", "7 trains are delayed", routes=("7",)),
        ]
        info = self.correlator.check_route_for_alerts(self.route, 1)

        self.assertTrue(info.has_alerts)
        self.assertEqual(info.severity, Severity.SEVERE)
        self.assertEqual([a.id for a in info.alerts], ["skip", "delay"])

    def test_route_without_alerts(self):
        info = self.correlator.check_route_for_alerts(self.route, 1)
        self.assertFalse(info.has_alerts)
        self.assertIsNone(info.severity)
        self.assertEqual(info.alerts, [])

    def test_annotate_routes(self):
        self.alerts = [make_alert("delay", "C trains are delayed", routes=("C",))]
        self.correlator.annotate_routes([self.route], 1)
        self.assertEqual([a.id for a in self.route.alerts], ["delay"])
        self.assertEqual(self.route.alert_severity, Severity.WARNING)
        self.assertEqual(self.route.lines, ["F", "C"])


if __name__ == "__main__":
    unittest.main()
