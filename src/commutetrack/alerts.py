"""Service alert relevance, station-skip detection and severity escalation."""

import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Set

from .errors import CommuteTrackError
from .models import AlertInfo, Route, ServiceAlert, Severity, StepType
from .stations import StationIndex

logger = logging.getLogger(__name__)

SKIP_PATTERNS = [
    re.compile(r"\bskip(s|ping)?\b", re.IGNORECASE),
    re.compile(r"\bnot stopping\b", re.IGNORECASE),
    re.compile(r"\bbypass(es|ing)?\b", re.IGNORECASE),
    re.compile(r"\bsuspended\b.*\bskip", re.IGNORECASE),
]

# "Carroll St", "Smith-9 Sts", "4 Av-9 St", "Kings Highway"
STREET_TOKEN = re.compile(
    r"\b[A-Z0-9][\w'.]*(?:[\s-]+[A-Z0-9][\w'.]*)*\s+"
    r"(?:St|Sts|Street|Av|Ave|Avenue|Blvd|Pkwy|Parkway|Sq|Plaza|Highway|Hwy|Rd|Road)\b"
)


def simplify_station_text(text: str) -> str:
    """Lowercase and drop ordinal/abbreviation noise ("23rd Street" -> "23 st")."""
    text = text.lower()
    text = re.sub(r"\b(\d+)(st|nd|rd|th)\b", r"\1", text)
    text = re.sub(r"\b(avenue|ave)\b", "av", text)
    text = re.sub(r"\bstreet\b", "st", text)
    text = re.sub(r"\bstreets\b", "sts", text)
    text = re.sub(r"\s*-\s*", "-", text)
    return re.sub(r"\s+", " ", text).strip()


def _name_tokens(name: str) -> List[str]:
    """A station name and its complex segments ("23 st-8 av" -> ["23 st-8 av", "23 st", "8 av"])."""
    simplified = simplify_station_text(name)
    tokens = [simplified]
    if "-" in simplified:
        tokens.extend(part for part in simplified.split("-") if " " in part and len(part) >= 4)
    return tokens


def mentions_name(text: str, name: str) -> bool:
    simplified = simplify_station_text(text)
    for token in _name_tokens(name):
        if re.search(r"(?<![\w])" + re.escape(token) + r"(?![\w])", simplified):
            return True
    return False


class StationSkipClassifier(ABC):
    """Decides whether an alert means trains will pass stations without stopping."""

    @abstractmethod
    def is_station_skipping(self, alert: ServiceAlert) -> bool:
        ...


class KeywordStationSkipClassifier(StationSkipClassifier):
    """
    Keyword heuristic: a skip phrase plus at least one station token.

    A station token is either a station name known to the index or a
    capitalised street-style name such as "Carroll St".
    """

    def __init__(self, station_names: Iterable[str] = ()):
        self.station_names = list(station_names)

    def is_station_skipping(self, alert: ServiceAlert) -> bool:
        text = alert.text
        if not any(pattern.search(text) for pattern in SKIP_PATTERNS):
            return False
        if STREET_TOKEN.search(text):
            return True
        return any(mentions_name(text, name) for name in self.station_names)


def _stop_matches(stop_id: str, station_ids: Set[str]) -> bool:
    if stop_id in station_ids:
        return True
    return stop_id[-1:] in ("N", "S") and stop_id[:-1] in station_ids


class AlertCorrelator:
    """
    Filters live alerts down to the ones that matter for a rider's commute.

    ``alert_source`` returns the current alert list (normally
    ``FeedGateway.fetch_alerts``). Alert feed failures are logged and
    treated as "no alerts".
    """

    def __init__(
        self,
        alert_source: Callable[[], List[ServiceAlert]],
        station_index: StationIndex,
        classifier: Optional[StationSkipClassifier] = None,
        route_station_ids: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.alert_source = alert_source
        self.station_index = station_index
        self.classifier = classifier or KeywordStationSkipClassifier(station_index.names())
        self.route_station_ids = list(route_station_ids or [])
        self._clock = clock

    def get_service_alerts(self) -> List[ServiceAlert]:
        try:
            alerts = self.alert_source()
        except CommuteTrackError as e:
            logger.warning(f"Service alerts unavailable: {e}")
            return []
        logger.debug(f"Loaded {len(alerts)} service alerts")
        return list(alerts)

    def get_active_service_alerts(self, now: Optional[float] = None) -> List[ServiceAlert]:
        """Alerts with no active period, or with a period containing ``now``."""
        now = self._clock() if now is None else now
        return [alert for alert in self.get_service_alerts() if alert.is_active(now)]

    def is_station_skipping_alert(self, alert: ServiceAlert) -> bool:
        return self.classifier.is_station_skipping(alert)

    def get_escalated_severity(self, alert: ServiceAlert, station_ids: Optional[Iterable[str]] = None) -> Severity:
        """
        Severe when a station-skipping alert touches one of ``station_ids``.

        Never lower than the alert's own severity.
        """
        if alert.severity == Severity.SEVERE:
            return Severity.SEVERE
        ids = self.route_station_ids if station_ids is None else list(station_ids)
        if ids and self.is_station_skipping_alert(alert) and self._affects_stations(alert, ids):
            return Severity.SEVERE
        return alert.severity

    def get_service_alerts_for_commute(
        self,
        lines: Iterable[str],
        direction: int,
        station_ids: Optional[Iterable[str]] = None,
        now: Optional[float] = None,
    ) -> List[ServiceAlert]:
        """
        Active alerts relevant to riding ``lines`` in ``direction``.

        Station-skipping alerts only need to affect one of the lines; other
        alerts must also match the direction and, when they name stops,
        one of the route's stations. Returned alerts carry the escalated
        severity.
        """
        lines = set(lines)
        ids = self.route_station_ids if station_ids is None else list(station_ids)
        relevant_stop_ids = self._expand_station_ids(ids)

        results = []
        for alert in self.get_active_service_alerts(now):
            if not lines.intersection(alert.affected_routes):
                continue
            if not self.is_station_skipping_alert(alert):
                if not self._direction_matches(alert, lines, direction):
                    continue
                if not self._stops_match(alert, relevant_stop_ids):
                    continue
            severity = self.get_escalated_severity(alert, ids)
            if severity != alert.severity:
                logger.info(f"Escalating alert {alert.id} to {severity.value}: {alert.header_text}")
                alert = replace(alert, severity=severity)
            results.append(alert)
        return results

    def check_route_for_alerts(self, route: Route, direction: int) -> AlertInfo:
        lines = list(dict.fromkeys(route.lines))
        if not lines:
            return AlertInfo(has_alerts=False, severity=None, alerts=[])

        station_ids = []
        for step in route.steps:
            if step.type in (StepType.TRANSIT, StepType.TRANSFER):
                station_ids.extend(i for i in (step.from_station_id, step.to_station_id) if i)
        station_ids = list(dict.fromkeys(station_ids))

        alerts = self.get_service_alerts_for_commute(lines, direction, station_ids or None)
        return AlertInfo(
            has_alerts=bool(alerts),
            severity=Severity.highest(alert.severity for alert in alerts),
            alerts=alerts,
        )

    def annotate_routes(self, routes: List[Route], direction: int) -> List[Route]:
        """Attach matching alerts and their top severity to each route in place."""
        for route in routes:
            info = self.check_route_for_alerts(route, direction)
            route.alerts = info.alerts
            route.alert_severity = info.severity
        return routes

    def _expand_station_ids(self, station_ids: Iterable[str]) -> Set[str]:
        expanded: Set[str] = set()
        for station_id in station_ids:
            expanded.add(station_id)
            station = self.station_index.get(station_id)
            if station is not None:
                expanded.update(self.station_index.related_stop_ids(station))
        return expanded

    def _affects_stations(self, alert: ServiceAlert, station_ids: Iterable[str]) -> bool:
        station_ids = list(station_ids)
        expanded = self._expand_station_ids(station_ids)
        if any(e.stop_id and _stop_matches(e.stop_id, expanded) for e in alert.informed_entities):
            return True
        text = alert.text
        for station_id in station_ids:
            station = self.station_index.get(station_id)
            if station is not None and mentions_name(text, station.name):
                return True
        return False

    @staticmethod
    def _direction_matches(alert: ServiceAlert, lines: Set[str], direction: int) -> bool:
        directions = {
            e.direction_id
            for e in alert.informed_entities
            if e.direction_id is not None and (e.route_id is None or e.route_id in lines)
        }
        return not directions or direction in directions

    @staticmethod
    def _stops_match(alert: ServiceAlert, relevant_stop_ids: Set[str]) -> bool:
        stops = [e.stop_id for e in alert.informed_entities if e.stop_id]
        if not stops or not relevant_stop_ids:
            return True
        return any(_stop_matches(stop_id, relevant_stop_ids) for stop_id in stops)
