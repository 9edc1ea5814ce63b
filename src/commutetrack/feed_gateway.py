"""MTA GTFS-Realtime gateway: arrivals, alerts, transit times and feed health."""

import logging
import time
from typing import Callable, Dict, Iterator, List, Optional, Union

import requests
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .cache_manager import CacheManager
from .config import (
    ALERTS,
    DEFAULT_TRANSIT_FALLBACK_MINUTES,
    FEED_TIMEOUT_SECONDS,
    GTFS,
    HEALTH,
    LINE_FEEDS,
    MTA_ALERT_FEEDS,
    MTA_API_KEY,
    MTA_FEEDS,
    SCHEDULE,
    STALE_PREDICTION_SECONDS,
    TRANSIT_FALLBACK_MARGIN_MINUTES,
    TRANSIT_TIME_CEILING_MINUTES,
)
from .errors import DataInconsistencyError, ErrorKind, FeedUnavailableError, Result
from .models import ActivePeriod, ArrivalPrediction, InformedEntity, ServiceAlert, Severity, Station
from .schedule import StaticSchedule
from .stations import StationIndex
from .static_data import SCHEDULE_ROWS

logger = logging.getLogger(__name__)

_Alert = gtfs_realtime_pb2.Alert

EFFECT_SEVERITY = {
    _Alert.NO_SERVICE: Severity.SEVERE,
    _Alert.SIGNIFICANT_DELAYS: Severity.WARNING,
    _Alert.REDUCED_SERVICE: Severity.WARNING,
    _Alert.DETOUR: Severity.WARNING,
    _Alert.MODIFIED_SERVICE: Severity.WARNING,
    _Alert.STOP_MOVED: Severity.WARNING,
}


def _default_schedule() -> StaticSchedule:
    return StaticSchedule.from_rows(SCHEDULE_ROWS)


def decode_feed(feed_data: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """Decode a GTFS-RT payload, mapping protobuf errors to a feed error."""
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(feed_data)
    except DecodeError as e:
        raise FeedUnavailableError(f"Undecodable GTFS-RT payload: {e}", kind=ErrorKind.DATA_INCONSISTENCY) from e
    return feed


def _direction_from_stop_id(stop_id: str) -> Optional[int]:
    suffix = stop_id[-1:].upper()
    if suffix == "N":
        return 1
    if suffix == "S":
        return 0
    return None


def parse_trip_updates(feed_data: bytes) -> Dict[str, List[ArrivalPrediction]]:
    """
    Parse trip updates into predictions grouped by stop id.

    Stop time updates without a stop id or without any time are skipped.
    """
    feed = decode_feed(feed_data)
    by_stop: Dict[str, List[ArrivalPrediction]] = {}
    skipped = 0

    for entity in feed.entity:
        if not entity.HasField("trip_update"):
            continue

        trip_update = entity.trip_update
        route_id = trip_update.trip.route_id or None
        has_dir = trip_update.trip.HasField("direction_id")
        trip_direction = trip_update.trip.direction_id if has_dir else None

        for stop_time_update in trip_update.stop_time_update:
            stop_id = stop_time_update.stop_id
            arrival = stop_time_update.arrival.time if stop_time_update.HasField("arrival") else 0
            departure = stop_time_update.departure.time if stop_time_update.HasField("departure") else 0
            if not stop_id or not (arrival or departure):
                skipped += 1
                continue

            # Fallback direction: derive from stop_id suffix when missing
            direction_id = trip_direction if trip_direction is not None else _direction_from_stop_id(stop_id)

            prediction = ArrivalPrediction(
                stop_id=stop_id,
                stop_sequence=stop_time_update.stop_sequence,
                arrival_time=arrival or departure,
                departure_time=departure or arrival,
                route_id=route_id,
                trip_id=trip_update.trip.trip_id or None,
                direction_id=direction_id,
            )
            by_stop.setdefault(stop_id, []).append(prediction)

    if skipped:
        logger.debug(f"Skipped {skipped} malformed stop time updates")
    return by_stop


def _entity_direction(informed_entity) -> Optional[int]:
    if informed_entity.HasField("trip") and informed_entity.trip.HasField("direction_id"):
        return informed_entity.trip.direction_id
    # direction_id on EntitySelector only exists in newer bindings
    if "direction_id" in informed_entity.DESCRIPTOR.fields_by_name and informed_entity.HasField("direction_id"):
        return informed_entity.direction_id
    return None


def _translated(text) -> str:
    if text.translation:
        return text.translation[0].text
    return ""


def parse_alerts(feed_data: bytes) -> List[ServiceAlert]:
    """Parse every alert entity in a GTFS-RT alerts feed."""
    feed = decode_feed(feed_data)
    alerts: List[ServiceAlert] = []

    for entity in feed.entity:
        if not entity.HasField("alert"):
            continue

        alert_obj = entity.alert
        affected_routes: List[str] = []
        informed_entities: List[InformedEntity] = []

        for informed_entity in alert_obj.informed_entity:
            # Route can be specified directly in route_id OR in trip.route_id
            route_id = informed_entity.route_id
            if not route_id and informed_entity.HasField("trip"):
                route_id = informed_entity.trip.route_id
            informed_entities.append(
                InformedEntity(
                    route_id=route_id or None,
                    stop_id=informed_entity.stop_id or None,
                    direction_id=_entity_direction(informed_entity),
                )
            )
            if route_id and route_id not in affected_routes:
                affected_routes.append(route_id)

        active_periods = [
            ActivePeriod(start=period.start or None, end=period.end or None) for period in alert_obj.active_period
        ]

        alerts.append(
            ServiceAlert(
                id=entity.id,
                header_text=_translated(alert_obj.header_text),
                description_text=_translated(alert_obj.description_text),
                affected_routes=affected_routes,
                severity=EFFECT_SEVERITY.get(alert_obj.effect, Severity.INFO),
                informed_entities=informed_entities,
                active_periods=active_periods,
            )
        )

    logger.debug(f"Parsed {len(alerts)} alerts")
    return alerts


class FeedGateway:
    """
    Fetches MTA realtime feeds through the cache and answers timing queries.

    Each feed is downloaded and parsed once per cache window; queries filter
    the parsed snapshot and never mutate it.
    """

    def __init__(
        self,
        station_index: StationIndex,
        cache: Optional[CacheManager] = None,
        session: Optional[requests.Session] = None,
        api_key: str = MTA_API_KEY,
        timeout: float = FEED_TIMEOUT_SECONDS,
        schedule_loader: Callable[[], StaticSchedule] = _default_schedule,
        alert_feeds: Optional[List[str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.station_index = station_index
        self.cache = cache or CacheManager()
        self.session = session or requests.Session()
        self.api_key = api_key
        self.timeout = timeout
        self.schedule_loader = schedule_loader
        self.alert_feeds = list(MTA_ALERT_FEEDS if alert_feeds is None else alert_feeds)
        self._clock = clock

    def fetch_arrivals(self, line: str, station: Union[Station, str], direction: int) -> Iterator[ArrivalPrediction]:
        """
        Upcoming predictions for ``line`` at ``station`` in ``direction``.

        Args:
            line: Route ID (e.g., "F").
            station: Station or station ID.
            direction: 1 for northbound, 0 for southbound.

        Returns:
            A fresh iterator sorted by departure time on every call. Empty
            when no realtime feed carries ``line``.

        Raises:
            FeedUnavailableError: If the line's feed cannot be fetched or decoded.
        """
        if isinstance(station, str):
            station = self.station_index.get_station(station)

        feed_key = LINE_FEEDS.get(line)
        if feed_key is None:
            logger.warning(f"No realtime feed configured for line {line}")
            return iter(())

        feed_url = MTA_FEEDS[feed_key]
        by_stop = self.cache.get(feed_url, GTFS, lambda: parse_trip_updates(self._http_get(feed_url)))

        base_id = station.gtfs_stop_id(line)
        directional_id = base_id + ("N" if direction == 1 else "S")
        cutoff = self._clock() - STALE_PREDICTION_SECONDS

        matches = [
            p
            for p in by_stop.get(directional_id, []) + by_stop.get(base_id, [])
            if (p.stop_id == directional_id or p.direction_id == direction)
            and (p.route_id is None or p.route_id == line)
            # Skip predictions that are clearly stale
            and p.departure_time >= cutoff
        ]
        matches.sort(key=lambda p: p.departure_time)
        logger.debug(f"{len(matches)} {line} predictions at {directional_id}")
        return iter(matches)

    def transit_time_lookup(self, from_station_id: str, to_station_id: str, line: str) -> Result:
        """
        Scheduled minutes riding ``line`` between two stations.

        Args:
            from_station_id: Boarding station ID.
            to_station_id: Alighting station ID.
            line: Route ID.

        Returns:
            Result holding the minutes. On failure it still carries a
            fallback that is longer than any scheduled ride on the line.
        """
        try:
            schedule = self._schedule()
        except DataInconsistencyError as e:
            logger.error(f"Schedule table is malformed, estimating {line} {from_station_id}->{to_station_id}: {e}")
            return Result.failure(e.kind, str(e), fallback=self._fallback_minutes(line, None))
        except Exception as e:
            logger.warning(f"Schedule unavailable, estimating {line} {from_station_id}->{to_station_id}: {e}")
            return Result.failure(ErrorKind.FEED_UNAVAILABLE, str(e), fallback=self._fallback_minutes(line, None))

        from_station = self.station_index.get(from_station_id)
        to_station = self.station_index.get(to_station_id)
        if from_station is None or to_station is None:
            return Result.failure(
                ErrorKind.NOT_FOUND,
                f"Unknown station {from_station_id if from_station is None else to_station_id}",
                fallback=self._fallback_minutes(line, schedule),
            )

        minutes = schedule.transit_minutes(line, from_station.gtfs_stop_id(line), to_station.gtfs_stop_id(line))
        if minutes is None:
            return Result.failure(
                ErrorKind.NOT_FOUND,
                f"{from_station.name} -> {to_station.name} not scheduled on {line}",
                fallback=self._fallback_minutes(line, schedule),
            )
        return Result.success(minutes)

    def transit_time(self, from_station_id: str, to_station_id: str, line: str) -> int:
        """Scheduled ride in minutes, or the fallback estimate when there is none."""
        result = self.transit_time_lookup(from_station_id, to_station_id, line)
        if not result.ok:
            logger.warning(f"Using fallback transit time {result.value}m for {line}: {result.message}")
        return result.value

    def direction_between(self, from_station_id: str, to_station_id: str, line: str) -> Optional[int]:
        """
        Direction of travel on ``line`` from schedule order.

        Args:
            from_station_id: Boarding station ID.
            to_station_id: Alighting station ID.
            line: Route ID.

        Returns:
            1 (northbound) or 0 (southbound), or None if either station is
            not scheduled on ``line``.
        """
        from_station = self.station_index.get(from_station_id)
        to_station = self.station_index.get(to_station_id)
        if from_station is None or to_station is None:
            return None
        try:
            schedule = self._schedule()
        except Exception as e:
            logger.warning(f"Schedule unavailable for direction lookup: {e}")
            return None
        return schedule.direction(line, from_station.gtfs_stop_id(line), to_station.gtfs_stop_id(line))

    def fetch_alerts(self) -> List[ServiceAlert]:
        """
        Current alerts from the first alert feed that responds.

        Returns:
            List of ServiceAlert objects with severity mapped from the effect.

        Raises:
            FeedUnavailableError: If every alert feed fails.
        """
        errors = []
        for feed_url in self.alert_feeds:
            try:
                return self.cache.get(feed_url, ALERTS, lambda url=feed_url: parse_alerts(self._http_get(url)))
            except FeedUnavailableError as e:
                logger.warning(f"Alert feed {feed_url} failed: {e}")
                errors.append(str(e))
        raise FeedUnavailableError(f"All alert feeds failed: {'; '.join(errors)}")

    def check_feed_health(self) -> Dict[str, bool]:
        """
        Check that each arrival feed responds.

        Returns:
            Dict mapping feed name (e.g., "bdfm") to True when reachable.
        """
        return {
            name: self.cache.get(url, HEALTH, lambda url=url: self._is_reachable(url))
            for name, url in MTA_FEEDS.items()
        }

    def _is_reachable(self, url: str) -> bool:
        try:
            self._http_get(url)
            return True
        except FeedUnavailableError as e:
            logger.warning(f"Feed health check failed for {url}: {e}")
            return False

    def _schedule(self) -> StaticSchedule:
        return self.cache.get("static", SCHEDULE, self.schedule_loader)

    def _fallback_minutes(self, line: str, schedule: Optional[StaticSchedule]) -> int:
        longest = schedule.longest_run(line) if schedule is not None else None
        if longest is None:
            return DEFAULT_TRANSIT_FALLBACK_MINUTES
        # Stays under the ceiling unless the line itself runs longer than that
        ceiling = max(TRANSIT_TIME_CEILING_MINUTES - 1, longest + 1)
        return min(longest + TRANSIT_FALLBACK_MARGIN_MINUTES, ceiling)

    def _http_get(self, url: str) -> bytes:
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        logger.debug(f"Fetching {url}")
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise FeedUnavailableError(f"Failed to fetch {url}: {e}") from e

        status = response.status_code
        if status == 403:
            raise FeedUnavailableError(f"Access denied by {url} (HTTP 403); check MTA_API_KEY")
        if status == 404:
            raise FeedUnavailableError(f"Feed not found: {url} (HTTP 404)")
        if status >= 500:
            raise FeedUnavailableError(f"MTA server error {status} from {url}")
        if status >= 400:
            raise FeedUnavailableError(f"Unexpected HTTP {status} from {url}")
        return response.content
