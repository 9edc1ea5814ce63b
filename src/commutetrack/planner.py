"""Main CommutePlanner class."""

import logging
import math
import time
from datetime import datetime
from itertools import islice
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import requests

from .alerts import AlertCorrelator, StationSkipClassifier
from .cache_manager import CacheManager
from .config import (
    DEPARTURES_PER_LINE,
    LEAVING_NOW_SECONDS,
    ONE_MINUTE_SECONDS,
    ROUTES,
    CacheConfig,
    CommuteProfile,
    PlannerConfig,
)
from .errors import FeedUnavailableError
from .feed_gateway import FeedGateway
from .geo import DistanceEstimator, get_borough, get_direction_label
from .models import AlertInfo, Departure, Location, Route, ServiceAlert, Station
from .route_composer import RouteComposer
from .static_data import STATION_RECORDS
from .stations import StationIndex
from .transfers import TransferTopology

logger = logging.getLogger(__name__)


def format_relative_time(seconds_away: float) -> Tuple[int, str]:
    """Whole minutes until departure and the board text ("Now", "1", "7")."""
    if seconds_away <= LEAVING_NOW_SECONDS:
        return 0, "Now"
    if seconds_away <= ONE_MINUTE_SECONDS:
        return 1, "1"
    minutes = math.floor(seconds_away / 60)
    return minutes, str(minutes)


class CommutePlanner:
    """
    Plans subway commutes and surfaces the service alerts that affect them.

    This class provides methods to:
    - Calculate ranked routes between two stations or locations
    - Get service alerts relevant to a commute, with escalated severity
    - List the next departures at a station, line by line
    - Inspect cache statistics

    The station index and transfer hubs are built once here and shared by
    every component.
    """

    def __init__(
        self,
        station_index: Optional[StationIndex] = None,
        profile: Optional[CommuteProfile] = None,
        planner_config: Optional[PlannerConfig] = None,
        cache_config: Optional[CacheConfig] = None,
        session: Optional[requests.Session] = None,
        classifier: Optional[StationSkipClassifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the planner.

        Args:
            station_index: Station table to plan over. Defaults to the built-in
                          Brooklyn/Manhattan corridor.
            profile: Home and work locations used for walking legs.
            planner_config: Route search tuning.
            cache_config: Cache TTLs and refresh settings.
            session: requests session used for MTA feeds.
            classifier: Station-skip classifier for alerts.
            clock: Wall clock returning Unix time.
        """
        self.station_index = station_index or StationIndex.from_records(STATION_RECORDS)
        self.profile = profile or CommuteProfile()
        self.config = planner_config or PlannerConfig()
        self.topology = TransferTopology.from_station_index(self.station_index)
        self.cache = CacheManager(cache_config)
        self.estimator = DistanceEstimator()
        self.gateway = FeedGateway(self.station_index, cache=self.cache, session=session, clock=clock)
        self.correlator = AlertCorrelator(
            self.gateway.fetch_alerts,
            self.station_index,
            classifier=classifier,
            route_station_ids=self._commute_station_ids(),
            clock=clock,
        )
        self._clock = clock
        self.composer = RouteComposer(
            self.station_index,
            self.topology,
            self.gateway,
            estimator=self.estimator,
            correlator=self.correlator,
            config=self.config,
            profile=self.profile,
            clock=clock,
        )

    def calculate_routes(
        self,
        origin: Union[str, Location],
        destination: Union[str, Location],
        target_arrival: Union[str, datetime, None] = None,
        direction: Optional[int] = None,
    ) -> List[Route]:
        """
        Calculate ranked routes for a commute.

        Identical requests within the routes TTL share one computed result.

        Args:
            origin: Station name (e.g., "Carroll St") or a Location.
            destination: Station name or a Location.
            target_arrival: Desired arrival, e.g. "9:30 AM".
            direction: 1 for inbound/northbound, 0 for outbound. Inferred from
                      the schedule when omitted.

        Returns:
            Routes sorted by total time, then transfer count. Empty when no
            route could be built.
        """
        key = f"{origin}|{destination}|{target_arrival}|{direction}"
        return self.cache.get(
            key,
            ROUTES,
            lambda: self.composer.calculate_routes(origin, destination, target_arrival, direction),
        )

    def get_service_alerts_for_commute(
        self,
        lines: Iterable[str],
        direction: int,
        station_ids: Optional[Iterable[str]] = None,
    ) -> List[ServiceAlert]:
        """
        Get active alerts relevant to a commute.

        Args:
            lines: Route IDs the rider uses (e.g., ["F", "C"]).
            direction: Rider direction (0 or 1).
            station_ids: Stations on the rider's route. Defaults to the
                        stations nearest home and work plus priority hubs.

        Returns:
            List of ServiceAlert objects with escalated severity.
        """
        return self.correlator.get_service_alerts_for_commute(lines, direction, station_ids)

    def check_route_for_alerts(self, route: Route, direction: int) -> AlertInfo:
        return self.correlator.check_route_for_alerts(route, direction)

    def get_departures(
        self,
        station: Union[str, Station],
        direction: int,
        limit: int = DEPARTURES_PER_LINE,
    ) -> Dict[str, List[Departure]]:
        """
        Get the next departures from a station, grouped by line.

        Args:
            station: Station, station ID or name (e.g., "Carroll St").
            direction: 1 for northbound, 0 for southbound.
            limit: Maximum departures per line.

        Returns:
            Dict mapping line to its departures in time order. Lines whose
            feed is unavailable are left out.

        Raises:
            StationNotFoundError: If the station name does not resolve.
        """
        if isinstance(station, str):
            station = self.get_station(station)

        now = self._clock()
        borough = get_borough(station.lat, station.lng)
        departures: Dict[str, List[Departure]] = {}

        for line in station.lines:
            try:
                predictions = list(islice(self.gateway.fetch_arrivals(line, station, direction), limit))
            except FeedUnavailableError as e:
                logger.warning(f"Skipping {line} departures at {station.name}: {e}")
                continue

            label = get_direction_label(line, direction, borough)
            departures[line] = []
            for prediction in predictions:
                minutes_away, relative_time = format_relative_time(prediction.departure_time - now)
                departures[line].append(
                    Departure(
                        line=line,
                        departure_time=datetime.fromtimestamp(prediction.departure_time),
                        minutes_away=minutes_away,
                        relative_time=relative_time,
                        direction_label=label,
                        trip_id=prediction.trip_id,
                    )
                )

        logger.debug(f"{sum(len(d) for d in departures.values())} departures at {station.name}")
        return departures

    def get_cache_stats(self) -> dict:
        return self.cache.get_cache_stats()

    def get_performance_stats(self) -> dict:
        return self.cache.get_performance_stats()

    def check_feed_health(self) -> dict:
        return self.gateway.check_feed_health()

    def get_station(self, station_input: str) -> Station:
        """
        Get a station by ID or name.

        Raises:
            StationNotFoundError: If station not found.
        """
        station = self.station_index.get(station_input)
        if station is not None:
            return station
        stations = self.station_index.find_by_name(station_input)
        if not stations:
            return self.station_index.get_station(station_input)
        return stations[0]

    def find_nearest_station(self, location: Location, line: Optional[str] = None) -> Optional[Tuple[Station, int]]:
        """Nearest station (optionally on ``line``) and the walk to it in minutes."""
        if line is not None:
            candidates = self.station_index.nearest_for_line(location, line, limit=1)
            nearest = candidates[0] if candidates else None
        else:
            nearest = self.station_index.nearest(location)
        if nearest is None:
            return None
        station, _ = nearest
        return station, self.estimator.walking_time(location, station.location)

    def clear_caches(self) -> None:
        self.cache.clear()

    def cleanup(self) -> int:
        """Evict expired cache entries."""
        return self.cache.cleanup()

    def close(self) -> None:
        """Stop background refresh workers and release the HTTP session."""
        self.cache.shutdown(wait_for_refreshes=False)
        self.gateway.session.close()
        logger.info("Closed planner resources")

    def _commute_station_ids(self) -> List[str]:
        ids = []
        for point in (self.profile.home, self.profile.work):
            if point is None:
                continue
            nearest = self.station_index.nearest(point)
            if nearest is not None:
                ids.append(nearest[0].id)
        ids.extend(hub.station_id for hub in self.topology.all_hubs() if hub.is_user_priority)
        return list(dict.fromkeys(ids))
