"""Itinerary composition from schedules, live arrivals, walks and transfer hubs."""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .alerts import AlertCorrelator
from .config import CommuteProfile, PlannerConfig
from .errors import FeedUnavailableError, NoConnectionError, StationNotFoundError
from .feed_gateway import FeedGateway
from .geo import DistanceEstimator
from .models import DataSource, Location, Route, RouteStep, Station, StepType, TransferHub
from .static_data import DEFAULT_HEADWAY, TRAIN_HEADWAYS
from .stations import StationIndex
from .transfers import TransferTopology

logger = logging.getLogger(__name__)

DIRECT = "direct"
SINGLE_TRANSFER = "single_transfer"
MULTI_TRANSFER = "multi_transfer"

# Route id ranges per class
ROUTE_ID_BASE = {DIRECT: 1, SINGLE_TRANSFER: 1000, MULTI_TRANSFER: 2000}

SCHEDULE_STEP_PENALTY = 5
ESTIMATED_STEP_PENALTY = 15
MIN_CONFIDENCE = 10
ESTIMATED_ROUTE_MAX_CONFIDENCE = 40
ESTIMATED_WARNING = "Real-time data unavailable; times are estimated from schedules"


@dataclass(frozen=True)
class Leg:
    """One ride on one line."""
    line: str
    board: Station
    alight: Station


@dataclass(frozen=True)
class CandidatePath:
    """Legs plus the hubs joining them (``len(hubs) == len(legs) - 1``)."""
    legs: Tuple[Leg, ...]
    hubs: Tuple[TransferHub, ...]
    origin_walk: int
    destination_walk: int

    @property
    def key(self) -> tuple:
        return tuple((leg.line, leg.board.id, leg.alight.id) for leg in self.legs)


Endpoint = Union[str, Location]


def parse_target_arrival(target: Union[str, datetime, None], now: float) -> Optional[datetime]:
    """Parse "9:30 AM" (or "09:30") as today's clock time; datetimes pass through."""
    if target is None or isinstance(target, datetime):
        return target
    today = datetime.fromtimestamp(now)
    for fmt in ("%I:%M %p", "%I:%M%p", "%H:%M"):
        try:
            parsed = datetime.strptime(target.strip().upper(), fmt)
        except ValueError:
            continue
        return today.replace(hour=parsed.hour, minute=parsed.minute, second=0, microsecond=0)
    logger.warning(f"Unrecognised target arrival time: {target!r}")
    return None


def score_confidence(steps: Iterable[RouteStep]) -> int:
    """100, minus a penalty per timed step not backed by live data."""
    confidence = 100
    for step in steps:
        if step.type not in (StepType.WAIT, StepType.TRANSIT):
            continue
        if step.data_source == DataSource.FIXED:
            confidence -= SCHEDULE_STEP_PENALTY
        elif step.data_source == DataSource.ESTIMATED:
            confidence -= ESTIMATED_STEP_PENALTY
    return max(MIN_CONFIDENCE, confidence)


class RouteComposer:
    """
    Builds ranked itineraries between two endpoints.

    Route classes are tried in order: direct, one transfer, two transfers.
    Each candidate path is timed against live departures; paths with no
    feasible connection are dropped. When live data fails everywhere a few
    schedule-estimated itineraries are returned instead, flagged as such.
    """

    def __init__(
        self,
        station_index: StationIndex,
        topology: TransferTopology,
        gateway: FeedGateway,
        estimator: Optional[DistanceEstimator] = None,
        correlator: Optional[AlertCorrelator] = None,
        config: Optional[PlannerConfig] = None,
        profile: Optional[CommuteProfile] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.station_index = station_index
        self.topology = topology
        self.gateway = gateway
        self.estimator = estimator or DistanceEstimator()
        self.correlator = correlator
        self.config = config or PlannerConfig()
        self.profile = profile or CommuteProfile()
        self._clock = clock

    def calculate_routes(
        self,
        origin: Endpoint,
        destination: Endpoint,
        target_arrival: Union[str, datetime, None] = None,
        direction: Optional[int] = None,
        max_transfers: Optional[int] = None,
    ) -> List[Route]:
        """
        Ranked itineraries from ``origin`` to ``destination``.

        Endpoints are station names (walking from the profile's home or to
        its work location) or Locations (any station within walking radius).

        Args:
            origin: Station name (e.g., "Carroll St") or a Location.
            destination: Station name or a Location.
            target_arrival: Desired arrival as "9:30 AM", "21:15" or a datetime.
                           Sets ``arrives_by_target`` on each route.
            direction: 1 (northbound) or 0 (southbound) for every leg. Taken
                      per leg from the schedule when omitted.
            max_transfers: Most transfers to consider. Defaults to the
                          planner config.

        Returns:
            Routes sorted by total time, then transfer count. Empty when an
            endpoint is unknown or no route could be built.
        """
        now = self._clock()
        max_transfers = self.config.max_transfers if max_transfers is None else max_transfers

        try:
            origins = self._resolve_endpoint(origin, is_origin=True)
            destinations = self._resolve_endpoint(destination, is_origin=False)
        except StationNotFoundError as e:
            logger.info(f"No routes: {e}")
            return []

        logger.info(f"Calculating routes {_describe(origin)} -> {_describe(destination)}")

        classes = [
            (DIRECT, 0, self._direct_paths),
            (SINGLE_TRANSFER, 1, self._single_transfer_paths),
            (MULTI_TRANSFER, 2, self._multi_transfer_paths),
        ]
        routes: List[Route] = []
        fallback_paths: List[CandidatePath] = []
        feed_failed = False
        empty_class = False

        for name, transfers, make_paths in classes:
            if transfers > max_transfers:
                break
            if routes and not empty_class and self._enough_routes(routes):
                logger.debug(f"Enough high-confidence routes; skipping {name}")
                break

            paths = make_paths(origins, destinations)
            if transfers <= 1:
                fallback_paths.extend(paths)
            start = time.perf_counter()
            try:
                found = self._time_paths(paths, now, direction, ROUTE_ID_BASE[name])
            except FeedUnavailableError as e:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.warning(f"Skipping {name} routes after {duration_ms:.0f}ms: {e}")
                feed_failed = True
                empty_class = True
                continue

            logger.debug(f"{name}: {len(found)} routes from {len(paths)} candidate paths")
            if not found:
                empty_class = True
            routes.extend(found)

        if not routes and feed_failed:
            routes = self._estimated_routes(fallback_paths, now)

        routes.sort(key=lambda r: (r.total_time_minutes, r.transfer_count))
        routes = routes[: self.config.max_routes]

        target = parse_target_arrival(target_arrival, now)
        if target is not None:
            for route in routes:
                route.arrives_by_target = route.arrival_time <= target

        if routes and self.correlator is not None:
            alert_direction = direction if direction is not None else self._leg_direction(routes[0], None)
            try:
                self.correlator.annotate_routes(routes, alert_direction)
            except Exception as e:
                logger.error(f"Failed to attach alerts to routes: {e}", exc_info=True)

        logger.info(f"Found {len(routes)} routes")
        return routes

    def _resolve_endpoint(self, endpoint: Endpoint, is_origin: bool) -> List[Tuple[Station, int]]:
        """Candidate stations for an endpoint with the walk to/from each."""
        if isinstance(endpoint, Location):
            nearby = self.station_index.within_radius(endpoint, self.config.walk_radius_miles)
            if not nearby:
                nearest = self.station_index.nearest(endpoint)
                if nearest is None:
                    raise StationNotFoundError(f"No stations near {endpoint}")
                nearby = [nearest]
            return [(station, self._walk(endpoint, station, is_origin)) for station, _ in nearby]

        stations = self.station_index.find_by_name(endpoint)
        if not stations:
            raise StationNotFoundError(f"Unknown station: {endpoint}")
        anchor = self.profile.home if is_origin else self.profile.work
        return [(station, self._walk(anchor, station, is_origin) if anchor else 0) for station in stations]

    def _walk(self, point: Location, station: Station, is_origin: bool) -> int:
        if is_origin:
            return self.estimator.walking_time(point, station.location)
        return self.estimator.walking_time(station.location, point)

    def _direct_paths(self, origins, destinations) -> List[CandidatePath]:
        paths = []
        for o, o_walk in origins:
            for d, d_walk in destinations:
                if o.id == d.id:
                    continue
                for line in sorted(set(o.lines) & set(d.lines)):
                    paths.append(CandidatePath((Leg(line, o, d),), (), o_walk, d_walk))
        return _unique(paths)

    def _single_transfer_paths(self, origins, destinations) -> List[CandidatePath]:
        paths = []
        for o, o_walk in origins:
            for d, d_walk in destinations:
                if o.id == d.id:
                    continue
                for line_a in o.lines:
                    for line_b in d.lines:
                        if line_a == line_b:
                            continue
                        for hub in self._hubs_between(line_a, line_b, (o, d)):
                            hub_station = self.station_index.get(hub.station_id)
                            paths.append(
                                CandidatePath(
                                    (Leg(line_a, o, hub_station), Leg(line_b, hub_station, d)),
                                    (hub,),
                                    o_walk,
                                    d_walk,
                                )
                            )
        return _unique(paths)

    def _multi_transfer_paths(self, origins, destinations) -> List[CandidatePath]:
        paths = []
        for o, o_walk in origins:
            for d, d_walk in destinations:
                if o.id == d.id:
                    continue
                for line_a in o.lines:
                    for line_c in d.lines:
                        if line_a == line_c:
                            continue
                        middle_lines = sorted(
                            {line for hub in self.topology.hubs_for_line(line_a) for line in hub.lines}
                            - {line_a, line_c}
                        )
                        for line_b in middle_lines:
                            for first in self._hubs_between(line_a, line_b, (o, d)):
                                for second in self._hubs_between(line_b, line_c, (o, d)):
                                    if first.station_id == second.station_id:
                                        continue
                                    first_station = self.station_index.get(first.station_id)
                                    second_station = self.station_index.get(second.station_id)
                                    paths.append(
                                        CandidatePath(
                                            (
                                                Leg(line_a, o, first_station),
                                                Leg(line_b, first_station, second_station),
                                                Leg(line_c, second_station, d),
                                            ),
                                            (first, second),
                                            o_walk,
                                            d_walk,
                                        )
                                    )
        return _unique(paths)

    def _hubs_between(self, line_from: str, line_to: str, endpoints: Tuple[Station, ...]) -> List[TransferHub]:
        excluded = {station.id for station in endpoints}
        hubs = [
            hub
            for hub in self.topology.connecting_hubs(line_from, line_to)
            if hub.station_id not in excluded and self.station_index.get(hub.station_id) is not None
        ]
        return hubs[: self.config.hubs_per_pair]

    def _time_paths(self, paths: List[CandidatePath], now: float, direction: Optional[int], id_base: int) -> List[Route]:
        routes = []
        for path in paths:
            try:
                route = self._time_path(path, now, direction, id_base + len(routes))
            except NoConnectionError as e:
                logger.debug(f"Dropping {' -> '.join(leg.line for leg in path.legs)}: {e}")
                continue
            routes.append(route)
        return routes

    def _time_path(self, path: CandidatePath, now: float, direction: Optional[int], route_id: int) -> Route:
        """Time one path against live departures. Raises NoConnectionError when a leg cannot be caught."""
        steps: List[RouteStep] = []
        cursor = now

        if path.origin_walk:
            steps.append(
                RouteStep(
                    StepType.WALK,
                    path.origin_walk,
                    DataSource.FIXED,
                    f"Walk to {path.legs[0].board.name}",
                    to_station=path.legs[0].board.name,
                    to_station_id=path.legs[0].board.id,
                )
            )
            cursor += path.origin_walk * 60

        for i, leg in enumerate(path.legs):
            leg_direction = self._direction_for(leg, direction)

            if i > 0:
                hub = path.hubs[i - 1]
                previous = path.legs[i - 1].line
                transfer_minutes = self.topology.transfer_time(hub.name, previous, leg.line)
                steps.append(
                    RouteStep(
                        StepType.TRANSFER,
                        transfer_minutes,
                        DataSource.FIXED,
                        f"Transfer from {previous} to {leg.line} at {leg.board.name}",
                        line=leg.line,
                        from_station=leg.board.name,
                        to_station=leg.board.name,
                        from_station_id=leg.board.id,
                        to_station_id=leg.board.id,
                    )
                )
                cursor += transfer_minutes * 60
                departure = self._next_departure(leg, leg_direction, cursor, strict=False)
            else:
                departure = self._next_departure(leg, leg_direction, cursor, strict=True)

            wait = max(0, math.ceil((departure.departure_time - cursor) / 60))
            steps.append(
                RouteStep(
                    StepType.WAIT,
                    wait,
                    DataSource.REALTIME,
                    f"Wait for {leg.line} train at {leg.board.name}",
                    line=leg.line,
                    from_station=leg.board.name,
                    from_station_id=leg.board.id,
                )
            )
            cursor = departure.departure_time

            ride, source = self._ride_minutes(leg, leg_direction, departure)
            steps.append(
                RouteStep(
                    StepType.TRANSIT,
                    ride,
                    source,
                    f"Take {leg.line} from {leg.board.name} to {leg.alight.name}",
                    line=leg.line,
                    from_station=leg.board.name,
                    to_station=leg.alight.name,
                    from_station_id=leg.board.id,
                    to_station_id=leg.alight.id,
                )
            )
            cursor += ride * 60

        return self._finish_route(route_id, steps, path, now, is_real_time=True)

    def _next_departure(self, leg: Leg, direction: int, ready_at: float, strict: bool):
        for prediction in self.gateway.fetch_arrivals(leg.line, leg.board, direction):
            if prediction.departure_time > ready_at or (not strict and prediction.departure_time == ready_at):
                return prediction
        raise NoConnectionError(f"No {leg.line} departure from {leg.board.name} after {datetime.fromtimestamp(ready_at):%H:%M}")

    def _ride_minutes(self, leg: Leg, direction: int, departure) -> Tuple[int, DataSource]:
        """Live ride time from the same trip's arrival downstream, else the schedule."""
        if departure.trip_id:
            for prediction in self.gateway.fetch_arrivals(leg.line, leg.alight, direction):
                if prediction.trip_id == departure.trip_id and prediction.arrival_time > departure.departure_time:
                    return math.ceil((prediction.arrival_time - departure.departure_time) / 60), DataSource.REALTIME

        result = self.gateway.transit_time_lookup(leg.board.id, leg.alight.id, leg.line)
        if not result.ok:
            logger.warning(f"Estimated {leg.line} ride {leg.board.name} -> {leg.alight.name}: {result.message}")
            return result.value, DataSource.ESTIMATED
        return result.value, DataSource.FIXED

    def _direction_for(self, leg: Leg, requested: Optional[int]) -> int:
        direction = self.gateway.direction_between(leg.board.id, leg.alight.id, leg.line)
        if direction is not None:
            return direction
        return self.config.default_direction if requested is None else requested

    def _leg_direction(self, route: Route, requested: Optional[int]) -> int:
        for step in route.steps:
            if step.type == StepType.TRANSIT and step.from_station_id and step.to_station_id:
                direction = self.gateway.direction_between(step.from_station_id, step.to_station_id, step.line)
                if direction is not None:
                    return direction
        return self.config.default_direction if requested is None else requested

    def _estimated_routes(self, paths: List[CandidatePath], now: float) -> List[Route]:
        """Schedule-only itineraries used when live feeds are down."""
        routes = []
        for path in paths[: self.config.fallback_route_limit]:
            steps: List[RouteStep] = []
            if path.origin_walk:
                steps.append(
                    RouteStep(
                        StepType.WALK,
                        path.origin_walk,
                        DataSource.FIXED,
                        f"Walk to {path.legs[0].board.name}",
                        to_station=path.legs[0].board.name,
                        to_station_id=path.legs[0].board.id,
                    )
                )
            for i, leg in enumerate(path.legs):
                if i > 0:
                    previous = path.legs[i - 1].line
                    steps.append(
                        RouteStep(
                            StepType.TRANSFER,
                            self.topology.transfer_time(path.hubs[i - 1].name, previous, leg.line),
                            DataSource.FIXED,
                            f"Transfer from {previous} to {leg.line} at {leg.board.name}",
                            line=leg.line,
                            from_station=leg.board.name,
                            to_station=leg.board.name,
                            from_station_id=leg.board.id,
                            to_station_id=leg.board.id,
                        )
                    )
                headway = TRAIN_HEADWAYS.get(leg.line, DEFAULT_HEADWAY)
                steps.append(
                    RouteStep(
                        StepType.WAIT,
                        math.ceil(headway / 2),
                        DataSource.ESTIMATED,
                        f"Wait for {leg.line} train at {leg.board.name} (estimated)",
                        line=leg.line,
                        from_station=leg.board.name,
                        from_station_id=leg.board.id,
                    )
                )
                result = self.gateway.transit_time_lookup(leg.board.id, leg.alight.id, leg.line)
                steps.append(
                    RouteStep(
                        StepType.TRANSIT,
                        result.value,
                        DataSource.FIXED if result.ok else DataSource.ESTIMATED,
                        f"Take {leg.line} from {leg.board.name} to {leg.alight.name}",
                        line=leg.line,
                        from_station=leg.board.name,
                        to_station=leg.alight.name,
                        from_station_id=leg.board.id,
                        to_station_id=leg.alight.id,
                    )
                )
            route_id = ROUTE_ID_BASE[DIRECT if len(path.legs) == 1 else SINGLE_TRANSFER] + len(routes)
            routes.append(self._finish_route(route_id, steps, path, now, is_real_time=False))

        if routes:
            logger.warning(f"Returning {len(routes)} estimated routes without real-time data")
        return routes

    def _finish_route(self, route_id: int, steps: List[RouteStep], path: CandidatePath, now: float, is_real_time: bool) -> Route:
        last = path.legs[-1].alight
        if path.destination_walk:
            steps.append(
                RouteStep(
                    StepType.WALK,
                    path.destination_walk,
                    DataSource.FIXED,
                    f"Walk from {last.name}",
                    from_station=last.name,
                    from_station_id=last.id,
                )
            )
        steps.append(RouteStep(StepType.ARRIVE, 0, DataSource.FIXED, "Arrive at destination"))

        total = sum(step.duration for step in steps)
        confidence = score_confidence(steps)
        warning = None
        if not is_real_time:
            confidence = min(confidence, ESTIMATED_ROUTE_MAX_CONFIDENCE)
            warning = ESTIMATED_WARNING

        return Route(
            id=route_id,
            arrival_time=datetime.fromtimestamp(now + total * 60),
            total_time_minutes=total,
            steps=steps,
            confidence=confidence,
            is_real_time_data=is_real_time,
            warning=warning,
        )

    def _enough_routes(self, routes: List[Route]) -> bool:
        strong = [r for r in routes if r.confidence >= self.config.high_confidence]
        return len(strong) >= self.config.enough_routes


def _unique(paths: List[CandidatePath]) -> List[CandidatePath]:
    seen = set()
    result = []
    for path in paths:
        if path.key in seen:
            continue
        seen.add(path.key)
        result.append(path)
    return result


def _describe(endpoint: Endpoint) -> str:
    if isinstance(endpoint, Location):
        return f"({endpoint.lat:.5f}, {endpoint.lng:.5f})"
    return endpoint
